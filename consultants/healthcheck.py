"""Agent health checks: ping each agent before starting a consultation."""

import asyncio
import logging

from consultants.agents.base import Agent
from consultants.errors import redact

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(name: str, agent: Agent, timeout: float) -> tuple[str, bool, str]:
    """Ping a single agent. Returns (name, ok, error_message)."""
    try:
        reply = await asyncio.wait_for(agent.respond(_PING_PROMPT, timeout), timeout=timeout + 1)
    except TimeoutError:
        return name, False, f"No reply within {timeout:g}s"
    except Exception as exc:
        return name, False, redact(str(exc))
    if not reply.text.strip():
        return name, False, "Empty reply"
    return name, True, ""


async def run_health_checks(
    agents: dict[str, Agent],
    timeout: float = _TIMEOUT_SEC,
) -> dict[str, tuple[bool, str]]:
    """Ping all agents in parallel.

    Returns:
        Dict mapping agent id -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, a, timeout) for n, a in agents.items()))
    for name, ok, err in results:
        if not ok:
            logger.debug("Health check failed for %s: %s", name, err)
    return {name: (ok, err) for name, ok, err in results}
