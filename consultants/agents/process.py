"""Local CLI agent: prompt on stdin, answer on stdout."""

import asyncio
import logging
import re
import time

from config.config_loader import AgentConfig
from consultants.agents.base import Agent, AgentReply, empty_error, timeout_error
from consultants.errors import AgentError, FailureKind

logger = logging.getLogger(__name__)

# Checked in order against stderr of a failed run
_STDERR_PATTERNS: list[tuple[re.Pattern[str], FailureKind]] = [
    (re.compile(r"\b(401|403)\b|unauthori[sz]ed|forbidden|invalid api key|not logged in", re.IGNORECASE),
     FailureKind.AUTH_FAILURE),
    (re.compile(r"\b429\b|rate.?limit|quota|too many requests", re.IGNORECASE), FailureKind.RATE_LIMITED),
    (re.compile(r"\b5\d\d\b|server error|overloaded|unavailable", re.IGNORECASE), FailureKind.SERVER_ERROR),
    (re.compile(r"timed? ?out|connection (refused|reset)|network", re.IGNORECASE), FailureKind.NETWORK_TIMEOUT),
]


def classify_stderr(stderr: str) -> FailureKind:
    for pattern, kind in _STDERR_PATTERNS:
        if pattern.search(stderr):
            return kind
    return FailureKind.UNKNOWN


class ProcessAgent(Agent):
    """Runs the configured command once per prompt.

    ``{model}`` in the command is replaced by the configured model.
    """

    def __init__(self, config: AgentConfig) -> None:
        if not config.command:
            raise AgentError(config.name, FailureKind.CLIENT_ERROR, "No command configured")
        self._config = config
        self._argv = [part.replace("{model}", config.model) for part in config.command]

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def respond(self, prompt: str, timeout: float) -> AgentReply:
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise AgentError(self._config.name, FailureKind.CLIENT_ERROR, f"Cannot start {self._argv[0]}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(prompt.encode("utf-8")), timeout=timeout)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise timeout_error(self._config.name, timeout) from exc

        latency = time.monotonic() - start
        err_text = stderr.decode("utf-8", errors="replace").strip()

        if proc.returncode != 0:
            first_line = err_text.splitlines()[0] if err_text else "no stderr"
            raise AgentError(
                self._config.name,
                classify_stderr(err_text),
                f"Exit code {proc.returncode}: {first_line[:300]}",
            )

        text = stdout.decode("utf-8", errors="replace").strip()
        if not text:
            raise empty_error(self._config.name)

        logger.debug("%s: %.2fs, exit 0", self._config.name, latency)
        return AgentReply(text=text)
