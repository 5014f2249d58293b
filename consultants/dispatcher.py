"""Dispatcher: one agent invocation with rate limiting, classification and retry."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from config.config_loader import RetryConfig
from consultants.agents.base import Agent
from consultants.errors import AgentError, FailureKind, redact
from consultants.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    base_backoff_sec: float = 2.0
    max_backoff_sec: float = 60.0
    fixed_delay_sec: float = 5.0

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, cfg.max_attempts),
            base_backoff_sec=cfg.base_backoff_sec,
            max_backoff_sec=cfg.max_backoff_sec,
            fixed_delay_sec=cfg.fixed_delay_sec,
        )

    def backoff(self, attempt: int) -> float:
        return min(self.base_backoff_sec * (2 ** (attempt - 1)), self.max_backoff_sec)

    def delay_for(self, kind: FailureKind, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait after failed ``attempt`` (1-indexed) before the next one."""
        if kind is FailureKind.RATE_LIMITED:
            if retry_after is not None:
                return min(retry_after, self.max_backoff_sec)
            return self.backoff(attempt)
        if kind is FailureKind.SERVER_ERROR:
            return self.backoff(attempt)
        return self.fixed_delay_sec


@dataclass
class DispatchResult:
    text: str | None
    classification: FailureKind
    attempts: int
    latency_ms: int
    tokens_used: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.classification is FailureKind.SUCCESS


class Dispatcher:
    """Invokes agents. Never raises for agent failures; they come back as DispatchResult."""

    def __init__(
        self,
        rate_limiter: SlidingWindowRateLimiter,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def invoke(self, agent: Agent, prompt: str, timeout: float) -> DispatchResult:
        name = agent.name()
        start = self._clock()
        kind = FailureKind.UNKNOWN
        error: str | None = None
        attempt = 0

        for attempt in range(1, self.policy.max_attempts + 1):
            await self.rate_limiter.acquire(name)
            retry_after: float | None = None
            try:
                reply = await agent.respond(prompt, timeout)
            except AgentError as exc:
                kind, error, retry_after = exc.kind, exc.message, exc.retry_after
            except Exception as exc:
                kind, error = FailureKind.UNKNOWN, redact(f"Unexpected error: {exc}")
            else:
                if reply.text and reply.text.strip():
                    return DispatchResult(
                        text=reply.text,
                        classification=FailureKind.SUCCESS,
                        attempts=attempt,
                        latency_ms=self._elapsed_ms(start),
                        tokens_used=reply.tokens_used,
                    )
                kind, error = FailureKind.UNKNOWN, "Empty response content"

            if not kind.retryable or attempt >= self.policy.max_attempts:
                break

            delay = self.policy.delay_for(kind, attempt, retry_after)
            logger.warning(
                "Agent %s attempt %d/%d failed (%s), retrying in %.1fs: %s",
                name, attempt, self.policy.max_attempts, kind.value, delay, error,
            )
            await self._sleep(delay)

        logger.warning("Agent %s failed after %d attempt(s): %s: %s", name, attempt, kind.value, error)
        return DispatchResult(
            text=None,
            classification=kind,
            attempts=attempt,
            latency_ms=self._elapsed_ms(start),
            error=error,
        )

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)
