"""Failure taxonomy, agent/session exceptions and credential redaction."""

import re
from enum import Enum


class FailureKind(str, Enum):
    SUCCESS = "success"
    AUTH_FAILURE = "auth_failure"
    CLIENT_ERROR = "client_error"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_TIMEOUT = "network_timeout"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self not in (FailureKind.SUCCESS, FailureKind.AUTH_FAILURE, FailureKind.CLIENT_ERROR)


_REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(api[_-]?key\s*[:=]\s*)[^\s\"']+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(authorization\s*:\s*)(?!bearer\s)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(password\s*[:=]\s*)[^\s\"']+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(token\s*[:=]\s*)[^\s\"']+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"sk-[A-Za-z0-9_-]{20,}"), "[REDACTED_KEY]"),
    (re.compile(r"(?<![\w\[-])[A-Za-z0-9_-]{32,}"), "[POSSIBLE_KEY]"),
]


def redact(message: str) -> str:
    """Strip API keys, bearer tokens and passwords from an error message."""
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def classify_http_status(status: int) -> FailureKind:
    if 200 <= status < 300:
        return FailureKind.SUCCESS
    if status in (401, 403):
        return FailureKind.AUTH_FAILURE
    if status == 408:
        return FailureKind.NETWORK_TIMEOUT
    if status == 429:
        return FailureKind.RATE_LIMITED
    if 400 <= status < 500:
        return FailureKind.CLIENT_ERROR
    if 500 <= status < 600:
        return FailureKind.SERVER_ERROR
    return FailureKind.UNKNOWN


class AgentError(Exception):
    """Raised by an Agent when a single invocation fails.

    The message is redacted on construction so it is safe to log and to embed
    in error Responses.
    """

    def __init__(
        self,
        agent_name: str,
        kind: FailureKind,
        message: str,
        retry_after: float | None = None,
    ) -> None:
        self.agent_name = agent_name
        self.kind = kind
        self.message = redact(message)
        self.retry_after = retry_after
        super().__init__(f"[{agent_name}] {kind.value}: {self.message}")


class ConsultationError(Exception):
    """Raised when a consultation cannot start (e.g. too few agents)."""
