"""Abstract base for all consultant agents."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from consultants.errors import AgentError, FailureKind


@dataclass
class AgentReply:
    text: str
    tokens_used: int | None = None


class Agent(ABC):
    """A black-box reasoning agent: prompt in, text out."""

    @abstractmethod
    def name(self) -> str:
        """Return the agent id (e.g. 'gemini', 'qwen3')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def respond(self, prompt: str, timeout: float) -> AgentReply:
        """Send one prompt and return the raw text answer.

        Args:
            prompt: The full prompt text to send.
            timeout: Seconds before the call is abandoned.

        Returns:
            AgentReply with the text and, where the backend reports it, token usage.

        Raises:
            AgentError: On any failure, classified by FailureKind.
        """
        ...


def retry_after_of(exc: BaseException) -> float | None:
    """Seconds from a Retry-After header on the exception's HTTP response."""
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    raw = headers.get("retry-after") or headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return None


def timeout_error(agent_name: str, timeout: float) -> AgentError:
    return AgentError(agent_name, FailureKind.NETWORK_TIMEOUT, f"Request timed out after {timeout:g}s")


def empty_error(agent_name: str) -> AgentError:
    return AgentError(agent_name, FailureKind.UNKNOWN, "Empty response content")
