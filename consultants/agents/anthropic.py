"""Anthropic Claude agent using the anthropic SDK with native async."""

import asyncio
import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import AgentConfig
from consultants.agents.base import Agent, AgentReply, empty_error, retry_after_of, timeout_error
from consultants.errors import AgentError, FailureKind, classify_http_status

logger = logging.getLogger(__name__)


def _classify(agent_name: str, exc: Exception) -> AgentError:
    if isinstance(exc, anthropic_sdk.APIStatusError):
        return AgentError(
            agent_name,
            classify_http_status(exc.status_code),
            f"API call failed: {exc}",
            retry_after=retry_after_of(exc),
        )
    if isinstance(exc, anthropic_sdk.APIConnectionError):
        # APITimeoutError is a subclass
        return AgentError(agent_name, FailureKind.NETWORK_TIMEOUT, f"Connection failed: {exc}")
    return AgentError(agent_name, FailureKind.UNKNOWN, f"API call failed: {exc}")


class AnthropicAgent(Agent):
    def __init__(self, config: AgentConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise AgentError(config.name, FailureKind.AUTH_FAILURE, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key, max_retries=0)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def respond(self, prompt: str, timeout: float) -> AgentReply:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=self._config.max_tokens,
                    messages=[{"role": "user", "content": prompt}],
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise timeout_error(self._config.name, timeout) from exc
        except Exception as exc:
            raise _classify(self._config.name, exc) from exc

        latency = time.monotonic() - start

        text_blocks = [b.text for b in response.content or [] if b.type == "text"]
        if not text_blocks or not any(text_blocks):
            raise empty_error(self._config.name)

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.debug("%s: %.2fs, %s tokens", self._config.name, latency, token_count)
        return AgentReply(text="\n".join(text_blocks), tokens_used=token_count)
