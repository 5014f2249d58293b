"""OpenAI-compatible agent (OpenAI, xAI, Qwen, GLM, DeepSeek, Ollama) using the openai SDK."""

import asyncio
import logging
import os
import time

import openai
from openai import AsyncOpenAI

from config.config_loader import AgentConfig
from consultants.agents.base import Agent, AgentReply, empty_error, retry_after_of, timeout_error
from consultants.errors import AgentError, FailureKind, classify_http_status

logger = logging.getLogger(__name__)


def _classify(agent_name: str, exc: Exception) -> AgentError:
    if isinstance(exc, openai.APIStatusError):
        return AgentError(
            agent_name,
            classify_http_status(exc.status_code),
            f"API call failed: {exc}",
            retry_after=retry_after_of(exc),
        )
    if isinstance(exc, openai.APITimeoutError):
        return AgentError(agent_name, FailureKind.NETWORK_TIMEOUT, f"API call timed out: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return AgentError(agent_name, FailureKind.NETWORK_TIMEOUT, f"Connection failed: {exc}")
    return AgentError(agent_name, FailureKind.UNKNOWN, f"API call failed: {exc}")


class OpenAICompatAgent(Agent):
    """Any chat-completions endpoint reachable through the openai SDK."""

    def __init__(self, config: AgentConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise AgentError(config.name, FailureKind.AUTH_FAILURE, f"Missing API key: {config.api_key_env}")
        # Retries belong to the Dispatcher
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url, max_retries=0)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def respond(self, prompt: str, timeout: float) -> AgentReply:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=self._config.max_tokens,
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise timeout_error(self._config.name, timeout) from exc
        except Exception as exc:
            raise _classify(self._config.name, exc) from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise empty_error(self._config.name)

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.debug("%s: %.2fs, %s tokens", self._config.name, latency, token_count)
        return AgentReply(text=choice.message.content, tokens_used=token_count)
