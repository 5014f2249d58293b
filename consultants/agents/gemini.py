"""Gemini agent using the google-genai SDK with native async."""

import asyncio
import logging
import os
import time

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import AgentConfig
from consultants.agents.base import Agent, AgentReply, empty_error, timeout_error
from consultants.errors import AgentError, FailureKind, classify_http_status

logger = logging.getLogger(__name__)


class GeminiAgent(Agent):
    """Google Gemini over HTTP. The gemini CLI is covered by ProcessAgent."""

    def __init__(self, config: AgentConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise AgentError(config.name, FailureKind.AUTH_FAILURE, f"Missing API key: {config.api_key_env}")
        # The SDK only retries when retry_options are set
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def respond(self, prompt: str, timeout: float) -> AgentReply:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=prompt,
                    config=genai_types.GenerateContentConfig(
                        max_output_tokens=self._config.max_tokens,
                    ),
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise timeout_error(self._config.name, timeout) from exc
        except genai_errors.APIError as exc:
            raise AgentError(self._config.name, classify_http_status(exc.code), f"API call failed: {exc}") from exc
        except Exception as exc:
            raise AgentError(self._config.name, FailureKind.UNKNOWN, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise empty_error(self._config.name)

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.debug("%s: %.2fs, %s tokens", self._config.name, latency, token_count)
        return AgentReply(text=response.text, tokens_used=token_count)
