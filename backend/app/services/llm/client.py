"""
Claim Resolution Engine - Language Model Gateway

Narrow wrapper around the Anthropic Messages API.
Retry and timeout policy is handed to the SDK; callers only see
complete() -> ChatResponse and LLMClientError.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import anthropic

from ...config import Settings, get_settings
from ..errors import LLMClientError

logger = logging.getLogger(__name__)


@dataclass
class ChatResponse:
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ClaudeClient:
    """
    Anthropic Messages API client.

    The system prompt travels in the top-level `system` field; the prompt is
    sent as a single user message. `max_retries` counts retries after the
    first attempt, as the SDK does.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        timeout_seconds: int = 60,
        max_retries: int = 2,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, max_retries)
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ClaudeClient":
        settings = settings or get_settings()
        return cls(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout_seconds=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )

    @property
    def client(self) -> Optional[anthropic.Anthropic]:
        """Lazy-load the SDK client."""
        if self._client is None and self.api_key:
            self._client = anthropic.Anthropic(
                api_key=self.api_key,
                timeout=float(self.timeout_seconds),
                max_retries=self.max_retries,
            )
        return self._client

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.2,
        max_tokens: int = 2000,
    ) -> ChatResponse:
        """Send one prompt and return the first text block of the reply."""
        if self.client is None:
            raise LLMClientError("Language model is not configured (ANTHROPIC_API_KEY is unset)")

        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt

        try:
            message = self.client.messages.create(**request)
        except anthropic.APIStatusError as e:
            logger.warning(f"LLM request rejected with status {e.status_code}: {e.message}")
            raise LLMClientError(
                f"Language model error {e.status_code}: {e.message}",
                details={"status_code": e.status_code},
            ) from e
        except anthropic.APITimeoutError as e:
            logger.warning(f"LLM request timed out after {self.timeout_seconds}s")
            raise LLMClientError("Language model request timed out") from e
        except anthropic.APIError as e:
            logger.warning(f"LLM request failed: {e}")
            raise LLMClientError(f"Language model request failed: {e}") from e

        return self._parse(message)

    def _parse(self, message: Any) -> ChatResponse:
        text_blocks = [
            block.text for block in (message.content or [])
            if getattr(block, "type", None) == "text"
        ]
        if not text_blocks:
            raise LLMClientError("No content in language model response")

        usage = getattr(message, "usage", None)
        return ChatResponse(
            content=text_blocks[0],
            model=getattr(message, "model", None) or self.model,
            prompt_tokens=int(getattr(usage, "input_tokens", 0) or 0),
            completion_tokens=int(getattr(usage, "output_tokens", 0) or 0),
        )
