"""Centralized LLM client supporting OpenAI and Anthropic with timeout, retry, and error handling."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from anthropic import Anthropic, APIError as AnthropicAPIError, RateLimitError as AnthropicRateLimitError
from openai import OpenAI, APIError, APITimeoutError, RateLimitError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings
from core.exceptions import LLMError, LLMRateLimitError, LLMTimeoutError
from core.logging_config import get_logger

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

DEFAULT_SYSTEM_PROMPT = (
    "You are the scheduling assistant for an exterior cleaning company. "
    "Answer only with the JSON requested."
)


def _create_anthropic_client() -> Optional[Anthropic]:
    """Create a new Anthropic client instance."""
    if not SETTINGS.anthropic_api_key:
        return None

    return Anthropic(
        api_key=SETTINGS.anthropic_api_key,
        timeout=SETTINGS.anthropic_timeout_seconds,
        max_retries=0,  # We handle retries via tenacity
    )


def _create_openai_client() -> Optional[OpenAI]:
    """Create a new OpenAI client instance with configured timeout."""
    if not SETTINGS.openai_api_key:
        return None

    return OpenAI(
        api_key=SETTINGS.openai_api_key,
        timeout=SETTINGS.openai_timeout_seconds,
        max_retries=0,
    )


def extract_json(text: str) -> Optional[Any]:
    """Pull the first JSON object or array out of a model response."""
    if not text:
        return None
    # Earliest opening bracket wins
    candidates = sorted((text.find(opener), closer) for opener, closer in (("{", "}"), ("[", "]")))
    for start, closer in candidates:
        end = text.rfind(closer) + 1
        if start >= 0 and end > start:
            try:
                return json.loads(text[start:end])
            except json.JSONDecodeError:
                continue
    return None


class LLMClient:
    """OpenAI (primary) and Anthropic (fallback) completion client."""

    def __init__(self) -> None:
        self.anthropic_client = _create_anthropic_client()
        self.openai_client = _create_openai_client()

        if self.openai_client:
            self.provider = "openai"
            self.model = SETTINGS.openai_model
            self.temperature = SETTINGS.openai_temperature
        elif self.anthropic_client:
            self.provider = "anthropic"
            self.model = SETTINGS.anthropic_model
            self.temperature = SETTINGS.anthropic_temperature
        else:
            self.provider = None
            self.model = None
            self.temperature = 0.2
            LOGGER.info("No LLM provider configured - AI ranking disabled")

    def is_available(self) -> bool:
        """Check if any LLM provider is available."""
        return self.provider is not None

    @retry(
        retry=retry_if_exception_type((ConnectionError, LLMTimeoutError)),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        reraise=True,
    )
    def generate_completion(
        self,
        prompt: str,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        temperature: Optional[float] = None,
        max_tokens: int = 600,
    ) -> str:
        """
        Generate a completion from the LLM.

        Returns:
            Generated text content, or "" when no provider is configured.

        Raises:
            LLMError: If the API call fails after retries.
            LLMRateLimitError: If rate limit is exceeded.
            LLMTimeoutError: If the request times out.
        """
        if not self.is_available():
            return ""

        temp = temperature if temperature is not None else self.temperature

        if self.provider == "openai":
            try:
                return self._generate_openai(prompt, system_prompt, temp, max_tokens)
            except LLMError as e:
                if not self.anthropic_client:
                    raise
                LOGGER.warning(f"OpenAI failed ({e}), attempting Anthropic fallback")
                return self._generate_anthropic(prompt, system_prompt, temp, max_tokens)
        return self._generate_anthropic(prompt, system_prompt, temp, max_tokens)

    def generate_json(self, prompt: str, system_prompt: str = DEFAULT_SYSTEM_PROMPT) -> Optional[Any]:
        """Generate a completion and parse JSON out of it. None if nothing parses."""
        return extract_json(self.generate_completion(prompt, system_prompt, temperature=0.1))

    def _generate_anthropic(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Generate completion using Anthropic Claude."""
        model = self.model if self.provider == "anthropic" else SETTINGS.anthropic_model
        try:
            message = self.anthropic_client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
            )
        except AnthropicRateLimitError as exc:
            raise LLMRateLimitError(f"Rate limit exceeded: {exc}") from exc
        except AnthropicAPIError as exc:
            raise LLMError(f"API error: {exc}") from exc

        content = message.content[0].text if message.content else ""
        return content.strip()

    def _generate_openai(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Generate completion using OpenAI."""
        try:
            response = self.openai_client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except RateLimitError as exc:
            raise LLMRateLimitError(f"Rate limit exceeded: {exc}") from exc
        except APITimeoutError as exc:
            raise LLMTimeoutError(f"Request timed out: {exc}") from exc
        except APIError as exc:
            raise LLMError(f"API error: {exc}") from exc

        content = response.choices[0].message.content
        return content.strip() if content else ""


# Global instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create the global LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client


def reset_llm_client() -> None:
    """Reset the global LLM client (useful for testing)."""
    global _llm_client
    _llm_client = None


__all__ = [
    "LLMClient",
    "extract_json",
    "get_llm_client",
    "reset_llm_client",
]
