"""
OpenAI completion and embedding transport.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Transport or provider-side failure of a single request."""


@dataclass
class CompletionResult:
    """Text plus provider-reported usage for one completion request."""
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cached_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class EmbeddingResult:
    """Vector plus usage for one embedding request."""
    vector: List[float]
    model: str
    prompt_tokens: int = 0


class OpenAIProvider:
    """
    Async OpenAI provider.

    Knobs are passed through as given; shaping them for the model family is
    the orchestrator's job.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            timeout: Per-request timeout in seconds
            client: Optional preconfigured async client
        """
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.timeout = timeout

        logger.info(f"OpenAI provider initialized (timeout={timeout}s)")

    async def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        parameters: Dict[str, Any],
        response_format: Optional[Dict[str, Any]] = None,
    ) -> CompletionResult:
        """
        Run one chat completion.

        Args:
            model: Provider model name
            messages: Role-tagged message turns
            parameters: Family-shaped knobs (see model_tiers.build_parameters)
            response_format: Optional structured-output constraint

        Returns:
            CompletionResult with text and usage

        Raises:
            ProviderError: on any transport or API failure
        """
        request: Dict[str, Any] = {"model": model, "messages": messages, **parameters}
        if response_format:
            request["response_format"] = response_format

        try:
            response = await self._client.chat.completions.create(**request)
        except (openai.OpenAIError, asyncio.TimeoutError) as e:
            logger.error(f"OpenAI completion failed ({model}): {e}")
            raise ProviderError(str(e)) from e

        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        usage = response.usage
        cached = 0
        if usage is not None and getattr(usage, "prompt_tokens_details", None):
            cached = usage.prompt_tokens_details.cached_tokens or 0

        return CompletionResult(
            text=text,
            model=response.model or model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            cached_tokens=cached,
        )

    async def embed(self, model: str, text: str) -> EmbeddingResult:
        """Embed a single text."""
        try:
            response = await self._client.embeddings.create(model=model, input=text)
        except (openai.OpenAIError, asyncio.TimeoutError) as e:
            logger.error(f"OpenAI embedding failed ({model}): {e}")
            raise ProviderError(str(e)) from e

        return EmbeddingResult(
            vector=list(response.data[0].embedding),
            model=model,
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
        )
