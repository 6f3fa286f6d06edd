"""
Model Call Orchestrator.

Single choke point for every completion and embedding call. Applies tier
selection, per-family parameter shaping, primary/fallback retry and
content-level retry, and writes one ledger record per attempt.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .model_tiers import (
    CallPreset,
    DEFAULT_TIER_MODELS,
    ModelTier,
    build_parameters,
    resolve_tier,
)
from .providers.openai_provider import CompletionResult, EmbeddingResult, ProviderError
from .token_estimator import TokenEstimator
from .token_ledger import Attribution, ModelInvocationRecord, OperationType, TokenLedger

logger = logging.getLogger(__name__)


class CompletionFailure(Exception):
    """Every tier attempted for a call failed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class MalformedCompletion(Exception):
    """The model kept answering with content that failed validation."""


@dataclass
class CompletionResponse:
    """Result of a successful orchestrated call."""
    text: str
    tier: ModelTier
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cached_tokens: int = 0
    fallback_used: bool = False
    latency_ms: float = 0.0
    attempts: List[str] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ModelOrchestrator:
    """
    Calls the hosted completion service on behalf of every other component.

    Flow per call:
    1. Shape parameters for the primary tier's model family
    2. Invoke primary; ledger the attempt (success or failure)
    3. On failure, reshape for the fallback tier and invoke it; ledger it
       tagged as fallback
    4. If both fail, raise CompletionFailure
    """

    def __init__(
        self,
        provider: Any,
        ledger: TokenLedger,
        tier_models: Optional[Dict[ModelTier, str]] = None,
        primary_tier: ModelTier = ModelTier.STANDARD,
        fallback_tier: Optional[ModelTier] = ModelTier.LEGACY,
        embed_model: str = "text-embedding-3-small",
        estimator: Optional[TokenEstimator] = None,
        backoff_base: float = 0.5,
        backoff_max: float = 4.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            provider: Transport exposing async complete() and embed()
            ledger: Token accounting ledger
            tier_models: Tier -> provider model name
            primary_tier: Default primary tier
            fallback_tier: Default fallback tier (None disables fallback)
            embed_model: Embedding model name
            estimator: Token estimator for attempts without provider usage
            backoff_base: First content-retry delay in seconds
            backoff_max: Upper bound on any content-retry delay
            sleep: Awaitable sleep, injectable for tests
        """
        self.provider = provider
        self.ledger = ledger
        self.tier_models = dict(DEFAULT_TIER_MODELS)
        if tier_models:
            self.tier_models.update({resolve_tier(k): v for k, v in tier_models.items()})
        self.primary_tier = primary_tier
        self.fallback_tier = fallback_tier
        self.embed_model = embed_model
        self.estimator = estimator or TokenEstimator()
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep

    def model_for(self, tier: ModelTier) -> str:
        return self.tier_models[tier]

    def backoff_delay(self, retry_index: int) -> float:
        """Exponential delay for the n-th content retry, capped."""
        if self.backoff_base <= 0:
            return 0.0
        return min(self.backoff_base * (2 ** retry_index), self.backoff_max)

    async def complete(
        self,
        messages: List[Dict[str, str]],
        operation: OperationType,
        primary: Optional[ModelTier] = None,
        fallback: Optional[ModelTier] = None,
        preset: CallPreset = CallPreset.BALANCED_CHAT,
        max_tokens: Optional[int] = None,
        attribution: Optional[Attribution] = None,
        response_format: Optional[Dict[str, Any]] = None,
        endpoint: Optional[str] = None,
    ) -> CompletionResponse:
        """
        Run one logical completion with primary/fallback.

        Args:
            messages: Role-tagged message turns
            operation: Ledger operation category
            primary: Primary tier (defaults to the configured one)
            fallback: Fallback tier (defaults to the configured one)
            preset: Knob preset
            max_tokens: Optional token ceiling override
            attribution: Billing attribution; missing ids become "system"
            response_format: Optional structured-output constraint
            endpoint: Optional caller tag stored on the ledger row

        Returns:
            CompletionResponse

        Raises:
            CompletionFailure: when every attempted tier failed
        """
        attribution = attribution or Attribution()
        primary = primary or self.primary_tier
        fallback = fallback if fallback is not None else self.fallback_tier

        tiers = [primary]
        if fallback is not None and fallback != primary:
            tiers.append(fallback)

        errors: List[str] = []
        for attempt, tier in enumerate(tiers, start=1):
            is_fallback = attempt > 1
            model = self.model_for(tier)
            parameters = build_parameters(model, preset, max_tokens)

            if is_fallback:
                logger.warning(
                    f"{operation.value}: primary tier failed, falling back to {tier.value} ({model})"
                )

            start = time.time()
            try:
                result: CompletionResult = await self.provider.complete(
                    model=model,
                    messages=messages,
                    parameters=parameters,
                    response_format=response_format,
                )
            except Exception as e:
                # Anything the transport raises counts as a failed attempt
                if not isinstance(e, ProviderError):
                    logger.error(f"{operation.value}: unexpected provider error on {model}", exc_info=True)
                latency_ms = (time.time() - start) * 1000
                errors.append(f"{tier.value}: {e}")
                await self.ledger.record(ModelInvocationRecord(
                    model_tier=tier.value,
                    model=model,
                    operation=operation.value,
                    prompt_tokens=self.estimator.estimate_messages(messages),
                    completion_tokens=0,
                    response_time_ms=round(latency_ms, 2),
                    success=False,
                    fallback_used=is_fallback,
                    attempt=attempt,
                    usage_estimated=True,
                    error_message=str(e)[:500],
                    attribution=attribution,
                    endpoint=endpoint,
                ))
                continue

            latency_ms = (time.time() - start) * 1000
            usage_estimated = result.prompt_tokens == 0 and result.completion_tokens == 0
            prompt_tokens = result.prompt_tokens
            completion_tokens = result.completion_tokens
            if usage_estimated:
                prompt_tokens = self.estimator.estimate_messages(messages)
                completion_tokens = self.estimator.estimate(result.text)

            await self.ledger.record(ModelInvocationRecord(
                model_tier=tier.value,
                model=model,
                operation=operation.value,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                cached_tokens=result.cached_tokens,
                response_time_ms=round(latency_ms, 2),
                success=True,
                fallback_used=is_fallback,
                attempt=attempt,
                usage_estimated=usage_estimated,
                attribution=attribution,
                endpoint=endpoint,
            ))

            return CompletionResponse(
                text=result.text,
                tier=tier,
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                cached_tokens=result.cached_tokens,
                fallback_used=is_fallback,
                latency_ms=round(latency_ms, 2),
                attempts=[t.value for t in tiers[:attempt]],
            )

        logger.error(f"{operation.value}: all tiers failed: {errors}")
        raise CompletionFailure(f"{operation.value} failed on all tiers", errors)

    async def complete_validated(
        self,
        messages: List[Dict[str, str]],
        operation: OperationType,
        validator: Callable[[str], Any],
        attempts: int = 3,
        **kwargs,
    ) -> Tuple[Any, CompletionResponse]:
        """
        Complete and validate, re-asking on empty or malformed content.

        The validator returns the parsed value, or None when the text is
        unusable. Retries wait with bounded exponential backoff.

        Returns:
            (parsed value, CompletionResponse of the accepted attempt)

        Raises:
            CompletionFailure: a call failed on every tier
            MalformedCompletion: every attempt returned unusable content
        """
        attempts = max(1, attempts)
        for index in range(attempts):
            if index:
                await self._sleep(self.backoff_delay(index - 1))

            response = await self.complete(messages, operation, **kwargs)
            value = validator(response.text) if response.text else None
            if value is not None:
                return value, response

            logger.warning(
                f"{operation.value}: unusable model output (attempt {index + 1}/{attempts}): "
                f"{response.text[:80]!r}"
            )

        raise MalformedCompletion(f"{operation.value}: no valid answer after {attempts} attempts")

    async def embed(
        self,
        text: str,
        attribution: Optional[Attribution] = None,
        model: Optional[str] = None,
    ) -> EmbeddingResult:
        """
        Embed text through the same accounting path.

        Raises:
            CompletionFailure: when the embedding request failed
        """
        attribution = attribution or Attribution()
        model = model or self.embed_model
        start = time.time()

        try:
            result = await self.provider.embed(model=model, text=text)
        except Exception as e:
            if not isinstance(e, ProviderError):
                logger.error(f"embedding: unexpected provider error on {model}", exc_info=True)
            await self.ledger.record(ModelInvocationRecord(
                model_tier="embedding",
                model=model,
                operation=OperationType.EMBEDDING.value,
                prompt_tokens=self.estimator.estimate(text),
                response_time_ms=round((time.time() - start) * 1000, 2),
                success=False,
                usage_estimated=True,
                error_message=str(e)[:500],
                attribution=attribution,
            ))
            raise CompletionFailure("embedding failed", [str(e)]) from e

        await self.ledger.record(ModelInvocationRecord(
            model_tier="embedding",
            model=model,
            operation=OperationType.EMBEDDING.value,
            prompt_tokens=result.prompt_tokens or self.estimator.estimate(text),
            response_time_ms=round((time.time() - start) * 1000, 2),
            usage_estimated=not result.prompt_tokens,
            attribution=attribution,
        ))
        return result
