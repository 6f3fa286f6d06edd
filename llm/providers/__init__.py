"""
LLM provider implementations.
"""

from .openai_provider import OpenAIProvider, ProviderError, CompletionResult, EmbeddingResult

__all__ = ["OpenAIProvider", "ProviderError", "CompletionResult", "EmbeddingResult"]
