"""
LLM Orchestration Module for the lead qualification service.

This module handles:
- Model tiers and per-family parameter shaping
- Primary/fallback completion with per-attempt token accounting
- Conversation storage and the per-turn dispatcher
"""

from .model_tiers import CallPreset, ModelTier
from .orchestrator import CompletionFailure, CompletionResponse, MalformedCompletion, ModelOrchestrator
from .token_ledger import Attribution, OperationType, TokenLedger

__all__ = [
    "CallPreset",
    "ModelTier",
    "CompletionFailure",
    "CompletionResponse",
    "MalformedCompletion",
    "ModelOrchestrator",
    "Attribution",
    "OperationType",
    "TokenLedger",
]
