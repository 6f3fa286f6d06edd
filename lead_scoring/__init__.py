"""
Lead Scoring Module for the lead qualification service.

This module provides lead qualification and scoring capabilities:
- Intent classification (pattern hint + model decision)
- BANT extraction and normalization
- Lead scoring (0-100 scale) against default or per-agent rubrics
"""

from .qualification import BantSlot, QualificationMemory, QualificationUpdate
from .scoring_config import InvalidScoringConfig, ScoringConfig
from .scoring_model import LeadScorer, LeadScore, LeadTier

__all__ = [
    "BantSlot",
    "QualificationMemory",
    "QualificationUpdate",
    "InvalidScoringConfig",
    "ScoringConfig",
    "LeadScorer",
    "LeadScore",
    "LeadTier",
]
