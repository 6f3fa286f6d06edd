"""
API Routes for the lead qualification service.
"""

from . import chat, handoff, analytics, scoring_config, bant_questions

__all__ = ["chat", "handoff", "analytics", "scoring_config", "bant_questions"]
