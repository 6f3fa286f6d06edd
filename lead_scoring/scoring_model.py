"""
Lead Scoring Engine.

Applies the default or a per-agent rubric to canonical qualification
values, producing a 0-100 score and a tier.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .normalizer import budget_band
from .qualification import QualificationMemory
from .scoring_config import ScoringConfig, default_scoring_config

logger = logging.getLogger(__name__)


class LeadTier(Enum):
    """Lead classification tiers."""
    COLD = "cold"            # below warm threshold - nurture
    WARM = "warm"            # standard follow-up
    HOT = "hot"              # same-day follow-up
    PRIORITY = "priority"    # route to an agent now


@dataclass
class LeadScore:
    """Lead score result."""
    score: int  # 0-100
    tier: LeadTier
    breakdown: Dict[str, float] = field(default_factory=dict)
    contact_completeness: str = "none"
    signals: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    used_default_rubric: bool = True
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "score": self.score,
            "tier": self.tier.value,
            "breakdown": self.breakdown,
            "contact_completeness": self.contact_completeness,
            "signals": self.signals,
            "recommendations": self.recommendations,
            "used_default_rubric": self.used_default_rubric,
            "timestamp": self.timestamp.isoformat(),
        }


class LeadScorer:
    """
    Scores QualificationMemory against a ScoringConfig.

    For each dimension the first matching criterion in its ordered list
    wins. Its points are scaled against the best points available in that
    dimension and multiplied by the dimension weight, so a top criterion
    earns the full weight. Missing values earn zero.

    Tiers (ties resolve to the higher tier):
    - score >= priority threshold: priority
    - score >= hot threshold: hot
    - score >= warm threshold: warm
    - otherwise: cold
    """

    def __init__(self, warm: int = 50, hot: int = 70, priority: int = 85):
        self.default_config = default_scoring_config(warm=warm, hot=hot, priority=priority)

    def adjust_thresholds(
        self,
        warm: Optional[int] = None,
        hot: Optional[int] = None,
        priority: Optional[int] = None,
    ):
        """Adjust default-rubric thresholds."""
        self.default_config = default_scoring_config(
            warm=warm if warm is not None else self.default_config.warm_threshold,
            hot=hot if hot is not None else self.default_config.hot_threshold,
            priority=priority if priority is not None else self.default_config.priority_threshold,
        )
        logger.info(
            f"Lead thresholds adjusted: warm={self.default_config.warm_threshold}, "
            f"hot={self.default_config.hot_threshold}, priority={self.default_config.priority_threshold}"
        )

    def score(
        self,
        memory: QualificationMemory,
        config: Optional[ScoringConfig] = None,
    ) -> LeadScore:
        """
        Score a conversation's qualification values.

        Args:
            memory: Canonical qualification values
            config: Agent rubric; the default rubric when None

        Returns:
            LeadScore with score, tier and per-dimension breakdown
        """
        rubric = config or self.default_config
        contact = memory.contact_completeness()
        values = {
            "budget": memory.budget,
            "authority": memory.authority,
            "need": memory.need,
            "timeline": memory.timeline,
            "contact": contact,
        }

        breakdown: Dict[str, float] = {}
        signals: List[str] = []
        total = 0.0

        for dimension, value in values.items():
            weight = rubric.weight(dimension)
            criteria = rubric.criteria(dimension)
            if value is None or weight == 0 or not criteria:
                breakdown[dimension] = 0.0
                continue

            best = max(c.points for c in criteria)
            matched = next((c for c in criteria if c.matches(value)), None)
            if matched is None or best == 0:
                breakdown[dimension] = 0.0
                continue

            earned = matched.points / best * weight
            breakdown[dimension] = round(earned, 2)
            total += earned
            signals.append(f"{dimension}: {matched.label or matched.points}")

        score = max(0, min(100, int(round(total))))
        tier = self.tier_for(score, rubric)

        if memory.budget is not None:
            signals.append(f"budget band: {budget_band(memory.budget)}")

        return LeadScore(
            score=score,
            tier=tier,
            breakdown=breakdown,
            contact_completeness=contact,
            signals=signals,
            recommendations=self._recommendations(tier, memory),
            used_default_rubric=config is None,
        )

    @staticmethod
    def tier_for(score: int, rubric: ScoringConfig) -> LeadTier:
        if score >= rubric.priority_threshold:
            return LeadTier.PRIORITY
        if score >= rubric.hot_threshold:
            return LeadTier.HOT
        if score >= rubric.warm_threshold:
            return LeadTier.WARM
        return LeadTier.COLD

    def should_capture_lead(
        self,
        lead_score: LeadScore,
        memory: QualificationMemory,
    ) -> bool:
        """A lead exists once the score reaches warm or contact capture completed."""
        if lead_score.tier != LeadTier.COLD:
            return True
        return memory.contact_completeness() in ("full", "partial")

    def _recommendations(self, tier: LeadTier, memory: QualificationMemory) -> List[str]:
        recs: List[str] = []
        if tier == LeadTier.PRIORITY:
            recs.append("Route to an agent immediately")
        elif tier == LeadTier.HOT:
            recs.append("Follow up the same day")
        elif tier == LeadTier.WARM:
            recs.append("Schedule follow-up within 24 hours")
        else:
            recs.append("Add to nurture campaign")

        if memory.pending_slot is not None:
            recs.append(f"Continue qualification: {memory.pending_slot.value}")
        if memory.contact_completeness() in ("none", "name_only"):
            recs.append("Capture phone or email")
        return recs
