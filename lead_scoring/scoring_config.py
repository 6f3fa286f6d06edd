"""
Per-agent scoring rubric.

A ScoringConfig replaces the default rubric for one agent. Writes are
checked against two invariants and rejected, never clamped:
weights sum to exactly 100, and warm <= hot <= priority.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class InvalidScoringConfig(ValueError):
    """A scoring config write violated a weight or threshold invariant."""


class BudgetCriterion(BaseModel):
    """Numeric range criterion: min inclusive, max exclusive, open-ended when max is None."""
    min: int = Field(default=0, ge=0)
    max: Optional[int] = Field(default=None, ge=0)
    points: int = Field(..., ge=0, le=100)
    label: str = ""

    def matches(self, amount: int) -> bool:
        if amount < self.min:
            return False
        return self.max is None or amount < self.max


class CategoryCriterion(BaseModel):
    """Categorical criterion matched against a canonical code."""
    type: str = Field(..., min_length=1)
    points: int = Field(..., ge=0, le=100)
    label: str = ""

    def matches(self, value: str) -> bool:
        return self.type == value


DIMENSIONS = ["budget", "authority", "need", "timeline", "contact"]


def _budget(min_: int, max_: Optional[int], points: int, label: str) -> BudgetCriterion:
    return BudgetCriterion(min=min_, max=max_, points=points, label=label)


def _cat(type_: str, points: int, label: str) -> CategoryCriterion:
    return CategoryCriterion(type=type_, points=points, label=label)


def default_budget_criteria() -> List[BudgetCriterion]:
    return [
        _budget(25_000_000, None, 30, ">25M"),
        _budget(20_000_000, 25_000_000, 26, "20-25M"),
        _budget(15_000_000, 20_000_000, 22, "15-20M"),
        _budget(10_000_000, 15_000_000, 18, "10-15M"),
        _budget(5_000_000, 10_000_000, 12, "5-10M"),
        _budget(1_000_000, 5_000_000, 6, "1-5M"),
        _budget(0, 1_000_000, 3, "<1M"),
    ]


def default_authority_criteria() -> List[CategoryCriterion]:
    return [
        _cat("sole_owner", 25, "Sole decision maker"),
        _cat("partner", 20, "Decides with partner/spouse"),
        _cat("family", 15, "Family decision"),
        _cat("committee", 12, "Board or committee"),
        _cat("advisor", 10, "Relies on advisor"),
        _cat("shared", 10, "Shared decision"),
    ]


def default_need_criteria() -> List[CategoryCriterion]:
    return [
        _cat("immediate", 25, "Immediate need"),
        _cat("residence", 22, "Own residence"),
        _cat("investment", 20, "Investment"),
        _cat("resale", 15, "Resale"),
        _cat("other", 8, "Other"),
    ]


def default_timeline_criteria() -> List[CategoryCriterion]:
    return [
        _cat("immediate", 20, "Immediate"),
        _cat("within_1_month", 18, "Within 1 month"),
        _cat("1_3_months", 15, "1-3 months"),
        _cat("3_6_months", 10, "3-6 months"),
        _cat("6_12_months", 6, "6-12 months"),
        _cat("over_1_year", 2, "Over 1 year"),
    ]


def default_contact_criteria() -> List[CategoryCriterion]:
    return [
        _cat("full", 10, "Name, phone and email"),
        _cat("partial", 6, "Phone or email"),
        _cat("name_only", 2, "Name only"),
        _cat("none", 0, "No contact"),
    ]


class ScoringConfig(BaseModel):
    """Weights, ordered criteria and thresholds for one agent."""
    budget_weight: int = Field(default=30, ge=0, le=100)
    authority_weight: int = Field(default=25, ge=0, le=100)
    need_weight: int = Field(default=25, ge=0, le=100)
    timeline_weight: int = Field(default=20, ge=0, le=100)
    contact_weight: int = Field(default=0, ge=0, le=100)

    budget_criteria: List[BudgetCriterion] = Field(default_factory=default_budget_criteria)
    authority_criteria: List[CategoryCriterion] = Field(default_factory=default_authority_criteria)
    need_criteria: List[CategoryCriterion] = Field(default_factory=default_need_criteria)
    timeline_criteria: List[CategoryCriterion] = Field(default_factory=default_timeline_criteria)
    contact_criteria: List[CategoryCriterion] = Field(default_factory=default_contact_criteria)

    warm_threshold: int = Field(default=50, ge=0, le=100)
    hot_threshold: int = Field(default=70, ge=0, le=100)
    priority_threshold: int = Field(default=85, ge=0, le=100)

    def weight(self, dimension: str) -> int:
        return getattr(self, f"{dimension}_weight")

    def criteria(self, dimension: str) -> List[Any]:
        return getattr(self, f"{dimension}_criteria")

    def weights(self) -> Dict[str, int]:
        return {d: self.weight(d) for d in DIMENSIONS}

    def validate_invariants(self) -> "ScoringConfig":
        """
        Check the write invariants.

        Raises:
            InvalidScoringConfig: weights do not sum to 100 or thresholds
                are out of order
        """
        total = sum(self.weights().values())
        if total != 100:
            raise InvalidScoringConfig(f"weights must sum to 100 (got {total})")

        if not (self.warm_threshold <= self.hot_threshold <= self.priority_threshold):
            raise InvalidScoringConfig(
                "thresholds must satisfy warm <= hot <= priority "
                f"(got {self.warm_threshold}/{self.hot_threshold}/{self.priority_threshold})"
            )

        for criterion in self.budget_criteria:
            if criterion.max is not None and criterion.max <= criterion.min:
                raise InvalidScoringConfig(
                    f"budget criterion '{criterion.label}' has max <= min"
                )
        return self


def default_scoring_config(warm: int = 50, hot: int = 70, priority: int = 85) -> ScoringConfig:
    """The rubric used when an agent has no ScoringConfig."""
    return ScoringConfig(
        warm_threshold=warm,
        hot_threshold=hot,
        priority_threshold=priority,
    ).validate_invariants()


def parse_scoring_config(data: Dict[str, Any]) -> ScoringConfig:
    """Build and check a config from a stored or submitted dict."""
    return ScoringConfig(**data).validate_invariants()
