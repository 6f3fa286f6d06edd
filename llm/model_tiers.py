"""
Model tiers, parameter families and call presets.

A tier names a class of completion capability/cost; the concrete provider
model behind each tier comes from settings. Parameter shaping differs by
model family: reasoning models take effort/verbosity knobs and a
``max_completion_tokens`` ceiling, sampling models take ``temperature``
and ``max_tokens``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ModelTier(Enum):
    """Named completion tiers."""
    ECONOMY = "economy"      # cheapest, short structured answers
    STANDARD = "standard"    # default conversational tier
    PREMIUM = "premium"      # long or complex reasoning
    LEGACY = "legacy"        # previous-generation sampling model, used as fallback


class ParameterFamily(Enum):
    """Parameter sets accepted by provider model families."""
    REASONING = "reasoning"
    SAMPLING = "sampling"


class CallPreset(Enum):
    """Per-use knob presets."""
    FAST_EXTRACTION = "fast_extraction"
    CLASSIFICATION = "classification"
    BALANCED_CHAT = "balanced_chat"
    COMPLEX_REASONING = "complex_reasoning"
    DETAILED_RESPONSE = "detailed_response"
    ESTIMATION = "estimation"


@dataclass(frozen=True)
class PresetKnobs:
    reasoning_effort: str
    verbosity: str
    temperature: float
    max_tokens: int


PRESETS: Dict[CallPreset, PresetKnobs] = {
    CallPreset.FAST_EXTRACTION: PresetKnobs("minimal", "low", 0.1, 600),
    CallPreset.CLASSIFICATION: PresetKnobs("minimal", "low", 0.0, 64),
    CallPreset.BALANCED_CHAT: PresetKnobs("medium", "medium", 0.7, 800),
    CallPreset.COMPLEX_REASONING: PresetKnobs("high", "medium", 0.5, 1500),
    CallPreset.DETAILED_RESPONSE: PresetKnobs("high", "high", 0.7, 2000),
    CallPreset.ESTIMATION: PresetKnobs("medium", "low", 0.3, 1000),
}

DEFAULT_TIER_MODELS: Dict[ModelTier, str] = {
    ModelTier.ECONOMY: "gpt-5-nano",
    ModelTier.STANDARD: "gpt-5-mini",
    ModelTier.PREMIUM: "gpt-5",
    ModelTier.LEGACY: "gpt-4o-mini",
}

_REASONING_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def parameter_family(model: str) -> ParameterFamily:
    """Return the parameter family a provider model accepts."""
    name = model.lower()
    if name.startswith(_REASONING_PREFIXES):
        return ParameterFamily.REASONING
    return ParameterFamily.SAMPLING


def build_parameters(
    model: str,
    preset: CallPreset = CallPreset.BALANCED_CHAT,
    max_tokens: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Shape request knobs for a model.

    Knobs the model's family does not accept are dropped and the ones it
    requires are filled from the preset, so the same logical call can be
    replayed on a fallback tier of a different family.

    Args:
        model: Provider model name
        preset: Knob preset for this use
        max_tokens: Optional override of the preset's token ceiling

    Returns:
        Keyword arguments for the completion request
    """
    knobs = PRESETS[preset]
    ceiling = max_tokens or knobs.max_tokens

    if parameter_family(model) == ParameterFamily.REASONING:
        return {
            "max_completion_tokens": ceiling,
            "reasoning_effort": knobs.reasoning_effort,
            "verbosity": knobs.verbosity,
        }

    return {
        "max_tokens": ceiling,
        "temperature": knobs.temperature,
    }


def resolve_tier(value: Any) -> ModelTier:
    """Accept a ModelTier or its string value."""
    if isinstance(value, ModelTier):
        return value
    return ModelTier(str(value).lower())
