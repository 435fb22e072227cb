"""
Personalization weights.

Collapses raw motivation signals (an ordered list of labels picked by the
user, or an already weighted map) into a distribution over five fixed
archetypes, and derives behavioral guidance lines from it.
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping

import structlog

logger = structlog.get_logger()

ARCHETYPES: "tuple[str, ...]" = (
    "aesthetics",
    "performance",
    "weight_management",
    "longevity",
    "mindset",
)

# collapses raw labels into archetypes, labels are compared after
# lowercasing and replacing whitespace with underscores
SYNONYMS: "dict[str, str]" = {
    "aesthetics": "aesthetics",
    "appearance": "aesthetics",
    "hypertrophy": "aesthetics",
    "tone": "aesthetics",
    "confidence": "aesthetics",
    "performance": "performance",
    "strength": "performance",
    "endurance": "performance",
    "athleticism": "performance",
    "pr": "performance",
    "weight_management": "weight_management",
    "weight": "weight_management",
    "fat_loss": "weight_management",
    "cutting": "weight_management",
    "recomposition": "weight_management",
    "recomp": "weight_management",
    "metabolic": "weight_management",
    "longevity": "longevity",
    "health": "longevity",
    "mobility": "longevity",
    "injury": "longevity",
    "sleep": "longevity",
    "biomarkers": "longevity",
    "mindset": "mindset",
    "stress": "mindset",
    "mindfulness": "mindset",
    "consistency": "mindset",
    "accountability": "mindset",
    "fun": "mindset",
}

# adherence-oriented bias used when no signal is available
DEFAULT_WEIGHTS: "dict[str, float]" = {
    "aesthetics": 0.2,
    "performance": 0.0,
    "weight_management": 0.3,
    "longevity": 0.1,
    "mindset": 0.4,
}

TOP_PICK_WEIGHT = 0.7
SECOND_PICK_WEIGHT = 0.3
THIRD_PICK_BLEED = 0.1
HINT_THRESHOLD = 0.25
PRECISION = 3

HINTS: "dict[str, str]" = {
    "aesthetics": (
        "Aesthetics: emphasize protein targets and fiber for satiety; keep "
        "calories consistent day-to-day; include variety to avoid palate fatigue."
    ),
    "performance": (
        "Performance: support training blocks with adequate carbs around "
        "sessions; ensure protein distribution; include convenient "
        "performance snacks."
    ),
    "weight_management": (
        "Weight Management: prefer a modest calorie deficit when the goal is "
        "loss; high protein; simple, adherence-first meals; avoid overly "
        "complex recipes on weekdays."
    ),
    "longevity": (
        "Longevity: prioritize micronutrient-dense foods, omega-3 sources and "
        "adequate fiber; include mobility and recovery-friendly timing."
    ),
    "mindset": (
        "Mindset/Stress: prefer quick, low-friction options; suggest "
        "batch-cook strategies; minimize decision fatigue with templated meals."
    ),
}


@dataclass(frozen=True, slots=True)
class MotivationWeights:
    aesthetics: "float" = 0.0
    performance: "float" = 0.0
    weight_management: "float" = 0.0
    longevity: "float" = 0.0
    mindset: "float" = 0.0

    def as_dict(self) -> "dict[str, float]":
        return {name: getattr(self, name) for name in ARCHETYPES}

    @property
    def total(self) -> "float":
        return sum(self.as_dict().values())

    @property
    def dominant(self) -> "str | None":
        """
        returns the archetype with the highest weight, ties resolved by
        archetype order. None for an all-zero distribution.
        """
        weights = self.as_dict()
        best = max(ARCHETYPES, key=lambda name: weights[name])
        return best if weights[best] > 0 else None


def _to_label(raw: "Any") -> "str":
    return "_".join(str(raw).strip().lower().split())


def _resolve(raw: "Any") -> "str | None":
    return SYNONYMS.get(_to_label(raw))


def _from_ranked(labels: "list[Any] | tuple[Any, ...]") -> "dict[str, float]":
    weights = dict.fromkeys(ARCHETYPES, 0.0)

    picks: "list[str]" = []
    for label in labels:
        archetype = _resolve(label)
        # unknown labels are dropped, repeated archetypes keep their
        # first (highest) rank
        if archetype is not None and archetype not in picks:
            picks.append(archetype)

    if len(picks) == 1:
        weights[picks[0]] = 1.0
    elif len(picks) >= 2:
        weights[picks[0]] = TOP_PICK_WEIGHT
        weights[picks[1]] = SECOND_PICK_WEIGHT
        if len(picks) >= 3:
            weights[picks[0]] -= THIRD_PICK_BLEED / 2
            weights[picks[1]] -= THIRD_PICK_BLEED / 2
            weights[picks[2]] += THIRD_PICK_BLEED
    return weights


def _from_mapping(raw: "Mapping[Any, Any]") -> "dict[str, float]":
    weights = dict.fromkeys(ARCHETYPES, 0.0)
    for key, value in raw.items():
        archetype = _resolve(key)
        if archetype is None:
            continue
        # bool is an int subclass but never a weight
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if not math.isfinite(value) or value <= 0:
            continue
        weights[archetype] += float(value)
    return weights


def _rounded(weights: "dict[str, float]") -> "MotivationWeights":
    total = sum(weights.values())
    if total <= 0:
        return MotivationWeights()

    scaled = {k: round(v / total, PRECISION) for k, v in weights.items()}
    # push the rounding residual onto the largest weight so the
    # distribution sums to exactly 1 at the stored precision
    residual = round(1.0 - sum(scaled.values()), PRECISION)
    if residual:
        largest = max(ARCHETYPES, key=lambda name: scaled[name])
        scaled[largest] = round(scaled[largest] + residual, PRECISION)
    return MotivationWeights(**scaled)


def normalize(raw: "Any", default_bias: "bool" = True) -> "MotivationWeights":
    """
    normalizes a raw motivation signal into MotivationWeights. Accepts a
    mapping of archetype (or synonym) to weight, an ordered list of labels
    (highest priority first), an existing MotivationWeights, or nothing.

    Never raises: empty, unrecognized or malformed input yields the
    default distribution, or all zeros when default_bias is False.
    """
    try:
        if isinstance(raw, MotivationWeights):
            weights = _from_mapping(raw.as_dict())
        elif isinstance(raw, Mapping):
            weights = _from_mapping(raw)
        elif isinstance(raw, (list, tuple)):
            weights = _from_ranked(raw)
        else:
            if raw is not None:
                logger.debug("motivation_signal_ignored", type=type(raw).__name__)
            weights = {}
    except Exception:
        logger.warning("motivation_signal_malformed", exc_info=True)
        weights = {}

    if sum(weights.values()) > 0:
        return _rounded(weights)
    if default_bias:
        return _rounded(dict(DEFAULT_WEIGHTS))
    return MotivationWeights()


def derive_hints(
    weights: "MotivationWeights", threshold: "float" = HINT_THRESHOLD
) -> "list[str]":
    """
    returns one guidance line per archetype whose weight reaches the
    threshold, in archetype order.
    """
    values = weights.as_dict()
    return [HINTS[name] for name in ARCHETYPES if values[name] >= threshold]


def build_personalization_context(
    weights: "MotivationWeights",
    nutrition_goals: "Mapping[str, Any] | None" = None,
) -> "str":
    """
    renders the weights and their hints as the system context that biases
    generation for a user.
    """
    lines = ["Motivation Weights (normalized 0-1):"]
    values = weights.as_dict()
    lines.extend(f"- {name}: {values[name]}" for name in ARCHETYPES)

    hints = derive_hints(weights)
    if hints:
        lines.append("Guidance:")
        lines.extend(f"- {hint}" for hint in hints)

    if nutrition_goals:
        if nutrition_goals.get("target_calories"):
            lines.append(f"Target Calories: {nutrition_goals['target_calories']}")
        if nutrition_goals.get("diet_preferences"):
            lines.append(f"Diet Prefs: {nutrition_goals['diet_preferences']}")

    return "\n".join(lines)
