"""
Artifact kinds and their variants.

Every kind the core can generate is described by an ArtifactSpec: the
shape provider content must parse into, the request parameters that make
two requests different, generation settings, cache lifetime and, where a
safe one exists, the default artifact served when every provider fails.
"""

import json
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

HOUR = 3600.0
DAY = 24 * HOUR


class ArtifactKind(Enum):
    WORKOUT_PLAN = "workout-plan"
    MEAL_PLAN = "meal-plan"
    CHAT = "chat"
    MOTIVATION = "motivation"
    DAILY_FEED = "daily-feed"
    PROGRESS_ANALYSIS = "progress-analysis"
    DAILY_MEAL_SUGGESTIONS = "daily-meal-suggestions"
    WEEKLY_MEAL_PLAN = "weekly-meal-plan"
    DIET_ANALYSIS = "diet-analysis"
    NUTRITION_TIPS = "nutrition-tips"
    MARKET_ANALYSIS = "market-analysis"


class Shape(Enum):
    TEXT = "text"
    OBJECT = "object"
    LIST = "list"


@dataclass(frozen=True, slots=True)
class Artifact:
    """
    Artifact is a generated output unit. content is a str for text kinds,
    a dict for object kinds and a list of dicts for list kinds.
    """

    kind: "ArtifactKind"
    content: "Any"
    # True when served from the kind's default instead of a provider
    is_default: "bool" = False

    def to_dict(self) -> "dict[str, Any]":
        return {
            "kind": self.kind.value,
            "content": self.content,
            "is_default": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "Artifact":
        return cls(
            kind=ArtifactKind(data["kind"]),
            content=data["content"],
            is_default=bool(data.get("is_default", False)),
        )


@dataclass(frozen=True, slots=True)
class ArtifactSpec:
    kind: "ArtifactKind"
    shape: "Shape"
    temperature: "float"
    max_tokens: "int"
    # default cache lifetime in seconds
    ttl: "float"
    # request params that must be present and feed the fingerprint
    required_params: "tuple[str, ...]" = ()
    # keys an object (or each list item) must carry
    required_keys: "tuple[str, ...]" = ()
    # object key a list may be wrapped in, e.g. {"items": [...]}
    envelope: "str | None" = None
    cacheable: "bool" = True
    personalized: "bool" = True
    default_factory: "Callable[[], Any] | None" = field(default=None, compare=False)

    @property
    def has_default(self) -> "bool":
        return self.default_factory is not None

    def default(self) -> "Artifact":
        if self.default_factory is None:
            raise LookupError(f"{self.kind.value} has no default artifact")
        return Artifact(self.kind, self.default_factory(), is_default=True)

    def parse(self, content: "str") -> "Artifact":
        """
        parses raw provider content into this kind's artifact.

        Raises:
            ValueError: content does not match the expected shape
        """
        if self.shape is Shape.TEXT:
            return Artifact(self.kind, _parse_text(content))

        data = extract_json(content)
        if self.shape is Shape.LIST:
            if isinstance(data, dict) and self.envelope is not None:
                data = data.get(self.envelope)
            if not isinstance(data, list) or not data:
                raise ValueError(f"{self.kind.value}: expected a non-empty list")
            for item in data:
                self._check_keys(item)
            return Artifact(self.kind, data)

        self._check_keys(data)
        return Artifact(self.kind, data)

    def _check_keys(self, data: "Any") -> "None":
        if not isinstance(data, dict):
            raise ValueError(f"{self.kind.value}: expected a JSON object")
        missing = [k for k in self.required_keys if data.get(k) is None]
        if missing:
            raise ValueError(f"{self.kind.value}: missing keys {missing}")


_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY = re.compile(r"\[.*\]", re.DOTALL)


def extract_json(content: "str") -> "Any":
    """
    decodes the JSON value embedded in model output, tolerating markdown
    fences and surrounding prose.

    Raises:
        ValueError: no decodable JSON object or array was found
    """
    text = content.strip()
    fenced = _FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        return json.loads(text)
    except ValueError:
        pass

    # whichever bracket opens first is the outer value
    candidates = sorted(
        (m for m in (_OBJECT.search(text), _ARRAY.search(text)) if m),
        key=lambda m: m.start(),
    )
    for match in candidates:
        try:
            return json.loads(match.group(0))
        except ValueError:
            continue
    raise ValueError("no JSON value found in content")


def _parse_text(content: "str") -> "str":
    text = content.strip()
    if text.startswith("{"):
        # chat replies are sometimes wrapped as {"content": "..."}
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("content"), str):
            text = data["content"].strip()
    if not text:
        raise ValueError("empty text content")
    return text


def _new_id() -> "str":
    return str(uuid.uuid4())


def _default_workout_plan() -> "dict[str, Any]":
    return {
        "title": "Basic Workout",
        "description": "Simple full-body workout plan",
        "exercises": [],
        "notes": "Generated workout",
    }


def _default_meal_plan() -> "dict[str, Any]":
    return {
        "title": "Basic Meal Plan",
        "description": "Simple meal plan",
        "meals": [],
        "macro_breakdown": {"protein": 150, "carbs": 200, "fat": 65, "fiber": 25},
        "shopping_list": [],
        "notes": "Generated meal plan",
    }


def _default_chat() -> "str":
    return (
        "I apologize, but I'm having trouble processing your request right now. "
        "Please try again later."
    )


def _default_motivation() -> "str":
    return "Stay motivated and keep moving forward!"


def _default_feed() -> "list[dict[str, Any]]":
    return [
        {
            "id": _new_id(),
            "kind": "quote",
            "text": "Stay motivated and keep moving forward!",
            "topic_tags": ["motivation"],
        }
    ]


def _default_progress_analysis() -> "dict[str, Any]":
    return {
        "trends": [],
        "summary": "Progress analysis unavailable",
        "recommendations": [],
    }


def _default_meal_suggestions() -> "list[dict[str, Any]]":
    return [
        {
            "id": _new_id(),
            "type": "breakfast",
            "name": "Greek Yogurt Bowl",
            "description": "High-protein breakfast with berries and granola",
            "calories": 350,
            "macros": {"protein": 25, "carbs": 40, "fat": 10, "fiber": 6},
            "ingredients": [
                {
                    "id": _new_id(),
                    "name": "Greek Yogurt",
                    "amount": 200,
                    "unit": "g",
                    "calories": 150,
                    "macros": {"protein": 20, "carbs": 10, "fat": 0, "fiber": 0},
                    "isOptional": False,
                    "substitutes": ["Skyr", "Regular yogurt"],
                }
            ],
            "instructions": ["Mix yogurt with toppings", "Enjoy immediately"],
            "prepTime": 5,
            "cookTime": 0,
            "tags": ["high_protein", "quick"],
        }
    ]


def _default_weekly_plan() -> "dict[str, Any]":
    return {
        "id": _new_id(),
        "title": "Balanced Weekly Plan",
        "description": "Simple, nutritious meals for the week",
        "targetCalories": 2000,
        "macroBreakdown": {"protein": 150, "carbs": 200, "fat": 65},
        "meals": {},
        "shoppingList": [],
        "prepTime": 120,
        "aiGeneratedNotes": "Plan your meals ahead for success.",
    }


def _default_diet_analysis() -> "dict[str, Any]":
    return {
        "period": "7 days",
        "overview": "Analysis based on recent eating patterns",
        "insights": [
            {
                "type": "tip",
                "title": "Stay Consistent",
                "description": "Keep logging meals for better insights",
                "impact": "positive",
            }
        ],
        "recommendations": [
            {
                "priority": "medium",
                "action": "Log more meals",
                "reason": "Better tracking leads to better insights",
            }
        ],
        "score": 75,
    }


def _default_nutrition_tips() -> "list[dict[str, Any]]":
    return [
        {
            "id": _new_id(),
            "type": "tip",
            "title": "Stay Hydrated",
            "description": "Aim for 8 glasses of water daily for optimal health",
            "priority": "medium",
            "actionable": True,
        },
        {
            "id": _new_id(),
            "type": "suggestion",
            "title": "Add More Protein",
            "description": "Include protein in every meal to support muscle health",
            "priority": "high",
            "actionable": True,
        },
    ]


ARTIFACT_SPECS: "dict[ArtifactKind, ArtifactSpec]" = {
    spec.kind: spec
    for spec in (
        ArtifactSpec(
            kind=ArtifactKind.WORKOUT_PLAN,
            shape=Shape.OBJECT,
            temperature=0.3,
            max_tokens=2000,
            ttl=DAY,
            required_params=("fitness_level",),
            required_keys=("title", "exercises"),
            default_factory=_default_workout_plan,
        ),
        ArtifactSpec(
            kind=ArtifactKind.MEAL_PLAN,
            shape=Shape.OBJECT,
            temperature=0.3,
            max_tokens=2500,
            ttl=DAY,
            required_params=("target_calories",),
            required_keys=("title", "meals"),
            default_factory=_default_meal_plan,
        ),
        ArtifactSpec(
            kind=ArtifactKind.CHAT,
            shape=Shape.TEXT,
            temperature=0.7,
            max_tokens=1000,
            ttl=HOUR,
            cacheable=False,
            default_factory=_default_chat,
        ),
        ArtifactSpec(
            kind=ArtifactKind.MOTIVATION,
            shape=Shape.TEXT,
            temperature=0.7,
            max_tokens=300,
            ttl=HOUR,
            required_params=("trigger",),
            default_factory=_default_motivation,
        ),
        ArtifactSpec(
            kind=ArtifactKind.DAILY_FEED,
            shape=Shape.LIST,
            temperature=0.7,
            max_tokens=1200,
            ttl=DAY,
            required_params=("date",),
            required_keys=("kind", "text"),
            envelope="items",
            default_factory=_default_feed,
        ),
        ArtifactSpec(
            kind=ArtifactKind.PROGRESS_ANALYSIS,
            shape=Shape.OBJECT,
            temperature=0.2,
            max_tokens=1500,
            ttl=6 * HOUR,
            required_keys=("summary",),
            default_factory=_default_progress_analysis,
        ),
        ArtifactSpec(
            kind=ArtifactKind.DAILY_MEAL_SUGGESTIONS,
            shape=Shape.LIST,
            temperature=0.7,
            max_tokens=2000,
            ttl=DAY,
            required_params=("date",),
            required_keys=("name",),
            envelope="suggestions",
            default_factory=_default_meal_suggestions,
        ),
        ArtifactSpec(
            kind=ArtifactKind.WEEKLY_MEAL_PLAN,
            shape=Shape.OBJECT,
            temperature=0.6,
            max_tokens=3000,
            ttl=7 * DAY,
            required_params=("start_date",),
            required_keys=("meals",),
            default_factory=_default_weekly_plan,
        ),
        ArtifactSpec(
            kind=ArtifactKind.DIET_ANALYSIS,
            shape=Shape.OBJECT,
            temperature=0.3,
            max_tokens=1500,
            ttl=6 * HOUR,
            required_params=("days",),
            required_keys=("score",),
            default_factory=_default_diet_analysis,
        ),
        ArtifactSpec(
            kind=ArtifactKind.NUTRITION_TIPS,
            shape=Shape.LIST,
            temperature=0.7,
            max_tokens=800,
            ttl=6 * HOUR,
            required_keys=("title",),
            envelope="tips",
            default_factory=_default_nutrition_tips,
        ),
        # no safe default exists for financial analysis
        ArtifactSpec(
            kind=ArtifactKind.MARKET_ANALYSIS,
            shape=Shape.OBJECT,
            temperature=0.2,
            max_tokens=1500,
            ttl=0.5 * HOUR,
            required_params=("symbol", "analysis_type"),
            required_keys=("summary",),
            personalized=False,
        ),
    )
}


def get_spec(kind: "ArtifactKind | str") -> "ArtifactSpec":
    """
    Raises:
        ValueError: kind is not a known artifact kind
    """
    return ARTIFACT_SPECS[ArtifactKind(kind)]
