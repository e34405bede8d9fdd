"""
storyline/models/feedback.py

Answer feedback as a tagged variant.

Two shapes exist: the legacy record (pros/cons/score plus free-text guidance)
and the enhanced record (adds a per-dimension score breakdown, a confidence
value and the competency being assessed). `kind` is the discriminant; payloads
from the AI proxy carry no tag and are classified once, in parse_feedback.
"""

from typing import Any, Annotated, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _FeedbackBase(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)
    score: float = Field(ge=0, le=100)


class ScoreBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    structure: float
    clarity: float
    relevance: float
    specificity: float
    professionalism: float


class LegacyFeedback(_FeedbackBase):
    kind: Literal["legacy"] = "legacy"
    guidelines: Optional[str] = None
    improvement_suggestions: Optional[str] = None
    suggestions: Optional[str] = None
    overall: Optional[str] = None


class EnhancedFeedback(_FeedbackBase):
    kind: Literal["enhanced"] = "enhanced"
    score_breakdown: ScoreBreakdown
    confidence: float
    competency_focus: str
    suggestions: str = ""
    overall: str = ""


Feedback = Annotated[Union[LegacyFeedback, EnhancedFeedback], Field(discriminator="kind")]

_FEEDBACK_ADAPTER: TypeAdapter = TypeAdapter(Feedback)

_ENHANCED_MARKERS = (
    ("scoreBreakdown", "score_breakdown"),
    ("confidence",),
    ("competencyFocus", "competency_focus"),
)


def _looks_enhanced(payload: Mapping[str, Any]) -> bool:
    return all(any(key in payload for key in names) for names in _ENHANCED_MARKERS)


def parse_feedback(payload: Mapping[str, Any]) -> Union[LegacyFeedback, EnhancedFeedback]:
    """Convert a raw feedback payload into the tagged variant.

    Tagged payloads (already stored by us) are validated against their tag;
    untagged ones are enhanced only when all enhanced fields are present.

    Raises:
        pydantic.ValidationError: payload fits neither shape
    """
    if "kind" in payload:
        return _FEEDBACK_ADAPTER.validate_python(dict(payload))
    kind = "enhanced" if _looks_enhanced(payload) else "legacy"
    return _FEEDBACK_ADAPTER.validate_python({**payload, "kind": kind})


def dump_feedback(feedback: Union[LegacyFeedback, EnhancedFeedback]) -> dict:
    """JSON-ready dict (snake_case, tagged) for storage."""
    return feedback.model_dump(mode="json")
