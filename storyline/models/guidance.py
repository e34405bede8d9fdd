"""
storyline/models/guidance.py

Question vault and guided answer models.

The AI returns camelCase keys; the models accept either spelling and
serialize camelCase for the browser.
"""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class SourceAttribution(_CamelModel):
    source: str = "ai-generated"
    reliability: Optional[float] = Field(default=None, ge=1, le=5)
    category: Optional[str] = None


class VaultQuestion(_CamelModel):
    question: str
    explanation: str = ""
    model_answer: str = ""
    follow_up: List[str] = Field(default_factory=list)
    source_attribution: Optional[SourceAttribution] = None
    type: Literal["generated", "original-behavioral"] = "generated"
    original_index: Optional[int] = None


class QuestionVault(_CamelModel):
    """Prep questions with model answers; originals come from a practice session."""
    behavioral_questions: List[VaultQuestion]
    original_behavioral_questions: List[VaultQuestion] = Field(default_factory=list)


class GuidedAction(str, Enum):
    GENERATE_QUESTIONS = "generate_questions"
    PROCESS_THOUGHTS = "process_thoughts"


class GuidingQuestions(_CamelModel):
    guiding_questions: List[str]
    question_type: str
    structure: str
    fallback: bool = False


class GuidedDraft(_CamelModel):
    generated_response: str
    feedback: str
