"""
storyline/models/answer.py

Practice sessions, their questions and the append-only answer history.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict

from storyline.models.feedback import EnhancedFeedback, LegacyFeedback


QUESTIONS_PER_PRACTICE = 5


class PracticeQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_index: int
    question: str
    question_type: str = "behavioral"


class Practice(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    job_title: Optional[str] = None
    company_name: Optional[str] = None
    job_description: Optional[str] = None
    status: str
    created_at: datetime
    questions: List[PracticeQuestion] = []


class AnswerIteration(BaseModel):
    """One submitted answer. Feedback, once attached, never changes."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    question_index: int
    seq: int
    answer_text: str
    created_at: datetime
    feedback: Optional[Union[LegacyFeedback, EnhancedFeedback]] = None


class PracticeProgress(BaseModel):
    """Resume/complete state of a practice session."""
    model_config = ConfigDict(frozen=True)

    total_questions: int
    answered_questions: int
    reviewed_questions: int
    is_complete: bool
    can_resume: bool
    resume_index: int
