"""
Answer validation and practice session API.

- POST /api/answers/validate: advisory quality check for a draft answer
- POST /api/practices: create a practice (5 credits, generates questions)
- GET  /api/practices, GET /api/practices/{job_id}
- POST /api/practices/{job_id}/questions/{question_index}/answers
- GET  /api/practices/{job_id}/questions/{question_index}/answers
- POST /api/practices/{job_id}/questions/{question_index}/answers/{seq}/feedback (2 credits)
"""
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field

from storyline.api.deps import get_store
from storyline.core.auth import CurrentUser, get_current_user
from storyline.core.errors import UpstreamError
from storyline.features.answers import service as answers_service
from storyline.features.entitlements.store import EntitlementStore
from storyline.features.validation.answers import (
    ValidationResult,
    should_block_submission,
    validate_answer,
    validation_message,
)
from storyline.models.answer import AnswerIteration, Practice, PracticeProgress


router = APIRouter(tags=["answers"])


class ValidateRequest(BaseModel):
    text: str
    question_index: int = Field(default=0, ge=0)
    allow_override: bool = False


class ValidationResponse(BaseModel):
    word_count: int
    sentence_count: int
    unique_word_count: int
    repetition_score: float
    warnings: List[str]
    is_valid: bool
    is_extreme: bool
    spam_patterns: List[str]
    requires_confirmation: bool
    message: Optional[Dict[str, str]] = None


def validation_payload(result: ValidationResult, allow_override: bool = False) -> ValidationResponse:
    message = validation_message(result)
    return ValidationResponse(
        word_count=result.word_count,
        sentence_count=result.sentence_count,
        unique_word_count=result.unique_word_count,
        repetition_score=result.repetition_score,
        warnings=list(result.warnings),
        is_valid=result.is_valid,
        is_extreme=result.is_extreme,
        spam_patterns=sorted(p.value for p in result.spam_patterns),
        requires_confirmation=should_block_submission(result, allow_override),
        message={"level": message.level, "message": message.message} if message else None,
    )


@router.post("/api/answers/validate", response_model=ValidationResponse)
def validate(body: ValidateRequest):
    """Pure function of the text and question index; no auth needed."""
    return validation_payload(validate_answer(body.text, body.question_index), body.allow_override)


class CreatePracticeRequest(BaseModel):
    job_title: str = Field(min_length=1)
    job_description: str = Field(min_length=1)
    company_name: Optional[str] = None
    company_description: Optional[str] = None
    resume_text: Optional[str] = None


class PracticeResponse(BaseModel):
    practice: Practice
    progress: Optional[PracticeProgress] = None


class SubmitAnswerRequest(BaseModel):
    text: str = Field(min_length=1)


class SubmitAnswerResponse(BaseModel):
    iteration: AnswerIteration
    validation: ValidationResponse


@router.post("/api/practices", response_model=PracticeResponse, status_code=201)
def create_practice(
    body: CreatePracticeRequest,
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    """
    Errors:
        402: not enough credits
        502: question generation failed (credits refunded)
    """
    result = answers_service.create_practice(
        store,
        user.user_id,
        job_title=body.job_title,
        job_description=body.job_description,
        company_name=body.company_name,
        company_description=body.company_description,
        resume_text=body.resume_text,
    )
    if not result.success:
        raise UpstreamError(f"Could not generate interview questions: {result.error}")
    return PracticeResponse(practice=result.value)


@router.get("/api/practices", response_model=List[Practice])
def list_practices(user: CurrentUser = Depends(get_current_user)):
    return answers_service.list_practices(user.user_id)


@router.get("/api/practices/{job_id}", response_model=PracticeResponse)
def get_practice(job_id: str, user: CurrentUser = Depends(get_current_user)):
    return PracticeResponse(
        practice=answers_service.get_practice(job_id, user.user_id),
        progress=answers_service.get_practice_progress(job_id, user.user_id),
    )


@router.post(
    "/api/practices/{job_id}/questions/{question_index}/answers",
    response_model=SubmitAnswerResponse,
    status_code=201,
)
def submit_answer(
    body: SubmitAnswerRequest,
    job_id: str,
    question_index: int = Path(ge=0),
    user: CurrentUser = Depends(get_current_user),
):
    """Weak answers are stored anyway; the validation block is advisory."""
    submitted = answers_service.submit_answer(job_id, question_index, body.text, user.user_id)
    return SubmitAnswerResponse(
        iteration=submitted.iteration,
        validation=validation_payload(submitted.validation, allow_override=True),
    )


@router.get(
    "/api/practices/{job_id}/questions/{question_index}/answers",
    response_model=List[AnswerIteration],
)
def list_answers(
    job_id: str,
    question_index: int = Path(ge=0),
    user: CurrentUser = Depends(get_current_user),
):
    return answers_service.list_iterations(job_id, question_index, user.user_id)


@router.post(
    "/api/practices/{job_id}/questions/{question_index}/answers/{seq}/feedback",
    response_model=AnswerIteration,
)
def request_feedback(
    job_id: str,
    question_index: int = Path(ge=0),
    seq: int = Path(ge=1),
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    """
    Errors:
        402: not enough credits
        409: feedback already attached
        502: AI feedback failed (credits refunded)
    """
    result = answers_service.request_feedback(store, job_id, question_index, user.user_id, seq)
    if not result.success:
        raise UpstreamError(f"Could not generate feedback: {result.error}")
    return result.value
