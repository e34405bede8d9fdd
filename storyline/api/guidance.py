"""
Interview prep API.

- POST /api/question-vault: prep questions with model answers (records a
  question_vault usage)
- POST /api/guided-response: guiding questions or an improved draft (1 credit)
"""
from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from storyline.api.deps import get_store
from storyline.core.auth import CurrentUser, get_current_user
from storyline.core.errors import UpstreamError
from storyline.features.entitlements.store import EntitlementStore
from storyline.features.guidance import service as guidance_service
from storyline.models.guidance import GuidedAction, GuidedDraft, GuidingQuestions, QuestionVault


router = APIRouter(tags=["guidance"])


class QuestionVaultRequest(BaseModel):
    job_title: Optional[str] = None
    job_description: Optional[str] = None
    company_name: Optional[str] = None
    company_description: Optional[str] = None
    resume_text: Optional[str] = None
    cover_letter_text: Optional[str] = None
    job_id: Optional[str] = None


class GuidedResponseRequest(BaseModel):
    action: GuidedAction
    question_text: Optional[str] = None
    question_type: Optional[str] = None
    user_input: Optional[str] = None
    resume_text: Optional[str] = None
    job_id: Optional[str] = None
    question_index: Optional[int] = Field(default=None, ge=0)


@router.post("/api/question-vault", response_model=QuestionVault, response_model_by_alias=True)
def question_vault(body: QuestionVaultRequest, user: CurrentUser = Depends(get_current_user)):
    """
    Usage is counted but never enforced here; clients check the gate first.

    Errors:
        404: job_id is not one of the user's practices
        502: generation failed
    """
    result = guidance_service.create_question_vault(
        user.user_id,
        job_title=body.job_title,
        job_description=body.job_description,
        company_name=body.company_name,
        company_description=body.company_description,
        resume_text=body.resume_text,
        cover_letter_text=body.cover_letter_text,
        job_id=body.job_id,
    )
    if not result.success:
        raise UpstreamError(f"Could not generate the question vault: {result.error}")
    return result.value


@router.post(
    "/api/guided-response",
    response_model=Union[GuidingQuestions, GuidedDraft],
    response_model_by_alias=True,
)
def guided_response(
    body: GuidedResponseRequest,
    user: CurrentUser = Depends(get_current_user),
    store: EntitlementStore = Depends(get_store),
):
    """
    Errors:
        402: not enough credits
        502: AI call failed (credits refunded)
    """
    result = guidance_service.guided_response(
        store,
        user.user_id,
        body.action,
        question_text=body.question_text,
        question_type=body.question_type,
        user_input=body.user_input,
        resume_text=body.resume_text,
        job_id=body.job_id,
        question_index=body.question_index,
    )
    if not result.success:
        raise UpstreamError(f"Could not build guidance: {result.error}")
    return result.value
