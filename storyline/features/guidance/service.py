"""
Interview prep helpers built on the AI proxy.

- create_question_vault: prep questions with model answers; counts a
  question_vault usage on success (advisory, never blocks)
- guided_response: coaching questions or an improved draft for one answer;
  costs credits, refunded on failure
"""
from datetime import datetime
from typing import Callable, List, Optional, Union
import logging

from storyline.core.config import settings
from storyline.core.database import as_utc, utcnow
from storyline.core.errors import NotFoundError, ValidationError
from storyline.features.ai import service as ai_service
from storyline.features.answers import service as answers_service
from storyline.features.entitlements.store import EntitlementStore
from storyline.features.usage.service import record_usage
from storyline.models.answer import Practice
from storyline.models.entitlement import OperationResult
from storyline.models.guidance import (
    GuidedAction,
    GuidedDraft,
    GuidingQuestions,
    QuestionVault,
    SourceAttribution,
    VaultQuestion,
)
from storyline.models.usage import UsageType

logger = logging.getLogger(__name__)

Generator = Callable[..., "ai_service.AIResult"]

PRACTICE_SOURCE = SourceAttribution(source="behavioral-practice-session", reliability=5, category="practice_session")
PRACTICE_EXPLANATION = "This question was from your behavioral interview practice session."
PRACTICE_MODEL_ANSWER = (
    "Use the STAR method (Situation, Task, Action, Result) to structure your response "
    "based on your previous answer during the interview."
)
PRACTICE_FOLLOW_UP = [
    "Can you elaborate on the results you achieved?",
    "What would you do differently next time?",
]


def practice_questions_for_vault(practice: Practice) -> List[VaultQuestion]:
    """The questions of a practice session, shaped as vault entries."""
    return [
        VaultQuestion(
            question=q.question,
            explanation=PRACTICE_EXPLANATION,
            model_answer=PRACTICE_MODEL_ANSWER,
            follow_up=PRACTICE_FOLLOW_UP,
            source_attribution=PRACTICE_SOURCE,
            type="original-behavioral",
            original_index=q.question_index,
        )
        for q in practice.questions
    ]


def create_question_vault(
    user_id: str,
    *,
    job_title: Optional[str] = None,
    job_description: Optional[str] = None,
    company_name: Optional[str] = None,
    company_description: Optional[str] = None,
    resume_text: Optional[str] = None,
    cover_letter_text: Optional[str] = None,
    job_id: Optional[str] = None,
    now: Optional[datetime] = None,
    generator: Optional[Generator] = None,
) -> OperationResult[QuestionVault]:
    """
    Generate a question vault, optionally for an existing practice session.

    With job_id the practice supplies missing job fields and its own
    questions come back as original_behavioral_questions.

    Raises:
        ValidationError: no job title given or found
        NotFoundError: job_id is not one of the user's practices
    """
    originals: List[VaultQuestion] = []
    if job_id:
        practice = answers_service.get_practice(job_id, user_id)
        job_title = job_title or practice.job_title
        job_description = job_description or practice.job_description
        company_name = company_name or practice.company_name
        originals = practice_questions_for_vault(practice)
    if not job_title or not job_title.strip():
        raise ValidationError("Job title is required")

    generator = generator or ai_service.generate_question_vault
    result = generator(
        job_title,
        job_description=job_description,
        company_name=company_name,
        company_description=company_description,
        resume_text=resume_text,
        cover_letter_text=cover_letter_text,
    )
    if not result.success:
        return OperationResult.fail(result.error or "Question vault generation failed")

    now = as_utc(now) if now else utcnow()
    metadata = {"job_title": job_title, "questions": len(result.data)}
    if job_id:
        metadata["job_id"] = job_id
    record_usage(user_id, UsageType.QUESTION_VAULT, now, metadata=metadata)
    logger.info("[vault] generated", extra={"user_id": user_id, "job_id": job_id})
    return OperationResult.ok(
        QuestionVault(behavioral_questions=result.data, original_behavioral_questions=originals)
    )


def guided_response(
    store: EntitlementStore,
    user_id: str,
    action: GuidedAction,
    *,
    question_text: Optional[str] = None,
    question_type: Optional[str] = None,
    user_input: Optional[str] = None,
    resume_text: Optional[str] = None,
    job_id: Optional[str] = None,
    question_index: Optional[int] = None,
    generator: Optional[Generator] = None,
) -> OperationResult[Union[GuidingQuestions, GuidedDraft]]:
    """
    Coach the user through one answer.

    GENERATE_QUESTIONS returns guiding questions; PROCESS_THOUGHTS turns
    user_input into an improved draft. With job_id and question_index the
    stored question, the current answer and its feedback are used as
    context.

    Raises:
        ValidationError: no question text, or no thoughts to process
        NotFoundError: unknown practice or question
        InsufficientCreditsError: balance below the guided cost
    """
    previous_answer = None
    feedback = None
    if job_id is not None and question_index is not None:
        practice = answers_service.get_practice(job_id, user_id)
        stored = next((q for q in practice.questions if q.question_index == question_index), None)
        if stored is None:
            raise NotFoundError(f"Question {question_index} not found for practice {job_id}")
        question_text = question_text or stored.question
        question_type = question_type or stored.question_type
        current = answers_service.current_iteration(job_id, question_index, user_id)
        if current is not None:
            previous_answer = current.answer_text
            feedback = current.feedback

    if not question_text or not question_text.strip():
        raise ValidationError("Question text is required")
    if action is GuidedAction.PROCESS_THOUGHTS and not (user_input and user_input.strip()):
        raise ValidationError("Thoughts are required to build a response")
    question_type = question_type or "behavioral"

    cost = settings.GUIDED_CREDIT_COST
    store.deduct_user_tokens(user_id, cost)

    generator = generator or ai_service.guided_response
    result = generator(
        action,
        question_text,
        question_type=question_type,
        user_input=user_input,
        resume_text=resume_text,
        previous_response=previous_answer,
        feedback=feedback,
    )
    if not result.success:
        store.refund_tokens(user_id, cost)
        logger.warning(
            "[guided] generation failed, credits refunded",
            extra={"user_id": user_id, "action": action.value, "error_message": result.error},
        )
        return OperationResult.fail(result.error or "Guided response failed")
    return OperationResult.ok(result.data)
