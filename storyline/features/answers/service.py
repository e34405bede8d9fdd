"""
Practice sessions and the append-only answer history.

- create_practice: pay credits, generate questions, count a behavioral usage
- submit_answer: append an iteration (the newest one is current)
- attach_feedback: set feedback once; it never changes afterwards
- request_feedback: pay credits, ask the AI proxy, attach; refund on failure
- get_practice_progress: resume/complete state
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union
import logging
import uuid

from sqlalchemy import select, insert, update, func
from sqlalchemy.exc import IntegrityError

from storyline.core.config import settings
from storyline.core.database import (
    get_db_session,
    practice_jobs,
    job_questions,
    answer_iterations,
    as_utc,
    utcnow,
)
from storyline.core.errors import ConflictError, NotFoundError, ValidationError
from storyline.features.ai import service as ai_service
from storyline.features.entitlements.store import EntitlementStore
from storyline.features.usage.service import record_usage
from storyline.features.validation.answers import ValidationResult, validate_answer
from storyline.models.answer import (
    QUESTIONS_PER_PRACTICE,
    AnswerIteration,
    Practice,
    PracticeProgress,
    PracticeQuestion,
)
from storyline.models.entitlement import OperationResult
from storyline.models.feedback import EnhancedFeedback, LegacyFeedback, dump_feedback, parse_feedback
from storyline.models.usage import UsageType

logger = logging.getLogger(__name__)

FeedbackVariant = Union[LegacyFeedback, EnhancedFeedback]
QuestionGenerator = Callable[..., "ai_service.AIResult"]
FeedbackGenerator = Callable[..., "ai_service.AIResult"]

SEQ_RETRIES = 3

STATUS_PENDING = "pending"
STATUS_READY = "ready"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class SubmittedAnswer:
    iteration: AnswerIteration
    validation: ValidationResult


# -- row mapping -------------------------------------------------------------

def _row_to_iteration(row) -> AnswerIteration:
    return AnswerIteration(
        job_id=row.job_id,
        question_index=row.question_index,
        seq=row.seq,
        answer_text=row.answer_text,
        created_at=as_utc(row.created_at),
        feedback=parse_feedback(row.feedback) if row.feedback else None,
    )


def _load_job(job_id: str, user_id: str):
    with get_db_session() as session:
        row = session.execute(select(practice_jobs).where(practice_jobs.c.id == job_id)).first()
    # Other users' practices are indistinguishable from missing ones
    if row is None or row.user_id != user_id:
        raise NotFoundError(f"Practice {job_id} not found")
    return row


def _load_questions(job_id: str) -> List[PracticeQuestion]:
    with get_db_session() as session:
        rows = session.execute(
            select(job_questions)
            .where(job_questions.c.job_id == job_id)
            .order_by(job_questions.c.question_index)
        ).all()
    return [
        PracticeQuestion(question_index=r.question_index, question=r.question, question_type=r.question_type)
        for r in rows
    ]


def _to_practice(row, questions: List[PracticeQuestion]) -> Practice:
    return Practice(
        id=row.id,
        user_id=row.user_id,
        job_title=row.job_title,
        company_name=row.company_name,
        job_description=row.job_description,
        status=row.status,
        created_at=as_utc(row.created_at),
        questions=questions,
    )


def _set_status(job_id: str, status: str) -> None:
    with get_db_session() as session:
        session.execute(update(practice_jobs).where(practice_jobs.c.id == job_id).values(status=status))


# -- practices ---------------------------------------------------------------

def get_practice(job_id: str, user_id: str) -> Practice:
    row = _load_job(job_id, user_id)
    return _to_practice(row, _load_questions(job_id))


def list_practices(user_id: str, limit: int = 50) -> List[Practice]:
    with get_db_session() as session:
        rows = session.execute(
            select(practice_jobs)
            .where(practice_jobs.c.user_id == user_id)
            .order_by(practice_jobs.c.created_at.desc())
            .limit(limit)
        ).all()
    return [_to_practice(row, []) for row in rows]


def create_practice(
    store: EntitlementStore,
    user_id: str,
    *,
    job_title: str,
    job_description: str,
    company_name: Optional[str] = None,
    company_description: Optional[str] = None,
    resume_text: Optional[str] = None,
    now: Optional[datetime] = None,
    generator: Optional[QuestionGenerator] = None,
) -> OperationResult[Practice]:
    """
    Create a practice session with generated questions.

    Credits are taken before generation and refunded if it fails; the job row
    is then kept with status "failed".

    Raises:
        ValidationError: missing job title or description
        InsufficientCreditsError: balance below the practice cost
    """
    if not job_title or not job_title.strip():
        raise ValidationError("Job title is required")
    if not job_description or not job_description.strip():
        raise ValidationError("Job description is required")

    generator = generator or ai_service.generate_questions
    cost = settings.PRACTICE_CREDIT_COST
    now = as_utc(now) if now else utcnow()
    job_id = str(uuid.uuid4())

    store.deduct_user_tokens(user_id, cost)

    with get_db_session() as session:
        session.execute(
            insert(practice_jobs).values(
                id=job_id,
                user_id=user_id,
                job_title=job_title.strip(),
                company_name=company_name,
                job_description=job_description,
                status=STATUS_PENDING,
                created_at=now,
            )
        )

    result = generator(
        job_title,
        job_description,
        company_name=company_name,
        company_description=company_description,
        resume_text=resume_text,
        count=QUESTIONS_PER_PRACTICE,
    )
    if not result.success:
        _set_status(job_id, STATUS_FAILED)
        store.refund_tokens(user_id, cost)
        logger.warning(
            "[practice] question generation failed, credits refunded",
            extra={"user_id": user_id, "job_id": job_id, "error_message": result.error},
        )
        return OperationResult.fail(result.error or "Question generation failed")

    with get_db_session() as session:
        session.execute(
            insert(job_questions),
            [
                {"job_id": job_id, "question_index": index, "question": text, "question_type": "behavioral"}
                for index, text in enumerate(result.data)
            ],
        )
        session.execute(update(practice_jobs).where(practice_jobs.c.id == job_id).values(status=STATUS_READY))

    record_usage(user_id, UsageType.BEHAVIORAL, now, metadata={"job_id": job_id})
    logger.info("[practice] created", extra={"user_id": user_id, "job_id": job_id})
    return OperationResult.ok(get_practice(job_id, user_id))


# -- answers -----------------------------------------------------------------

def _question(job_id: str, question_index: int) -> PracticeQuestion:
    with get_db_session() as session:
        row = session.execute(
            select(job_questions).where(
                job_questions.c.job_id == job_id,
                job_questions.c.question_index == question_index,
            )
        ).first()
    if row is None:
        raise NotFoundError(f"Question {question_index} not found for practice {job_id}")
    return PracticeQuestion(question_index=row.question_index, question=row.question, question_type=row.question_type)


def submit_answer(
    job_id: str,
    question_index: int,
    text: str,
    user_id: str,
    now: Optional[datetime] = None,
) -> SubmittedAnswer:
    """
    Append a new iteration. Validation is advisory and never rejects text.

    Raises:
        ValidationError: empty answer
        NotFoundError: unknown practice or question
    """
    if not text or not text.strip():
        raise ValidationError("Answer text is required")
    _load_job(job_id, user_id)
    _question(job_id, question_index)
    created_at = as_utc(now) if now else utcnow()

    for attempt in range(SEQ_RETRIES):
        try:
            with get_db_session() as session:
                current = session.execute(
                    select(func.max(answer_iterations.c.seq)).where(
                        answer_iterations.c.job_id == job_id,
                        answer_iterations.c.question_index == question_index,
                    )
                ).scalar()
                seq = (current or 0) + 1
                session.execute(
                    insert(answer_iterations).values(
                        job_id=job_id,
                        question_index=question_index,
                        seq=seq,
                        answer_text=text,
                        created_at=created_at,
                    )
                )
            break
        except IntegrityError:
            # A concurrent submit took this seq
            if attempt == SEQ_RETRIES - 1:
                raise ConflictError("Answer was submitted concurrently, please retry")

    iteration = AnswerIteration(
        job_id=job_id,
        question_index=question_index,
        seq=seq,
        answer_text=text,
        created_at=created_at,
    )
    return SubmittedAnswer(iteration=iteration, validation=validate_answer(text, question_index))


def list_iterations(job_id: str, question_index: int, user_id: str) -> List[AnswerIteration]:
    _load_job(job_id, user_id)
    with get_db_session() as session:
        rows = session.execute(
            select(answer_iterations)
            .where(
                answer_iterations.c.job_id == job_id,
                answer_iterations.c.question_index == question_index,
            )
            .order_by(answer_iterations.c.seq)
        ).all()
    return [_row_to_iteration(row) for row in rows]


def current_iteration(job_id: str, question_index: int, user_id: str) -> Optional[AnswerIteration]:
    iterations = list_iterations(job_id, question_index, user_id)
    return iterations[-1] if iterations else None


def _get_iteration(job_id: str, question_index: int, seq: int) -> AnswerIteration:
    with get_db_session() as session:
        row = session.execute(
            select(answer_iterations).where(
                answer_iterations.c.job_id == job_id,
                answer_iterations.c.question_index == question_index,
                answer_iterations.c.seq == seq,
            )
        ).first()
    if row is None:
        raise NotFoundError(f"Answer {seq} for question {question_index} not found")
    return _row_to_iteration(row)


def attach_feedback(
    job_id: str,
    question_index: int,
    seq: int,
    feedback: FeedbackVariant,
    now: Optional[datetime] = None,
) -> AnswerIteration:
    """
    Attach feedback to one iteration.

    Raises:
        NotFoundError: no such iteration
        ConflictError: feedback already attached
    """
    with get_db_session() as session:
        result = session.execute(
            update(answer_iterations)
            .where(
                answer_iterations.c.job_id == job_id,
                answer_iterations.c.question_index == question_index,
                answer_iterations.c.seq == seq,
                answer_iterations.c.feedback.is_(None),
            )
            .values(feedback=dump_feedback(feedback), feedback_attached_at=as_utc(now) if now else utcnow())
        )
        updated = result.rowcount
    if not updated:
        _get_iteration(job_id, question_index, seq)
        raise ConflictError("Feedback is already attached to this answer")
    return _get_iteration(job_id, question_index, seq)


def request_feedback(
    store: EntitlementStore,
    job_id: str,
    question_index: int,
    user_id: str,
    seq: Optional[int] = None,
    *,
    generator: Optional[FeedbackGenerator] = None,
) -> OperationResult[AnswerIteration]:
    """
    Generate and attach AI feedback for an iteration (the current one by default).

    Raises:
        NotFoundError: no answer to review
        ConflictError: the iteration already has feedback
        InsufficientCreditsError: balance below the feedback cost
    """
    job = _load_job(job_id, user_id)
    question = _question(job_id, question_index)
    if seq is None:
        iteration = current_iteration(job_id, question_index, user_id)
        if iteration is None:
            raise NotFoundError(f"No answer submitted for question {question_index}")
    else:
        iteration = _get_iteration(job_id, question_index, seq)
    if iteration.feedback is not None:
        raise ConflictError("Feedback is already attached to this answer")

    generator = generator or ai_service.generate_answer_feedback
    cost = settings.FEEDBACK_CREDIT_COST
    store.deduct_user_tokens(user_id, cost)

    result = generator(
        question.question,
        iteration.answer_text,
        question_type=question.question_type,
        job_title=job.job_title,
        company_name=job.company_name,
        job_description=job.job_description,
    )
    if not result.success:
        store.refund_tokens(user_id, cost)
        logger.warning(
            "[feedback] generation failed, credits refunded",
            extra={"user_id": user_id, "job_id": job_id, "error_message": result.error},
        )
        return OperationResult.fail(result.error or "Feedback generation failed")

    try:
        attached = attach_feedback(job_id, question_index, iteration.seq, result.data)
    except ConflictError as e:
        # Lost a race with another request for the same iteration
        store.refund_tokens(user_id, cost)
        return OperationResult.fail(e.message)
    return OperationResult.ok(attached)


# -- progress ----------------------------------------------------------------

def get_practice_progress(job_id: str, user_id: str) -> PracticeProgress:
    """
    Complete once QUESTIONS_PER_PRACTICE questions are answered and every
    answered question's current iteration has feedback. Resume at the first
    unanswered question, else the first one still awaiting feedback.
    """
    _load_job(job_id, user_id)
    questions = _load_questions(job_id)
    with get_db_session() as session:
        rows = session.execute(
            select(answer_iterations)
            .where(answer_iterations.c.job_id == job_id)
            .order_by(answer_iterations.c.question_index, answer_iterations.c.seq)
        ).all()

    current: Dict[int, object] = {}
    for row in rows:
        current[row.question_index] = row

    answered = [q.question_index for q in questions if q.question_index in current]
    reviewed = [i for i in answered if current[i].feedback]
    is_complete = len(answered) >= QUESTIONS_PER_PRACTICE and len(reviewed) == len(answered)

    resume_index = 0
    unanswered = [q.question_index for q in questions if q.question_index not in current]
    awaiting = [i for i in answered if not current[i].feedback]
    if unanswered:
        resume_index = unanswered[0]
    elif awaiting:
        resume_index = awaiting[0]

    return PracticeProgress(
        total_questions=len(questions),
        answered_questions=len(answered),
        reviewed_questions=len(reviewed),
        is_complete=is_complete,
        can_resume=bool(answered) and not is_complete,
        resume_index=resume_index,
    )
