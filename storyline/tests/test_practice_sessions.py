"""
Practice sessions: credit charging, refunds, answer history, feedback, progress.
"""
import pytest

from storyline.core.errors import ConflictError, InsufficientCreditsError, NotFoundError, ValidationError
from storyline.features.ai.service import AIResult
from storyline.features.answers.service import (
    STATUS_FAILED,
    STATUS_READY,
    attach_feedback,
    create_practice,
    current_iteration,
    get_practice,
    get_practice_progress,
    list_iterations,
    list_practices,
    request_feedback,
    submit_answer,
)
from storyline.features.usage.service import get_monthly_count
from storyline.models.feedback import LegacyFeedback
from storyline.models.usage import UsageType


QUESTIONS = [f"Tell me about a time you handled challenge number {i}." for i in range(1, 6)]


def question_generator(*args, **kwargs):
    return AIResult(success=True, data=list(QUESTIONS))


def failing_generator(*args, **kwargs):
    return AIResult(success=False, error="OpenAI API error: timeout")


def feedback_generator(question, answer_text, **kwargs):
    return AIResult(success=True, data=LegacyFeedback(pros=["Concrete"], cons=["Short"], score=55))


@pytest.fixture
def practice(store):
    result = create_practice(
        store,
        "user_alice",
        job_title="Backend Engineer",
        job_description="Build and run payment services.",
        company_name="Acme",
        generator=question_generator,
    )
    assert result.success
    return result.value


class TestCreatePractice:
    def test_charges_credits_and_stores_questions(self, store, practice):
        assert practice.status == STATUS_READY
        assert [q.question for q in practice.questions] == QUESTIONS
        assert store.get_record("user_alice").credit_balance == 5

    def test_records_behavioral_usage(self, practice):
        assert get_monthly_count("user_alice", UsageType.BEHAVIORAL) == 1

    def test_generator_receives_job_context(self, store):
        seen = {}

        def spy(job_title, job_description, **kwargs):
            seen.update(kwargs, job_title=job_title)
            return question_generator()

        create_practice(
            store, "user_alice",
            job_title="  Designer ", job_description="Design things.",
            resume_text="10 years of design", generator=spy,
        )

        assert seen["job_title"] == "  Designer "
        assert seen["resume_text"] == "10 years of design"
        assert seen["count"] == 5

    def test_generation_failure_refunds(self, store):
        result = create_practice(
            store, "user_alice",
            job_title="Backend Engineer", job_description="Payments.",
            generator=failing_generator,
        )

        assert result.success is False
        assert "timeout" in result.error
        assert store.get_record("user_alice").credit_balance == 10
        assert get_monthly_count("user_alice", UsageType.BEHAVIORAL) == 0
        assert [p.status for p in list_practices("user_alice")] == [STATUS_FAILED]

    def test_insufficient_credits(self, store):
        store.deduct_user_tokens("user_alice", 8)

        with pytest.raises(InsufficientCreditsError):
            create_practice(
                store, "user_alice",
                job_title="Backend Engineer", job_description="Payments.",
                generator=question_generator,
            )

        assert list_practices("user_alice") == []
        assert store.get_record("user_alice").credit_balance == 2

    def test_requires_title_and_description(self, store):
        with pytest.raises(ValidationError):
            create_practice(store, "user_alice", job_title=" ", job_description="x", generator=question_generator)
        with pytest.raises(ValidationError):
            create_practice(store, "user_alice", job_title="x", job_description="", generator=question_generator)

    def test_other_users_cannot_read(self, practice):
        with pytest.raises(NotFoundError):
            get_practice(practice.id, "user_mallory")


class TestAnswerHistory:
    def test_iterations_append_with_increasing_seq(self, practice):
        first = submit_answer(practice.id, 0, "First draft of my answer.", "user_alice")
        second = submit_answer(practice.id, 0, "Second, better draft of my answer.", "user_alice")

        assert (first.iteration.seq, second.iteration.seq) == (1, 2)
        assert [i.seq for i in list_iterations(practice.id, 0, "user_alice")] == [1, 2]
        assert current_iteration(practice.id, 0, "user_alice").answer_text.startswith("Second")

    def test_weak_answer_is_stored_with_advisory_validation(self, practice):
        submitted = submit_answer(practice.id, 1, "I fixed a bug.", "user_alice")

        assert submitted.validation.is_valid is False
        assert len(list_iterations(practice.id, 1, "user_alice")) == 1

    def test_seq_is_per_question(self, practice):
        submit_answer(practice.id, 0, "Answer zero.", "user_alice")

        assert submit_answer(practice.id, 1, "Answer one.", "user_alice").iteration.seq == 1

    def test_empty_answer_rejected(self, practice):
        with pytest.raises(ValidationError):
            submit_answer(practice.id, 0, "   ", "user_alice")

    def test_unknown_question(self, practice):
        with pytest.raises(NotFoundError):
            submit_answer(practice.id, 9, "An answer.", "user_alice")


class TestFeedback:
    def test_request_feedback_charges_and_attaches(self, store, practice):
        submit_answer(practice.id, 0, "My answer.", "user_alice")

        result = request_feedback(store, practice.id, 0, "user_alice", generator=feedback_generator)

        assert result.success is True
        assert result.value.feedback.score == 55
        assert store.get_record("user_alice").credit_balance == 3

    def test_feedback_is_immutable(self, store, practice):
        submit_answer(practice.id, 0, "My answer.", "user_alice")
        request_feedback(store, practice.id, 0, "user_alice", generator=feedback_generator)

        with pytest.raises(ConflictError):
            request_feedback(store, practice.id, 0, "user_alice", generator=feedback_generator)
        with pytest.raises(ConflictError):
            attach_feedback(practice.id, 0, 1, LegacyFeedback(score=90))
        assert store.get_record("user_alice").credit_balance == 3

    def test_new_iteration_can_get_new_feedback(self, store, practice):
        submit_answer(practice.id, 0, "My answer.", "user_alice")
        request_feedback(store, practice.id, 0, "user_alice", generator=feedback_generator)
        submit_answer(practice.id, 0, "My improved answer.", "user_alice")

        result = request_feedback(store, practice.id, 0, "user_alice", generator=feedback_generator)

        assert result.value.seq == 2
        history = list_iterations(practice.id, 0, "user_alice")
        assert all(i.feedback is not None for i in history)

    def test_generation_failure_refunds(self, store, practice):
        submit_answer(practice.id, 0, "My answer.", "user_alice")

        result = request_feedback(store, practice.id, 0, "user_alice", generator=failing_generator)

        assert result.success is False
        assert store.get_record("user_alice").credit_balance == 5
        assert current_iteration(practice.id, 0, "user_alice").feedback is None

    def test_no_answer_to_review(self, store, practice):
        with pytest.raises(NotFoundError):
            request_feedback(store, practice.id, 0, "user_alice", generator=feedback_generator)

    def test_attach_to_missing_iteration(self, practice):
        with pytest.raises(NotFoundError):
            attach_feedback(practice.id, 0, 7, LegacyFeedback(score=50))


class TestProgress:
    def test_fresh_practice(self, practice):
        progress = get_practice_progress(practice.id, "user_alice")

        assert progress.total_questions == 5
        assert progress.answered_questions == 0
        assert progress.can_resume is False
        assert progress.is_complete is False
        assert progress.resume_index == 0

    def test_resume_at_first_unanswered(self, practice):
        submit_answer(practice.id, 0, "Answer.", "user_alice")
        submit_answer(practice.id, 1, "Answer.", "user_alice")

        progress = get_practice_progress(practice.id, "user_alice")
        assert progress.can_resume is True
        assert progress.resume_index == 2

    def test_resume_at_first_awaiting_feedback(self, practice):
        for index in range(5):
            submit_answer(practice.id, index, "Answer.", "user_alice")
            if index != 3:
                attach_feedback(practice.id, index, 1, LegacyFeedback(score=70))

        progress = get_practice_progress(practice.id, "user_alice")
        assert progress.is_complete is False
        assert progress.resume_index == 3

    def test_complete_when_all_answered_and_reviewed(self, practice):
        for index in range(5):
            submit_answer(practice.id, index, "Answer.", "user_alice")
            attach_feedback(practice.id, index, 1, LegacyFeedback(score=70))

        progress = get_practice_progress(practice.id, "user_alice")
        assert progress.is_complete is True
        assert progress.can_resume is False
        assert progress.reviewed_questions == 5

    def test_newer_unreviewed_iteration_reopens_question(self, practice):
        for index in range(5):
            submit_answer(practice.id, index, "Answer.", "user_alice")
            attach_feedback(practice.id, index, 1, LegacyFeedback(score=70))
        submit_answer(practice.id, 2, "A rewrite.", "user_alice")

        progress = get_practice_progress(practice.id, "user_alice")
        assert progress.is_complete is False
        assert progress.resume_index == 2
