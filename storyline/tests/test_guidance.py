"""
Question vault and guided answers: usage counting, credits, practice context.
"""
import pytest

from storyline.core.errors import InsufficientCreditsError, NotFoundError, ValidationError
from storyline.features.ai.service import AIResult
from storyline.features.answers.service import attach_feedback, create_practice, submit_answer
from storyline.features.guidance.service import create_question_vault, guided_response
from storyline.features.usage.service import get_monthly_count
from storyline.models.feedback import LegacyFeedback
from storyline.models.guidance import GuidedAction, GuidedDraft, GuidingQuestions, VaultQuestion
from storyline.models.usage import UsageType


QUESTIONS = [f"Tell me about a time you led project {i}." for i in range(1, 6)]
VAULT = [VaultQuestion(question="Describe a time you learned fast.", model_answer="Situation: ...")]


def vault_generator(*args, **kwargs):
    return AIResult(success=True, data=list(VAULT))


def failing_generator(*args, **kwargs):
    return AIResult(success=False, error="OpenAI API error: timeout")


@pytest.fixture
def practice(store):
    result = create_practice(
        store,
        "user_alice",
        job_title="Data Intern",
        job_description="Clean data and ship dashboards.",
        company_name="Acme",
        generator=lambda *a, **k: AIResult(success=True, data=list(QUESTIONS)),
    )
    assert result.success
    return result.value


class TestQuestionVault:
    def test_records_usage_on_success(self):
        result = create_question_vault("user_alice", job_title="Analyst", generator=vault_generator)

        assert result.success is True
        assert result.value.behavioral_questions == VAULT
        assert result.value.original_behavioral_questions == []
        assert get_monthly_count("user_alice", UsageType.QUESTION_VAULT) == 1

    def test_failure_records_nothing(self):
        result = create_question_vault("user_alice", job_title="Analyst", generator=failing_generator)

        assert result.success is False
        assert "timeout" in result.error
        assert get_monthly_count("user_alice", UsageType.QUESTION_VAULT) == 0

    def test_usage_is_not_enforced(self):
        for _ in range(4):
            assert create_question_vault("user_alice", job_title="Analyst", generator=vault_generator).success

        assert get_monthly_count("user_alice", UsageType.QUESTION_VAULT) == 4

    def test_title_required(self):
        with pytest.raises(ValidationError):
            create_question_vault("user_alice", job_title="  ", generator=vault_generator)

    def test_practice_supplies_context_and_originals(self, practice):
        seen = {}

        def spy(job_title, **kwargs):
            seen.update(kwargs, job_title=job_title)
            return vault_generator()

        result = create_question_vault("user_alice", job_id=practice.id, generator=spy)

        assert seen["job_title"] == "Data Intern"
        assert seen["company_name"] == "Acme"
        originals = result.value.original_behavioral_questions
        assert [q.question for q in originals] == QUESTIONS
        assert [q.original_index for q in originals] == [0, 1, 2, 3, 4]
        assert originals[0].type == "original-behavioral"
        assert originals[0].source_attribution.source == "behavioral-practice-session"
        assert originals[0].source_attribution.reliability == 5

    def test_serializes_camel_case(self, practice):
        result = create_question_vault("user_alice", job_id=practice.id, generator=vault_generator)

        body = result.value.model_dump(by_alias=True)

        assert "behavioralQuestions" in body
        assert body["originalBehavioralQuestions"][0]["originalIndex"] == 0
        assert body["behavioralQuestions"][0]["modelAnswer"] == "Situation: ..."

    def test_other_users_practice_is_not_found(self, practice):
        with pytest.raises(NotFoundError):
            create_question_vault("user_mallory", job_id=practice.id, generator=vault_generator)


class TestGuidedResponse:
    def test_generate_questions_costs_one_credit(self, store):
        guidance = GuidingQuestions(guiding_questions=["Q1?", "Q2?", "Q3?"], question_type="behavioral", structure="STAR")

        result = guided_response(
            store, "user_alice", GuidedAction.GENERATE_QUESTIONS,
            question_text="Tell me about a conflict.",
            generator=lambda *a, **k: AIResult(success=True, data=guidance),
        )

        assert result.success is True
        assert result.value == guidance
        assert store.get_record("user_alice").credit_balance == 9

    def test_failure_refunds(self, store):
        result = guided_response(
            store, "user_alice", GuidedAction.PROCESS_THOUGHTS,
            question_text="Tell me about a conflict.",
            user_input="I talked to my teammate.",
            generator=failing_generator,
        )

        assert result.success is False
        assert store.get_record("user_alice").credit_balance == 10

    def test_insufficient_credits(self, store):
        store.deduct_user_tokens("user_alice", 10)

        with pytest.raises(InsufficientCreditsError):
            guided_response(
                store, "user_alice", GuidedAction.GENERATE_QUESTIONS,
                question_text="Tell me about a conflict.",
                generator=failing_generator,
            )

    def test_thoughts_required_before_charging(self, store):
        with pytest.raises(ValidationError):
            guided_response(
                store, "user_alice", GuidedAction.PROCESS_THOUGHTS,
                question_text="Tell me about a conflict.", user_input="   ",
                generator=failing_generator,
            )

        assert store.get_record("user_alice").credit_balance == 10

    def test_practice_answer_and_feedback_are_context(self, store, practice):
        submit_answer(practice.id, 2, "I rebuilt the pipeline over a weekend.", "user_alice")
        attach_feedback(practice.id, 2, 1, LegacyFeedback(pros=["Ownership"], cons=["No metrics"], score=60))
        seen = {}

        def spy(action, question_text, **kwargs):
            seen.update(kwargs, action=action, question_text=question_text)
            return AIResult(success=True, data=GuidedDraft(generated_response="Better.", feedback="ok"))

        result = guided_response(
            store, "user_alice", GuidedAction.PROCESS_THOUGHTS,
            user_input="It cut load time in half.",
            job_id=practice.id, question_index=2,
            generator=spy,
        )

        assert result.success is True
        assert seen["action"] is GuidedAction.PROCESS_THOUGHTS
        assert seen["question_text"] == QUESTIONS[2]
        assert seen["user_input"] == "It cut load time in half."
        assert seen["previous_response"] == "I rebuilt the pipeline over a weekend."
        assert seen["feedback"].cons == ["No metrics"]

    def test_unknown_question_index(self, store, practice):
        with pytest.raises(NotFoundError):
            guided_response(
                store, "user_alice", GuidedAction.GENERATE_QUESTIONS,
                job_id=practice.id, question_index=9,
                generator=failing_generator,
            )
