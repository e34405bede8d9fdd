"""
HTTP surface: plan, credits, usage, practices, billing, admin, health.
"""
import pytest

from storyline.features.ai import service as ai_service
from storyline.features.ai.service import AIResult
from storyline.features.usage.service import get_monthly_count
from storyline.models.feedback import LegacyFeedback
from storyline.models.guidance import GuidingQuestions, VaultQuestion
from storyline.models.usage import UsageType


QUESTIONS = [f"Tell me about a time you solved problem {i}." for i in range(1, 6)]


def assert_error(resp, status, code):
    assert resp.status_code == status
    body = resp.json()
    assert body["error"]["code"] == code
    assert body["error"]["request_id"] == resp.headers["x-request-id"]


class TestErrorContract:
    def test_missing_auth_is_401(self, client):
        assert_error(client.get("/api/plan/status"), 401, "unauthorized")

    def test_insufficient_credits_is_402(self, client, auth_headers):
        resp = client.post("/api/tokens/deduct", json={"amount": 50}, headers=auth_headers)

        assert_error(resp, 402, "insufficient_credits")

    def test_request_id_is_echoed(self, client, auth_headers):
        resp = client.get("/api/plan/status", headers={**auth_headers, "x-request-id": "rid-123"})

        assert resp.headers["x-request-id"] == "rid-123"


class TestPlan:
    def test_status_for_new_user(self, client, auth_headers):
        body = client.get("/api/plan/status", headers=auth_headers).json()

        assert body["user_id"] == "user_alice"
        assert body["plan"] == "basic"
        assert body["custom_premium"] is False
        assert body["credit_balance"] == 10

    def test_debug_toggle(self, client, auth_headers):
        body = client.post("/api/plan/toggle", headers=auth_headers).json()

        assert body["plan"] == "premium"
        assert body["plan_indicator"] == 1


class TestTokens:
    def test_deduct(self, client, auth_headers):
        resp = client.post("/api/tokens/deduct", json={"amount": 3}, headers=auth_headers)

        assert resp.json() == {"user_id": "user_alice", "credit_balance": 7}

    def test_refunds_are_not_accepted(self, client, auth_headers):
        resp = client.post("/api/tokens/deduct", json={"amount": -5}, headers=auth_headers)

        assert resp.status_code == 422

    def test_add_requires_admin(self, client, auth_headers):
        resp = client.post("/api/tokens/add", json={"user_id": "user_alice", "amount": 5}, headers=auth_headers)

        assert_error(resp, 403, "forbidden")

    def test_admin_add(self, client, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "admin-secret")

        resp = client.post(
            "/api/tokens/add",
            json={"user_id": "user_bob", "amount": 5},
            headers={"X-Admin-Key": "admin-secret"},
        )

        assert resp.json()["credit_balance"] == 15


class TestAdmin:
    def test_custom_premium_toggle(self, client, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "admin-secret")

        resp = client.post(
            "/api/admin/users/user_bob/custom-premium/toggle",
            headers={"X-Admin-Key": "admin-secret"},
        )

        body = resp.json()
        assert body["custom_premium"] is True
        assert body["plan"] == "premium"
        assert body["plan_indicator"] == 0

    def test_wrong_key(self, client, monkeypatch):
        monkeypatch.setenv("ADMIN_API_KEY", "admin-secret")

        resp = client.post("/api/admin/users/user_bob/custom-premium/toggle", headers={"X-Admin-Key": "nope"})

        assert resp.status_code == 403


class TestSubscriptionSync:
    def test_manual_sync_grants_premium(self, client, provider, auth_headers):
        provider.add_subscription("alice@example.com")

        body = client.post("/api/subscription/sync", headers=auth_headers).json()

        assert body["performed"] is True
        assert body["subscribed"] is True
        assert body["status"]["plan"] == "premium"

    def test_repeat_sync_is_debounced(self, client, provider, auth_headers):
        client.post("/api/subscription/sync", headers=auth_headers)

        body = client.post("/api/subscription/sync", json={"reason": "window_focus"}, headers=auth_headers).json()

        assert body["performed"] is False
        assert body["skipped_because"] == "debounced"
        assert provider.lookup_count() == 1

    def test_manual_failure_is_502(self, client, provider, auth_headers):
        provider.fail_lookups = True

        resp = client.post("/api/subscription/sync", headers=auth_headers)

        assert_error(resp, 502, "subscription_sync_failed")

    def test_background_failure_is_reported(self, client, provider, auth_headers):
        provider.fail_lookups = True

        resp = client.post("/api/subscription/sync", json={"reason": "app_initialization"}, headers=auth_headers)

        assert resp.status_code == 200
        assert "unreachable" in resp.json()["error"]


class TestBilling:
    def test_checkout(self, client, provider, auth_headers):
        resp = client.post("/api/billing/checkout", headers={**auth_headers, "origin": "https://app.example.com"})

        assert resp.json() == {"url": "https://checkout.stripe.test/session_123"}
        _, kwargs = provider.calls[-1]
        assert kwargs["cancel_url"] == "https://app.example.com/settings?checkout=cancelled"

    def test_portal_without_customer_is_404(self, client, auth_headers):
        assert_error(client.post("/api/billing/portal", headers=auth_headers), 404, "not_found")

    def test_billing_disabled_is_503(self, client, auth_headers):
        client.app.state.provider_factory = lambda: None

        assert_error(client.post("/api/billing/checkout", headers=auth_headers), 503, "billing_disabled")

    def test_webhook_grants_premium(self, client, provider, auth_headers):
        from storyline.features.billing.provider import BillingWebhookResult

        client.get("/api/plan/status", headers=auth_headers)
        provider.add_subscription("alice@example.com")
        provider.webhook_result = BillingWebhookResult(
            event_id="evt_42",
            event_type="checkout.session.completed",
            customer_id="cus_test",
            customer_email="alice@example.com",
            subscription_id="sub_test",
            status="active",
            metadata={"user_id": "user_alice"},
        )

        first = client.post("/api/billing/webhook", content=b"{}", headers={"stripe-signature": "valid"})
        second = client.post("/api/billing/webhook", content=b"{}", headers={"stripe-signature": "valid"})

        assert first.json() == {"received": True, "event_id": "evt_42", "duplicate": False}
        assert second.json()["duplicate"] is True
        assert client.get("/api/plan/status", headers=auth_headers).json()["plan"] == "premium"
        status = client.get("/api/billing/subscription", headers=auth_headers).json()
        assert status["status"] == "active"

    def test_webhook_bad_signature_is_400(self, client):
        resp = client.post("/api/billing/webhook", content=b"{}", headers={"stripe-signature": "forged"})

        assert_error(resp, 400, "invalid_webhook")


class TestUsage:
    def test_record_and_check(self, client, auth_headers):
        for _ in range(5):
            resp = client.post("/api/usage/behavioral/record", headers=auth_headers)

        body = resp.json()
        assert body["count"] == 5
        assert body["blocked"] is True
        assert body["message"]

    def test_summary(self, client, auth_headers):
        client.post("/api/usage/question_vault/record", json={"metadata": {"vault": "faang"}}, headers=auth_headers)

        body = client.get("/api/usage/summary", headers=auth_headers).json()

        assert body["question_vault"]["count"] == 1
        assert body["behavioral"]["count"] == 0

    def test_unknown_usage_type(self, client, auth_headers):
        assert client.get("/api/usage/interviews", headers=auth_headers).status_code == 422


class TestAnswerValidation:
    def test_extreme_answer_requires_confirmation(self, client):
        body = client.post("/api/answers/validate", json={"text": "I fixed a bug."}).json()

        assert body["word_count"] == 4
        assert body["requires_confirmation"] is True
        assert body["message"]["level"] == "error"

    def test_override(self, client):
        body = client.post(
            "/api/answers/validate",
            json={"text": "I fixed a bug.", "question_index": 2, "allow_override": True},
        ).json()

        assert body["requires_confirmation"] is False
        assert body["is_valid"] is False


class TestPractices:
    @pytest.fixture(autouse=True)
    def fake_ai(self, monkeypatch):
        monkeypatch.setattr(ai_service, "generate_questions", lambda *a, **k: AIResult(success=True, data=QUESTIONS))
        monkeypatch.setattr(
            ai_service,
            "generate_answer_feedback",
            lambda *a, **k: AIResult(success=True, data=LegacyFeedback(pros=["Clear"], score=64)),
        )

    def _create(self, client, headers):
        return client.post(
            "/api/practices",
            json={"job_title": "Backend Engineer", "job_description": "Payments at scale."},
            headers=headers,
        )

    def test_full_flow(self, client, auth_headers):
        created = self._create(client, auth_headers)
        assert created.status_code == 201
        job_id = created.json()["practice"]["id"]

        answer = client.post(
            f"/api/practices/{job_id}/questions/0/answers", json={"text": "I fixed a bug."}, headers=auth_headers,
        )
        assert answer.status_code == 201
        assert answer.json()["iteration"]["seq"] == 1
        assert answer.json()["validation"]["is_valid"] is False

        feedback = client.post(f"/api/practices/{job_id}/questions/0/answers/1/feedback", headers=auth_headers)
        assert feedback.json()["feedback"]["score"] == 64

        again = client.post(f"/api/practices/{job_id}/questions/0/answers/1/feedback", headers=auth_headers)
        assert_error(again, 409, "conflict")

        detail = client.get(f"/api/practices/{job_id}", headers=auth_headers).json()
        assert detail["progress"]["answered_questions"] == 1
        assert detail["progress"]["resume_index"] == 1
        assert client.get("/api/plan/status", headers=auth_headers).json()["credit_balance"] == 3

    def test_generation_failure_is_502_and_refunded(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(ai_service, "generate_questions", lambda *a, **k: AIResult(success=False, error="down"))

        assert_error(self._create(client, auth_headers), 502, "upstream_error")
        assert client.get("/api/plan/status", headers=auth_headers).json()["credit_balance"] == 10

    def test_other_users_practice_is_404(self, client, auth_headers):
        job_id = self._create(client, auth_headers).json()["practice"]["id"]

        resp = client.get(f"/api/practices/{job_id}", headers={"X-User-Id": "user_mallory"})

        assert_error(resp, 404, "not_found")

    def test_list_answers(self, client, auth_headers):
        job_id = self._create(client, auth_headers).json()["practice"]["id"]
        for text in ("First.", "Second."):
            client.post(f"/api/practices/{job_id}/questions/3/answers", json={"text": text}, headers=auth_headers)

        answers = client.get(f"/api/practices/{job_id}/questions/3/answers", headers=auth_headers).json()

        assert [a["answer_text"] for a in answers] == ["First.", "Second."]


class TestAIEndpoints:
    def test_tts(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(
            ai_service, "text_to_speech",
            lambda text, voice=None: AIResult(success=True, data={"audio_content": "AAA=", "mime_type": "audio/mp3"}),
        )

        resp = client.post("/api/ai/tts", json={"text": "Hello"}, headers=auth_headers)

        assert resp.json()["audio_content"] == "AAA="

    def test_transcribe_rejects_bad_base64(self, client, auth_headers):
        resp = client.post("/api/ai/transcribe", json={"audio_base64": "***"}, headers=auth_headers)

        assert_error(resp, 400, "validation_error")

    def test_transcribe(self, client, auth_headers, monkeypatch):
        seen = {}

        def fake_transcribe(audio, filename):
            seen["audio"] = audio
            return AIResult(success=True, data="Hello there")

        monkeypatch.setattr(ai_service, "transcribe_audio", fake_transcribe)

        resp = client.post("/api/ai/transcribe", json={"audio_base64": "dm9pY2U="}, headers=auth_headers)

        assert resp.json() == {"text": "Hello there"}
        assert seen["audio"] == b"voice"

    def test_scrape_failure_is_502(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(ai_service, "scrape_job_page", lambda url: AIResult(success=False, error="blocked"))

        resp = client.post("/api/ai/scrape", json={"url": "https://jobs.test/1"}, headers=auth_headers)

        assert_error(resp, 502, "upstream_error")


class TestGuidanceEndpoints:
    def test_question_vault_is_camel_case_and_counted(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(
            ai_service, "generate_question_vault",
            lambda *a, **k: AIResult(success=True, data=[VaultQuestion(question="Describe a setback.", follow_up=["Then?"])]),
        )

        resp = client.post("/api/question-vault", json={"job_title": "Analyst"}, headers=auth_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["behavioralQuestions"][0]["followUp"] == ["Then?"]
        assert body["originalBehavioralQuestions"] == []
        assert get_monthly_count("user_alice", UsageType.QUESTION_VAULT) == 1

    def test_question_vault_failure_is_502(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(ai_service, "generate_question_vault", lambda *a, **k: AIResult(success=False, error="down"))

        resp = client.post("/api/question-vault", json={"job_title": "Analyst"}, headers=auth_headers)

        assert_error(resp, 502, "upstream_error")
        assert get_monthly_count("user_alice", UsageType.QUESTION_VAULT) == 0

    def test_guided_questions_cost_one_credit(self, client, auth_headers, monkeypatch):
        guidance = GuidingQuestions(guiding_questions=["Why?", "How?", "When?"], question_type="behavioral", structure="STAR")
        monkeypatch.setattr(ai_service, "generate_guiding_questions", lambda *a, **k: AIResult(success=True, data=guidance))

        resp = client.post(
            "/api/guided-response",
            json={"action": "generate_questions", "question_text": "Tell me about a conflict."},
            headers=auth_headers,
        )

        assert resp.json()["guidingQuestions"] == ["Why?", "How?", "When?"]
        assert client.get("/api/plan/status", headers=auth_headers).json()["credit_balance"] == 9

    def test_guided_draft_failure_is_refunded(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(ai_service, "refine_guided_response", lambda *a, **k: AIResult(success=False, error="down"))

        resp = client.post(
            "/api/guided-response",
            json={"action": "process_thoughts", "question_text": "Tell me about a conflict.", "user_input": "We talked."},
            headers=auth_headers,
        )

        assert_error(resp, 502, "upstream_error")
        assert client.get("/api/plan/status", headers=auth_headers).json()["credit_balance"] == 10

    def test_guided_response_requires_question(self, client, auth_headers):
        resp = client.post("/api/guided-response", json={"action": "generate_questions"}, headers=auth_headers)

        assert_error(resp, 400, "validation_error")


class TestOps:
    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}

    def test_readyz(self, client):
        assert client.get("/readyz").status_code == 200

    def test_readyz_reports_missing_tables(self, client):
        from storyline.core.database import get_engine, metadata

        metadata.tables["usage_events"].drop(get_engine())

        resp = client.get("/readyz")

        assert resp.status_code == 503
        assert resp.json()["detail"] == "missing tables: usage_events"

    def test_readyz_without_database(self, client, monkeypatch):
        from storyline.api import health

        monkeypatch.setattr(health, "check_connection", lambda: False)

        resp = client.get("/readyz")

        assert resp.status_code == 503
        assert resp.json()["detail"] == "database unreachable"

    def test_metrics(self, client, auth_headers):
        client.get("/api/plan/status", headers=auth_headers)

        text = client.get("/metrics").text

        assert "http_requests_total" in text
        assert "token_bus_subscribers 0.0" in text
