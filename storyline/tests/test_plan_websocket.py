"""
Plan status websocket: handshake, sync triggers, push on entitlement changes.
"""
import pytest
from starlette.websockets import WebSocketDisconnect


def receive_until(ws, message_type, predicate=lambda m: True, limit=10):
    """Read messages until one of the wanted type matches; pushes may interleave."""
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == message_type and predicate(message):
            return message
    raise AssertionError(f"no {message_type} message within {limit} reads")


def test_handshake_sequence(client, provider, auth_headers):
    provider.add_subscription("alice@example.com")

    with client.websocket_connect("/v1/ws/plan", headers=auth_headers) as ws:
        connected = ws.receive_json()
        status = ws.receive_json()
        sync = ws.receive_json()

    assert connected["type"] == "connected"
    assert connected["user_id"] == "user_alice"
    assert status["type"] == "plan_status"
    assert status["status"]["plan"] == "basic"
    assert sync["type"] == "sync_result"
    assert sync["reason"] == "app_initialization"
    assert sync["performed"] is True
    assert sync["subscribed"] is True


def test_status_pushed_after_sync_write(client, provider, auth_headers):
    provider.add_subscription("alice@example.com")

    with client.websocket_connect("/v1/ws/plan", headers=auth_headers) as ws:
        pushed = receive_until(ws, "plan_status", lambda m: m["status"]["plan"] == "premium")

    assert pushed["status"]["is_premium"] is True


def test_credit_change_is_pushed(client, auth_headers):
    with client.websocket_connect("/v1/ws/plan", headers=auth_headers) as ws:
        receive_until(ws, "sync_result")
        client.post("/api/tokens/deduct", json={"amount": 3}, headers=auth_headers)

        pushed = receive_until(ws, "plan_status", lambda m: m["status"]["credit_balance"] == 7)

    assert pushed["status"]["user_id"] == "user_alice"


def test_other_users_changes_are_not_pushed(client, auth_headers):
    with client.websocket_connect("/v1/ws/plan", headers=auth_headers) as ws:
        receive_until(ws, "sync_result")
        client.post("/api/tokens/deduct", json={"amount": 1}, headers={"X-User-Id": "user_bob"})
        ws.send_json({"type": "ping"})

        message = receive_until(ws, "pong")

    assert message["type"] == "pong"


def test_focus_inside_debounce_window(client, provider, auth_headers):
    with client.websocket_connect("/v1/ws/plan", headers=auth_headers) as ws:
        receive_until(ws, "sync_result")
        ws.send_json({"type": "focus"})

        result = receive_until(ws, "sync_result")

    assert result["reason"] == "window_focus"
    assert result["performed"] is False
    assert result["skipped_because"] == "debounced"
    assert provider.lookup_count() == 1


def test_manual_sync_failure_is_reported(client, provider, auth_headers):
    with client.websocket_connect("/v1/ws/plan", headers=auth_headers) as ws:
        receive_until(ws, "sync_result")
        client.app.state.monitor.debounce_seconds = 0
        provider.fail_lookups = True
        ws.send_json({"type": "sync"})

        error = receive_until(ws, "error")

    assert error["code"] == "subscription_sync_failed"


def test_bad_messages(client, auth_headers):
    with client.websocket_connect("/v1/ws/plan", headers=auth_headers) as ws:
        receive_until(ws, "sync_result")
        ws.send_text("not json")
        invalid = receive_until(ws, "error")
        ws.send_json({"type": "dance"})
        unknown = receive_until(ws, "error")

    assert invalid["code"] == "invalid_json"
    assert unknown["code"] == "unknown_message"


def test_unauthenticated_socket_is_closed(client):
    with client.websocket_connect("/v1/ws/plan") as ws:
        error = ws.receive_json()
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()

    assert error["code"] == "unauthorized"
    assert exc.value.code == 1008


def test_subscriber_released_on_disconnect(client, auth_headers):
    with client.websocket_connect("/v1/ws/plan", headers=auth_headers) as ws:
        receive_until(ws, "sync_result")
        assert client.app.state.bus.subscriber_count() == 1

    assert client.app.state.bus.subscriber_count() == 0
