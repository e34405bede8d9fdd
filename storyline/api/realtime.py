"""
storyline/api/realtime.py
WebSocket endpoint that keeps a client's plan status fresh.

/v1/ws/plan
- on connect: sends the current status and runs an app_initialization sync
- while connected: runs the periodic subscription check and pushes a fresh
  status whenever the token event bus reports a change for the user
- client messages: focus, visible, portal_return, sync, ping
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4
import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from storyline.api.deps import get_bus, get_monitor, get_store
from storyline.api.plan import plan_status_payload
from storyline.core.auth import CurrentUser, resolve_user
from storyline.core.errors import SubscriptionSyncError
from storyline.core.logging import log_event
from storyline.core.metrics import plan_ws_connections
from storyline.features.entitlements.store import EntitlementStore
from storyline.features.users.service import get_or_create_user
from storyline.models.entitlement import PlanChange
from storyline.models.subscription import SyncReason, TriggerResult

logger = logging.getLogger(__name__)

router = APIRouter()

MESSAGE_REASONS = {
    "focus": SyncReason.WINDOW_FOCUS,
    "visible": SyncReason.VISIBILITY_CHANGE,
    "portal_return": SyncReason.STRIPE_PORTAL_RETURN,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _PlanSocket:
    """Serializes sends from the receive loop and the change pusher."""

    def __init__(self, websocket: WebSocket, store: EntitlementStore, user: CurrentUser, request_id: str):
        self.websocket = websocket
        self.store = store
        self.user = user
        self.request_id = request_id
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict) -> None:
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def send_status(self) -> None:
        record = await asyncio.to_thread(self.store.get_record, self.user.user_id)
        await self.send({
            "type": "plan_status",
            "status": plan_status_payload(record).model_dump(),
            "ts": _now(),
        })

    async def send_trigger(self, result: TriggerResult) -> None:
        await self.send({
            "type": "sync_result",
            "reason": result.reason.value,
            "performed": result.performed,
            "skipped_because": result.skipped_because,
            "subscribed": result.outcome.subscribed if result.outcome else None,
            "error": result.error,
            "ts": _now(),
        })

    async def push_changes(self, queue: "asyncio.Queue[str]") -> None:
        while True:
            await queue.get()
            # Coalesce bursts into one refetch
            while not queue.empty():
                queue.get_nowait()
            await self.send_status()


@router.websocket("/v1/ws/plan")
async def plan_socket(websocket: WebSocket):
    """
    Auth Methods:
    1. Authorization: Bearer <Supabase JWT>, or ?token=<JWT> for browsers
    2. X-User-Id / X-User-Email headers (non-production)

    Events Emitted:
    - connected
    - plan_status
    - sync_result
    - pong
    - error
    """
    await websocket.accept()
    request_id = websocket.headers.get("X-Request-Id") or str(uuid4())
    connection_id = str(uuid4())

    user = _authenticate_websocket(websocket)
    if user is None:
        log_event("info", "ws.unauthorized", request_id=request_id, event_type="ws.unauthorized",
                  extra={"connection_id": connection_id})
        await _reject_and_close(websocket, request_id, "unauthorized",
                                "Unauthorized: missing or invalid authentication")
        return

    await asyncio.to_thread(get_or_create_user, user.user_id, user.email)
    store = get_store(websocket)
    bus = get_bus(websocket)
    monitor = get_monitor(websocket)
    socket = _PlanSocket(websocket, store, user, request_id)

    loop = asyncio.get_running_loop()
    changes: "asyncio.Queue[str]" = asyncio.Queue()

    def on_change(change: PlanChange) -> None:
        # Called from whichever thread committed the write
        if change.user_id == user.user_id:
            loop.call_soon_threadsafe(changes.put_nowait, change.source)

    unsubscribe = bus.subscribe(on_change)
    plan_ws_connections.inc()
    log_event("info", "ws.connected", request_id=request_id, user_id=user.user_id,
              event_type="ws.connected", extra={"connection_id": connection_id})

    pusher: Optional[asyncio.Task] = None
    try:
        async with monitor.watch(user.user_id, user.email):
            await socket.send({
                "type": "connected",
                "user_id": user.user_id,
                "ts": _now(),
                "request_id": request_id,
                "connection_id": connection_id,
            })
            await socket.send_status()
            await socket.send_trigger(
                await monitor.trigger(user.user_id, user.email, SyncReason.APP_INITIALIZATION)
            )
            pusher = asyncio.create_task(socket.push_changes(changes))
            await _receive_loop(socket, monitor)
    except WebSocketDisconnect:
        log_event("info", "ws.disconnected", request_id=request_id, user_id=user.user_id,
                  event_type="ws.disconnected", extra={"connection_id": connection_id})
    finally:
        if pusher is not None:
            pusher.cancel()
            try:
                await pusher
            except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                pass
        unsubscribe()
        plan_ws_connections.dec()


async def _receive_loop(socket: _PlanSocket, monitor) -> None:
    user = socket.user
    while True:
        raw_message = await socket.websocket.receive_text()
        try:
            data = json.loads(raw_message)
        except json.JSONDecodeError:
            await socket.send({"type": "error", "code": "invalid_json", "message": "Messages must be JSON"})
            continue

        kind = data.get("type") if isinstance(data, dict) else None
        if kind == "ping":
            await socket.send({"type": "pong", "ts": _now(), "request_id": socket.request_id})
        elif kind in MESSAGE_REASONS:
            await socket.send_trigger(await monitor.trigger(user.user_id, user.email, MESSAGE_REASONS[kind]))
        elif kind == "sync":
            try:
                result = await monitor.manual_sync(user.user_id, user.email)
            except SubscriptionSyncError as e:
                await socket.send({"type": "error", "code": e.code, "message": e.message})
                continue
            await socket.send_trigger(result)
            await socket.send_status()
        else:
            await socket.send({"type": "error", "code": "unknown_message", "message": f"Unknown message type: {kind}"})


def _authenticate_websocket(websocket: WebSocket) -> Optional[CurrentUser]:
    """
    Tries in order:
    1. Supabase JWT from the Authorization header or the token query param
    2. X-User-Id from headers (non-production)
    """
    authorization = websocket.headers.get("Authorization")
    token = websocket.query_params.get("token")
    if not authorization and token:
        authorization = f"Bearer {token}"
    try:
        return resolve_user(
            authorization,
            websocket.headers.get("X-User-Id"),
            websocket.headers.get("X-User-Email"),
        )
    except HTTPException as e:
        logger.debug(f"[WS] JWT validation failed: {e.detail}")
        return None


async def _reject_and_close(websocket: WebSocket, request_id: str, code: str, message: str):
    try:
        await websocket.send_json({
            "type": "error",
            "code": code,
            "message": message,
            "request_id": request_id,
        })
        await websocket.close(code=1008, reason=message)
    except (WebSocketDisconnect, RuntimeError):
        # Client already went away
        pass
