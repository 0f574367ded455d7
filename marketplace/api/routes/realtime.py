"""
WebSocket endpoint that keeps a provider page's access state live.

/ws/connections/{provider_id}?token=<access token>

The socket pushes an `access_state` message:
- on connect
- whenever the caller's record for this provider changes (grant, review
  flag, admin delete), in any request of this process
- when a timed grant reaches its expiry, so the page flips to EXPIRED
  (and the review prompt is created) without a reload

Clients may send any text frame (e.g. a ping) to force a re-read.
Read-only: all writes go through the REST routes.
"""

import asyncio
import logging
from contextlib import nullcontext
from typing import Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from marketplace.api.dependencies.services import build_entitlement_service
from marketplace.api.routes.connections import build_access_response
from marketplace.entitlements.errors import NotAuthenticatedError
from marketplace.entitlements.models import AccessState, AccessStatus
from marketplace.models.provider import Provider
from marketplace.platform.auth import CurrentUser, decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter()

WS_CLOSE_UNAUTHORIZED = 4401
WS_CLOSE_NOT_FOUND = 4404


def _authenticate(websocket: WebSocket) -> Optional[CurrentUser]:
    settings = getattr(websocket.app.state, "settings", None)
    if settings is None or not settings.jwt_secret:
        return None
    token = websocket.query_params.get("token")
    if not token:
        scheme, _, value = websocket.headers.get("authorization", "").partition(" ")
        token = value.strip() if scheme.lower() == "bearer" else None
    if not token:
        return None
    try:
        return decode_access_token(token, settings.jwt_secret, settings.jwt_algorithm)
    except NotAuthenticatedError:
        return None


def _observe(app, user_id: str, provider_id: str) -> Tuple[Optional[AccessState], Optional[Provider]]:
    """Evaluate access in a fresh session (runs in the threadpool)."""
    session = app.state.session_factory()
    try:
        provider = session.get(Provider, provider_id)
        if provider is None:
            return None, None
        entitlements = build_entitlement_service(app, session)
        return entitlements.observe(user_id, provider_id), provider
    finally:
        session.close()


async def _reject_and_close(websocket: WebSocket, code: int, reason: str, message: str) -> None:
    await websocket.send_json({"type": "error", "code": reason, "message": message})
    await websocket.close(code=code)


async def _wait_for_change(websocket: WebSocket, events: asyncio.Queue, timeout: Optional[float]) -> None:
    """
    Return when an event arrives, the client sends a frame, or timeout passes.

    Raises:
        WebSocketDisconnect: the client went away
    """
    event_task = asyncio.ensure_future(events.get())
    receive_task = asyncio.ensure_future(websocket.receive_text())
    try:
        done, _ = await asyncio.wait(
            {event_task, receive_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if receive_task in done:
            receive_task.result()
    finally:
        for task in (event_task, receive_task):
            if not task.done():
                task.cancel()


@router.websocket("/ws/connections/{provider_id}")
async def connection_state_socket(websocket: WebSocket, provider_id: str):
    await websocket.accept()

    user = _authenticate(websocket)
    if user is None:
        await _reject_and_close(
            websocket,
            WS_CLOSE_UNAUTHORIZED,
            "unauthorized",
            "Sign in to see your connection status",
        )
        return

    app = websocket.app
    loop = asyncio.get_running_loop()
    events: asyncio.Queue = asyncio.Queue()

    def on_event(event) -> None:
        # Writes may publish from another thread
        loop.call_soon_threadsafe(events.put_nowait, event)

    bus = getattr(app.state, "event_bus", None)
    subscription = bus.subscribe(user.user_id, provider_id, on_event) if bus else nullcontext()

    with subscription:
        try:
            while True:
                state, provider = await run_in_threadpool(_observe, app, user.user_id, provider_id)
                if state is None:
                    await _reject_and_close(
                        websocket,
                        WS_CLOSE_NOT_FOUND,
                        "not_found",
                        f"Provider not found: {provider_id}",
                    )
                    return

                access = build_access_response(state, provider_id, provider)
                await websocket.send_json({"type": "access_state", "access": access.model_dump(mode="json")})

                timeout = None
                if state.status == AccessStatus.ACTIVE_TIMED:
                    timeout = state.remaining.total_seconds()
                await _wait_for_change(websocket, events, timeout)
        except WebSocketDisconnect:
            logger.debug(
                "Connection state socket closed",
                extra={"user_id": user.user_id, "provider_id": provider_id},
            )
