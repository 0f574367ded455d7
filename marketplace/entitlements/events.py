"""
Publish/subscribe channel for connection record changes.

Every grant, review-flag flip and delete emits a ConnectionEvent keyed by
(user_id, provider_id). Consumers (the realtime websocket, tests) subscribe
for as long as they are visible and are always unsubscribed on exit:

    with bus.subscribe(user_id, provider_id, on_event):
        ...

When a Redis URL is configured, events are also published to
`connections:{user_id}:{provider_id}` so other processes can fan out.
Redis problems are logged and never fail the write that produced the event.
"""

import json
import logging
from contextlib import contextmanager
from threading import RLock
from typing import Callable, Dict, Iterator, List, Optional, Tuple

import redis

from .models import ConnectionEvent

logger = logging.getLogger(__name__)

EVENT_GRANTED = "granted"
EVENT_REVIEW_REQUESTED = "review_requested"
EVENT_DELETED = "deleted"

CHANNEL_PREFIX = "connections:"

EventCallback = Callable[[ConnectionEvent], None]


def channel_name(user_id: str, provider_id: str) -> str:
    return f"{CHANNEL_PREFIX}{user_id}:{provider_id}"


class ConnectionEventBus:
    """In-process subscriber registry with optional Redis fan-out."""

    def __init__(self, redis_url: Optional[str] = None, redis_client=None) -> None:
        self._lock = RLock()
        self._subscribers: Dict[Tuple[str, str], List[EventCallback]] = {}
        self._redis = redis_client
        if self._redis is None and redis_url:
            try:
                self._redis = redis.from_url(redis_url, decode_responses=True)
                self._redis.ping()
            except Exception as exc:
                logger.warning(
                    "Redis unavailable for connection events; in-process only",
                    extra={"error": str(exc)},
                )
                self._redis = None

    @contextmanager
    def subscribe(self, user_id: str, provider_id: str, callback: EventCallback) -> Iterator[None]:
        key = (user_id, provider_id)
        with self._lock:
            self._subscribers.setdefault(key, []).append(callback)
        try:
            yield
        finally:
            with self._lock:
                callbacks = self._subscribers.get(key, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(key, None)

    def subscriber_count(self, user_id: str, provider_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get((user_id, provider_id), []))

    def publish(self, event: ConnectionEvent) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(event.key, []))

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Connection event subscriber failed",
                    extra={
                        "kind": event.kind,
                        "user_id": event.user_id,
                        "provider_id": event.provider_id,
                    },
                )

        if self._redis is not None:
            try:
                self._redis.publish(
                    channel_name(event.user_id, event.provider_id),
                    json.dumps(event.to_dict()),
                )
            except Exception as exc:
                logger.warning(
                    "Failed to publish connection event to Redis",
                    extra={"kind": event.kind, "error": str(exc)},
                )
