"""Best-effort real-time delivery of notifications.

The durable ``Notification`` row is the system of record; pushes from here
are at-most-once per attempt and never retried. A recipient that was not
connected catches up from ``GET /api/v1/notifications``.
"""
from fastapi import Request, WebSocket
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
from typing import Dict, Optional, Set
import asyncio
import json
import logging
import os
import uuid

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL")
REDIS_CHANNEL = os.getenv("NOTIFICATIONS_CHANNEL", "gig-notifications")
RELAY_RETRY_SECONDS = float(os.getenv("RELAY_RETRY_SECONDS", "1"))

HIRED_EVENT = "hired"
ADMIN_ASSIGNED_EVENT = "adminAssigned"


def hired_event(message: str, gig_id: int, bid_id: int, notification_id: Optional[int] = None) -> dict:
    return {"id": notification_id, "message": message, "gigId": gig_id, "bidId": bid_id}


def admin_assigned_event(message: str, gig_id: int, notification_id: Optional[int] = None) -> dict:
    return {"id": notification_id, "message": message, "gigId": gig_id}


class NotificationDispatcher:
    """Tracks live WebSocket sessions per user and pushes events to them.

    Sessions are addressed by user id; a user may have any number of them
    open at once (several tabs or devices).
    """

    def __init__(self, relay: Optional["RedisRelay"] = None):
        self.active_connections: Dict[int, Set[WebSocket]] = {}
        self.relay = relay

    def connect(self, websocket: WebSocket, user_id: int):
        self.active_connections.setdefault(user_id, set()).add(websocket)

    def disconnect(self, websocket: WebSocket, user_id: int):
        sessions = self.active_connections.get(user_id)
        if not sessions:
            return
        sessions.discard(websocket)
        if not sessions:
            del self.active_connections[user_id]

    def session_count(self, user_id: int) -> int:
        return len(self.active_connections.get(user_id, ()))

    async def deliver_local(self, user_id: int, event: str, payload: dict) -> int:
        """Send to this process's sessions for ``user_id``; returns how many were reached."""
        delivered = 0
        for websocket in list(self.active_connections.get(user_id, ())):
            try:
                await websocket.send_json({"event": event, "data": payload})
                delivered += 1
            except Exception as exc:
                logger.warning("Dropping session of user %s after failed push: %s", user_id, exc)
                self.disconnect(websocket, user_id)
        return delivered

    async def publish(self, user_id: int, event: str, payload: dict) -> int:
        """Push an event to every session of ``user_id``. Never raises."""
        try:
            delivered = await self.deliver_local(user_id, event, payload)
        except Exception:
            logger.exception("Local delivery of %s to user %s failed", event, user_id)
            delivered = 0
        if self.relay is not None:
            try:
                await self.relay.publish(user_id, event, payload)
            except Exception as exc:
                logger.warning("Relay publish of %s to user %s failed: %s", event, user_id, exc)
        return delivered


class RedisRelay:
    """Fans events out to the other worker processes over Redis pub/sub.

    Each process delivers its own publishes locally, so envelopes carry the
    publishing process's ``origin`` and are skipped when they come back.
    """

    def __init__(
        self,
        redis_client,
        channel: str = REDIS_CHANNEL,
        retry_delay: float = RELAY_RETRY_SECONDS,
        max_retry_delay: float = 30.0,
    ):
        self.redis = redis_client
        self.channel = channel
        self.origin = uuid.uuid4().hex
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay

    async def publish(self, user_id: int, event: str, payload: dict):
        envelope = {"origin": self.origin, "userId": user_id, "event": event, "data": payload}
        await self.redis.publish(self.channel, json.dumps(envelope))

    async def handle_message(self, dispatcher: NotificationDispatcher, raw) -> int:
        try:
            envelope = json.loads(raw)
            user_id = int(envelope["userId"])
            event = envelope["event"]
            payload = envelope.get("data") or {}
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Ignoring malformed relay message: %s", exc)
            return 0
        if envelope.get("origin") == self.origin:
            return 0
        return await dispatcher.deliver_local(user_id, event, payload)

    async def listen(self, dispatcher: NotificationDispatcher):
        """Deliver envelopes from other processes until cancelled, reconnecting on failure."""
        delay = self.retry_delay
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info("Relaying notifications on redis channel %s", self.channel)
                delay = self.retry_delay
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self.handle_message(dispatcher, message.get("data"))
            except (RedisConnectionError, RedisTimeoutError, OSError):
                logger.exception("Redis relay lost its connection, retrying in %.1fs", delay)
            finally:
                await pubsub.aclose()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_retry_delay)


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher
