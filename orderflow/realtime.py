"""Real-time push channel: a registry of one live WebSocket per user.

Frames are JSON objects of the form {"event": <name>, "data": <payload>}.
"""
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import WebSocket

from orderflow.auth import TokenUser, decode_access_token
from orderflow.log import get_logger

logger = get_logger("realtime")

CONNECTED_EVENT = "connected"
ORDER_UPDATE_EVENT = "orderUpdate"


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionRegistry:
    """Maps user id to that user's active channel.

    A newer handshake for the same user replaces the older channel. Removal
    only happens when the caller still owns the registered channel, so a late
    teardown from a superseded connection cannot evict its replacement.
    """

    def __init__(self):
        self._channels: Dict[str, WebSocket] = {}
        self._lock = threading.Lock()

    def register(self, user_id: str, channel: WebSocket) -> Optional[WebSocket]:
        with self._lock:
            previous = self._channels.get(user_id)
            self._channels[user_id] = channel
        if previous is not None and previous is not channel:
            logger.info("channel_replaced", user_id=user_id)
        return previous

    def unregister(self, user_id: str, channel: WebSocket) -> bool:
        with self._lock:
            if self._channels.get(user_id) is channel:
                del self._channels[user_id]
                return True
        return False

    def get(self, user_id: str) -> Optional[WebSocket]:
        with self._lock:
            return self._channels.get(user_id)

    def count_connected(self) -> int:
        with self._lock:
            return len(self._channels)

    def is_connected(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._channels

    async def notify_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """Push one event to a user. Never raises; returns whether it was sent."""
        channel = self.get(user_id)
        if channel is None:
            logger.debug("notify_skipped_offline", user_id=user_id, event_name=event)
            return False

        try:
            await channel.send_json({"event": event, "data": payload})
        except Exception as e:
            logger.error("notify_failed", user_id=user_id, event_name=event, error=str(e))
            self.unregister(user_id, channel)
            return False

        logger.debug("notify_sent", user_id=user_id, event_name=event)
        return True

    async def notify_all(self, event: str, payload: Dict[str, Any]) -> int:
        with self._lock:
            targets = list(self._channels.items())

        sent = 0
        for user_id, channel in targets:
            try:
                await channel.send_json({"event": event, "data": payload})
                sent += 1
            except Exception as e:
                logger.error("broadcast_failed", user_id=user_id, event_name=event, error=str(e))
                self.unregister(user_id, channel)
        logger.debug("broadcast_sent", event_name=event, recipients=sent)
        return sent


registry = ConnectionRegistry()


def get_registry() -> ConnectionRegistry:
    return registry


def authenticate_channel(token: str) -> TokenUser:
    """Handshake check; same rules and failures as the HTTP bearer dependency."""
    return decode_access_token(token)


def channel_token(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        return token
    authorization = websocket.headers.get("authorization", "")
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None
