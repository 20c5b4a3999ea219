"""
WebSocket connection manager and notifier for the manual input backend.

Save outcomes are pushed to the browser over WebSocket instead of blocking
alerts. Clients subscribe to ``perf:{perf_id}`` to follow one performance
test, or stay on ``system`` for global notices.

Services depend on the :class:`Notifier` interface, not on this module's
global manager, so tests can pass a recording notifier.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from api.shared.logger import get_logger

logger = get_logger(__name__)


class MessageType(str, Enum):
    """Types of WebSocket messages."""

    # Manual input messages
    MANUAL_INPUT_SAVED = "manual_input_saved"
    MANUAL_INPUT_SAVE_FAILED = "manual_input_save_failed"
    NOTIFICATION = "notification"

    # System messages
    PING = "ping"
    PONG = "pong"
    ERROR = "error"
    CONNECTED = "connected"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"


@dataclass
class WebSocketMessage:
    """Represents a WebSocket message."""

    type: MessageType
    channel: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now().isoformat()

    def to_json(self) -> str:
        """Convert message to JSON string."""
        return json.dumps({
            "type": self.type.value,
            "channel": self.channel,
            "data": self.data,
            "timestamp": self.timestamp,
        })

    @classmethod
    def from_json(cls, json_str: str) -> "WebSocketMessage":
        """Create message from JSON string."""
        data = json.loads(json_str)
        return cls(
            type=MessageType(data.get("type", "error")),
            channel=data.get("channel", ""),
            data=data.get("data", {}),
            timestamp=data.get("timestamp"),
        )


def perf_channel(perf_id: int) -> str:
    """Channel carrying the notifications of one performance test."""
    return f"perf:{perf_id}"


class WebSocketManager:
    """
    Manages WebSocket connections for real-time notifications.

    Supports channel-based subscriptions for targeted message delivery.
    """

    def __init__(self):
        """Initialize the WebSocket manager."""
        self._connections: Set[WebSocket] = set()

        # Channel subscriptions: channel -> set of WebSockets
        self._channels: Dict[str, Set[WebSocket]] = {}

        # Connection metadata: WebSocket -> subscription info
        self._connection_info: Dict[WebSocket, Dict[str, Any]] = {}

        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        """
        Accept a new WebSocket connection.

        Args:
            websocket: The WebSocket connection
            client_id: Optional client identifier
        """
        await websocket.accept()

        async with self._lock:
            self._connections.add(websocket)
            self._connection_info[websocket] = {
                "client_id": client_id,
                "connected_at": datetime.now().isoformat(),
                "subscriptions": set(),
            }

        await self.send_to_connection(
            websocket,
            WebSocketMessage(
                type=MessageType.CONNECTED,
                channel="system",
                data={
                    "client_id": client_id,
                    "message": "Connected to manual input notifications",
                },
            ),
        )

    async def disconnect(self, websocket: WebSocket) -> None:
        """Forget a connection and all of its subscriptions."""
        async with self._lock:
            subscriptions = self._connection_info.get(websocket, {}).get("subscriptions", set())
            for channel in subscriptions:
                if channel in self._channels:
                    self._channels[channel].discard(websocket)
                    if not self._channels[channel]:
                        del self._channels[channel]

            self._connections.discard(websocket)
            self._connection_info.pop(websocket, None)

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        """Subscribe a connection to a channel."""
        async with self._lock:
            self._channels.setdefault(channel, set()).add(websocket)
            if websocket in self._connection_info:
                self._connection_info[websocket]["subscriptions"].add(channel)

        await self.send_to_connection(
            websocket,
            WebSocketMessage(
                type=MessageType.SUBSCRIBED,
                channel=channel,
                data={"channel": channel},
            ),
        )

    async def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        """Unsubscribe a connection from a channel."""
        async with self._lock:
            if channel in self._channels:
                self._channels[channel].discard(websocket)
                if not self._channels[channel]:
                    del self._channels[channel]

            if websocket in self._connection_info:
                self._connection_info[websocket]["subscriptions"].discard(channel)

        await self.send_to_connection(
            websocket,
            WebSocketMessage(
                type=MessageType.UNSUBSCRIBED,
                channel=channel,
                data={"channel": channel},
            ),
        )

    async def send_to_connection(
        self,
        websocket: WebSocket,
        message: WebSocketMessage,
    ) -> bool:
        """
        Send a message to a specific connection.

        Returns:
            True if sent successfully, False otherwise
        """
        try:
            await websocket.send_text(message.to_json())
            return True
        except Exception as e:
            logger.warning("Error sending WebSocket message: %s", e)
            await self.disconnect(websocket)
            return False

    async def _send_all(self, targets: List[WebSocket], message: WebSocketMessage) -> int:
        sent_count = 0
        disconnected = []

        for websocket in targets:
            try:
                await websocket.send_text(message.to_json())
                sent_count += 1
            except Exception:
                disconnected.append(websocket)

        for ws in disconnected:
            await self.disconnect(ws)

        return sent_count

    async def broadcast_to_channel(self, channel: str, message: WebSocketMessage) -> int:
        """
        Broadcast a message to all subscribers of a channel.

        Returns:
            Number of connections that received the message
        """
        async with self._lock:
            subscribers = list(self._channels.get(channel, set()))
        return await self._send_all(subscribers, message)

    async def broadcast_to_all(self, message: WebSocketMessage) -> int:
        """Broadcast a message to all connected clients."""
        async with self._lock:
            connections = list(self._connections)
        return await self._send_all(connections, message)

    def get_channel_subscribers(self, channel: str) -> int:
        """Get the number of subscribers for a channel."""
        return len(self._channels.get(channel, set()))

    def get_connection_count(self) -> int:
        """Get the total number of active connections."""
        return len(self._connections)

    async def handle_message(
        self,
        websocket: WebSocket,
        message_text: str,
    ) -> Optional[WebSocketMessage]:
        """
        Handle an incoming WebSocket message.

        Returns:
            Response message or None
        """
        try:
            message = WebSocketMessage.from_json(message_text)
        except (json.JSONDecodeError, ValueError) as e:
            return WebSocketMessage(
                type=MessageType.ERROR,
                channel="system",
                data={"error": f"Invalid message format: {e}"},
            )

        if message.type == MessageType.PING:
            return WebSocketMessage(
                type=MessageType.PONG,
                channel="system",
                data={"timestamp": datetime.now().isoformat()},
            )

        if message.type == MessageType.SUBSCRIBE:
            channel = message.data.get("channel") or message.channel
            if channel:
                await self.subscribe(websocket, channel)
            return None

        if message.type == MessageType.UNSUBSCRIBE:
            channel = message.data.get("channel") or message.channel
            if channel:
                await self.unsubscribe(websocket, channel)
            return None

        return None


# Global WebSocket manager instance
ws_manager = WebSocketManager()


# ============= Notifier =============


class Notifier(ABC):
    """Delivers user-facing notifications (save results, failures)."""

    @abstractmethod
    async def notify(self, message: WebSocketMessage) -> None:
        """Deliver one message on its channel."""


class WebSocketNotifier(Notifier):
    """Notifier broadcasting to WebSocket channel subscribers."""

    def __init__(self, manager: WebSocketManager):
        self.manager = manager

    async def notify(self, message: WebSocketMessage) -> None:
        sent = await self.manager.broadcast_to_channel(message.channel, message)
        logger.debug("Notification %s delivered to %d clients", message.type.value, sent)


def manual_input_saved_message(perf_id: int, records_saved: int, message: str = "") -> WebSocketMessage:
    """Build the notification sent after a successful save."""
    return WebSocketMessage(
        type=MessageType.MANUAL_INPUT_SAVED,
        channel=perf_channel(perf_id),
        data={
            "perf_id": perf_id,
            "records_saved": records_saved,
            "message": message or f"Successfully saved {records_saved} records!",
        },
    )


def manual_input_save_failed_message(perf_id: int, error: str) -> WebSocketMessage:
    """Build the notification sent when a save fails."""
    return WebSocketMessage(
        type=MessageType.MANUAL_INPUT_SAVE_FAILED,
        channel=perf_channel(perf_id),
        data={
            "perf_id": perf_id,
            "error": error,
            "message": "Failed to save data. Please try again.",
        },
    )


def system_notification_message(message: str, level: str = "info") -> WebSocketMessage:
    """Build a notification meant for every connected client."""
    return WebSocketMessage(
        type=MessageType.NOTIFICATION,
        channel="system",
        data={"level": level, "message": message},
    )
