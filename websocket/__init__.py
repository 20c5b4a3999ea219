"""
WebSocket module for the manual input backend.

Pushes save results and other notifications to the dashboard via
WebSocket connections.
"""

from .manager import (
    MessageType,
    Notifier,
    WebSocketManager,
    WebSocketMessage,
    WebSocketNotifier,
    manual_input_save_failed_message,
    manual_input_saved_message,
    perf_channel,
    system_notification_message,
    ws_manager,
)

__all__ = [
    "WebSocketManager",
    "WebSocketMessage",
    "MessageType",
    "Notifier",
    "WebSocketNotifier",
    "ws_manager",
    "perf_channel",
    "manual_input_saved_message",
    "manual_input_save_failed_message",
    "system_notification_message",
]
