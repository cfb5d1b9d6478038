"""Outbound alerts for relevant items."""

from .webhook import (
    Notifier,
    NotificationError,
    NullNotifier,
    WebhookNotifier,
    build_notifier,
    format_alert,
)

__all__ = [
    "Notifier",
    "NotificationError",
    "NullNotifier",
    "WebhookNotifier",
    "build_notifier",
    "format_alert",
]
