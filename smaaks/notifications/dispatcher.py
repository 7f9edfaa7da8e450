"""Push notifications sent to Firebase Cloud Messaging topics."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from firebase_admin import messaging
from flask import current_app, has_app_context

from smaaks.core.constants import CHAT_PREVIEW_LENGTH

if TYPE_CHECKING:
    from flask import Flask

ICON_URL = "/icons/icon-192x192.png"
BADGE_URL = "/icons/icon-72x72.png"


def group_topic(group_id: str) -> str:
    """Return the topic that members of a group are subscribed to."""
    return f"group_{group_id}"


def event_topic(event_id: str) -> str:
    """Return the topic that participants of an event are subscribed to."""
    return f"event_{event_id}"


def preview(text: str, length: int = CHAT_PREVIEW_LENGTH) -> str:
    """Truncate a message for display in a notification body."""
    if len(text) <= length:
        return text
    return text[:length] + "..."


def build_message(topic: str, title: str, body: str) -> messaging.Message:
    """Build an FCM topic message with web-push presentation options."""
    return messaging.Message(
        topic=topic,
        notification=messaging.Notification(title=title, body=body),
        android=messaging.AndroidConfig(
            notification=messaging.AndroidNotification(
                click_action="FLUTTER_NOTIFICATION_CLICK"
            )
        ),
        webpush=messaging.WebpushConfig(
            notification=messaging.WebpushNotification(
                title=title, body=body, icon=ICON_URL, badge=BADGE_URL
            ),
            fcm_options=messaging.WebpushFCMOptions(link="/"),
        ),
    )


def send_topic_notification(topic: str, title: str, body: str) -> str:
    """Send a notification to a topic and return the FCM message ID."""
    return messaging.send(build_message(topic, title, body))


def subscribe_token(token: str, topic: str) -> Any:
    """Subscribe a device registration token to a topic."""
    return messaging.subscribe_to_topic([token], topic)


def unsubscribe_token(token: str, topic: str) -> Any:
    """Unsubscribe a device registration token from a topic."""
    return messaging.unsubscribe_from_topic([token], topic)


def _dispatch(app: Flask, topic: str, title: str, body: str) -> None:
    with app.app_context():
        try:
            send_topic_notification(topic, title, body)
        except Exception as e:
            app.logger.error(f"Notification to {topic} failed: {e}")


def notify_topic(topic: str, title: str, body: str) -> threading.Thread | None:
    """Send a topic notification in a background thread.

    Fire-and-forget: delivery is never confirmed and failures are only logged.
    Returns the started thread, or None when notifications are disabled or
    there is no application to log against.
    """
    if not has_app_context():
        return None
    app = current_app._get_current_object()  # type: ignore[attr-defined]
    if not app.config.get("NOTIFICATIONS_ENABLED", True):
        return None

    thread = threading.Thread(target=_dispatch, args=(app, topic, title, body))
    thread.start()
    return thread
