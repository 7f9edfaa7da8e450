"""Tests for topic notifications."""

import unittest
from unittest.mock import MagicMock, patch

from smaaks import create_app
from smaaks.notifications import dispatcher

MOCK_USER_PAYLOAD = {"uid": "user_uid", "email": "user@example.com", "name": "Alice"}


class TestDispatcher(unittest.TestCase):
    def test_topics(self) -> None:
        self.assertEqual(dispatcher.group_topic("g1"), "group_g1")
        self.assertEqual(dispatcher.event_topic("e1"), "event_e1")

    def test_preview(self) -> None:
        self.assertEqual(dispatcher.preview("court"), "court")
        self.assertEqual(dispatcher.preview("a" * 50), "a" * 50)
        self.assertEqual(dispatcher.preview("a" * 51), "a" * 50 + "...")

    def test_message_carries_web_push_options(self) -> None:
        message = dispatcher.build_message("group_g1", "Titre", "Corps")

        self.assertEqual(message.topic, "group_g1")
        self.assertEqual(message.notification.title, "Titre")
        self.assertEqual(message.webpush.notification.icon, dispatcher.ICON_URL)
        self.assertEqual(message.webpush.notification.badge, dispatcher.BADGE_URL)
        self.assertEqual(
            message.android.notification.click_action, "FLUTTER_NOTIFICATION_CLICK"
        )

    def test_notify_without_app_does_nothing(self) -> None:
        self.assertIsNone(dispatcher.notify_topic("group_g1", "Titre", "Corps"))

    @patch("smaaks.notifications.dispatcher.messaging.send")
    def test_notify_sends_in_background(self, mock_send) -> None:
        app = create_app({"TESTING": True})
        with app.app_context():
            thread = dispatcher.notify_topic("event_e1", "Titre", "Corps")
        thread.join()

        mock_send.assert_called_once()
        self.assertEqual(mock_send.call_args[0][0].topic, "event_e1")

    @patch("smaaks.notifications.dispatcher.messaging.send")
    def test_notify_failure_is_only_logged(self, mock_send) -> None:
        mock_send.side_effect = RuntimeError("FCM unavailable")
        app = create_app({"TESTING": True})
        with patch.object(app.logger, "error") as mock_error:
            with app.app_context():
                thread = dispatcher.notify_topic("event_e1", "Titre", "Corps")
            thread.join()

        mock_error.assert_called_once()
        self.assertIn("event_e1", mock_error.call_args[0][0])

    def test_notifications_can_be_disabled(self) -> None:
        app = create_app({"TESTING": True, "NOTIFICATIONS_ENABLED": False})
        with app.app_context():
            self.assertIsNone(dispatcher.notify_topic("event_e1", "Titre", "Corps"))


class TestNotificationRoutes(unittest.TestCase):
    def setUp(self) -> None:
        patchers = {
            "verify": patch("firebase_admin.auth.verify_id_token"),
            "messaging": patch("smaaks.notifications.dispatcher.messaging"),
        }
        self.mocks = {name: p.start() for name, p in patchers.items()}
        for p in patchers.values():
            self.addCleanup(p.stop)
        self.mocks["verify"].return_value = MOCK_USER_PAYLOAD

        self.app = create_app({"TESTING": True, "WTF_CSRF_ENABLED": False})
        self.client = self.app.test_client()
        self.headers = {"Authorization": "Bearer token"}

    def test_send_topic_notification(self) -> None:
        self.mocks["messaging"].send.return_value = "projects/p/messages/1"

        response = self.client.post(
            "/api/sendTopicNotification",
            json={"topic": "group_g1", "title": "Titre", "body": "Corps"},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json["messageId"], "projects/p/messages/1")

    def test_missing_fields(self) -> None:
        response = self.client.post(
            "/api/sendTopicNotification", json={"topic": "group_g1"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)

    def test_subscribe_and_unsubscribe(self) -> None:
        payload = {"token": "device-token", "topic": "event_e1"}

        response = self.client.post("/api/subscribeTopic", json=payload, headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.mocks["messaging"].subscribe_to_topic.assert_called_once_with(
            ["device-token"], "event_e1"
        )

        response = self.client.post("/api/unsubscribeTopic", json=payload, headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.mocks["messaging"].unsubscribe_from_topic.assert_called_once_with(
            ["device-token"], "event_e1"
        )

    def test_provider_failure(self) -> None:
        self.mocks["messaging"].subscribe_to_topic.side_effect = RuntimeError("boom")
        response = self.client.post(
            "/api/subscribeTopic",
            json={"token": "device-token", "topic": "event_e1"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 502)

    def test_requires_authentication(self) -> None:
        response = self.client.post(
            "/api/subscribeTopic", json={"token": "t", "topic": "x"}
        )
        self.assertEqual(response.status_code, 401)


if __name__ == "__main__":
    unittest.main()
