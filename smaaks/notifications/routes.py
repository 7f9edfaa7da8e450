"""Routes for sending and subscribing to topic notifications."""

from flask import current_app, jsonify, request

from smaaks.auth.decorators import login_required

from . import bp
from .dispatcher import send_topic_notification, subscribe_token, unsubscribe_token


def _missing(payload, *fields):
    return [field for field in fields if not payload.get(field)]


@bp.route("/sendTopicNotification", methods=["POST"])
@login_required
def send_topic():
    """Send a notification to every device subscribed to a topic."""
    payload = request.get_json(silent=True) or {}
    if _missing(payload, "topic", "title", "body"):
        return jsonify({"error": "Champs manquants"}), 400
    try:
        message_id = send_topic_notification(
            payload["topic"], payload["title"], payload["body"]
        )
    except Exception as e:
        current_app.logger.error(f"Send notification error: {e}")
        return jsonify({"error": "Erreur lors de l'envoi de la notification"}), 502
    return jsonify({"success": True, "messageId": message_id})


@bp.route("/subscribeTopic", methods=["POST"])
@login_required
def subscribe_topic():
    """Subscribe a device token to a topic."""
    payload = request.get_json(silent=True) or {}
    if _missing(payload, "token", "topic"):
        return jsonify({"error": "Token ou topic manquant"}), 400
    try:
        subscribe_token(payload["token"], payload["topic"])
    except Exception as e:
        current_app.logger.error(f"Subscribe topic error: {e}")
        return jsonify({"error": "Erreur lors de l'abonnement"}), 502
    current_app.logger.info(f"Token subscribed to topic {payload['topic']}")
    return jsonify({"success": True, "topic": payload["topic"]})


@bp.route("/unsubscribeTopic", methods=["POST"])
@login_required
def unsubscribe_topic():
    """Unsubscribe a device token from a topic."""
    payload = request.get_json(silent=True) or {}
    if _missing(payload, "token", "topic"):
        return jsonify({"error": "Token ou topic manquant"}), 400
    try:
        unsubscribe_token(payload["token"], payload["topic"])
    except Exception as e:
        current_app.logger.error(f"Unsubscribe topic error: {e}")
        return jsonify({"error": "Erreur lors du désabonnement"}), 502
    return jsonify({"success": True, "topic": payload["topic"]})
