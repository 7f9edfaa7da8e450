"""The notifications blueprint."""

from flask import Blueprint

bp = Blueprint("notifications", __name__, url_prefix="/api")

from . import routes  # noqa: E402
from .dispatcher import event_topic, group_topic, notify_topic  # noqa: E402

__all__ = ["event_topic", "group_topic", "notify_topic", "routes"]
