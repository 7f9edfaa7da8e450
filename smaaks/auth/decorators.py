"""Decorators for the auth blueprint."""

from functools import wraps

from firebase_admin import auth
from flask import current_app, g, jsonify, request, session

from .models import Identity


def _bearer_token():
    """Return the bearer token from the Authorization header, if any."""
    authorization = request.headers.get("Authorization", "")
    if not authorization.startswith("Bearer "):
        return None
    return authorization.split("Bearer ", 1)[1].strip() or None


def _verify(token):
    """Verify an ID token, returning the decoded claims or None."""
    try:
        return auth.verify_id_token(token)
    except Exception as e:
        current_app.logger.warning(f"Rejected ID token: {e}")
        return None


def login_required(f=None, admin_required=False):
    """Reject the request unless the caller is authenticated.

    The identity comes from a Firebase ID token in the Authorization header,
    or from the server-side session created by ``/auth/session_login``.
    With ``admin_required`` the token is always re-verified against the
    identity provider and its e-mail must match ``ADMIN_EMAIL``.

    Usage:
    @login_required
    def protected_view():
        ...

    @login_required(admin_required=True)
    def admin_view():
        ...
    """

    def decorator(func):
        @wraps(func)
        def decorated_function(*args, **kwargs):
            token = _bearer_token()
            decoded = _verify(token) if token else None

            if admin_required:
                if decoded is None:
                    return jsonify({"error": "Authentification requise."}), 401
                admin_email = current_app.config["ADMIN_EMAIL"]
                if decoded.get("email") != admin_email:
                    return jsonify({"error": "Accès réservé à l'administrateur."}), 403

            if decoded is not None:
                g.identity = Identity.from_token(decoded)
            elif "user_id" in session:
                g.identity = Identity(
                    uid=session["user_id"],
                    display_name=session.get("display_name", ""),
                    email=session.get("email", ""),
                )
            else:
                return jsonify({"error": "Authentification requise."}), 401
            return func(*args, **kwargs)

        return decorated_function

    if f:
        return decorator(f)
    return decorator
