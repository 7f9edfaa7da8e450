"""Routes for the auth blueprint.

Sign-in itself happens in the browser with the Firebase client SDK; these
endpoints only exchange a verified ID token for a server-side session.
"""

from firebase_admin import auth, firestore
from flask import current_app, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from smaaks.core.constants import USERS_COLLECTION

from . import bp
from .models import Identity


@bp.route("/session_login", methods=["POST"])
def session_login():
    """Verify the ID token sent by the client and open a session."""
    payload = request.get_json(silent=True) or {}
    id_token = payload.get("idToken")
    if not id_token:
        return jsonify({"status": "error", "message": "idToken manquant."}), 400
    try:
        decoded_token = auth.verify_id_token(id_token)
    except Exception as e:
        current_app.logger.error(f"Error during session login: {e}")
        return jsonify({"status": "error", "message": "Jeton invalide."}), 401

    identity = Identity.from_token(decoded_token)
    db = firestore.client()
    user_doc = db.collection(USERS_COLLECTION).document(identity.uid).get()
    if user_doc.exists:
        identity = Identity.from_user_doc(identity.uid, user_doc.to_dict() or {})
    else:
        current_app.logger.info(f"Creating profile for new user {identity.uid}")
        db.collection(USERS_COLLECTION).document(identity.uid).set(
            {
                "email": identity.email,
                "displayName": identity.display_name,
                "createdAt": firestore.SERVER_TIMESTAMP,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            }
        )

    session["user_id"] = identity.uid
    session["display_name"] = identity.display_name
    session["email"] = identity.email
    return jsonify({"status": "success", "uid": identity.uid})


@bp.route("/logout", methods=["POST"])
def logout():
    """Clear the server-side session."""
    session.clear()
    return jsonify({"status": "success"})


@bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Return a CSRF token for clients authenticated by session cookie."""
    return jsonify({"csrfToken": generate_csrf()})
