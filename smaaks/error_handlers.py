"""JSON error handlers registered for the whole application."""

from flask import Blueprint, current_app, jsonify
from flask_wtf.csrf import CSRFError

from .errors import (
    AppError,
    NotFoundError,
    PermissionDenied,
    PreconditionFailed,
    ValidationError,
    WriteFailed,
)

error_handlers_bp = Blueprint("error_handlers", __name__)


def _error_response(error):
    return jsonify({"error": error.message}), error.status_code


@error_handlers_bp.app_errorhandler(ValidationError)
def handle_validation_error(error):
    """Handles validation errors."""
    current_app.logger.warning(f"Validation Error: {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(PreconditionFailed)
def handle_precondition_failed(error):
    """Handles actions refused because of the current state."""
    current_app.logger.warning(
        f"Precondition Failed ({type(error).__name__}): {error.message}"
    )
    return _error_response(error)


@error_handlers_bp.app_errorhandler(PermissionDenied)
def handle_permission_denied(error):
    """Handles actions refused because of the caller's role."""
    current_app.logger.warning(f"Permission Denied: {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(NotFoundError)
def handle_not_found_error(error):
    """Handles not found errors."""
    current_app.logger.warning(f"Not Found Error: {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(WriteFailed)
def handle_write_failed(error):
    """Handles rejected store writes without exposing the cause."""
    current_app.logger.error(f"Write Failed: {error.__cause__ or error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(AppError)
def handle_app_error(error):
    """Handles generic application errors."""
    current_app.logger.error(f"Application Error: {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(404)
def handle_404(e):
    """Handles generic 404 errors for routes that don't exist."""
    return jsonify({"error": "Page introuvable."}), 404


@error_handlers_bp.app_errorhandler(500)
def handle_500(e):
    """Handles unexpected server errors."""
    current_app.logger.error(f"Internal Server Error: {e}")
    return jsonify({"error": "Erreur interne du serveur."}), 500


@error_handlers_bp.app_errorhandler(CSRFError)
def handle_csrf_error(e):
    """Handles CSRF errors on session-authenticated form posts."""
    current_app.logger.warning(f"CSRF Error: {e.description}")
    return jsonify({"error": "Votre session a peut-être expiré."}), 400
