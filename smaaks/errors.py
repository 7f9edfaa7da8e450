"""Custom exception classes for the application."""


class AppError(Exception):
    """Base application error class."""

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ValidationError(AppError):
    """Raised when user input fails validation."""

    def __init__(self, message="Données invalides."):
        """Initialize the error."""
        super().__init__(message, 400)


class PreconditionFailed(AppError):
    """Raised when the current state of an entity forbids the operation."""

    def __init__(self, message="Action impossible dans l'état actuel."):
        """Initialize the error."""
        super().__init__(message, 409)


class AlreadyMember(PreconditionFailed):
    """Raised when a user asks to join a group they already belong to."""

    def __init__(self, message="Vous êtes déjà membre."):
        """Initialize the error."""
        super().__init__(message)


class DuplicateRequest(PreconditionFailed):
    """Raised when a pending membership request already exists."""

    def __init__(self, message="Une demande est déjà en attente."):
        """Initialize the error."""
        super().__init__(message)


class DuplicateReport(PreconditionFailed):
    """Raised when a user reports the same message twice."""

    def __init__(self, message="Vous avez déjà signalé ce message."):
        """Initialize the error."""
        super().__init__(message)


class NotAMember(PreconditionFailed):
    """Raised when a non-member tries to post, comment or chat."""

    def __init__(self, message="Seuls les membres peuvent publier."):
        """Initialize the error."""
        super().__init__(message)


class GroupFull(PreconditionFailed):
    """Raised when the member capacity has been reached."""

    def __init__(self, message="Le nombre maximum de membres est atteint."):
        """Initialize the error."""
        super().__init__(message)


class RequestNotPending(PreconditionFailed):
    """Raised when a request can no longer be cancelled."""

    def __init__(self, message="Cette demande n'est plus en attente."):
        """Initialize the error."""
        super().__init__(message)


class PermissionDenied(AppError):
    """Raised when the acting user lacks the required role."""

    def __init__(self, message="Action non autorisée."):
        """Initialize the error."""
        super().__init__(message, 403)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    def __init__(self, message="Ressource introuvable."):
        """Initialize the error."""
        super().__init__(message, 404)


class WriteFailed(AppError):
    """Raised when the underlying store rejects a write."""

    def __init__(self, message="Erreur lors de l'enregistrement."):
        """Initialize the error."""
        super().__init__(message, 500)
