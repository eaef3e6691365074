"""Exceptions raised by PackStudio actions and service clients."""


class PackStudioError(Exception):
    """Base class for expected, user-reportable failures."""


class AuthenticationError(PackStudioError):
    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class ValidationError(PackStudioError):
    """Bad or missing input."""


class NotFoundError(PackStudioError):
    """A referenced row does not exist."""


class InsufficientCreditsError(PackStudioError):
    """Credit reservation was refused."""


class GenerationError(PackStudioError):
    """An AI provider failed to return a usable result."""


class UploadError(PackStudioError):
    """Object storage rejected an upload."""


class ForbiddenError(PackStudioError):
    """The row exists but belongs to another user."""
