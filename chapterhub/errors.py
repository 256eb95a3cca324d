"""
Error taxonomy shared by the stores and the routers.

Domain code raises these; ``main.py`` registers a handler that turns them into
``{"detail": ...}`` responses, the same shape ``HTTPException`` produces.
"""
from bson import ObjectId
from bson.errors import InvalidId


class ChapterHubError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(ChapterHubError):
    """No valid caller identity."""
    status_code = 401


class AuthorizationError(ChapterHubError):
    """Caller lacks the required role."""
    status_code = 403


class ValidationError(ChapterHubError):
    """Malformed or missing input."""
    status_code = 400


class ConflictError(ChapterHubError):
    """Operation violates a lifecycle invariant."""
    status_code = 400


class NotFoundError(ChapterHubError):
    status_code = 404


def parse_object_id(value: str, what: str = "Document") -> ObjectId:
    """Path ids that do not parse are treated as missing documents."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{what} not found.")


def parse_body_object_id(value, field: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {field} format.")
