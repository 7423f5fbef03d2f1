"""
Error taxonomy shared by the service layer, the HTTP routers and the client library.
Services raise these; vetchat.main maps them to HTTP responses; the client maps
HTTP responses back to them.
"""


class VetchatError(Exception):
    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(VetchatError):
    """No identity could be resolved from the request."""
    status_code = 401
    default_message = "Not authenticated"


class Unauthorized(VetchatError):
    """Identity resolved, but it does not own the target resource."""
    status_code = 403
    default_message = "Unauthorized"


class NotFound(VetchatError):
    status_code = 404
    default_message = "Not found"


class ValidationFailure(VetchatError):
    """Malformed input. `errors` maps field name to a list of messages."""
    status_code = 400
    default_message = "Invalid payload"

    def __init__(self, message: str | None = None, errors: dict[str, list[str]] | None = None):
        super().__init__(message)
        self.errors = errors or {}

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationFailure":
        return cls(message, {field: [message]})


class UpstreamFailure(VetchatError):
    """The model API, analysis endpoint or object storage failed."""
    status_code = 502
    default_message = "AI service temporarily unavailable. Please try again later."


class Overloaded(UpstreamFailure):
    status_code = 429
    default_message = "The engine is currently overloaded, please try again later"


def error_for_status(status_code: int, message: str | None = None, errors: dict | None = None) -> VetchatError:
    """Rebuild the matching error from an HTTP status (used by the client)."""
    if status_code == 400 or status_code == 422:
        return ValidationFailure(message, errors)
    if status_code == 413:
        return ValidationFailure(message, errors)
    for cls in (Unauthenticated, Unauthorized, NotFound, Overloaded):
        if cls.status_code == status_code:
            return cls(message)
    if status_code >= 500:
        return UpstreamFailure(message)
    return VetchatError(message)
