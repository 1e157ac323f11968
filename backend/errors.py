# backend/errors.py
"""Error taxonomy shared by the service modules.

Services raise these; main.py turns them into JSON responses of the form
``{"success": false, "error": <code>, "message": <text>}``.
"""


class ServiceError(Exception):
    status_code = 500
    code = "INTERNAL"
    default_message = "Internal server error"

    def __init__(self, message: str = None, code: str = None):
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationFailed(ServiceError):
    status_code = 400
    code = "VALIDATION"
    default_message = "Invalid request"


class NotFound(ServiceError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class Forbidden(ServiceError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Not authorized"


class EntitlementDenied(Forbidden):
    """An account lacks the entitlement for an action; `code` carries the reason."""

    def __init__(self, reason: str, message: str = None):
        super().__init__(message, code=reason)
        if reason == "NO_TOKENS":
            self.status_code = 402


class Conflict(ServiceError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Conflict"


class RateLimited(ServiceError):
    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many requests. Please try again later."


class UpstreamFailure(ServiceError):
    status_code = 502
    code = "UPSTREAM_FAILURE"
    default_message = "Upstream service failed"


class Unauthorized(ServiceError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Could not validate credentials"
