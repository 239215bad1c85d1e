"""API error taxonomy.

Each error carries the HTTP status it maps to. create_app() registers a
handler that renders any ApiError as {"success": false, "error": "..."}.

CacheSyncError is the odd one out: it is raised when Stripe accepted a
write but the local mirror did not. Callers log it as a warning and move
on. Stripe stays the source of truth and a later read re-derives the cache.
"""


class ApiError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ApiError):
    status_code = 400


class AuthError(ApiError):
    status_code = 401


class PermissionDeniedError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class RateLimitError(ApiError):
    status_code = 429

    def __init__(self, message="Rate limit exceeded", retry_after=None, headers=None):
        super().__init__(message)
        self.retry_after = retry_after
        self.headers = headers or {}


class ExternalSystemError(ApiError):
    """A Stripe call failed. The message includes Stripe's error detail."""

    status_code = 500


class StripeConfigurationError(ExternalSystemError):
    pass


class CacheSyncError(Exception):
    pass
