"""Error taxonomy shared by the store, the checkout engine and the API.

Every error carries the HTTP status it is reported with, so the API layer
renders them all through a single exception handler.
"""


class CommerceError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(CommerceError):
    """Bad or missing cart line, insufficient stock, malformed input."""

    status_code = 400


class AuthenticationError(CommerceError):
    status_code = 401


class AuthorizationError(CommerceError):
    """Caller identity lacks the admin flag."""

    status_code = 403


class NotFoundError(CommerceError):
    status_code = 404


class ConflictError(CommerceError):
    """Duplicate unique key, or a write computed from a stale snapshot."""

    status_code = 409


class PersistenceError(CommerceError):
    """The durable write failed; the previous state is still in place."""

    status_code = 500


class ExternalProviderError(CommerceError):
    status_code = 502
