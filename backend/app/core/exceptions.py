"""
Engine error taxonomy.

Every error carries a human readable message and a coarse ``kind``; the HTTP
layer maps ``status_code`` to the response, the engine never does.
"""
from typing import Optional


class LedgerError(Exception):
    kind = "internal"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class BadRequestError(LedgerError, ValueError):
    kind = "bad_request"
    status_code = 400
    default_message = "Bad request"


class DuplicatePeriodChargeError(BadRequestError):
    default_message = "Already charged for period"


class UnauthorizedError(LedgerError):
    kind = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(LedgerError):
    kind = "forbidden"
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(LedgerError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class InternalError(LedgerError):
    pass


class SchemaConfigurationError(InternalError):
    """Column introspection failed; the process cannot trust its schema view."""
    default_message = "Schema introspection failed"
