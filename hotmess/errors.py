"""Settlement error taxonomy.

Every error carries the HTTP status it maps to and a stable machine-readable
code, so clients can tell "dispute active" apart from "already completed".

Services raise these; blueprints roll back and let the app-level handler
in create_app() turn them into JSON.
"""


class SettlementError(Exception):
    """Base class for client-visible settlement failures."""

    status_code = 400
    code = "settlement_error"

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self):
        return {"error": self.code, "message": self.message}


class ValidationError(SettlementError):
    """Missing or malformed input. Client-correctable, nothing written."""

    status_code = 400
    code = "invalid_request"


class AuthorizationError(SettlementError):
    """Caller is authenticated but not allowed to act on this record."""

    status_code = 403
    code = "forbidden"


class NotFoundError(SettlementError):
    status_code = 404
    code = "not_found"


class StateConflictError(SettlementError):
    """A legitimate business-rule violation (wrong status, active dispute, ...)."""

    status_code = 400
    code = "state_conflict"


class UpstreamError(SettlementError):
    """Payment provider missing or failing. Always fails closed."""

    status_code = 500
    code = "upstream_error"
