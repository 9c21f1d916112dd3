"""
Error taxonomy for the trade and messaging core.

Services raise these exceptions; the API layer renders them as JSON
responses with a human-readable ``detail``, a stable ``code`` and a
``retryable`` flag so clients can decide whether to offer a retry.
"""
from typing import Optional


class BarterError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False

    def __init__(self, detail: str, *, code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {
            "detail": self.detail,
            "code": self.code,
            "retryable": self.retryable,
        }


class ValidationError(BarterError):
    """Malformed or missing input, detected before any write."""

    status_code = 400
    code = "validation_error"


class InvalidRequestError(ValidationError):
    """A trade request that can never be valid as submitted."""

    code = "invalid_request"


class AuthorizationError(BarterError):
    """The actor is not permitted to perform this operation."""

    status_code = 403
    code = "forbidden"


class AuthenticationError(AuthorizationError):
    """No usable identity on the request."""

    status_code = 401
    code = "unauthenticated"


class NotFoundError(BarterError):
    status_code = 404
    code = "not_found"


class StateConflictError(BarterError):
    """The entity is not in the state the operation requires."""

    status_code = 409
    code = "state_conflict"


class AlreadyConnectedError(StateConflictError):
    code = "already_connected"


class TransientIOError(BarterError):
    """Backend or network failure; the same call may succeed if retried."""

    status_code = 503
    code = "backend_unavailable"
    retryable = True


class TradeFollowUpError(TransientIOError):
    """A trade was accepted but its item or conversation follow-ups failed."""

    code = "trade_follow_up_failed"

    def __init__(self, request_id: str, detail: Optional[str] = None):
        super().__init__(
            detail
            or f"Trade request {request_id} was accepted but could not be finalized. Please retry."
        )
        self.request_id = request_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["request_id"] = self.request_id
        return data
