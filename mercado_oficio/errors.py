"""
Domain errors for the budget and milestone workflows.

Every error carries the HTTP status it maps to and a short machine code, so
the API layer can render them with a single exception handler while the
services stay free of HTTP concerns.
"""

from decimal import Decimal
from typing import Any, Optional


class MarketplaceError(Exception):
    """Base class for all domain errors"""

    status_code = 400
    code = "marketplace_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def context(self) -> dict[str, Any]:
        """Extra fields rendered next to the message"""
        return {}


class ValidationError(MarketplaceError):
    """Bad input shape or range (non-positive hours, malformed time range...)"""

    code = "validation_error"


class IncompleteScheduleError(MarketplaceError):
    """Approval attempted before the quoted hours are exactly allocated"""

    code = "incomplete_schedule"

    def __init__(self, remaining_hours: Decimal):
        self.remaining_hours = remaining_hours
        if remaining_hours > 0:
            message = f"Faltan {remaining_hours}h para completar el servicio"
        else:
            message = f"Los horarios seleccionados exceden las horas estimadas en {-remaining_hours}h"
        super().__init__(message)

    def context(self) -> dict[str, Any]:
        return {"remainingHours": float(self.remaining_hours)}


class NoScheduleError(MarketplaceError):
    """Milestone generation invoked for a budget without time slots"""

    status_code = 409
    code = "no_schedule"


class AuthorizationError(MarketplaceError):
    """Caller is not the budget's client/provider for this operation"""

    status_code = 403
    code = "not_authorized"


class NotFoundError(MarketplaceError):
    """Unknown id"""

    status_code = 404
    code = "not_found"


class InvalidStateError(MarketplaceError):
    """Operation illegal for the current state"""

    status_code = 409
    code = "invalid_state"

    def __init__(self, attempted: str, current_state: str, message: Optional[str] = None):
        self.attempted = attempted
        self.current_state = current_state
        super().__init__(
            message or f"Cannot {attempted} while in state {current_state}"
        )

    def context(self) -> dict[str, Any]:
        return {"attempted": self.attempted, "currentState": self.current_state}


class EscrowFailure(MarketplaceError):
    """The external escrow provider failed; ``retryable`` tells the caller whether to retry"""

    code = "escrow_failure"

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = 503 if retryable else 502

    def context(self) -> dict[str, Any]:
        return {"retryable": self.retryable}
