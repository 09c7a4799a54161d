"""Domain error taxonomy shared by services and routers."""

from enum import Enum
from typing import Any


class RejectReason(str, Enum):
    MAINTENANCE_MODE = "MAINTENANCE_MODE"
    CHANNEL_DISABLED = "CHANNEL_DISABLED"
    CHANNEL_FORBIDDEN = "CHANNEL_FORBIDDEN"
    CORPORATE_NOT_ALLOWED = "CORPORATE_NOT_ALLOWED"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"


REJECT_MESSAGES = {
    RejectReason.MAINTENANCE_MODE: "Booking is temporarily unavailable (system maintenance)",
    RejectReason.CHANNEL_DISABLED: "This booking channel is currently disabled",
    RejectReason.CHANNEL_FORBIDDEN: "You are not permitted to book through this channel",
    RejectReason.CORPORATE_NOT_ALLOWED: "This corporate agreement is not available to you",
    RejectReason.DAILY_LIMIT_EXCEEDED: "Daily booking limit reached for this channel",
    RejectReason.QUOTA_EXHAUSTED: "Booking quota exhausted for this channel",
}


class SkyHotelError(Exception):
    """Base for errors that carry a stable code and an HTTP status."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details)


class AdmissionRejected(SkyHotelError):
    status_code = 403

    def __init__(self, reason: RejectReason, details: dict[str, Any] | None = None):
        super().__init__(REJECT_MESSAGES[reason], code=reason.value, details=details)
        self.reason = reason


class InvariantViolation(SkyHotelError):
    """A programming-contract failure: illegal transition, bad arithmetic, etc."""

    status_code = 409
    code = "INVARIANT_VIOLATION"


class CancelFailed(SkyHotelError):
    status_code = 502
    code = "CANCEL_FAILED"


class ProviderError(SkyHotelError):
    status_code = 502
    code = "PROVIDER_ERROR"


class ProviderTransient(ProviderError):
    """Network failure or timeout; the outcome on the provider side is unknown."""

    code = "PROVIDER_TRANSIENT"


class ProviderRejected(ProviderError):
    """The provider answered and refused the request (sold out, bad rate, ...)."""

    code = "PROVIDER_REJECTED"


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        }
    }
