"""Typed failures raised by the forms core.

Every failure is a ``ValueError`` subclass so callers that only care about
"the request could not be honoured" can keep catching ``ValueError``. The
HTTP layer renders ``FormsError.to_dict()`` with ``status_code``.
"""

from __future__ import annotations

from typing import Any


class FormsError(ValueError):
    code = "forms_error"
    status_code = 400
    retryable = False
    default_message = "The operation cannot be completed"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        if self.retryable:
            payload["retryable"] = True
        return payload


# Authorization


class AuthorizationError(FormsError):
    status_code = 403


class Unauthenticated(AuthorizationError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required"


class Deactivated(AuthorizationError):
    code = "deactivated"
    default_message = "Your account has been deactivated"


class RoleForbidden(AuthorizationError):
    code = "role_forbidden"
    default_message = "You do not have the required role"


class TenantMismatch(AuthorizationError):
    code = "tenant_mismatch"
    default_message = "The resource belongs to another company"


# Quota


class QuotaError(FormsError):
    status_code = 403


class NoActiveSubscription(QuotaError):
    code = "no_active_subscription"
    default_message = "The company has no subscription covering today"


class QuotaExhausted(QuotaError):
    code = "quota_exhausted"
    default_message = "The company has no form creations left"


class SeatLimitReached(QuotaError):
    code = "seat_limit_reached"
    default_message = "The company has reached its limit of active forms"


class UserLimitReached(QuotaError):
    code = "user_limit_reached"
    default_message = "Maximum user limit reached for the company"


# Validation


class SchemaInvalid(FormsError):
    code = "schema_invalid"
    status_code = 422
    default_message = "The form definition is invalid"


class InvalidPayload(FormsError):
    code = "invalid_payload"
    status_code = 422
    default_message = "The request payload is invalid"


class DuplicatePairing(FormsError):
    code = "duplicate_pairing"
    status_code = 409
    default_message = "This validator is already paired with this technician for the form"


class StillReferenced(FormsError):
    code = "still_referenced"
    status_code = 409
    default_message = "The record is still referenced; deactivate it instead"


class NotFound(FormsError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


# Lifecycle


class ImmutableState(FormsError):
    code = "immutable_state"
    default_message = "The submission can no longer be changed"


class StateConflict(FormsError):
    code = "state_conflict"
    status_code = 409
    retryable = True
    default_message = "The submission was changed concurrently; reload and retry"


class PairingRequired(FormsError):
    code = "pairing_required"
    status_code = 403
    default_message = "You are not paired with the technician for this form"
