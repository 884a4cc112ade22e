"""
Donation pipeline error taxonomy.

Every error knows its HTTP status, a stable machine code and a public message.
User-correctable errors (validation, declines) expose their message; operator
errors (configuration, persistence) expose a generic one and keep the details
for the logs.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask_babel import lazy_gettext as _l


class DonationError(Exception):
    http_status = 500
    code = "donation_error"
    user_correctable = False
    default_message = _l("We could not process your donation. Please try again or contact support.")

    def __init__(self, message: Optional[str] = None, *, donation_id: Optional[str] = None, **context: Any):
        super().__init__(message or str(self.default_message))
        self.message = message
        self.donation_id = donation_id
        self.context = context

    @property
    def public_message(self) -> str:
        if self.user_correctable and self.message:
            return str(self.message)
        return str(self.default_message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.public_message, "code": self.code}
        if self.donation_id:
            body["donationId"] = self.donation_id
        return body


class ValidationError(DonationError):
    http_status = 400
    code = "validation_error"
    user_correctable = True
    default_message = _l("Some donation details are missing or invalid.")


class NotFoundError(DonationError):
    http_status = 404
    code = "not_found"
    user_correctable = True
    default_message = _l("Donation not found.")


class ConfigurationError(DonationError):
    code = "configuration_error"
    default_message = _l("Online donations are temporarily unavailable. Please contact support.")


class WebhookVerificationError(DonationError):
    http_status = 400
    code = "invalid_notification"
    user_correctable = True
    default_message = _l("Invalid notification.")


class GatewayError(DonationError):
    code = "gateway_error"


class GatewayRejectedError(GatewayError):
    """The provider answered but refused the payment (decline, bad data)."""

    http_status = 400
    code = "payment_rejected"
    user_correctable = True
    default_message = _l("Your payment was not approved. Check the card details and try again.")

    def __init__(self, message: Optional[str] = None, *, status_detail: Optional[str] = None, **kw: Any):
        super().__init__(message, **kw)
        self.reason = message
        self.status_detail = status_detail

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["statusDetail"] = self.status_detail
        return body


class GatewayTimeoutError(GatewayError):
    http_status = 504
    code = "gateway_timeout"
    user_correctable = True
    default_message = _l("Payment processing is taking longer than expected. Please try again.")


class GatewayUnavailableError(GatewayError):
    http_status = 503
    code = "gateway_unavailable"
    user_correctable = True
    default_message = _l("Could not reach the payment provider. Please try again.")


class PersistenceError(DonationError):
    """
    The database write failed. After a charge this means money may have moved
    without a matching record: it must be reconciled by hand.
    """

    code = "persistence_error"
    default_message = _l(
        "Your payment was processed but we could not record it. Please contact support and quote your donation id."
    )

    def __init__(self, message: Optional[str] = None, *, provider_payment_id: Optional[str] = None, **kw: Any):
        super().__init__(message, **kw)
        self.provider_payment_id = provider_payment_id

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["requiresReconciliation"] = True
        return body


class DonationNotSavedError(PersistenceError):
    """The pending donation row could not be inserted. Nothing was charged."""

    code = "donation_not_saved"
    default_message = _l("We could not start your donation. Please try again in a moment.")

    def to_dict(self) -> Dict[str, Any]:
        return DonationError.to_dict(self)
