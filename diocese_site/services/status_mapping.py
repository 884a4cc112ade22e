"""
Provider status -> donation status mapping, and the transition guard.

Mapping is total: unknown provider statuses fall back to ``pending`` so an
unexpected value can never mark a donation as paid or as failed.

Transition guard:
  - ``refunded`` may only be written over ``completed``
  - every other status may only be written while the donation is not
    ``completed`` / ``refunded`` (stale callbacks never regress a final state)
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from flask_babel import lazy_gettext as _l

from diocese_site.models.donation import DONATION_STATUSES, DonationStatus

LOCKED_STATUSES: Tuple[str, ...] = (DonationStatus.COMPLETED.value, DonationStatus.REFUNDED.value)

MERCADOPAGO_STATUS_MAP: Dict[str, DonationStatus] = {
    "approved": DonationStatus.COMPLETED,
    "rejected": DonationStatus.FAILED,
    "cancelled": DonationStatus.FAILED,
    "in_process": DonationStatus.PENDING,
    "pending": DonationStatus.PENDING,
    "refunded": DonationStatus.REFUNDED,
    "charged_back": DonationStatus.REFUNDED,
}

STRIPE_INTENT_STATUS_MAP: Dict[str, DonationStatus] = {
    "succeeded": DonationStatus.COMPLETED,
    "processing": DonationStatus.PROCESSING,
    "requires_capture": DonationStatus.PROCESSING,
    "requires_payment_method": DonationStatus.PENDING,
    "requires_confirmation": DonationStatus.PENDING,
    "requires_action": DonationStatus.PENDING,
    "canceled": DonationStatus.FAILED,
}


def _norm(raw: Optional[str]) -> str:
    return str(raw or "").strip().lower()


def map_mercadopago_status(provider_status: Optional[str]) -> DonationStatus:
    return MERCADOPAGO_STATUS_MAP.get(_norm(provider_status), DonationStatus.PENDING)


def map_stripe_intent_status(intent_status: Optional[str]) -> DonationStatus:
    return STRIPE_INTENT_STATUS_MAP.get(_norm(intent_status), DonationStatus.PENDING)


def map_stripe_intent(intent_status: Optional[str], last_payment_error: Any = None) -> DonationStatus:
    """
    Like map_stripe_intent_status, but an intent sent back to
    requires_payment_method by a declined attempt counts as failed.
    """
    if _norm(intent_status) == "requires_payment_method" and last_payment_error:
        return DonationStatus.FAILED
    return map_stripe_intent_status(intent_status)


def is_final_success(provider: str, provider_status: Optional[str]) -> bool:
    s = _norm(provider_status)
    if provider == "stripe":
        return s == "succeeded"
    return s == "approved"


def allowed_source_statuses(target: DonationStatus) -> Tuple[str, ...]:
    """
    Stored statuses from which `target` may be written.

    `failed` is not locked: a retried card or a late approval on the same
    donation may still write any non-refund status over it.
    """
    if target == DonationStatus.REFUNDED:
        return (DonationStatus.COMPLETED.value,)
    return tuple(s for s in DONATION_STATUSES if s not in LOCKED_STATUSES)


def can_transition(current: Optional[str], target: DonationStatus) -> bool:
    return _norm(current) in allowed_source_statuses(target)


# ----------------------------
# Decline messages (Mercado Pago status_detail)
# ----------------------------
STATUS_DETAIL_MESSAGES = {
    "cc_rejected_bad_filled_card_number": _l("Invalid card number."),
    "cc_rejected_bad_filled_date": _l("Invalid expiration date."),
    "cc_rejected_bad_filled_security_code": _l("Invalid security code (CVV)."),
    "cc_rejected_bad_filled_other": _l("Check the card details and try again."),
    "cc_rejected_insufficient_amount": _l("Insufficient funds."),
    "cc_rejected_call_for_authorize": _l("Your bank needs to authorize this payment. Contact your card issuer."),
    "cc_rejected_card_disabled": _l("This card is disabled. Contact your card issuer."),
    "cc_rejected_duplicated_payment": _l("This payment was already made. Check your statement."),
    "cc_rejected_high_risk": _l("Payment declined. Try another card or payment method."),
    "cc_rejected_max_attempts": _l("Too many attempts. Try another card."),
    "cc_rejected_blacklist": _l("Payment declined. Try another card or payment method."),
    "cc_rejected_other_reason": _l("Card declined. Try another card."),
    "pending_contingency": _l("Your payment is being processed."),
    "pending_review_manual": _l("Your payment is under review."),
}


def describe_status_detail(status_detail: Optional[str], fallback: Optional[str] = None) -> Optional[str]:
    msg = STATUS_DETAIL_MESSAGES.get(_norm(status_detail))
    if msg is not None:
        return str(msg)
    return fallback
