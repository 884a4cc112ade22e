# diocese_site/services/stripe_gateway.py
"""
Stripe calls used by the donation pipeline.

API keys are passed per call; nothing here touches ``stripe.api_key`` so two
environments can be served by the same process.
"""

from __future__ import annotations

import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import stripe

from diocese_site.errors import (
    GatewayRejectedError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    WebhookVerificationError,
)

log = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _translate(exc: stripe.StripeError, context: str) -> Exception:
    if isinstance(exc, stripe.APIConnectionError):
        msg = str(getattr(exc, "user_message", "") or exc)
        if "timed out" in msg.lower() or "timeout" in msg.lower():
            return GatewayTimeoutError(f"{context}: timeout")
        return GatewayUnavailableError(f"{context}: connection failed")
    if isinstance(exc, (stripe.CardError, stripe.InvalidRequestError)):
        return GatewayRejectedError(
            getattr(exc, "user_message", None) or str(exc),
            status_detail=getattr(exc, "code", None),
        )
    return GatewayUnavailableError(f"{context}: {type(exc).__name__}")


def create_intent(
    *,
    api_key: str,
    amount: Decimal,
    currency: str,
    donation_id: str,
    campaign_id: str,
    receipt_email: Optional[str],
    description: str,
    idempotency_key: Optional[str] = None,
) -> Any:
    try:
        return stripe.PaymentIntent.create(
            api_key=api_key,
            amount=to_minor_units(amount),
            currency=(currency or "brl").lower(),
            automatic_payment_methods={"enabled": True},
            receipt_email=receipt_email or None,
            description=description,
            metadata={"donation_id": donation_id, "campaign_id": campaign_id},
            idempotency_key=idempotency_key or f"donation-intent-{donation_id}",
        )
    except stripe.StripeError as exc:
        log.warning("Stripe intent create failed for donation=%s: %s", donation_id, type(exc).__name__)
        raise _translate(exc, "intent create") from exc


def retrieve_intent(intent_id: str, *, api_key: str) -> Any:
    try:
        return stripe.PaymentIntent.retrieve(intent_id, api_key=api_key, expand=["latest_charge"])
    except stripe.StripeError as exc:
        log.warning("Stripe intent lookup failed for %s: %s", intent_id, type(exc).__name__)
        raise _translate(exc, "intent lookup") from exc


def latest_charge_fields(intent: Any) -> Dict[str, Optional[str]]:
    """Charge id + receipt url from an intent whose latest_charge may be an id or an expanded object."""
    charge = obj_get(intent, "latest_charge")
    if isinstance(charge, str):
        return {"stripe_charge_id": charge, "receipt_url": None}
    if charge is None:
        return {"stripe_charge_id": None, "receipt_url": None}
    return {"stripe_charge_id": obj_get(charge, "id"), "receipt_url": obj_get(charge, "receipt_url")}


def latest_charge_refunded(intent: Any) -> bool:
    charge = obj_get(intent, "latest_charge")
    if charge is None or isinstance(charge, str):
        return False
    return bool(obj_get(charge, "refunded"))


def verify_event(payload: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """
    Verify the Stripe-Signature header and return the event as a plain dict.
    """
    try:
        stripe.Webhook.construct_event(payload=payload, sig_header=signature or "", secret=secret)
    except ValueError as exc:
        raise WebhookVerificationError("invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise WebhookVerificationError("invalid signature") from exc
    return parse_event_payload(payload)


def parse_event_payload(payload: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(payload or b"{}")
    except ValueError as exc:
        raise WebhookVerificationError("invalid payload") from exc
    if not isinstance(data, dict):
        raise WebhookVerificationError("invalid payload")
    return data


def obj_get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    try:
        return obj[key]
    except (KeyError, TypeError):
        return getattr(obj, key, None)
