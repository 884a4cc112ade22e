# diocese_site/services/reconciler.py
"""
Webhook reconciliation.

The notification body is only a pointer: the payment is always re-read from
the provider (the Mercado Pago payment, the Stripe PaymentIntent) before any
donation status is written, and every write goes through the same
guarded transition as the synchronous charge.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from flask import current_app

from diocese_site.errors import GatewayRejectedError, WebhookVerificationError
from diocese_site.models import DonationStatus
from diocese_site.models.mixins import utcnow
from diocese_site.services import mercadopago, stripe_gateway
from diocese_site.services.donations import (
    find_donation_by_intent,
    get_donation,
    load_credentials,
    mark_event_processed,
    record_event,
    require_credentials,
)
from diocese_site.services.notifications import parse_mercadopago_notification, parse_stripe_event
from diocese_site.services.orchestrator import mercadopago_fields
from diocese_site.services.receipts import apply_and_notify
from diocese_site.services.status_mapping import map_mercadopago_status, map_stripe_intent

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    action: str
    donation_id: Optional[str] = None
    status: Optional[str] = None
    changed: bool = False

    def to_dict(self) -> dict:
        out = {"received": True, "action": self.action}
        if self.donation_id:
            out["donationId"] = self.donation_id
        if self.status:
            out["status"] = self.status
        return out


# ----------------------------
# Mercado Pago
# ----------------------------
def reconcile_mercadopago(
    body: Optional[Mapping[str, Any]],
    args: Optional[Mapping[str, Any]],
    headers: Mapping[str, Any],
) -> ReconcileOutcome:
    note = parse_mercadopago_notification(body, args)
    if note is None:
        log.info("mercadopago notification ignored: unrecognized shape")
        return ReconcileOutcome("ignored")
    if not note.is_payment:
        log.info("mercadopago notification ignored: topic=%s shape=%s", note.topic, note.shape)
        return ReconcileOutcome("ignored")

    creds = require_credentials("mercadopago", note.environment, need_secret=True)

    if creds.webhook_secret:
        ok = mercadopago.verify_signature(
            headers.get("x-signature"),
            headers.get("x-request-id"),
            note.payment_id,
            creds.webhook_secret,
        )
        if not ok:
            log.warning("mercadopago notification rejected: bad signature (payment=%s)", note.payment_id)
            raise WebhookVerificationError("invalid x-signature")

    event, already = record_event("mercadopago", note.event_id or "", note.action or note.topic, note.payment_id or "")
    if already:
        log.info("mercadopago notification %s already processed", note.event_id)
        return ReconcileOutcome("duplicate")

    client = mercadopago.MercadoPagoClient.from_config(creds.secret_key, current_app.config)
    payment = client.get_payment(note.payment_id)
    if payment is None:
        log.info("mercadopago payment %s not found at provider", note.payment_id)
        mark_event_processed(event)
        return ReconcileOutcome("unknown_payment")

    ref = str(payment.get("external_reference") or "").strip()
    donation = get_donation(ref) if ref else None
    if donation is None:
        log.info("mercadopago payment %s has no matching donation (ref=%r)", note.payment_id, ref)
        mark_event_processed(event)
        return ReconcileOutcome("unknown_reference")

    target = map_mercadopago_status(payment.get("status"))
    changed = apply_and_notify(donation.id, target, **mercadopago_fields(payment))
    mark_event_processed(event)

    stored = get_donation(donation.id, fresh=True)
    log.info(
        "mercadopago payment %s -> donation %s status=%s changed=%s",
        note.payment_id,
        donation.id,
        stored.status if stored else target.value,
        changed,
    )
    return ReconcileOutcome(
        "applied" if changed else "unchanged",
        donation_id=donation.id,
        status=stored.status if stored else None,
        changed=changed,
    )


# ----------------------------
# Stripe
# ----------------------------
def _stripe_webhook_secret() -> str:
    creds = load_credentials("stripe")
    return creds.webhook_secret if creds else ""


def _stripe_target(event_type: str, intent: Any) -> Tuple[DonationStatus, Dict[str, Any]]:
    """Status from the re-read intent. The event type only selects the refund path."""
    fields: Dict[str, Any] = {"gateway": "stripe", "stripe_payment_intent_id": stripe_gateway.obj_get(intent, "id")}
    if event_type == "charge.refunded" and stripe_gateway.latest_charge_refunded(intent):
        return DonationStatus.REFUNDED, {**fields, **stripe_gateway.latest_charge_fields(intent)}

    target = map_stripe_intent(
        stripe_gateway.obj_get(intent, "status"),
        stripe_gateway.obj_get(intent, "last_payment_error"),
    )
    if target == DonationStatus.COMPLETED:
        fields.update(stripe_gateway.latest_charge_fields(intent))
        fields["paid_at"] = utcnow()
    return target, fields


def reconcile_stripe(payload: bytes, signature: Optional[str]) -> ReconcileOutcome:
    secret = _stripe_webhook_secret()
    if secret:
        event = stripe_gateway.verify_event(payload, signature, secret)
    else:
        if current_app.config.get("ENV") == "production":
            raise WebhookVerificationError("stripe webhook secret not configured")
        log.warning("stripe webhook accepted WITHOUT signature verification (no secret configured)")
        event = stripe_gateway.parse_event_payload(payload)

    note = parse_stripe_event(event)
    if not note.handled:
        log.info("stripe event ignored: %s", note.event_type)
        return ReconcileOutcome("ignored")

    creds = require_credentials("stripe", note.environment, need_secret=True)

    ev, already = record_event("stripe", note.event_id or "", note.event_type, note.intent_id or "")
    if already:
        log.info("stripe event %s already processed", note.event_id)
        return ReconcileOutcome("duplicate")

    if not note.intent_id:
        log.info("stripe event %s carries no payment intent", note.event_id)
        mark_event_processed(ev)
        return ReconcileOutcome("unknown_payment")

    try:
        intent = stripe_gateway.retrieve_intent(note.intent_id, api_key=creds.secret_key)
    except GatewayRejectedError:
        log.info("stripe intent %s not found at provider", note.intent_id)
        mark_event_processed(ev)
        return ReconcileOutcome("unknown_payment")

    owner = stripe_gateway.obj_get(stripe_gateway.obj_get(intent, "metadata"), "donation_id")
    donation = get_donation(owner) if owner else None
    if donation is None:
        donation = find_donation_by_intent(note.intent_id)
    if donation is None:
        log.info("stripe event %s: no donation for intent=%s", note.event_id, note.intent_id)
        mark_event_processed(ev)
        return ReconcileOutcome("unknown_reference")
    if note.donation_id and note.donation_id != donation.id:
        log.warning(
            "stripe event %s names donation %s but intent belongs to %s", note.event_id, note.donation_id, donation.id
        )

    target, fields = _stripe_target(note.event_type, intent)
    changed = apply_and_notify(donation.id, target, **fields)
    mark_event_processed(ev)

    stored = get_donation(donation.id, fresh=True)
    log.info(
        "stripe %s (intent=%s) -> donation %s status=%s changed=%s",
        note.event_type,
        note.intent_id,
        donation.id,
        stored.status if stored else target.value,
        changed,
    )
    return ReconcileOutcome(
        "applied" if changed else "unchanged",
        donation_id=donation.id,
        status=stored.status if stored else None,
        changed=changed,
    )
