# diocese_site/services/resolver.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import current_app
from flask_babel import gettext as _

from diocese_site.errors import DonationError, NotFoundError, ValidationError
from diocese_site.models import Donation, DonationStatus
from diocese_site.models.mixins import utcnow
from diocese_site.services import mercadopago, stripe_gateway
from diocese_site.services.donations import donation_view, get_donation, load_credentials
from diocese_site.services.orchestrator import mercadopago_fields
from diocese_site.services.receipts import apply_and_notify
from diocese_site.services.status_mapping import is_final_success

log = logging.getLogger(__name__)


def _refetch_stripe(donation: Donation, intent_id: str) -> None:
    creds = load_credentials("stripe")
    if creds is None or not creds.secret_key:
        log.info("status check: stripe credentials missing, skipping re-fetch of %s", intent_id)
        return
    intent = stripe_gateway.retrieve_intent(intent_id, api_key=creds.secret_key)
    owner = stripe_gateway.obj_get(stripe_gateway.obj_get(intent, "metadata"), "donation_id")
    if owner and owner != donation.id:
        log.warning("status check: intent %s belongs to donation %s, not %s", intent_id, owner, donation.id)
        return
    if is_final_success("stripe", stripe_gateway.obj_get(intent, "status")):
        apply_and_notify(
            donation.id,
            DonationStatus.COMPLETED,
            gateway="stripe",
            stripe_payment_intent_id=intent_id,
            paid_at=utcnow(),
            **stripe_gateway.latest_charge_fields(intent),
        )


def _refetch_mercadopago(donation: Donation, payment_id: str) -> None:
    creds = load_credentials("mercadopago")
    if creds is None or not creds.secret_key:
        log.info("status check: mercadopago credentials missing, skipping re-fetch of %s", payment_id)
        return
    client = mercadopago.MercadoPagoClient.from_config(creds.secret_key, current_app.config)
    payment = client.get_payment(payment_id)
    if payment is None:
        return
    if str(payment.get("external_reference") or "") != donation.id:
        log.warning("status check: payment %s does not reference donation %s", payment_id, donation.id)
        return
    if is_final_success("mercadopago", payment.get("status")):
        apply_and_notify(donation.id, DonationStatus.COMPLETED, **mercadopago_fields(payment))


def resolve_status(donation_id: Optional[str], provider_transaction_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Current donation view, optionally reconciled against the provider first.

    A supplied transaction id is re-read at the provider (``pi_...`` at
    Stripe, anything else at Mercado Pago); only a final success is written
    back, and only through the guarded transition. Provider errors are logged
    and the stored state is returned unchanged.
    """
    donation_id = str(donation_id or "").strip()
    if not donation_id:
        raise ValidationError(_("Missing donation id."))

    donation = get_donation(donation_id)
    if donation is None:
        raise NotFoundError()

    txn = str(provider_transaction_id or "").strip()
    if txn and not donation.is_final:
        try:
            if txn.startswith("pi_"):
                _refetch_stripe(donation, txn)
            else:
                _refetch_mercadopago(donation, txn)
        except DonationError as exc:
            log.warning(
                "status check re-fetch failed donation=%s txn=%s: %s (%s)",
                donation_id,
                txn,
                exc.code,
                exc,
            )

    return donation_view(donation_id)
