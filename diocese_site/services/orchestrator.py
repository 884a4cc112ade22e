# diocese_site/services/orchestrator.py
"""
Donation intake and the synchronous charge.

create_donation      validates donor input, resolves gateway credentials and
                     inserts exactly one pending donation
charge_donation      exchanges a card token for a Mercado Pago payment, keyed
                     by the donation id, and records the mapped status
create_stripe_intent PaymentIntent variant for the Stripe checkout
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from flask import current_app
from flask_babel import gettext as _

from diocese_site.errors import NotFoundError, PersistenceError, ValidationError
from diocese_site.models import Donation, DonationCampaign, DonationStatus
from diocese_site.models.mixins import utcnow
from diocese_site.services import mercadopago, stripe_gateway
from diocese_site.services.donations import (
    create_pending_donation,
    environment_from_hint,
    get_donation,
    require_active_campaign,
    require_credentials,
)
from diocese_site.services.receipts import apply_and_notify
from diocese_site.services.status_mapping import (
    is_final_success,
    map_mercadopago_status,
    map_stripe_intent_status,
)

log = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CENTS = Decimal("0.01")


# ----------------------------
# Payload helpers
# ----------------------------
def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        v = payload.get(k)
        if v is not None and v != "":
            return v
    return None


def _text(v: Any) -> str:
    return str(v).strip() if v is not None else ""


def parse_amount(raw: Any) -> Optional[Decimal]:
    """Positive, finite, rounded to cents; None otherwise."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        amount = Decimal(str(raw).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _money(value: Decimal) -> float:
    return float(Decimal(value).quantize(_CENTS))


# ----------------------------
# create
# ----------------------------
@dataclass(frozen=True)
class DonationIntake:
    campaign_id: str
    amount: Decimal
    donor_name: str
    donor_email: str
    donor_phone: str
    gateway: str = "mercadopago"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, gateway: Optional[str] = None) -> "DonationIntake":
        campaign_id = _text(_pick(payload, "campaignId", "campaign_id"))
        raw_amount = _pick(payload, "amount")
        donor_name = _text(_pick(payload, "donorName", "donor_name"))
        donor_email = _text(_pick(payload, "donorEmail", "donor_email")).lower()
        donor_phone = _text(_pick(payload, "donorPhone", "donor_phone"))

        if not (campaign_id and raw_amount is not None and donor_name and donor_email and donor_phone):
            raise ValidationError(_("Missing required fields."))

        amount = parse_amount(raw_amount)
        if amount is None:
            raise ValidationError(_("Amount must be a positive number."))

        if not _EMAIL_RE.match(donor_email):
            raise ValidationError(_("Enter a valid e-mail address."))

        gw = _text(gateway or _pick(payload, "gateway") or "mercadopago").lower()
        if gw not in {"mercadopago", "stripe"}:
            raise ValidationError(_("Unsupported payment method."))

        return cls(
            campaign_id=campaign_id,
            amount=amount,
            donor_name=donor_name,
            donor_email=donor_email,
            donor_phone=donor_phone,
            gateway=gw,
        )


def _check_minimum(campaign: DonationCampaign, amount: Decimal) -> None:
    minimum = Decimal(campaign.min_amount or 0)
    if amount < minimum:
        raise ValidationError(_("The minimum donation is %(amount)s.", amount=f"{minimum:.2f}"))


def _campaign_for(intake: DonationIntake) -> DonationCampaign:
    campaign = require_active_campaign(intake.campaign_id)
    _check_minimum(campaign, intake.amount)
    return campaign


def _insert_for(intake: DonationIntake, campaign: DonationCampaign) -> Donation:
    return create_pending_donation(
        campaign=campaign,
        amount=intake.amount,
        donor_name=intake.donor_name,
        donor_email=intake.donor_email,
        donor_phone=intake.donor_phone,
        gateway=intake.gateway,
    )


def create_donation(payload: Mapping[str, Any]) -> Dict[str, Any]:
    intake = DonationIntake.from_payload(payload)
    campaign = _campaign_for(intake)

    # Credentials first: no orphan row when the gateway is not configured.
    creds = require_credentials(intake.gateway, need_public=True)
    donation = _insert_for(intake, campaign)
    log.info(
        "donation created id=%s campaign=%s amount=%s gateway=%s env=%s",
        donation.id,
        campaign.id,
        donation.amount,
        intake.gateway,
        creds.environment,
    )
    return {
        "donationId": donation.id,
        "publicKey": creds.public_key,
        "gateway": intake.gateway,
        "environment": creds.environment,
    }


# ----------------------------
# charge (Mercado Pago)
# ----------------------------
@dataclass(frozen=True)
class ChargeRequest:
    donation_id: str
    token: str
    payment_method_id: str
    installments: int = 1
    campaign_id: Optional[str] = None
    amount: Optional[Decimal] = None
    issuer_id: Optional[str] = None
    donor_email: Optional[str] = None
    donor_name: Optional[str] = None
    donor_phone: Optional[str] = None
    identification: Optional[Dict[str, str]] = None
    environment: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChargeRequest":
        # The checkout widget posts its form data nested under paymentData.
        pdata = payload.get("paymentData") if isinstance(payload.get("paymentData"), Mapping) else {}
        payer = pdata.get("payer") if isinstance(pdata.get("payer"), Mapping) else {}

        donation_id = _text(_pick(payload, "donationId", "donation_id"))
        token = _text(_pick(payload, "paymentToken", "token") or pdata.get("token"))
        method = _text(_pick(payload, "paymentMethodId", "payment_method_id") or pdata.get("payment_method_id"))

        if not donation_id:
            raise ValidationError(_("Missing donation id."))
        if not token or not method:
            raise ValidationError(_("Missing payment data."))

        raw_installments = _pick(payload, "installments")
        if raw_installments is None:
            raw_installments = pdata.get("installments") or 1
        try:
            installments = int(raw_installments)
        except (TypeError, ValueError):
            raise ValidationError(_("Invalid number of installments."))
        if installments < 1:
            raise ValidationError(_("Invalid number of installments."))

        raw_amount = _pick(payload, "amount")
        amount = None
        if raw_amount is not None:
            amount = parse_amount(raw_amount)
            if amount is None:
                raise ValidationError(_("Amount must be a positive number."))

        ident = payer.get("identification") if isinstance(payer.get("identification"), Mapping) else None
        identification = None
        if ident and ident.get("type") and ident.get("number"):
            identification = {"type": _text(ident.get("type")), "number": _text(ident.get("number"))}

        issuer = _pick(payload, "issuerId", "issuer_id") or pdata.get("issuer_id")
        hint = _pick(payload, "environment", "publicKey", "public_key")

        return cls(
            donation_id=donation_id,
            token=token,
            payment_method_id=method,
            installments=installments,
            campaign_id=_text(_pick(payload, "campaignId", "campaign_id")) or None,
            amount=amount,
            issuer_id=_text(issuer) or None,
            donor_email=_text(_pick(payload, "donorEmail", "donor_email") or payer.get("email")) or None,
            donor_name=_text(_pick(payload, "donorName", "donor_name")) or None,
            donor_phone=_text(_pick(payload, "donorPhone", "donor_phone")) or None,
            identification=identification,
            environment=environment_from_hint(hint),
        )


@dataclass(frozen=True)
class ChargeResult:
    donation_id: str
    provider_payment_id: Optional[str]
    provider_status: Optional[str]
    status_detail: Optional[str]
    donation_status: str
    payment_method_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donationId": self.donation_id,
            "providerPaymentId": self.provider_payment_id,
            "status": self.provider_status,
            "statusDetail": self.status_detail,
            "donationStatus": self.donation_status,
            "paymentMethodId": self.payment_method_id,
        }


def notification_url() -> Optional[str]:
    cfg = current_app.config
    url = str(cfg.get("MERCADOPAGO_NOTIFICATION_URL") or "").strip()
    if not url:
        base = str(cfg.get("PUBLIC_BASE_URL") or "").rstrip("/")
        url = f"{base}/webhooks/payment-provider" if base else ""
    # Mercado Pago refuses non-public callback URLs.
    return url if url.startswith("https://") else None


def build_payment_payload(req: ChargeRequest, donation: Donation) -> Dict[str, Any]:
    payer: Dict[str, Any] = {"email": req.donor_email or donation.donor_email}
    if req.identification:
        payer["identification"] = dict(req.identification)

    campaign_title = donation.campaign.title if donation.campaign else ""
    payload: Dict[str, Any] = {
        "transaction_amount": _money(donation.amount),
        "token": req.token,
        "installments": req.installments,
        "payment_method_id": req.payment_method_id,
        "payer": payer,
        "description": f"Doação - {campaign_title}".strip(" -") or "Doação",
        "external_reference": donation.id,
    }
    if req.issuer_id:
        payload["issuer_id"] = req.issuer_id
    url = notification_url()
    if url:
        payload["notification_url"] = url
    return payload


def mercadopago_fields(payment: Mapping[str, Any]) -> Dict[str, Any]:
    """Correlation columns for a provider payment object."""
    status = payment.get("status")
    fields: Dict[str, Any] = {
        "gateway": "mercadopago",
        "mp_payment_id": str(payment.get("id")) if payment.get("id") is not None else None,
        "mp_status": status,
        "mp_status_detail": payment.get("status_detail"),
    }
    if is_final_success("mercadopago", status):
        fields["mp_payment_type"] = payment.get("payment_type_id")
        amount = payment.get("transaction_amount")
        fields["mp_transaction_amount"] = parse_amount(amount) if amount is not None else None
        fields["paid_at"] = utcnow()
    return fields


def charge_donation(payload: Mapping[str, Any]) -> ChargeResult:
    req = ChargeRequest.from_payload(payload)

    donation = get_donation(req.donation_id)
    if donation is None:
        raise NotFoundError(donation_id=req.donation_id)
    if req.campaign_id and req.campaign_id != donation.campaign_id:
        raise ValidationError(_("Donation does not belong to this campaign."), donation_id=donation.id)
    if req.amount is not None and req.amount != Decimal(donation.amount).quantize(_CENTS):
        raise ValidationError(_("Amount does not match the donation."), donation_id=donation.id)

    if donation.is_final:
        log.info("charge skipped: donation %s already %s", donation.id, donation.status)
        return ChargeResult(
            donation_id=donation.id,
            provider_payment_id=donation.mp_payment_id,
            provider_status=donation.mp_status,
            status_detail=donation.mp_status_detail,
            donation_status=donation.status,
            payment_method_id=req.payment_method_id,
        )

    creds = require_credentials("mercadopago", req.environment, need_secret=True)
    client = mercadopago.MercadoPagoClient.from_config(creds.secret_key, current_app.config)

    log.info("charging donation=%s env=%s method=%s", donation.id, creds.environment, req.payment_method_id)
    payment = client.create_payment(build_payment_payload(req, donation), idempotency_key=donation.id)

    fields = mercadopago_fields(payment)
    target = map_mercadopago_status(payment.get("status"))
    try:
        apply_and_notify(donation.id, target, **fields)
    except PersistenceError as exc:
        exc.provider_payment_id = fields["mp_payment_id"]
        log.critical(
            "CHARGED BUT NOT RECORDED donation=%s mp_payment_id=%s provider_status=%s: reconcile manually",
            donation.id,
            fields["mp_payment_id"],
            payment.get("status"),
        )
        raise

    stored = get_donation(donation.id, fresh=True)
    return ChargeResult(
        donation_id=donation.id,
        provider_payment_id=fields["mp_payment_id"],
        provider_status=payment.get("status"),
        status_detail=payment.get("status_detail"),
        donation_status=stored.status if stored is not None else target.value,
        payment_method_id=payment.get("payment_method_id") or req.payment_method_id,
    )


# ----------------------------
# Stripe PaymentIntent
# ----------------------------
def create_stripe_intent(payload: Mapping[str, Any]) -> Dict[str, Any]:
    hint = environment_from_hint(_pick(payload, "environment", "publicKey", "public_key"))
    creds = require_credentials("stripe", hint, need_public=True, need_secret=True)

    donation_id = _text(_pick(payload, "donationId", "donation_id"))
    if donation_id:
        donation = get_donation(donation_id)
        if donation is None:
            raise NotFoundError(donation_id=donation_id)
        if donation.is_final:
            raise ValidationError(_("This donation was already processed."), donation_id=donation.id)
    else:
        intake = DonationIntake.from_payload(payload, gateway="stripe")
        donation = _insert_for(intake, _campaign_for(intake))

    intent = None
    idempotency_key = f"donation-intent-{donation.id}"
    if donation.stripe_payment_intent_id:
        existing = stripe_gateway.retrieve_intent(donation.stripe_payment_intent_id, api_key=creds.secret_key)
        if map_stripe_intent_status(stripe_gateway.obj_get(existing, "status")) != DonationStatus.FAILED:
            intent = existing
        else:
            # Canceled intents cannot be reused; a fresh key gets a fresh intent.
            idempotency_key = f"{idempotency_key}-{donation.stripe_payment_intent_id}"

    if intent is None:
        campaign_title = donation.campaign.title if donation.campaign else ""
        intent = stripe_gateway.create_intent(
            api_key=creds.secret_key,
            amount=donation.amount,
            currency=str(current_app.config.get("STRIPE_CURRENCY") or "brl"),
            donation_id=donation.id,
            campaign_id=donation.campaign_id,
            receipt_email=donation.donor_email,
            description=f"Doação - {campaign_title}".strip(" -") or "Doação",
            idempotency_key=idempotency_key,
        )
    intent_id = stripe_gateway.obj_get(intent, "id")

    try:
        apply_and_notify(
            donation.id,
            DonationStatus.PROCESSING,
            gateway="stripe",
            stripe_payment_intent_id=intent_id,
        )
    except PersistenceError as exc:
        exc.provider_payment_id = intent_id
        log.critical("intent %s created but not recorded for donation=%s", intent_id, donation.id)
        raise

    return {
        "clientSecret": stripe_gateway.obj_get(intent, "client_secret"),
        "donationId": donation.id,
        "publishableKey": creds.public_key,
        "paymentIntentId": intent_id,
    }
