# diocese_site/blueprints/payments.py
"""
Donation payments blueprint (Mercado Pago + Stripe)

Routes (no prefix):
  POST /donations                     -> pending donation + public key
  POST /payments                      -> synchronous Mercado Pago charge
  POST /payments/stripe/intent        -> Stripe PaymentIntent for a donation
  POST /donations/status              -> status check (optionally re-fetched)
  GET  /donations/<id>                -> donation view
  POST /webhooks/payment-provider     -> Mercado Pago notifications
  POST /webhooks/mercadopago          -> alias
  POST /webhooks/stripe               -> Stripe events
  GET  /payments/config               -> public checkout config (no secrets)

Every response is JSON with an `ok` flag and no-store cache headers. Pipeline
errors are DonationError subclasses; the blueprint error handler maps them to
their HTTP status and a public message.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, cast

from flask import Blueprint, current_app, jsonify, request

from diocese_site.errors import (
    ConfigurationError,
    DonationError,
    GatewayError,
    PersistenceError,
)
from diocese_site.services import orchestrator, reconciler, resolver
from diocese_site.services.donations import donation_view, load_credentials

bp = Blueprint("payments", __name__)


# ----------------------------
# Helpers
# ----------------------------
def _request_payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict) and data:
        return cast(Dict[str, Any], data)
    if request.form:
        return cast(Dict[str, Any], request.form.to_dict(flat=True))
    return {}


def _json_response(payload: Dict[str, Any], status: int = 200):
    resp = jsonify(payload)
    resp.status_code = int(status)
    resp.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, max-age=0")
    resp.headers.setdefault("Pragma", "no-cache")
    resp.headers.setdefault("Expires", "0")
    return resp


def _json_ok(payload: Dict[str, Any], status: int = 200):
    payload.setdefault("ok", True)
    return _json_response(payload, status)


def _json_error(err: DonationError):
    body: Dict[str, Any] = {"ok": False, **err.to_dict()}
    return _json_response(body, err.http_status)


# ----------------------------
# Error handling
# ----------------------------
@bp.errorhandler(DonationError)
def _handle_donation_error(err: DonationError):
    logger = current_app.logger
    where = f"{request.method} {request.path}"
    if isinstance(err, PersistenceError):
        logger.error(
            "%s: persistence failure donation=%s provider_payment_id=%s: %s",
            where,
            err.donation_id,
            err.provider_payment_id,
            err,
            exc_info=err.__cause__ is not None,
        )
    elif isinstance(err, ConfigurationError):
        logger.error("%s: configuration error: %s", where, err)
    elif isinstance(err, GatewayError):
        logger.warning("%s: %s donation=%s: %s", where, err.code, err.donation_id, err)
    else:
        logger.info("%s: %s: %s", where, err.code, err)
    return _json_error(err)


# ----------------------------
# Donation intake + charge
# ----------------------------
@bp.post("/donations")
def create_donation():
    result = orchestrator.create_donation(_request_payload())
    return _json_ok(result, 201)


@bp.post("/payments")
def charge():
    result = orchestrator.charge_donation(_request_payload())
    return _json_ok(result.to_dict())


@bp.post("/payments/stripe/intent")
def stripe_intent():
    return _json_ok(orchestrator.create_stripe_intent(_request_payload()))


# ----------------------------
# Status
# ----------------------------
@bp.post("/donations/status")
def donation_status():
    data = _request_payload()
    donation_id = data.get("donationId") or data.get("donation_id")
    txn: Optional[str] = (
        data.get("providerTransactionId")
        or data.get("paymentIntentId")
        or data.get("paymentId")
        or data.get("payment_id")
    )
    view = resolver.resolve_status(donation_id, txn)
    return _json_ok({"donation": view})


@bp.get("/donations/<donation_id>")
def get_donation(donation_id: str):
    return _json_ok({"donation": donation_view(donation_id)})


# ----------------------------
# Webhooks
# ----------------------------
@bp.post("/webhooks/payment-provider")
@bp.post("/webhooks/mercadopago")
def mercadopago_webhook():
    body = request.get_json(silent=True, force=True)
    outcome = reconciler.reconcile_mercadopago(
        body if isinstance(body, dict) else None,
        request.args,
        request.headers,
    )
    return _json_ok(outcome.to_dict())


@bp.post("/webhooks/stripe")
def stripe_webhook():
    payload = request.get_data(cache=False, as_text=False) or b""
    outcome = reconciler.reconcile_stripe(payload, request.headers.get("Stripe-Signature"))
    return _json_ok(outcome.to_dict())


# ----------------------------
# Public checkout config
# ----------------------------
def _gateway_public(provider: str) -> Dict[str, Any]:
    creds = load_credentials(provider)
    if creds is None:
        return {"enabled": False, "environment": None, "publicKey": None}
    return {
        "enabled": bool(creds.public_key and creds.secret_key),
        "environment": creds.environment,
        "publicKey": creds.public_key or None,
    }


@bp.get("/payments/config")
def payments_config():
    return _json_ok(
        {
            "currency": str(current_app.config.get("STRIPE_CURRENCY") or "brl").lower(),
            "mercadopago": _gateway_public("mercadopago"),
            "stripe": _gateway_public("stripe"),
        }
    )


__all__ = ["bp", "_json_response", "_json_ok"]
