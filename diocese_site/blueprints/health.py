from __future__ import annotations

import time
from typing import Any, Dict

from flask import Blueprint, current_app, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from diocese_site.blueprints.payments import _json_response
from diocese_site.extensions import db
from diocese_site.models import PROVIDERS, Donation, PaymentEvent
from diocese_site.services.donations import load_credentials

bp = Blueprint("health", __name__)

APP_STARTED_AT = time.time()


def _truthy(v: Any) -> bool:
    return str(v or "").strip().lower() in {"1", "true", "yes", "on", "y"}


def _is_no_such_table(err: Exception) -> bool:
    msg = str(err).lower()
    return "no such table" in msg or ("relation" in msg and "does not exist" in msg)


def _db_check() -> Dict[str, Any]:
    t0 = time.perf_counter()
    out: Dict[str, Any] = {"ok": True, "latencyMs": 0, "checks": {}}

    def _fail(name: str, e: Exception) -> None:
        out["ok"] = False
        out["checks"][name] = {"ok": False, "error": type(e).__name__}
        if _is_no_such_table(e):
            out["checks"][name]["hint"] = "missing_db_tables"
            out["checks"][name]["fix"] = "Run migrations (flask db upgrade)."
        db.session.rollback()

    try:
        db.session.execute(text("SELECT 1"))
        out["checks"]["ping"] = {"ok": True}
    except SQLAlchemyError as e:
        _fail("ping", e)
        out["latencyMs"] = int((time.perf_counter() - t0) * 1000)
        return out

    for name, column in (("donation", Donation.id), ("paymentEvent", PaymentEvent.id)):
        try:
            db.session.query(column).limit(1).all()
            out["checks"][name] = {"ok": True}
        except SQLAlchemyError as e:
            _fail(name, e)

    out["latencyMs"] = int((time.perf_counter() - t0) * 1000)
    return out


def _gateway_check(provider: str) -> Dict[str, Any]:
    try:
        creds = load_credentials(provider)
    except SQLAlchemyError as e:
        db.session.rollback()
        return {"ok": False, "error": type(e).__name__}

    if creds is None:
        return {"ok": False, "configured": False, "warning": "missing_settings"}

    warnings = []
    if not creds.public_key:
        warnings.append("missing_public_key")
    if not creds.secret_key:
        warnings.append("missing_secret_key")
    if not creds.webhook_secret:
        warnings.append("missing_webhook_secret")

    out: Dict[str, Any] = {
        "ok": bool(creds.public_key and creds.secret_key),
        "configured": True,
        "environment": creds.environment,
        "webhookSecretPresent": bool(creds.webhook_secret),
    }
    if warnings:
        out["warning"] = ",".join(warnings)
    return out


def _health_status(components: Dict[str, Any]) -> str:
    if not (components.get("db") or {}).get("ok", False):
        return "error"
    gateways = [components.get(p) or {} for p in PROVIDERS]
    # One working gateway is enough to take donations.
    if not any(gw.get("ok") for gw in gateways):
        return "degraded"
    return "ok"


@bp.get("/payments/health")
def payments_health():
    strict = _truthy(request.args.get("strict") or request.args.get("monitor"))

    components: Dict[str, Any] = {"db": _db_check()}
    for provider in PROVIDERS:
        components[provider] = _gateway_check(provider)

    status = _health_status(components)
    code = 200 if (not strict or status == "ok") else 503
    if status != "ok":
        current_app.logger.warning("payments.health: status=%s", status)

    return _json_response(
        {
            "ok": status == "ok",
            "status": status,
            "strict": strict,
            "env": current_app.config.get("ENV"),
            "uptimeS": int(time.time() - APP_STARTED_AT),
            "components": components,
        },
        code,
    )

