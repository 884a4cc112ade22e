# diocese_site/services/mercadopago.py
"""
Thin Mercado Pago REST client (requests) + notification signature check.

Every call carries an explicit timeout and is never retried here: a charge
that timed out may still have been captured, so the caller surfaces the
timeout and relies on webhooks / the status resolver to converge.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Dict, Mapping, Optional

import requests

from diocese_site.errors import (
    ConfigurationError,
    GatewayRejectedError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from diocese_site.services.status_mapping import describe_status_detail

log = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.mercadopago.com"


class MercadoPagoClient:
    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 25,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.access_token = access_token
        self.base_url = (base_url or DEFAULT_API_BASE).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, access_token: str, config: Mapping[str, Any]) -> "MercadoPagoClient":
        return cls(
            access_token,
            base_url=str(config.get("MERCADOPAGO_API_BASE") or DEFAULT_API_BASE),
            timeout=float(config.get("GATEWAY_TIMEOUT_SECONDS") or 25),
        )

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        h = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            h["X-Idempotency-Key"] = idempotency_key
        return h

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            log.warning("Mercado Pago %s %s timed out after %ss", method, path, self.timeout)
            raise GatewayTimeoutError(f"timeout after {self.timeout}s") from exc
        except requests.ConnectionError as exc:
            log.warning("Mercado Pago %s %s connection failed: %s", method, path, exc)
            raise GatewayUnavailableError("connection failed") from exc
        except requests.RequestException as exc:
            log.warning("Mercado Pago %s %s request error: %s", method, path, exc)
            raise GatewayUnavailableError(str(exc)) from exc

    @staticmethod
    def _json(resp: requests.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    # ----------------------------
    # Payments
    # ----------------------------
    def create_payment(self, payload: Dict[str, Any], *, idempotency_key: str) -> Dict[str, Any]:
        """POST /v1/payments. Returns the provider payment object on 2xx."""
        resp = self._send("POST", "/v1/payments", json=payload, headers=self._headers(idempotency_key))
        data = self._json(resp)

        if resp.status_code >= 500:
            log.error("Mercado Pago charge returned %s for ref=%s", resp.status_code, idempotency_key)
            raise GatewayUnavailableError(f"provider returned {resp.status_code}")

        if resp.status_code >= 400:
            reason, detail = _rejection_reason(data)
            log.info(
                "Mercado Pago rejected charge ref=%s status=%s detail=%s",
                idempotency_key,
                resp.status_code,
                detail,
            )
            raise GatewayRejectedError(
                describe_status_detail(detail, fallback=reason),
                status_detail=detail,
                donation_id=idempotency_key,
            )

        if not data.get("id"):
            raise GatewayUnavailableError("provider response without payment id")
        return data

    def get_payment(self, payment_id: str) -> Optional[Dict[str, Any]]:
        """GET /v1/payments/{id}. None when the provider does not know the id."""
        resp = self._send("GET", f"/v1/payments/{payment_id}", headers=self._headers())
        if resp.status_code == 404:
            return None
        if resp.status_code in (401, 403):
            raise ConfigurationError(f"Mercado Pago rejected the access token ({resp.status_code})")
        if resp.status_code >= 400:
            raise GatewayUnavailableError(f"payment lookup returned {resp.status_code}")
        data = self._json(resp)
        if not data.get("id"):
            raise GatewayUnavailableError("payment lookup without id")
        return data


def _rejection_reason(data: Dict[str, Any]) -> "tuple[Optional[str], Optional[str]]":
    cause = data.get("cause")
    reason = None
    if isinstance(cause, list) and cause and isinstance(cause[0], dict):
        reason = cause[0].get("description")
    reason = reason or data.get("message")
    return (str(reason) if reason else None), (data.get("status_detail") or None)


# ----------------------------
# Notification signature (x-signature)
# ----------------------------
def parse_signature_header(header: Optional[str]) -> Dict[str, str]:
    """'ts=1704908010,v1=618c8534...' -> {'ts': ..., 'v1': ...}"""
    parts: Dict[str, str] = {}
    for chunk in (header or "").split(","):
        key, sep, value = chunk.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def signature_manifest(data_id: Optional[str], request_id: Optional[str], ts: Optional[str]) -> str:
    out = ""
    if data_id:
        did = str(data_id)
        out += f"id:{did.lower() if did.isalnum() else did};"
    if request_id:
        out += f"request-id:{request_id};"
    if ts:
        out += f"ts:{ts};"
    return out


def verify_signature(
    signature_header: Optional[str],
    request_id: Optional[str],
    data_id: Optional[str],
    secret: str,
) -> bool:
    parts = parse_signature_header(signature_header)
    ts, v1 = parts.get("ts"), parts.get("v1")
    if not ts or not v1 or not secret:
        return False
    manifest = signature_manifest(data_id, request_id, ts)
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, v1.lower())
