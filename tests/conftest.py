"""Shared fixtures: in-memory app, seeded campaign/gateways, fake Mercado Pago."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest

from diocese_site import create_app
from diocese_site.config import TestingConfig
from diocese_site.extensions import db
from diocese_site.models import Donation, DonationCampaign, GatewaySettings
from diocese_site.services import mercadopago


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def campaign(app) -> DonationCampaign:
    c = DonationCampaign(
        id="c1",
        title="Reforma da Catedral",
        image_url="https://cdn.diocese.test/catedral.jpg",
        min_amount=Decimal("5.00"),
        default_amounts=[20, 50, 100],
    )
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def mp_settings(app) -> GatewaySettings:
    row = GatewaySettings(
        provider="mercadopago",
        test_public_key="TEST-pub",
        test_secret_key="TEST-token",
        live_public_key="APP_USR-pub",
        live_secret_key="APP_USR-token",
        active_environment="test",
    )
    db.session.add(row)
    db.session.commit()
    return row


@pytest.fixture
def stripe_settings(app) -> GatewaySettings:
    row = GatewaySettings(
        provider="stripe",
        test_public_key="pk_test_x",
        test_secret_key="sk_test_x",
        active_environment="test",
    )
    db.session.add(row)
    db.session.commit()
    return row


# ----------------------------
# Fake Mercado Pago
# ----------------------------
class FakeMercadoPago:
    """
    In-memory stand-in for MercadoPagoClient. Honors X-Idempotency-Key the way
    the provider does: a repeated key returns the original payment.
    """

    def __init__(self) -> None:
        self.payments: Dict[str, Dict[str, Any]] = {}
        self.by_key: Dict[str, str] = {}
        self.create_calls: List[Tuple[Dict[str, Any], str]] = []
        self.lookups: List[str] = []
        self.access_tokens: List[str] = []
        self.next_status = "approved"
        self.next_detail = "accredited"
        self.create_error: Optional[Exception] = None
        self.lookup_error: Optional[Exception] = None

    @property
    def idempotency_keys(self) -> set:
        return set(self.by_key)

    def create_payment(self, payload: Dict[str, Any], *, idempotency_key: str) -> Dict[str, Any]:
        self.create_calls.append((payload, idempotency_key))
        if self.create_error is not None:
            raise self.create_error
        if idempotency_key in self.by_key:
            return dict(self.payments[self.by_key[idempotency_key]])

        pid = f"p{len(self.payments) + 1}"
        self.payments[pid] = {
            "id": pid,
            "status": self.next_status,
            "status_detail": self.next_detail,
            "external_reference": payload.get("external_reference"),
            "payment_type_id": "credit_card",
            "payment_method_id": payload.get("payment_method_id"),
            "transaction_amount": payload.get("transaction_amount"),
        }
        self.by_key[idempotency_key] = pid
        return dict(self.payments[pid])

    def get_payment(self, payment_id: str) -> Optional[Dict[str, Any]]:
        self.lookups.append(str(payment_id))
        if self.lookup_error is not None:
            raise self.lookup_error
        payment = self.payments.get(str(payment_id))
        return dict(payment) if payment else None

    def set_status(self, payment_id: str, status: str, detail: Optional[str] = None) -> None:
        self.payments[payment_id]["status"] = status
        self.payments[payment_id]["status_detail"] = detail

    def add_payment(self, payment_id: str, **fields: Any) -> None:
        self.payments[payment_id] = {"id": payment_id, **fields}


@pytest.fixture
def mp(monkeypatch) -> FakeMercadoPago:
    fake = FakeMercadoPago()

    class _Factory:
        @staticmethod
        def from_config(access_token, config):
            fake.access_tokens.append(access_token)
            return fake

    monkeypatch.setattr(mercadopago, "MercadoPagoClient", _Factory)
    return fake


# ----------------------------
# Helpers
# ----------------------------
def reload(donation_id: str) -> Optional[Donation]:
    db.session.expire_all()
    return db.session.get(Donation, donation_id)


def donor_payload(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "campaignId": "c1",
        "amount": 50,
        "donorName": "Maria da Silva",
        "donorEmail": "maria@example.com",
        "donorPhone": "+55 11 99999-0000",
    }
    data.update(overrides)
    return data


def charge_payload(donation_id: str, **overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "donationId": donation_id,
        "campaignId": "c1",
        "amount": 50,
        "paymentToken": "card-token-1",
        "paymentMethodId": "visa",
        "installments": 1,
        "donorEmail": "maria@example.com",
        "donorName": "Maria da Silva",
        "donorPhone": "+55 11 99999-0000",
    }
    data.update(overrides)
    return data


@pytest.fixture
def new_donation(client, campaign, mp_settings):
    def _make(**overrides: Any) -> str:
        resp = client.post("/donations", json=donor_payload(**overrides))
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["donationId"]

    return _make
