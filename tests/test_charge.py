from decimal import Decimal

import pytest
from conftest import charge_payload, reload
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from diocese_site.errors import GatewayRejectedError, GatewayTimeoutError, GatewayUnavailableError
from diocese_site.extensions import db


def test_approved_charge_completes_donation(client, new_donation, mp):
    donation_id = new_donation()

    resp = client.post("/payments", json=charge_payload(donation_id))

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["providerPaymentId"] == "p1"
    assert body["status"] == "approved"
    assert body["statusDetail"] == "accredited"
    assert body["donationStatus"] == "completed"

    donation = reload(donation_id)
    assert donation.status == "completed"
    assert donation.mp_payment_id == "p1"
    assert donation.mp_status == "approved"
    assert donation.mp_payment_type == "credit_card"
    assert donation.mp_transaction_amount == Decimal("50.00")
    assert donation.paid_at is not None


def test_charge_request_carries_idempotency_key_and_reference(client, new_donation, mp):
    donation_id = new_donation()
    client.post("/payments", json=charge_payload(donation_id, issuerId="25"))

    payload, key = mp.create_calls[0]
    assert key == donation_id
    assert payload["external_reference"] == donation_id
    assert payload["transaction_amount"] == 50.0
    assert payload["token"] == "card-token-1"
    assert payload["payment_method_id"] == "visa"
    assert payload["installments"] == 1
    assert payload["issuer_id"] == "25"
    assert payload["payer"]["email"] == "maria@example.com"
    assert payload["notification_url"] == "https://diocese.test/webhooks/payment-provider"
    assert "Reforma da Catedral" in payload["description"]
    assert mp.access_tokens == ["TEST-token"]


def test_nested_widget_payload_and_live_key_hint(client, new_donation, mp):
    donation_id = new_donation()
    body = {
        "donationId": donation_id,
        "campaignId": "c1",
        "amount": "50.00",
        "publicKey": "APP_USR-pub",
        "paymentData": {
            "token": "tok-widget",
            "payment_method_id": "master",
            "issuer_id": "3",
            "installments": 3,
            "payer": {"email": "maria@example.com", "identification": {"type": "CPF", "number": "12345678909"}},
        },
    }

    resp = client.post("/payments", json=body)

    assert resp.status_code == 200
    payload, _ = mp.create_calls[0]
    assert payload["token"] == "tok-widget"
    assert payload["installments"] == 3
    assert payload["payer"]["identification"] == {"type": "CPF", "number": "12345678909"}
    assert mp.access_tokens == ["APP_USR-token"]


def test_in_process_keeps_donation_pending(client, new_donation, mp):
    mp.next_status, mp.next_detail = "in_process", "pending_contingency"
    donation_id = new_donation()

    resp = client.post("/payments", json=charge_payload(donation_id))

    assert resp.status_code == 200
    assert resp.get_json()["donationStatus"] == "pending"
    donation = reload(donation_id)
    assert donation.status == "pending"
    assert donation.mp_payment_id == "p1"
    assert donation.mp_payment_type is None
    assert donation.paid_at is None


def test_rejected_status_marks_donation_failed(client, new_donation, mp):
    mp.next_status, mp.next_detail = "rejected", "cc_rejected_insufficient_amount"
    donation_id = new_donation()

    resp = client.post("/payments", json=charge_payload(donation_id))

    assert resp.status_code == 200
    assert resp.get_json()["donationStatus"] == "failed"
    assert reload(donation_id).status == "failed"


def test_timeout_leaves_donation_pending(client, new_donation, mp):
    mp.create_error = GatewayTimeoutError("timeout after 25s")
    donation_id = new_donation()

    resp = client.post("/payments", json=charge_payload(donation_id))

    assert resp.status_code == 504
    body = resp.get_json()
    assert body["ok"] is False
    assert body["code"] == "gateway_timeout"
    donation = reload(donation_id)
    assert donation.status == "pending"
    assert donation.mp_payment_id is None


def test_connection_failure_is_503(client, new_donation, mp):
    mp.create_error = GatewayUnavailableError("connection failed")
    donation_id = new_donation()

    resp = client.post("/payments", json=charge_payload(donation_id))

    assert resp.status_code == 503
    assert resp.get_json()["code"] == "gateway_unavailable"
    assert reload(donation_id).status == "pending"


def test_provider_rejection_is_400_with_reason(client, new_donation, mp):
    mp.create_error = GatewayRejectedError(
        "Invalid security code (CVV).", status_detail="cc_rejected_bad_filled_security_code"
    )
    donation_id = new_donation()

    resp = client.post("/payments", json=charge_payload(donation_id))

    assert resp.status_code == 400
    body = resp.get_json()
    assert body["code"] == "payment_rejected"
    assert body["error"] == "Invalid security code (CVV)."
    assert body["statusDetail"] == "cc_rejected_bad_filled_security_code"
    assert reload(donation_id).status == "pending"


def test_persistence_failure_after_charge_is_500_and_not_retried(client, new_donation, mp, monkeypatch):
    donation_id = new_donation()

    def boom(self):
        raise SQLAlchemyError("disk full")

    with monkeypatch.context() as m:
        m.setattr(Session, "commit", boom)
        resp = client.post("/payments", json=charge_payload(donation_id))

    assert resp.status_code == 500
    body = resp.get_json()
    assert body["code"] == "persistence_error"
    assert body["requiresReconciliation"] is True
    assert body["donationId"] == donation_id
    assert "disk full" not in body["error"]
    assert len(mp.create_calls) == 1
    assert reload(donation_id).status == "pending"


def test_double_submit_charges_once(client, new_donation, mp):
    donation_id = new_donation()

    first = client.post("/payments", json=charge_payload(donation_id))
    second = client.post("/payments", json=charge_payload(donation_id))

    assert first.status_code == second.status_code == 200
    assert first.get_json()["providerPaymentId"] == second.get_json()["providerPaymentId"] == "p1"
    assert mp.idempotency_keys == {donation_id}
    assert len(mp.payments) == 1
    assert reload(donation_id).status == "completed"


def test_double_submit_while_pending_reuses_key(client, new_donation, mp):
    mp.next_status = "in_process"
    donation_id = new_donation()

    client.post("/payments", json=charge_payload(donation_id))
    client.post("/payments", json=charge_payload(donation_id))

    assert len(mp.create_calls) == 2
    assert {key for _, key in mp.create_calls} == {donation_id}
    assert len(mp.payments) == 1


@pytest.mark.parametrize("missing", ["paymentToken", "paymentMethodId", "donationId"])
def test_missing_payment_data_is_400(client, new_donation, mp, missing):
    donation_id = new_donation()
    payload = charge_payload(donation_id)
    payload.pop(missing)

    resp = client.post("/payments", json=payload)

    assert resp.status_code == 400
    assert mp.create_calls == []


def test_unknown_donation_is_404(client, campaign, mp_settings, mp):
    resp = client.post("/payments", json=charge_payload("does-not-exist"))
    assert resp.status_code == 404
    assert mp.create_calls == []


def test_amount_or_campaign_mismatch_is_400(client, new_donation, mp):
    donation_id = new_donation()

    resp = client.post("/payments", json=charge_payload(donation_id, amount=10))
    assert resp.status_code == 400

    resp = client.post("/payments", json=charge_payload(donation_id, campaignId="other"))
    assert resp.status_code == 400
    assert mp.create_calls == []


def test_invalid_installments(client, new_donation, mp):
    donation_id = new_donation()
    resp = client.post("/payments", json=charge_payload(donation_id, installments=0))
    assert resp.status_code == 400


def test_missing_access_token_is_configuration_error(client, new_donation, mp, mp_settings):
    donation_id = new_donation()
    mp_settings.test_secret_key = None
    db.session.commit()

    resp = client.post("/payments", json=charge_payload(donation_id))

    assert resp.status_code == 500
    assert resp.get_json()["code"] == "configuration_error"
    assert mp.create_calls == []
    assert reload(donation_id).status == "pending"
