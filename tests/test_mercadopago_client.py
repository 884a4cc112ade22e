import hashlib
import hmac
from unittest.mock import MagicMock

import pytest
import requests

from diocese_site.errors import (
    ConfigurationError,
    GatewayRejectedError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from diocese_site.services.mercadopago import (
    MercadoPagoClient,
    parse_signature_header,
    signature_manifest,
    verify_signature,
)


def _response(status, payload=None):
    resp = MagicMock()
    resp.status_code = status
    if payload is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = payload
    return resp


def _client(*responses, error=None):
    session = MagicMock()
    if error is not None:
        session.request.side_effect = error
    else:
        session.request.side_effect = list(responses)
    return MercadoPagoClient("TEST-token", base_url="https://mp.test/", timeout=7, session=session), session


def test_create_payment_sends_auth_idempotency_and_timeout(app):
    client, session = _client(_response(201, {"id": 1001, "status": "approved"}))

    payment = client.create_payment({"transaction_amount": 50.0}, idempotency_key="don-1")

    assert payment["id"] == 1001
    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert method == "POST"
    assert url == "https://mp.test/v1/payments"
    assert kwargs["timeout"] == 7
    assert kwargs["json"] == {"transaction_amount": 50.0}
    assert kwargs["headers"]["Authorization"] == "Bearer TEST-token"
    assert kwargs["headers"]["X-Idempotency-Key"] == "don-1"


def test_timeout_and_connection_errors(app):
    client, _ = _client(error=requests.Timeout("read timed out"))
    with pytest.raises(GatewayTimeoutError):
        client.create_payment({}, idempotency_key="k")

    client, _ = _client(error=requests.ConnectionError("refused"))
    with pytest.raises(GatewayUnavailableError):
        client.create_payment({}, idempotency_key="k")


def test_server_error_is_unavailable_not_rejection(app):
    client, _ = _client(_response(502))
    with pytest.raises(GatewayUnavailableError):
        client.create_payment({}, idempotency_key="k")


def test_client_error_is_rejection_with_readable_reason(app):
    client, _ = _client(
        _response(400, {"message": "invalid", "status_detail": "cc_rejected_bad_filled_security_code"}),
        _response(400, {"message": "bad request", "cause": [{"code": 2067, "description": "Invalid user identification number"}]}),
    )

    with pytest.raises(GatewayRejectedError) as exc_info:
        client.create_payment({}, idempotency_key="don-1")
    assert exc_info.value.public_message == "Invalid security code (CVV)."
    assert exc_info.value.status_detail == "cc_rejected_bad_filled_security_code"
    assert exc_info.value.donation_id == "don-1"

    with pytest.raises(GatewayRejectedError) as exc_info:
        client.create_payment({}, idempotency_key="don-1")
    assert exc_info.value.public_message == "Invalid user identification number"


def test_get_payment_handles_missing_and_auth(app):
    client, session = _client(
        _response(200, {"id": 5, "status": "approved"}),
        _response(404, {"message": "not found"}),
        _response(401, {"message": "unauthorized"}),
        _response(500),
    )

    assert client.get_payment("5")["status"] == "approved"
    assert session.request.call_args.args == ("GET", "https://mp.test/v1/payments/5")
    assert client.get_payment("6") is None
    with pytest.raises(ConfigurationError):
        client.get_payment("7")
    with pytest.raises(GatewayUnavailableError):
        client.get_payment("8")


def test_signature_header_parsing_and_manifest():
    assert parse_signature_header("ts=1704908010, v1=abc") == {"ts": "1704908010", "v1": "abc"}
    assert parse_signature_header(None) == {}
    assert signature_manifest("ABC123", "req-9", "17") == "id:abc123;request-id:req-9;ts:17;"
    assert signature_manifest("123", None, "17") == "id:123;ts:17;"


def test_verify_signature():
    secret = "s3cret"
    manifest = "id:123;request-id:req-1;ts:1700000000;"
    v1 = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    header = f"ts=1700000000,v1={v1}"

    assert verify_signature(header, "req-1", "123", secret)
    assert not verify_signature(header, "req-2", "123", secret)
    assert not verify_signature(header, "req-1", "123", "other")
    assert not verify_signature("v1=only", "req-1", "123", secret)
    assert not verify_signature(header, "req-1", "123", "")
