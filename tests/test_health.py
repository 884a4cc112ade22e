def test_healthz_echoes_request_id(client):
    resp = client.get("/healthz", headers={"X-Request-ID": "abc-123"})
    assert resp.status_code == 200
    assert resp.get_json()["request_id"] == "abc-123"
    assert resp.headers["X-Request-ID"] == "abc-123"


def test_version(client):
    body = client.get("/version").get_json()
    assert body["env"] == "testing"
    assert body["public_base_url"] == "https://diocese.test"


def test_payments_health_degraded_without_gateways(client):
    resp = client.get("/payments/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "degraded"
    assert body["components"]["db"]["ok"] is True
    assert body["components"]["mercadopago"]["warning"] == "missing_settings"

    assert client.get("/payments/health?strict=1").status_code == 503


def test_payments_health_ok_with_one_gateway(client, mp_settings):
    resp = client.get("/payments/health?strict=1")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok"
    gw = body["components"]["mercadopago"]
    assert gw["environment"] == "test"
    assert gw["webhookSecretPresent"] is False
    assert "missing_webhook_secret" in gw["warning"]
    assert "TEST-token" not in resp.get_data(as_text=True)


def test_payments_config_exposes_only_public_keys(client, mp_settings):
    body = client.get("/payments/config").get_json()
    assert body["currency"] == "brl"
    assert body["mercadopago"] == {"enabled": True, "environment": "test", "publicKey": "TEST-pub"}
    assert body["stripe"]["enabled"] is False


def test_unknown_route_is_json_404(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["ok"] is False
