from diocese_site.services.notifications import parse_mercadopago_notification, parse_stripe_event


def test_webhook_body():
    note = parse_mercadopago_notification(
        {"type": "payment", "action": "payment.created", "id": 42, "live_mode": "false", "data": {"id": 123}}
    )
    assert note.shape == "webhook"
    assert note.is_payment
    assert note.payment_id == "123"
    assert note.event_id == "42"
    assert note.environment == "test"


def test_webhook_topic_from_action():
    note = parse_mercadopago_notification({"action": "payment.updated", "data": {"id": "9"}})
    assert note.topic == "payment"
    assert note.environment is None


def test_feed_body_with_bare_id_and_url():
    assert parse_mercadopago_notification({"topic": "payment", "resource": "555"}).payment_id == "555"
    note = parse_mercadopago_notification(
        {"topic": "payment", "resource": "https://api.mercadopago.com/v1/payments/556?foo=bar"}
    )
    assert note.shape == "feed"
    assert note.payment_id == "556"


def test_query_string_shapes():
    assert parse_mercadopago_notification(None, {"type": "payment", "data.id": "7"}).payment_id == "7"
    note = parse_mercadopago_notification({}, {"topic": "payment", "id": "8"})
    assert note.shape == "query"
    assert note.payment_id == "8"


def test_non_payment_and_garbage():
    assert not parse_mercadopago_notification({"type": "plan", "data": {"id": "1"}}).is_payment
    assert parse_mercadopago_notification({"hello": "world"}) is None
    assert parse_mercadopago_notification(None, None) is None


def test_stripe_intent_event():
    note = parse_stripe_event(
        {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "livemode": True,
            "data": {
                "object": {
                    "id": "pi_1",
                    "metadata": {"donation_id": "d1"},
                    "latest_charge": {"id": "ch_1", "receipt_url": "https://r"},
                }
            },
        }
    )
    assert note.handled
    assert note.intent_id == "pi_1"
    assert note.donation_id == "d1"
    assert note.livemode is True
    assert note.environment == "live"


def test_stripe_charge_event_points_to_intent():
    note = parse_stripe_event(
        {"id": "evt_2", "type": "charge.refunded", "data": {"object": {"id": "ch_2", "payment_intent": "pi_2"}}}
    )
    assert note.intent_id == "pi_2"
    assert note.donation_id is None
    assert note.environment is None


def test_stripe_unhandled_event():
    assert not parse_stripe_event({"type": "customer.created", "data": {"object": {}}}).handled
