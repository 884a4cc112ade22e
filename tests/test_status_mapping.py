import pytest

from diocese_site.models import DonationStatus
from diocese_site.services.status_mapping import (
    allowed_source_statuses,
    can_transition,
    describe_status_detail,
    is_final_success,
    map_mercadopago_status,
    map_stripe_intent,
    map_stripe_intent_status,
)


@pytest.mark.parametrize(
    "provider_status,expected",
    [
        ("approved", DonationStatus.COMPLETED),
        ("APPROVED", DonationStatus.COMPLETED),
        ("rejected", DonationStatus.FAILED),
        ("cancelled", DonationStatus.FAILED),
        ("in_process", DonationStatus.PENDING),
        ("pending", DonationStatus.PENDING),
        ("refunded", DonationStatus.REFUNDED),
        ("charged_back", DonationStatus.REFUNDED),
        ("authorized", DonationStatus.PENDING),
        (None, DonationStatus.PENDING),
    ],
)
def test_mercadopago_mapping(provider_status, expected):
    assert map_mercadopago_status(provider_status) == expected


def test_stripe_mapping():
    assert map_stripe_intent_status("succeeded") == DonationStatus.COMPLETED
    assert map_stripe_intent_status("processing") == DonationStatus.PROCESSING
    assert map_stripe_intent_status("canceled") == DonationStatus.FAILED
    assert map_stripe_intent_status("requires_action") == DonationStatus.PENDING
    assert map_stripe_intent_status("something_new") == DonationStatus.PENDING


def test_declined_intent_counts_as_failed():
    declined = {"code": "card_declined"}
    assert map_stripe_intent("requires_payment_method", declined) == DonationStatus.FAILED
    assert map_stripe_intent("requires_payment_method") == DonationStatus.PENDING
    assert map_stripe_intent("succeeded", declined) == DonationStatus.COMPLETED


def test_final_success_is_provider_specific():
    assert is_final_success("mercadopago", "approved")
    assert not is_final_success("mercadopago", "succeeded")
    assert is_final_success("stripe", "succeeded")
    assert not is_final_success("stripe", "approved")


def test_completed_and_refunded_are_locked():
    for target in (DonationStatus.PENDING, DonationStatus.PROCESSING, DonationStatus.FAILED, DonationStatus.COMPLETED):
        assert not can_transition("completed", target)
        assert not can_transition("refunded", target)
    assert can_transition("failed", DonationStatus.COMPLETED)
    assert can_transition("pending", DonationStatus.FAILED)


def test_refund_only_over_completed():
    assert allowed_source_statuses(DonationStatus.REFUNDED) == ("completed",)
    assert can_transition("completed", DonationStatus.REFUNDED)
    assert not can_transition("pending", DonationStatus.REFUNDED)
    assert not can_transition("refunded", DonationStatus.REFUNDED)


def test_status_detail_messages(app):
    assert describe_status_detail("cc_rejected_insufficient_amount") == "Insufficient funds."
    assert describe_status_detail("unheard_of", fallback="Provider said no") == "Provider said no"
    assert describe_status_detail(None) is None


def test_failed_is_not_locked():
    for target in (DonationStatus.PENDING, DonationStatus.PROCESSING, DonationStatus.COMPLETED):
        assert can_transition("failed", target)
    assert not can_transition("failed", DonationStatus.REFUNDED)
