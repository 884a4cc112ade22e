from decimal import Decimal

import pytest

from diocese_site.extensions import db
from diocese_site.models import Donation, DonationCampaign, slugify


def test_slugify():
    assert slugify("Ação Social 2025") == "acao-social-2025"
    assert slugify("  Reforma -- da  Catedral! ") == "reforma-da-catedral"
    assert slugify("") == ""


def test_campaign_slug_is_generated(app):
    c = DonationCampaign(title="Festa de São João", min_amount=Decimal("2.00"), default_amounts=[5, 10])
    db.session.add(c)
    db.session.commit()
    assert c.slug == "festa-de-sao-joao"
    assert c.as_dict()["default_amounts"] == [5.0, 10.0]


def test_suggested_amounts_must_respect_minimum(app):
    c = DonationCampaign(title="Obras", min_amount=Decimal("20.00"), default_amounts=[10, 50])
    db.session.add(c)
    with pytest.raises(ValueError):
        db.session.commit()
    db.session.rollback()


def test_donation_defaults_and_view(app, campaign):
    d = Donation(
        campaign_id=campaign.id,
        donor_name="João Pereira",
        donor_email="joao@example.com",
        donor_phone="11999990000",
        amount=Decimal("75.00"),
    )
    db.session.add(d)
    db.session.commit()

    assert len(d.id) == 36
    assert d.status == "pending"
    assert d.gateway == "mercadopago"
    assert not d.is_final

    view = d.as_dict(include_campaign=True)
    assert view["amount"] == 75.0
    assert view["campaign"]["id"] == "c1"
    assert view["paid_at"] is None
