from __future__ import annotations

from diocese_site.extensions import db
from diocese_site.models.campaign import DonationCampaign, slugify
from diocese_site.models.donation import DONATION_STATUSES, Donation, DonationStatus
from diocese_site.models.gateway_settings import ENVIRONMENTS, PROVIDERS, GatewaySettings
from diocese_site.models.payment_event import PaymentEvent

__all__ = [
    "db",
    "DonationCampaign",
    "Donation",
    "DonationStatus",
    "DONATION_STATUSES",
    "GatewaySettings",
    "PaymentEvent",
    "PROVIDERS",
    "ENVIRONMENTS",
    "slugify",
]
