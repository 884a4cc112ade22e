# diocese_site/services/receipts.py
from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Optional

from flask import current_app
from flask_babel import gettext as _

from diocese_site.extensions import send_email_async
from diocese_site.models import DonationStatus
from diocese_site.services.donations import apply_transition, get_donation

log = logging.getLogger(__name__)


def apply_and_notify(donation_id: str, target: DonationStatus, **fields) -> bool:
    """Guarded status write; queues a receipt only when this call completed the donation."""
    changed = apply_transition(donation_id, target, **fields)
    if changed and target == DonationStatus.COMPLETED:
        send_donation_receipt(donation_id)
    return changed


def send_donation_receipt(donation_id: str) -> Optional[Future]:
    """
    Queue the receipt e-mail for a donation that just moved to completed.

    Call only when the guarded write changed the row, so duplicate webhooks
    never send a second receipt. Never raises.
    """
    app = current_app._get_current_object()
    if not app.config.get("DONATION_RECEIPTS_ENABLED"):
        return None

    try:
        donation = get_donation(donation_id, fresh=True)
        if donation is None or not donation.donor_email:
            return None

        campaign = donation.campaign
        brand = app.config.get("BRAND_NAME") or "Diocese"
        context = {
            "brand": brand,
            "donor_name": donation.donor_name,
            "amount": f"{donation.amount:.2f}",
            "campaign_title": campaign.title if campaign else "",
            "donation_id": donation.id,
            "receipt_url": donation.receipt_url,
            "paid_at": donation.paid_at,
            "site_url": app.config.get("PUBLIC_BASE_URL") or "",
        }
        return send_email_async(
            app,
            _("Thank you for your donation to %(brand)s", brand=brand),
            [donation.donor_email],
            html_template="donation_receipt.html",
            text_template="donation_receipt.txt",
            context=context,
        )
    except Exception:
        log.warning("receipt not queued for donation=%s", donation_id, exc_info=True)
        return None
