# diocese_site/services/donations.py
"""
Data access for the donation pipeline: gateway credentials, campaigns,
donation rows, the guarded status write and the webhook event log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from diocese_site.errors import (
    ConfigurationError,
    DonationNotSavedError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from diocese_site.extensions import db, retry_on_db_lock
from diocese_site.models import Donation, DonationCampaign, DonationStatus, GatewaySettings, PaymentEvent
from diocese_site.models.mixins import utcnow
from diocese_site.services.status_mapping import allowed_source_statuses

log = logging.getLogger(__name__)


# ----------------------------
# Gateway credentials
# ----------------------------
@dataclass(frozen=True)
class GatewayCredentials:
    provider: str
    environment: str
    public_key: str
    secret_key: str
    webhook_secret: str

    @property
    def is_live(self) -> bool:
        return self.environment == "live"


def environment_from_hint(hint: Any) -> Optional[str]:
    """
    "test"/"live" literally, or inferred from a public key prefix
    (Mercado Pago TEST-/APP_USR-, Stripe pk_test_/pk_live_).
    """
    s = str(hint or "").strip()
    if not s:
        return None
    low = s.lower()
    if low in {"test", "sandbox"}:
        return "test"
    if low in {"live", "production", "prod"}:
        return "live"
    if s.startswith("TEST-") or low.startswith("pk_test_"):
        return "test"
    if s.startswith("APP_USR-") or low.startswith("pk_live_"):
        return "live"
    return None


def get_gateway_settings(provider: str) -> Optional[GatewaySettings]:
    return db.session.execute(
        select(GatewaySettings).where(GatewaySettings.provider == provider).limit(1)
    ).scalar_one_or_none()


def load_credentials(provider: str, environment: Optional[str] = None) -> Optional[GatewayCredentials]:
    """Read the provider row fresh (no process-wide caching)."""
    row = get_gateway_settings(provider)
    if row is None:
        return None
    env = environment if environment in {"test", "live"} else (row.active_environment or "test")
    return GatewayCredentials(
        provider=provider,
        environment=env,
        public_key=row.public_key_for(env),
        secret_key=row.secret_key_for(env),
        webhook_secret=(row.webhook_secret or "").strip(),
    )


def require_credentials(
    provider: str,
    environment: Optional[str] = None,
    *,
    need_public: bool = False,
    need_secret: bool = False,
) -> GatewayCredentials:
    creds = load_credentials(provider, environment)
    if creds is None:
        raise ConfigurationError(f"{provider} settings not found")
    if need_public and not creds.public_key:
        raise ConfigurationError(f"{provider} public key not configured for {creds.environment}")
    if need_secret and not creds.secret_key:
        raise ConfigurationError(f"{provider} secret key not configured for {creds.environment}")
    return creds


# ----------------------------
# Campaigns
# ----------------------------
def get_campaign(campaign_id: str) -> Optional[DonationCampaign]:
    return db.session.get(DonationCampaign, campaign_id)


def require_active_campaign(campaign_id: str) -> DonationCampaign:
    campaign = get_campaign(campaign_id)
    if campaign is None or not campaign.active:
        raise ValidationError("Campaign not found or no longer accepting donations.")
    return campaign


# ----------------------------
# Donations
# ----------------------------
def get_donation(donation_id: Optional[str], *, fresh: bool = False) -> Optional[Donation]:
    if not donation_id:
        return None
    return db.session.get(Donation, str(donation_id), populate_existing=fresh)


def find_donation_by_intent(intent_id: str) -> Optional[Donation]:
    if not intent_id:
        return None
    return db.session.execute(
        select(Donation).where(Donation.stripe_payment_intent_id == intent_id).limit(1)
    ).scalar_one_or_none()


def create_pending_donation(
    *,
    campaign: DonationCampaign,
    amount: Decimal,
    donor_name: str,
    donor_email: str,
    donor_phone: str,
    gateway: str = "mercadopago",
) -> Donation:
    donation = Donation(
        campaign_id=campaign.id,
        amount=amount,
        donor_name=donor_name[:160],
        donor_email=donor_email[:160],
        donor_phone=donor_phone[:40],
        gateway=gateway,
        status=DonationStatus.PENDING.value,
    )
    try:
        db.session.add(donation)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        log.exception("Failed to create donation row for campaign=%s", campaign.id)
        raise DonationNotSavedError("donation insert failed") from exc
    return donation


def apply_transition(donation_id: str, target: DonationStatus, **fields: Any) -> bool:
    """
    Conditionally write `target` (plus correlation fields) on one donation row.

    Issued as a single UPDATE ... WHERE id = :id AND status IN (allowed), so a
    concurrent webhook and charge response cannot regress a final state.
    Returns True when the row changed, False when the guard rejected it.
    """
    allowed = allowed_source_statuses(target)
    values: Dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    values["status"] = target.value
    values["updated_at"] = utcnow()

    stmt = (
        sa_update(Donation)
        .where(Donation.id == donation_id, Donation.status.in_(allowed))
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    def _do() -> bool:
        res = db.session.execute(stmt)
        db.session.commit()
        return bool(getattr(res, "rowcount", 0))

    try:
        changed = bool(retry_on_db_lock(_do))
    except SQLAlchemyError as exc:
        raise PersistenceError(
            f"status write failed ({target.value})",
            donation_id=donation_id,
            provider_payment_id=str(fields.get("mp_payment_id") or fields.get("stripe_payment_intent_id") or ""),
        ) from exc

    if changed:
        log.info("donation %s -> %s", donation_id, target.value)
    else:
        log.info("donation %s: %s write skipped (guard)", donation_id, target.value)
    return changed


def donation_view(donation_id: str) -> Dict[str, Any]:
    donation = get_donation(donation_id, fresh=True)
    if donation is None:
        raise NotFoundError()
    return donation.as_dict(include_campaign=True)


# ----------------------------
# Webhook event log (idempotent)
# ----------------------------
def record_event(provider: str, event_id: str, event_type: str, object_id: str = "") -> Tuple[Optional[PaymentEvent], bool]:
    """
    Returns (event, already_processed). Events without an id are not logged.
    A row that exists but was never marked processed is handed back for retry.
    """
    if not event_id:
        return None, False

    def _existing() -> Optional[PaymentEvent]:
        return db.session.execute(
            select(PaymentEvent).where(PaymentEvent.provider == provider, PaymentEvent.event_id == event_id)
        ).scalar_one_or_none()

    ev = _existing()
    if ev is not None:
        return ev, bool(ev.processed)

    def _insert() -> PaymentEvent:
        row = PaymentEvent(
            provider=provider,
            event_id=event_id[:120],
            event_type=(event_type or "unknown")[:120],
            object_id=(object_id[:120] if object_id else None),
        )
        db.session.add(row)
        db.session.commit()
        return row

    try:
        return retry_on_db_lock(_insert), False
    except IntegrityError:
        # Concurrent delivery inserted it first.
        db.session.rollback()
        ev = _existing()
        return ev, bool(ev and ev.processed)
    except SQLAlchemyError as exc:
        raise PersistenceError("event log write failed") from exc


def mark_event_processed(event: Optional[PaymentEvent]) -> None:
    if event is None:
        return
    try:
        event.processed = True
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        log.warning("could not mark %s event %s processed", event.provider, event.event_id, exc_info=True)
