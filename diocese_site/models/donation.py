from __future__ import annotations

# -----------------------------------------------------------------------------
# Donation Model
# One row per donation attempt. The id is the gateway idempotency key and
# external reference, so it is generated server-side before any charge.
# -----------------------------------------------------------------------------
import enum
import uuid as _uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from diocese_site.extensions import db

from .mixins import TimestampMixin


class DonationStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


DONATION_STATUSES = tuple(s.value for s in DonationStatus)


class Donation(db.Model, TimestampMixin):
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donations_amount_pos"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'refunded')",
            name="ck_donations_status",
        ),
        Index("ix_donations_campaign_status", "campaign_id", "status"),
    )

    # ---- Identifiers ----
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(_uuid.uuid4())
    )
    campaign_id: Mapped[str] = mapped_column(
        db.ForeignKey("donation_campaigns.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    campaign = relationship("DonationCampaign", back_populates="donations", lazy="joined")

    # ---- Donor ----
    donor_name: Mapped[str] = mapped_column(String(160), nullable=False)
    donor_email: Mapped[str] = mapped_column(String(160), nullable=False, index=True)
    donor_phone: Mapped[str] = mapped_column(String(40), nullable=False)

    # ---- Financials ----
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DonationStatus.PENDING.value, index=True
    )
    gateway: Mapped[str] = mapped_column(
        String(20), nullable=False, default="mercadopago", doc="mercadopago / stripe"
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        db.DateTime, nullable=True, doc="When the provider confirmed the capture."
    )

    # ---- Mercado Pago correlation ----
    mp_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    mp_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    mp_status_detail: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    mp_payment_type: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    mp_transaction_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # ---- Stripe correlation ----
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(120), nullable=True, unique=True, index=True, doc="PaymentIntent id (pi_...)"
    )
    stripe_charge_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # ==========================================================
    # Computed Properties
    # ==========================================================
    @property
    def is_final(self) -> bool:
        return self.status in (DonationStatus.COMPLETED.value, DonationStatus.REFUNDED.value)

    # ==========================================================
    # Serialization
    # ==========================================================
    def as_dict(self, include_campaign: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "donor_name": self.donor_name,
            "donor_email": self.donor_email,
            "donor_phone": self.donor_phone,
            "amount": float(self.amount) if self.amount is not None else None,
            "status": self.status,
            "gateway": self.gateway,
            "mp_payment_id": self.mp_payment_id,
            "mp_status": self.mp_status,
            "mp_status_detail": self.mp_status_detail,
            "mp_payment_type": self.mp_payment_type,
            "mp_transaction_amount": (
                float(self.mp_transaction_amount) if self.mp_transaction_amount is not None else None
            ),
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "stripe_charge_id": self.stripe_charge_id,
            "receipt_url": self.receipt_url,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_campaign:
            c = self.campaign
            data["campaign"] = (
                {"id": c.id, "title": c.title, "image_url": c.image_url, "slug": c.slug} if c else None
            )
        return data

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Donation {self.id} {self.amount} status={self.status}>"
