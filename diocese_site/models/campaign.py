from __future__ import annotations

import re
import unicodedata
import uuid as _uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy import Boolean, Index, Numeric, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from diocese_site.extensions import db

from .mixins import TimestampMixin


def slugify(value: str, max_len: int = 120) -> str:
    """ASCII, lowercase, dash-separated slug ("Ação Social 2025" -> "acao-social-2025")."""
    norm = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", norm.lower()).strip("-")
    return slug[:max_len].rstrip("-")


class DonationCampaign(db.Model, TimestampMixin):
    __tablename__ = "donation_campaigns"
    __table_args__ = (
        sa.CheckConstraint("min_amount > 0", name="ck_donation_campaigns_min_amount_pos"),
        Index("ix_donation_campaigns_active", "active"),
    )

    # ── Keys ────────────────────────────────────────────────────
    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(_uuid.uuid4())
    )
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)

    # ── Content ─────────────────────────────────────────────────
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # ── Money ───────────────────────────────────────────────────
    goal_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("1.00"))
    default_amounts: Mapped[List[Any]] = mapped_column(
        db.JSON, nullable=False, default=list, doc="Suggested amounts, in display order"
    )

    # ── Status ──────────────────────────────────────────────────
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    donations = relationship("Donation", back_populates="campaign", lazy="select")

    # ── Invariants ──────────────────────────────────────────────
    def check_amounts(self) -> None:
        minimum = Decimal(str(self.min_amount if self.min_amount is not None else "1.00"))
        if minimum <= 0:
            raise ValueError("min_amount must be > 0")
        for raw in self.default_amounts or []:
            if Decimal(str(raw)) < minimum:
                raise ValueError(f"default amount {raw} is below min_amount {minimum}")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "image_url": self.image_url,
            "goal_amount": float(self.goal_amount) if self.goal_amount is not None else None,
            "min_amount": float(self.min_amount or 0),
            "default_amounts": [float(a) for a in (self.default_amounts or [])],
            "active": bool(self.active),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<DonationCampaign {self.slug} active={self.active}>"


@event.listens_for(DonationCampaign, "before_insert")
@event.listens_for(DonationCampaign, "before_update")
def _campaign_before_save(mapper, connection, target: DonationCampaign) -> None:
    if not target.slug:
        target.slug = slugify(target.title) or str(_uuid.uuid4())[:8]
    target.check_amounts()
