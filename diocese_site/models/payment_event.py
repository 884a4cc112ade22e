from __future__ import annotations

from typing import Optional

from sqlalchemy import Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from diocese_site.extensions import db
from diocese_site.models.mixins import TimestampMixin


class PaymentEvent(db.Model, TimestampMixin):
    __tablename__ = "payment_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_payment_events_provider_event"),
        Index("ix_payment_events_type_created", "event_type", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    provider: Mapped[str] = mapped_column(db.String(20), nullable=False, index=True)

    event_id: Mapped[str] = mapped_column(
        db.String(120),
        nullable=False,
        doc="Provider notification id (Stripe evt_..., Mercado Pago notification id)",
    )

    event_type: Mapped[str] = mapped_column(
        db.String(120),
        nullable=False,
        doc="payment_intent.succeeded, payment.updated, etc",
    )

    object_id: Mapped[Optional[str]] = mapped_column(
        db.String(120),
        nullable=True,
        index=True,
        doc="Provider payment id or PaymentIntent id",
    )

    processed: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
