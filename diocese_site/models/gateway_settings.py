from __future__ import annotations

from typing import Optional

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from diocese_site.extensions import db

from .mixins import TimestampMixin

PROVIDERS = ("mercadopago", "stripe")
ENVIRONMENTS = ("test", "live")


class GatewaySettings(db.Model, TimestampMixin):
    """
    Credentials for one payment provider. Edited by an administrator,
    read-only to the donation pipeline.
    """

    __tablename__ = "gateway_settings"
    __table_args__ = (
        CheckConstraint("active_environment IN ('test', 'live')", name="ck_gateway_settings_env"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    provider: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)

    test_public_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    test_secret_key: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, doc="Access token (Mercado Pago) / secret key (Stripe)"
    )
    live_public_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    live_secret_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    active_environment: Mapped[str] = mapped_column(String(10), nullable=False, default="test")
    webhook_secret: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, doc="Signing secret for provider notifications"
    )

    def public_key_for(self, environment: str) -> str:
        key = self.live_public_key if environment == "live" else self.test_public_key
        return (key or "").strip()

    def secret_key_for(self, environment: str) -> str:
        key = self.live_secret_key if environment == "live" else self.test_secret_key
        return (key or "").strip()

    def __repr__(self) -> str:  # pragma: no cover
        return f"<GatewaySettings {self.provider} env={self.active_environment}>"
