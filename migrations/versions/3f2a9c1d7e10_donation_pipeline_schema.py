"""donation pipeline schema

Revision ID: 3f2a9c1d7e10
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3f2a9c1d7e10"
down_revision = None
branch_labels = None
depends_on = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _jsonb(sa_json):
    # Portable: JSON on SQLite, JSONB on Postgres
    return sa_json.with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _timestamp_indexes(batch_op, table: str) -> None:
    batch_op.create_index(batch_op.f(f"ix_{table}_created_at"), ["created_at"], unique=False)
    batch_op.create_index(batch_op.f(f"ix_{table}_updated_at"), ["updated_at"], unique=False)


def upgrade():
    # --- donation_campaigns ---
    op.create_table(
        "donation_campaigns",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("goal_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("min_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("default_amounts", _jsonb(sa.JSON()), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("min_amount > 0", name="ck_donation_campaigns_min_amount_pos"),
    )
    with op.batch_alter_table("donation_campaigns") as batch_op:
        batch_op.create_index(batch_op.f("ix_donation_campaigns_slug"), ["slug"], unique=True)
        batch_op.create_index("ix_donation_campaigns_active", ["active"], unique=False)
        _timestamp_indexes(batch_op, "donation_campaigns")

    # --- donations ---
    op.create_table(
        "donations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "campaign_id",
            sa.String(length=36),
            sa.ForeignKey("donation_campaigns.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("donor_name", sa.String(length=160), nullable=False),
        sa.Column("donor_email", sa.String(length=160), nullable=False),
        sa.Column("donor_phone", sa.String(length=40), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("gateway", sa.String(length=20), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("mp_payment_id", sa.String(length=64), nullable=True),
        sa.Column("mp_status", sa.String(length=40), nullable=True),
        sa.Column("mp_status_detail", sa.String(length=120), nullable=True),
        sa.Column("mp_payment_type", sa.String(length=40), nullable=True),
        sa.Column("mp_transaction_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(length=120), nullable=True),
        sa.Column("stripe_charge_id", sa.String(length=120), nullable=True),
        sa.Column("receipt_url", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_donations_amount_pos"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'refunded')",
            name="ck_donations_status",
        ),
    )
    with op.batch_alter_table("donations") as batch_op:
        batch_op.create_index(batch_op.f("ix_donations_campaign_id"), ["campaign_id"], unique=False)
        batch_op.create_index("ix_donations_campaign_status", ["campaign_id", "status"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_donor_email"), ["donor_email"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_mp_payment_id"), ["mp_payment_id"], unique=False)
        batch_op.create_index(
            batch_op.f("ix_donations_stripe_payment_intent_id"), ["stripe_payment_intent_id"], unique=True
        )
        _timestamp_indexes(batch_op, "donations")

    # --- gateway_settings ---
    op.create_table(
        "gateway_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("test_public_key", sa.String(length=255), nullable=True),
        sa.Column("test_secret_key", sa.String(length=255), nullable=True),
        sa.Column("live_public_key", sa.String(length=255), nullable=True),
        sa.Column("live_secret_key", sa.String(length=255), nullable=True),
        sa.Column("active_environment", sa.String(length=10), nullable=False),
        sa.Column("webhook_secret", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("active_environment IN ('test', 'live')", name="ck_gateway_settings_env"),
    )
    with op.batch_alter_table("gateway_settings") as batch_op:
        batch_op.create_index(batch_op.f("ix_gateway_settings_provider"), ["provider"], unique=True)
        _timestamp_indexes(batch_op, "gateway_settings")

    # --- payment_events ---
    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("event_id", sa.String(length=120), nullable=False),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("object_id", sa.String(length=120), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("provider", "event_id", name="uq_payment_events_provider_event"),
    )
    with op.batch_alter_table("payment_events") as batch_op:
        batch_op.create_index(batch_op.f("ix_payment_events_provider"), ["provider"], unique=False)
        batch_op.create_index(batch_op.f("ix_payment_events_object_id"), ["object_id"], unique=False)
        batch_op.create_index("ix_payment_events_type_created", ["event_type", "created_at"], unique=False)
        _timestamp_indexes(batch_op, "payment_events")


def downgrade():
    op.drop_table("payment_events")
    op.drop_table("gateway_settings")
    op.drop_table("donations")
    op.drop_table("donation_campaigns")
