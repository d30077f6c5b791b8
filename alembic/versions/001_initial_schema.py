"""Initial schema - leads, providers, interactions, opt-outs, policy, audit trail.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Leads
    op.create_table(
        "leads",
        sa.Column("lead_id", sa.String(50), primary_key=True),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("service_type", sa.String(200), nullable=False),
        sa.Column("preferred_time_window", sa.String(100)),
        sa.Column("budget_range", sa.String(50)),
        sa.Column("notes_snippet", sa.String(160)),
        sa.Column("client_name", sa.String(200), nullable=False),
        sa.Column("client_phone", sa.String(20), nullable=False),
        sa.Column("client_email", sa.String(200)),
        sa.Column("exact_address", sa.Text),
        sa.Column("original_notes", sa.Text),
        sa.Column("source", sa.String(50), nullable=False, server_default="fluentforms"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
    )
    op.create_index("idx_leads_active", "leads", ["is_active", "created_at"])

    # Providers
    op.create_table(
        "providers",
        sa.Column("id", sa.String(50), primary_key=True),
        sa.Column("name", sa.String(200)),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("timezone", sa.String(64)),
        sa.Column("service_areas", postgresql.JSONB),
        sa.Column("is_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_providers_phone", "providers", ["phone"])

    # Lead interactions - one row per (lead, provider)
    op.create_table(
        "lead_interactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("lead_id", sa.String(50), sa.ForeignKey("leads.lead_id"), nullable=False),
        sa.Column("provider_id", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="NEW_LEAD"),
        sa.Column("last_sent_at", sa.DateTime(timezone=True)),
        sa.Column("ttl_expires_at", sa.DateTime(timezone=True)),
        sa.Column("unlocked_at", sa.DateTime(timezone=True)),
        sa.Column("payment_link_url", sa.Text),
        sa.Column("checkout_session_id", sa.String(200)),
        sa.Column("payment_intent_id", sa.String(200)),
        sa.Column("payment_link_expires_at", sa.DateTime(timezone=True)),
        sa.Column("amount_cents", sa.Integer),
        sa.Column("currency", sa.String(3)),
        sa.Column("idempotency_key", sa.String(100)),
        sa.Column("payment_link_claimed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("lead_id", "provider_id", name="uq_lead_interactions_lead_provider"),
    )
    op.create_index("idx_lead_interactions_status", "lead_interactions", ["status", "ttl_expires_at"])
    op.create_index("idx_lead_interactions_provider", "lead_interactions", ["provider_id", "status"])
    op.create_index("idx_lead_interactions_payment", "lead_interactions", ["checkout_session_id"])

    # Provider opt-outs (permanent)
    op.create_table(
        "provider_optouts",
        sa.Column("provider_id", sa.String(50), primary_key=True),
        sa.Column("opted_out_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("reason", sa.String(200)),
    )

    # Lead policy (append-only, newest row wins)
    op.create_table(
        "lead_config",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("price_cents", sa.Integer, nullable=False, server_default="2000"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        sa.Column("ttl_hours", sa.Integer, nullable=False, server_default="24"),
        sa.Column("quiet_start_hour", sa.Integer, nullable=False, server_default="21"),
        sa.Column("quiet_start_minute", sa.Integer, nullable=False, server_default="30"),
        sa.Column("quiet_end_hour", sa.Integer, nullable=False, server_default="8"),
        sa.Column("quiet_end_minute", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.execute("INSERT INTO lead_config (price_cents, currency, ttl_hours) VALUES (2000, 'usd', 24)")

    # Webhook audit trail
    op.create_table(
        "webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(80), nullable=False),
        sa.Column("external_id", sa.String(255)),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("raw_payload", postgresql.JSONB, nullable=False),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("error_message", sa.Text),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("correlation_id", sa.String(64)),
    )
    op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
    op.create_index("ix_webhook_events_external_id", "webhook_events", ["external_id"])
    op.create_index("ix_webhook_events_payload_hash", "webhook_events", ["payload_hash"])
    op.create_index("ix_webhook_events_correlation_id", "webhook_events", ["correlation_id"])


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("lead_config")
    op.drop_table("provider_optouts")
    op.drop_table("lead_interactions")
    op.drop_table("providers")
    op.drop_table("leads")
