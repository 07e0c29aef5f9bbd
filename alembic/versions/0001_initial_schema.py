"""initial schema: organizations, funnels, scoring, leads, events, dispatch

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

_STATUS_VALUES = "'PENDING', 'SENT', 'SKIPPED', 'FAILED'"


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _org_fk() -> sa.Column:
    return sa.Column(
        "organization_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
    )


def upgrade() -> None:
    op.create_table(
        "organizations",
        _uuid_pk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        _created_at(),
    )

    op.create_table(
        "api_keys",
        _uuid_pk(),
        _org_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("key_hash", sa.String(64), nullable=False, unique=True),
        sa.Column(
            "scopes", postgresql.ARRAY(sa.String()), nullable=False, server_default="{}"
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("last_used_at", sa.DateTime(timezone=True)),
        _created_at(),
    )

    op.create_table(
        "funnels",
        _uuid_pk(),
        _org_fk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "steps",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        _created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("ix_funnels_org_default", "funnels", ["organization_id", "is_default"])

    op.create_table(
        "business_metrics",
        _uuid_pk(),
        _org_fk(),
        sa.Column("ltv", sa.Numeric(14, 2), nullable=False),
        sa.Column("ltv_cac_ratio", sa.Numeric(8, 2), nullable=False),
        sa.Column(
            "gross_margin", sa.Numeric(5, 2), nullable=False, server_default=sa.text("100")
        ),
        sa.Column("currency", sa.String(3), nullable=False, server_default="AUD"),
        sa.Column(
            "effective_from",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("effective_to", sa.DateTime(timezone=True)),
        sa.CheckConstraint("ltv > 0", name="ck_metrics_ltv_positive"),
        sa.CheckConstraint("ltv_cac_ratio >= 1", name="ck_metrics_ratio_min"),
        sa.CheckConstraint(
            "gross_margin BETWEEN 0 AND 100", name="ck_metrics_gross_margin_range"
        ),
    )
    op.create_index(
        "uq_business_metrics_current",
        "business_metrics",
        ["organization_id"],
        unique=True,
        postgresql_where=sa.text("effective_to IS NULL"),
    )

    op.create_table(
        "scoring_rules",
        _uuid_pk(),
        _org_fk(),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("field", sa.String(100), nullable=False),
        sa.Column("condition", sa.String(500), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.CheckConstraint("points BETWEEN -100 AND 100", name="ck_scoring_points_range"),
        sa.CheckConstraint(
            "category IN ('FIRMOGRAPHIC', 'BEHAVIORAL', 'ENGAGEMENT')",
            name="ck_scoring_category",
        ),
    )
    op.create_index(
        "ix_scoring_rules_org_enabled", "scoring_rules", ["organization_id", "enabled"]
    )

    op.create_table(
        "audience_segments",
        _uuid_pk(),
        _org_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "multiplier", sa.Numeric(5, 2), nullable=False, server_default=sa.text("1")
        ),
        sa.Column("identification_type", sa.String(20), nullable=False),
        sa.Column("identification_condition", sa.String(500), nullable=False),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        _created_at(),
    )

    op.create_table(
        "leads",
        _uuid_pk(),
        _org_fk(),
        sa.Column("email_hash", sa.String(64)),
        sa.Column("phone_hash", sa.String(64)),
        sa.Column("external_id", sa.String(255)),
        sa.Column("score", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "normalized_score", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("multiplier", sa.Numeric(4, 2), nullable=False),
        sa.Column("value", sa.Numeric(14, 4), nullable=False),
        sa.Column("segment", sa.String(100)),
        sa.Column(
            "signals",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("raw_data", sa.LargeBinary()),
        sa.Column("source", sa.String(255)),
        sa.Column("medium", sa.String(255)),
        sa.Column("campaign", sa.String(255)),
        sa.Column("gclid", sa.String(255)),
        sa.Column("fbc", sa.String(255)),
        sa.Column("fbp", sa.String(255)),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.Text()),
        _created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.CheckConstraint(
            "normalized_score BETWEEN 0 AND 100", name="ck_lead_normalized_score"
        ),
        sa.CheckConstraint(
            "multiplier BETWEEN 0.1 AND 2.0", name="ck_lead_multiplier_range"
        ),
    )
    op.create_index("ix_leads_org_created", "leads", ["organization_id", "created_at"])

    op.create_table(
        "conversion_events",
        _uuid_pk(),
        sa.Column(
            "lead_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("event_name", sa.String(100), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("value", sa.Numeric(14, 4), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("page_url", sa.Text()),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.Column("meta_status", sa.String(10), nullable=False, server_default="PENDING"),
        sa.Column("meta_status_detail", sa.String(255)),
        sa.Column("meta_sent_at", sa.DateTime(timezone=True)),
        sa.Column("meta_trace_id", sa.String(100)),
        sa.Column(
            "google_status", sa.String(10), nullable=False, server_default="PENDING"
        ),
        sa.Column("google_status_detail", sa.String(255)),
        sa.Column("google_sent_at", sa.DateTime(timezone=True)),
        sa.Column("google_uploaded_count", sa.Integer()),
        sa.CheckConstraint(
            f"meta_status IN ({_STATUS_VALUES})", name="ck_event_meta_status"
        ),
        sa.CheckConstraint(
            f"google_status IN ({_STATUS_VALUES})", name="ck_event_google_status"
        ),
    )
    op.create_index("ix_conversion_events_lead_id", "conversion_events", ["lead_id"])
    op.create_index("ix_conversion_events_event_id", "conversion_events", ["event_id"])

    op.create_table(
        "integrations",
        _uuid_pk(),
        _org_fk(),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default="PENDING"),
        sa.Column("credentials", sa.LargeBinary(), nullable=False),
        sa.Column(
            "settings",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("last_sync_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.Text()),
        _created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.CheckConstraint(
            "status IN ('PENDING', 'ACTIVE', 'ERROR', 'DISABLED')",
            name="ck_integration_status",
        ),
    )
    op.create_index(
        "ix_integrations_org_type_status",
        "integrations",
        ["organization_id", "type", "status"],
    )

    op.create_table(
        "dispatch_logs",
        _uuid_pk(),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "conversion_event_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversion_events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "integration_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("integrations.id", ondelete="SET NULL"),
        ),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("job_id", sa.String(100), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("error_code", sa.String(100)),
        sa.Column("message", sa.Text()),
        _created_at(),
    )
    op.create_index(
        "ix_dispatch_logs_event", "dispatch_logs", ["conversion_event_id"]
    )
    op.create_index(
        "ix_dispatch_logs_org_created",
        "dispatch_logs",
        ["organization_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("dispatch_logs")
    op.drop_table("integrations")
    op.drop_table("conversion_events")
    op.drop_table("leads")
    op.drop_table("audience_segments")
    op.drop_table("scoring_rules")
    op.drop_index("uq_business_metrics_current", table_name="business_metrics")
    op.drop_table("business_metrics")
    op.drop_table("funnels")
    op.drop_table("api_keys")
    op.drop_table("organizations")
