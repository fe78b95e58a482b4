"""Create profiles, invoices, activity_logs and reconciliation_alerts.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("full_name", sa.String(255)),
        sa.Column("wallet_address", sa.String(42)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_profiles_email", "profiles", ["email"], unique=True)

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), primary_key=True),
        # Business data
        sa.Column("invoice_number", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("buyer_email", sa.String(255), nullable=False),
        sa.Column("pdf_url", sa.Text(), nullable=False),
        # Workflow
        sa.Column("buyer_acknowledged", sa.Boolean(), server_default=sa.false()),
        sa.Column("status", sa.String(20), server_default="Pending"),
        # Blockchain linkage
        sa.Column("listed_price", sa.Numeric(38, 18)),
        sa.Column("token_id", sa.String(78)),
        sa.Column("blockchain_tx_hash", sa.String(66)),
        # Ownership
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("owner", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_invoices_buyer_email", "invoices", ["buyer_email"])
    op.create_index("ix_invoices_status", "invoices", ["status"])
    op.create_index("ix_invoices_token_id", "invoices", ["token_id"])
    op.create_index("ix_invoices_created_by", "invoices", ["created_by"])
    op.create_index("ix_invoices_owner", "invoices", ["owner"])

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_entity_type", "activity_logs", ["entity_type"])
    op.create_index("ix_activity_logs_entity_id", "activity_logs", ["entity_id"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])

    op.create_table(
        "reconciliation_alerts",
        sa.Column("id", sa.String(36), primary_key=True),
        # Classification
        sa.Column("alert_type", sa.String(50), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        # Entity references
        sa.Column("invoice_id", sa.String(36)),
        sa.Column("token_id", sa.String(78)),
        sa.Column("tx_hash", sa.String(66)),
        sa.Column("expected_value", sa.String(255)),
        sa.Column("actual_value", sa.String(255)),
        # Status
        sa.Column("status", sa.String(20), server_default="open"),
        sa.Column("resolved_at", sa.DateTime()),
        sa.Column("resolution_note", sa.Text()),
        sa.Column("run_id", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_reconciliation_alerts_alert_type", "reconciliation_alerts", ["alert_type"])
    op.create_index("ix_reconciliation_alerts_severity", "reconciliation_alerts", ["severity"])
    op.create_index("ix_reconciliation_alerts_status", "reconciliation_alerts", ["status"])
    op.create_index("ix_reconciliation_alerts_invoice_id", "reconciliation_alerts", ["invoice_id"])
    op.create_index("ix_reconciliation_alerts_run_id", "reconciliation_alerts", ["run_id"])


def downgrade() -> None:
    op.drop_table("reconciliation_alerts")
    op.drop_table("activity_logs")
    op.drop_table("invoices")
    op.drop_table("profiles")
