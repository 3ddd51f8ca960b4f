"""Service request and audit trail schema."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "service_requests",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("sr_number", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("building_id", sa.Integer(), nullable=False),
        sa.Column("floor_id", sa.Integer(), nullable=False),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("problem_type_id", sa.Integer(), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("requested_by", sa.String(length=255), nullable=False),
        sa.Column("requested_for", sa.String(length=255), nullable=True),
        sa.Column("assigned_trade_id", sa.Integer(), nullable=True),
        sa.Column("assigned_technician_id", sa.String(length=255), nullable=True),
        sa.Column("response_due_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("resolve_due_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_service_requests_sr_number", "service_requests", ["sr_number"], unique=True)
    op.create_index("ix_service_requests_status", "service_requests", ["status"])
    op.create_index("ix_service_requests_priority", "service_requests", ["priority"])
    op.create_index("ix_service_requests_site_id", "service_requests", ["site_id"])
    op.create_index("ix_service_requests_building_id", "service_requests", ["building_id"])

    op.create_table(
        "service_request_audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "request_id",
            sa.String(length=36),
            sa.ForeignKey("service_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=True),
        sa.Column("to_status", sa.String(length=20), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_service_request_audit_logs_request_id", "service_request_audit_logs", ["request_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_service_request_audit_logs_request_id", table_name="service_request_audit_logs")
    op.drop_table("service_request_audit_logs")
    op.drop_index("ix_service_requests_building_id", table_name="service_requests")
    op.drop_index("ix_service_requests_site_id", table_name="service_requests")
    op.drop_index("ix_service_requests_priority", table_name="service_requests")
    op.drop_index("ix_service_requests_status", table_name="service_requests")
    op.drop_index("ix_service_requests_sr_number", table_name="service_requests")
    op.drop_table("service_requests")
