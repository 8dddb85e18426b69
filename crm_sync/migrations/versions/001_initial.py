"""Initial CRM sync schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(bind, name: str) -> bool:
    return sa.inspect(bind).has_table(name)


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), nullable=False)


def _owner() -> sa.Column:
    return sa.Column("user_id", sa.String(length=100), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _external() -> list[sa.Column]:
    return [
        sa.Column("external_id", sa.String(length=100), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _customer_links(with_deal: bool) -> list[sa.Column]:
    columns = [
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("customer.id", ondelete="SET NULL"), nullable=True),
    ]
    if with_deal:
        columns += [
            sa.Column("deal_id", sa.Uuid(), sa.ForeignKey("deal.id", ondelete="SET NULL"), nullable=True),
            sa.Column("deal_external_id", sa.String(length=100), nullable=True),
        ]
    columns += [
        sa.Column("company_external_id", sa.String(length=100), nullable=True),
        sa.Column("contact_external_id", sa.String(length=100), nullable=True),
    ]
    return columns


def _record_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_user_id", table, ["user_id"], unique=False)
    op.create_index(f"ix_{table}_external_id", table, ["external_id"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()

    if not _has_table(bind, "crm_connection"):
        op.create_table(
            "crm_connection",
            _id(),
            _owner(),
            sa.Column("access_token", sa.Text(), nullable=True),
            sa.Column("refresh_token", sa.Text(), nullable=True),
            sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_crm_connection_user_id", "crm_connection", ["user_id"], unique=False)
        op.create_index(
            "uq_crm_connection_active_user",
            "crm_connection",
            ["user_id"],
            unique=True,
            sqlite_where=sa.text("is_active"),
            postgresql_where=sa.text("is_active"),
        )

    if not _has_table(bind, "crm_field_mapping"):
        op.create_table(
            "crm_field_mapping",
            _id(),
            _owner(),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("local_field", sa.String(length=100), nullable=False),
            sa.Column("external_field", sa.String(length=100), nullable=False),
            sa.Column("direction", sa.String(length=20), nullable=False),
            sa.Column("is_enabled", sa.Boolean(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_crm_field_mapping_user_id", "crm_field_mapping", ["user_id"], unique=False)
        op.create_index("ix_crm_field_mapping_entity_type", "crm_field_mapping", ["entity_type"], unique=False)
        op.create_index(
            "uq_crm_field_mapping_enabled_local",
            "crm_field_mapping",
            ["user_id", "entity_type", "local_field"],
            unique=True,
            sqlite_where=sa.text("is_enabled"),
            postgresql_where=sa.text("is_enabled"),
        )

    if not _has_table(bind, "crm_sync_run"):
        op.create_table(
            "crm_sync_run",
            _id(),
            _owner(),
            sa.Column("sync_type", sa.String(length=20), nullable=False),
            sa.Column("scope", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("records_processed", sa.Integer(), nullable=False),
            sa.Column("records_success", sa.Integer(), nullable=False),
            sa.Column("records_failed", sa.Integer(), nullable=False),
            sa.Column("records_conflicted", sa.Integer(), nullable=False),
            sa.Column("error_details", sa.JSON(), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_crm_sync_run_user_id", "crm_sync_run", ["user_id"], unique=False)
        op.create_index("ix_crm_sync_run_status", "crm_sync_run", ["status"], unique=False)

    if not _has_table(bind, "crm_batch_progress"):
        op.create_table(
            "crm_batch_progress",
            _id(),
            _owner(),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("total_estimated", sa.Integer(), nullable=False),
            sa.Column("total_imported", sa.Integer(), nullable=False),
            sa.Column("last_imported_page", sa.Integer(), nullable=False),
            sa.Column("last_imported_id", sa.String(length=100), nullable=True),
            sa.Column("batch_size", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("stop_reason", sa.String(length=20), nullable=True),
            sa.Column("error_details", sa.JSON(), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "entity_type", name="uq_crm_batch_progress_user_type"),
        )
        op.create_index("ix_crm_batch_progress_user_id", "crm_batch_progress", ["user_id"], unique=False)

    if not _has_table(bind, "crm_conflict"):
        op.create_table(
            "crm_conflict",
            _id(),
            _owner(),
            sa.Column("record_type", sa.String(length=30), nullable=False),
            sa.Column("record_id", sa.Uuid(), nullable=False),
            sa.Column("external_id", sa.String(length=100), nullable=True),
            sa.Column("field", sa.String(length=100), nullable=False),
            sa.Column("local_value", sa.Text(), nullable=True),
            sa.Column("external_value", sa.Text(), nullable=True),
            sa.Column("resolution", sa.String(length=20), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_crm_conflict_user_id", "crm_conflict", ["user_id"], unique=False)
        op.create_index("ix_crm_conflict_resolution", "crm_conflict", ["resolution"], unique=False)
        op.create_index(
            "ix_crm_conflict_record_field", "crm_conflict", ["record_type", "record_id", "field"], unique=False
        )

    if not _has_table(bind, "customer"):
        op.create_table(
            "customer",
            _id(),
            _owner(),
            *_external(),
            sa.Column("customer_type", sa.String(length=20), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=True),
            sa.Column("last_name", sa.String(length=100), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=50), nullable=True),
            sa.Column("company", sa.String(length=200), nullable=True),
            sa.Column("website", sa.String(length=255), nullable=True),
            sa.Column("vat_number", sa.String(length=50), nullable=True),
            sa.Column("city", sa.String(length=100), nullable=True),
            sa.Column("country", sa.String(length=50), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "external_id", name="uq_customer_user_external"),
        )
        _record_indexes("customer")
        op.create_index("ix_customer_user_email", "customer", ["user_id", "email"], unique=False)

    if not _has_table(bind, "deal"):
        op.create_table(
            "deal",
            _id(),
            _owner(),
            *_external(),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("value", sa.Float(), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=True),
            sa.Column("stage", sa.String(length=100), nullable=True),
            sa.Column("probability", sa.Float(), nullable=True),
            sa.Column("expected_close_date", sa.Date(), nullable=True),
            sa.Column("closed_at", sa.Date(), nullable=True),
            sa.Column("source", sa.String(length=100), nullable=True),
            sa.Column("responsible_user_external_id", sa.String(length=100), nullable=True),
            *_customer_links(with_deal=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "external_id", name="uq_deal_user_external"),
        )
        _record_indexes("deal")
        op.create_index("ix_deal_customer_id", "deal", ["customer_id"], unique=False)

    if not _has_table(bind, "invoice"):
        op.create_table(
            "invoice",
            _id(),
            _owner(),
            *_external(),
            sa.Column("invoice_number", sa.String(length=50), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("total_amount", sa.Float(), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("invoice_date", sa.Date(), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("paid_at", sa.Date(), nullable=True),
            *_customer_links(with_deal=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "external_id", name="uq_invoice_user_external"),
        )
        _record_indexes("invoice")
        op.create_index("ix_invoice_customer_id", "invoice", ["customer_id"], unique=False)

    if not _has_table(bind, "quote"):
        op.create_table(
            "quote",
            _id(),
            _owner(),
            *_external(),
            sa.Column("quote_number", sa.String(length=50), nullable=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("total_amount", sa.Float(), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("quote_date", sa.Date(), nullable=True),
            sa.Column("valid_until", sa.Date(), nullable=True),
            *_customer_links(with_deal=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "external_id", name="uq_quote_user_external"),
        )
        _record_indexes("quote")
        op.create_index("ix_quote_customer_id", "quote", ["customer_id"], unique=False)

    if not _has_table(bind, "project"):
        op.create_table(
            "project",
            _id(),
            _owner(),
            *_external(),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("budget", sa.Float(), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=True),
            sa.Column("responsible_user_external_id", sa.String(length=100), nullable=True),
            *_customer_links(with_deal=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "external_id", name="uq_project_user_external"),
        )
        _record_indexes("project")
        op.create_index("ix_project_customer_id", "project", ["customer_id"], unique=False)


def downgrade() -> None:
    for table in (
        "project",
        "quote",
        "invoice",
        "deal",
        "customer",
        "crm_conflict",
        "crm_batch_progress",
        "crm_sync_run",
        "crm_field_mapping",
        "crm_connection",
    ):
        op.drop_table(table)
