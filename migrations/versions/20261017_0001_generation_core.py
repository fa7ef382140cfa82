"""generation core: tenants, catalog inputs, credits and generation jobs

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _tenant_fk() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE")


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("plan_tier", sa.String(length=32), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=128), nullable=True),
        sa.Column("subscription_status", sa.String(length=32), nullable=False, server_default="inactive"),
        sa.Column("overage_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("overage_limit_cents", sa.Integer(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "uploaded_files",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("blob_url", sa.String(length=1024), nullable=False),
        sa.Column("original_name", sa.String(length=255), nullable=True),
        sa.Column("content_type", sa.String(length=80), nullable=False, server_default="application/octet-stream"),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_uploaded_files_tenant_id", "uploaded_files", ["tenant_id"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"], unique=False)

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False, server_default="Default"),
        sa.Column("sku", sa.String(length=128), nullable=True),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_product_variants_tenant_id", "product_variants", ["tenant_id"], unique=False)
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"], unique=False)

    op.create_table(
        "moodboards",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("style_profile_json", sa.Text(), nullable=False, server_default="{}"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_moodboards_tenant_id", "moodboards", ["tenant_id"], unique=False)

    op.create_table(
        "moodboard_assets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("moodboard_id", sa.Integer(), nullable=False),
        sa.Column("uploaded_file_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["moodboard_id"], ["moodboards.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["uploaded_file_id"], ["uploaded_files.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("moodboard_id", "uploaded_file_id", "kind", name="uq_moodboard_assets_file_kind"),
    )
    op.create_index("ix_moodboard_assets_board_kind", "moodboard_assets", ["moodboard_id", "kind"], unique=False)

    op.create_table(
        "credit_periods",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("plan_tier", sa.String(length=32), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("image_credits_included", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("text_credits_included", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("stripe_subscription_id", sa.String(length=128), nullable=True),
        _created_at(),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_credit_periods_tenant_window",
        "credit_periods",
        ["tenant_id", "period_start", "period_end"],
        unique=False,
    )

    op.create_table(
        "credit_ledger_entries",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("credit_period_id", sa.String(length=36), nullable=False),
        sa.Column("reservation_id", sa.String(length=36), nullable=False),
        sa.Column("entry_type", sa.String(length=16), nullable=False),
        sa.Column("usage_type", sa.String(length=16), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("is_overage", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("overage_cost_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reference_type", sa.String(length=40), nullable=True),
        sa.Column("reference_id", sa.String(length=64), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=False, server_default="{}"),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["credit_period_id"], ["credit_periods.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_ledger_entries_tenant_id", "credit_ledger_entries", ["tenant_id"], unique=False)
    op.create_index(
        "ix_credit_ledger_period_usage",
        "credit_ledger_entries",
        ["credit_period_id", "usage_type"],
        unique=False,
    )
    op.create_index("ix_credit_ledger_reservation", "credit_ledger_entries", ["reservation_id"], unique=False)

    op.create_table(
        "generation_batches",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("settings_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("variant_count", sa.Integer(), nullable=False),
        sa.Column("image_count", sa.Integer(), nullable=False),
        sa.Column("shared_folder_id", sa.String(length=36), nullable=True),
        _created_at(),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_batches_tenant_id", "generation_batches", ["tenant_id"], unique=False)

    op.create_table(
        "output_folders",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("scope_type", sa.String(length=16), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("variant_id", sa.Integer(), nullable=True),
        sa.Column("batch_id", sa.String(length=36), nullable=True),
        _created_at(),
        _tenant_fk(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_output_folders_tenant_id", "output_folders", ["tenant_id"], unique=False)

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="queued"),
        sa.Column("schema_key", sa.String(length=64), nullable=False),
        sa.Column("input_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("variation_count", sa.Integer(), nullable=False),
        sa.Column("prompts_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("credit_reservation_id", sa.String(length=36), nullable=False),
        sa.Column("is_overage", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("target_folder_id", sa.String(length=36), nullable=True),
        sa.Column("shared_folder_id", sa.String(length=36), nullable=True),
        sa.Column("failed_stage", sa.String(length=32), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _created_at(),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["batch_id"], ["generation_batches.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_jobs_tenant_status", "generation_jobs", ["tenant_id", "status"], unique=False)
    op.create_index("ix_generation_jobs_batch", "generation_jobs", ["batch_id"], unique=False)

    op.create_table(
        "generation_outputs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("job_id", sa.String(length=36), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("folder_id", sa.String(length=36), nullable=True),
        sa.Column("variation_index", sa.Integer(), nullable=False),
        sa.Column("blob_url", sa.String(length=1024), nullable=False),
        sa.Column("storage_path", sa.String(length=512), nullable=False),
        sa.Column("mime_type", sa.String(length=64), nullable=False, server_default="image/png"),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("prompt_text", sa.Text(), nullable=False),
        _created_at(),
        _tenant_fk(),
        sa.ForeignKeyConstraint(["job_id"], ["generation_jobs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_id", "variation_index", name="uq_generation_outputs_job_index"),
    )
    op.create_index("ix_generation_outputs_tenant_id", "generation_outputs", ["tenant_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_generation_outputs_tenant_id", table_name="generation_outputs")
    op.drop_table("generation_outputs")

    op.drop_index("ix_generation_jobs_batch", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_tenant_status", table_name="generation_jobs")
    op.drop_table("generation_jobs")

    op.drop_index("ix_output_folders_tenant_id", table_name="output_folders")
    op.drop_table("output_folders")

    op.drop_index("ix_generation_batches_tenant_id", table_name="generation_batches")
    op.drop_table("generation_batches")

    op.drop_index("ix_credit_ledger_reservation", table_name="credit_ledger_entries")
    op.drop_index("ix_credit_ledger_period_usage", table_name="credit_ledger_entries")
    op.drop_index("ix_credit_ledger_entries_tenant_id", table_name="credit_ledger_entries")
    op.drop_table("credit_ledger_entries")

    op.drop_index("ix_credit_periods_tenant_window", table_name="credit_periods")
    op.drop_table("credit_periods")

    op.drop_index("ix_moodboard_assets_board_kind", table_name="moodboard_assets")
    op.drop_table("moodboard_assets")

    op.drop_index("ix_moodboards_tenant_id", table_name="moodboards")
    op.drop_table("moodboards")

    op.drop_index("ix_product_variants_product_id", table_name="product_variants")
    op.drop_index("ix_product_variants_tenant_id", table_name="product_variants")
    op.drop_table("product_variants")

    op.drop_index("ix_products_tenant_id", table_name="products")
    op.drop_table("products")

    op.drop_index("ix_uploaded_files_tenant_id", table_name="uploaded_files")
    op.drop_table("uploaded_files")

    op.drop_table("tenants")
