"""initial stockbook schema

Revision ID: 0001_initial_schema
Revises: 
Create Date: 2025-01-06

"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return (
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "business",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "owner_id",
            sa.Integer(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("business_name", sa.String(255), nullable=False),
        sa.Column("business_type", sa.String(120)),
        sa.Column("business_address", sa.String(500)),
        sa.Column("business_phone", sa.String(64)),
        sa.Column("business_email", sa.String(255)),
        sa.Column("business_ein", sa.String(64)),
        sa.Column("business_vat", sa.String(64)),
        sa.Column("business_logo", sa.String(1024)),
        sa.Column("return_policy", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "stock",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "owner_id",
            sa.Integer(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("barcode", sa.String(128), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(128), nullable=False),
        sa.Column("category", sa.String(120)),
        sa.Column("sub_category", sa.String(120)),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stock_rate", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("selling_rate", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("vat_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("supplier", sa.String(255)),
        sa.Column("stock_location", sa.String(255)),
        sa.Column("discount_allowed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reorder_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("purchase_date", sa.Date()),
        sa.Column("expiry_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint("owner_id", "barcode", name="uq_stock_owner_barcode"),
        sa.UniqueConstraint("owner_id", "sku", name="uq_stock_owner_sku"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
    )

    op.create_table(
        "invoice",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "owner_id",
            sa.Integer(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("invoice_number", sa.Integer(), nullable=False),
        sa.Column("invoice_name", sa.String(255)),
        sa.Column("client_name", sa.String(255), nullable=False),
        sa.Column("client_email", sa.String(255), nullable=False),
        sa.Column("client_address", sa.String(500), nullable=False),
        sa.Column("from_name", sa.String(255)),
        sa.Column("from_email", sa.String(255)),
        sa.Column("from_address", sa.String(500)),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("total", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("note", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("returned_at", sa.DateTime()),
        sa.UniqueConstraint("owner_id", "invoice_number", name="uq_invoice_owner_number"),
        sa.CheckConstraint("invoice_number > 0", name="ck_invoice_number_positive"),
    )

    op.create_table(
        "invoice_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "invoice_id",
            sa.Integer(),
            sa.ForeignKey("invoice.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "stock_id",
            sa.Integer(),
            sa.ForeignKey("stock.id", ondelete="SET NULL"),
            index=True,
        ),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("vat_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("line_total", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity > 0", name="ck_invoice_item_quantity_positive"),
    )

    op.create_table(
        "stock_movement",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "owner_id",
            sa.Integer(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "stock_id",
            sa.Integer(),
            sa.ForeignKey("stock.id", ondelete="SET NULL"),
            index=True,
        ),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(16), nullable=False),
        sa.Column("reference", sa.String(64)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("stock_movement")
    op.drop_table("invoice_item")
    op.drop_table("invoice")
    op.drop_table("stock")
    op.drop_table("business")
    op.drop_table("user")
