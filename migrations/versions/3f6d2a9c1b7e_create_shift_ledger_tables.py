"""create users, products, daily entries and stock deductions

Revision ID: 3f6d2a9c1b7e
Revises:
Create Date: 2025-01-06 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f6d2a9c1b7e"
down_revision = None
branch_labels = None
depends_on = None


user_role = sa.Enum("user", "admin", "superAdmin", name="user_role")
user_team = sa.Enum("video", "portal", name="user_team")
product_team = sa.Enum("video", "portal", name="product_team")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("team", user_team, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("password_changed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("brand", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("team", product_team, nullable=False),
        sa.Column("monthly_target", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remaining_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("monthly_target >= 0", name="ck_product_monthly_target_non_negative"),
        sa.CheckConstraint("remaining_stock >= 0", name="ck_product_remaining_stock_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_team", "products", ["team"])
    op.create_index("ix_products_is_active", "products", ["is_active"])

    op.create_table(
        "daily_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("morning_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("evening_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("late_night_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("entered_by", sa.String(length=120), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("morning_count >= 0", name="ck_daily_entry_morning_non_negative"),
        sa.CheckConstraint("evening_count >= 0", name="ck_daily_entry_evening_non_negative"),
        sa.CheckConstraint("late_night_count >= 0", name="ck_daily_entry_late_night_non_negative"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "date", name="uq_daily_entry_product_date"),
    )
    op.create_index("ix_daily_entries_product_id", "daily_entries", ["product_id"])
    op.create_index("ix_daily_entries_date", "daily_entries", ["date"])

    op.create_table(
        "stock_deductions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("daily_entry_id", sa.Integer(), nullable=True),
        sa.Column("requested_quantity", sa.Integer(), nullable=False),
        sa.Column("applied_quantity", sa.Integer(), nullable=False),
        sa.Column("stock_before", sa.Integer(), nullable=False),
        sa.Column("stock_after", sa.Integer(), nullable=False),
        sa.Column("entered_by", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("requested_quantity > 0", name="ck_stock_deduction_requested_positive"),
        sa.CheckConstraint("applied_quantity >= 0", name="ck_stock_deduction_applied_non_negative"),
        sa.CheckConstraint("stock_after >= 0", name="ck_stock_deduction_stock_after_non_negative"),
        sa.ForeignKeyConstraint(["daily_entry_id"], ["daily_entries.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stock_deductions_product_id", "stock_deductions", ["product_id"])
    op.create_index("ix_stock_deductions_daily_entry_id", "stock_deductions", ["daily_entry_id"])


def downgrade():
    op.drop_index("ix_stock_deductions_daily_entry_id", table_name="stock_deductions")
    op.drop_index("ix_stock_deductions_product_id", table_name="stock_deductions")
    op.drop_table("stock_deductions")
    op.drop_index("ix_daily_entries_date", table_name="daily_entries")
    op.drop_index("ix_daily_entries_product_id", table_name="daily_entries")
    op.drop_table("daily_entries")
    op.drop_index("ix_products_is_active", table_name="products")
    op.drop_index("ix_products_team", table_name="products")
    op.drop_table("products")
    op.drop_table("users")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        product_team.drop(bind, checkfirst=True)
        user_team.drop(bind, checkfirst=True)
        user_role.drop(bind, checkfirst=True)
