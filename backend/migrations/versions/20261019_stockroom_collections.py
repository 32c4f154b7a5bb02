"""Create the stockroom collections

Revision ID: 20261019_stockroom_collections
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_stockroom_collections"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("category", sa.String(128), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=True),
        sa.Column("selling_price", sa.Float(), nullable=True),
        sa.Column("created_at", sa.String(40), nullable=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_category", ["category"], unique=False)
        batch_op.create_index("ix_products_stock", ["stock"], unique=False)
        batch_op.create_index("ix_products_selling_price", ["selling_price"], unique=False)
        batch_op.create_index("ix_products_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_products_category_stock", ["category", "stock"], unique=False)

    op.create_table(
        "sales",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("date", sa.String(40), nullable=True),
        sa.Column("attendant", sa.String(128), nullable=True),
        sa.Column("payment_method", sa.String(64), nullable=True),
        sa.Column("total", sa.Float(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_date", ["date"], unique=False)
        batch_op.create_index("ix_sales_attendant", ["attendant"], unique=False)
        batch_op.create_index("ix_sales_payment_method", ["payment_method"], unique=False)
        batch_op.create_index("ix_sales_total", ["total"], unique=False)

    op.create_table(
        "settings",
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "backups",
        sa.Column("timestamp", sa.String(40), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("info", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("timestamp"),
    )

    with op.batch_alter_table("backups", schema=None) as batch_op:
        batch_op.create_index("ix_backups_type", ["type"], unique=False)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("details", sa.Text(), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("user_name", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("audit_log", schema=None) as batch_op:
        batch_op.create_index("ix_audit_log_timestamp", ["timestamp"], unique=False)
        batch_op.create_index("ix_audit_log_action", ["action"], unique=False)
        batch_op.create_index("ix_audit_log_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_audit_log_action_timestamp", ["action", "timestamp"], unique=False)


def downgrade():
    with op.batch_alter_table("audit_log", schema=None) as batch_op:
        batch_op.drop_index("ix_audit_log_action_timestamp")
        batch_op.drop_index("ix_audit_log_user_id")
        batch_op.drop_index("ix_audit_log_action")
        batch_op.drop_index("ix_audit_log_timestamp")
    op.drop_table("audit_log")

    with op.batch_alter_table("backups", schema=None) as batch_op:
        batch_op.drop_index("ix_backups_type")
    op.drop_table("backups")

    op.drop_table("settings")

    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.drop_index("ix_sales_total")
        batch_op.drop_index("ix_sales_payment_method")
        batch_op.drop_index("ix_sales_attendant")
        batch_op.drop_index("ix_sales_date")
    op.drop_table("sales")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_index("ix_products_category_stock")
        batch_op.drop_index("ix_products_created_at")
        batch_op.drop_index("ix_products_selling_price")
        batch_op.drop_index("ix_products_stock")
        batch_op.drop_index("ix_products_category")
    op.drop_table("products")
