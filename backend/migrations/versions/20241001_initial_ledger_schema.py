"""Initial ledger schema: pricing, customers, B2B/B2C transactions, cylinders

Revision ID: 20241001_initial_ledger_schema
Revises:
Create Date: 2024-10-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20241001_initial_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*, updated: bool = True):
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False)
        )
    return columns


def _void_columns():
    return [
        sa.Column("voided", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(length=255), nullable=True),
    ]


def upgrade():
    # ------------------------------------------------------------------
    # Reference tables
    # ------------------------------------------------------------------
    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_stores_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("registration_number", sa.String(length=32), nullable=False),
        sa.Column("driver_name", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("registration_number", name="uq_vehicles_registration"),
        sqlite_autoincrement=True,
    )

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------
    op.create_table(
        "plant_prices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("plant_price_118kg_cents", sa.BigInteger(), nullable=False),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("date", name="uq_plant_prices_date"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_plant_prices_date", "plant_prices", ["date"], unique=False)

    op.create_table(
        "margin_categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("customer_type", sa.String(length=8), nullable=False),
        sa.Column("margin_per_kg_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_type", "name", name="uq_margin_categories_type_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_margin_categories_customer_type", "margin_categories", ["customer_type"], unique=False)
    op.create_index("ix_margin_categories_is_active", "margin_categories", ["is_active"], unique=False)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("contact_person", sa.String(length=128), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("margin_category_id", sa.Integer(), nullable=True),
        sa.Column("credit_limit_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("payment_terms_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("ledger_balance_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("domestic_due", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("standard_due", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commercial_due", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_transaction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["margin_category_id"], ["margin_categories.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customers_margin_category_id", "customers", ["margin_category_id"], unique=False)
    op.create_index("ix_customers_is_active", "customers", ["is_active"], unique=False)
    op.create_index("ix_customers_active_name", "customers", ["is_active", "name"], unique=False)

    op.create_table(
        "b2c_customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("margin_category_id", sa.Integer(), nullable=True),
        sa.Column("total_profit_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("security_held_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("last_transaction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["margin_category_id"], ["margin_categories.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_b2c_customers_margin_category_id", "b2c_customers", ["margin_category_id"], unique=False)
    op.create_index("ix_b2c_customers_is_active", "b2c_customers", ["is_active"], unique=False)

    # ------------------------------------------------------------------
    # B2B ledger
    # ------------------------------------------------------------------
    op.create_table(
        "b2b_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("bill_number", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time", sa.Time(), nullable=False),
        sa.Column("total_amount_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("ledger_delta_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("domestic_due_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("standard_due_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commercial_due_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("due_floor_applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_reference", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        *_timestamps(updated=False),
        *_void_columns(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bill_number", name="uq_b2b_transactions_bill_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_b2b_transactions_customer_id", "b2b_transactions", ["customer_id"], unique=False)
    op.create_index("ix_b2b_transactions_transaction_type", "b2b_transactions", ["transaction_type"], unique=False)
    op.create_index("ix_b2b_transactions_voided", "b2b_transactions", ["voided"], unique=False)
    op.create_index("ix_b2b_tx_customer_date_time", "b2b_transactions", ["customer_id", "date", "time"], unique=False)

    op.create_table(
        "b2b_transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_per_item_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_price_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("cylinder_type", sa.String(length=32), nullable=True),
        sa.Column("returned_condition", sa.String(length=16), nullable=True),
        sa.Column("remaining_kg", sa.Numeric(10, 3), nullable=True),
        sa.Column("original_sold_price_cents", sa.BigInteger(), nullable=True),
        sa.Column("buyback_rate", sa.Numeric(6, 4), nullable=True),
        sa.Column("buyback_price_per_item_cents", sa.BigInteger(), nullable=True),
        sa.Column("buyback_total_cents", sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(["transaction_id"], ["b2b_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", "line_number", name="uq_b2b_items_tx_line"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_b2b_transaction_items_transaction_id", "b2b_transaction_items", ["transaction_id"], unique=False)
    op.create_index("ix_b2b_transaction_items_cylinder_type", "b2b_transaction_items", ["cylinder_type"], unique=False)

    op.create_table(
        "bill_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prefix", sa.String(length=16), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefix", "date", name="uq_bill_sequences_prefix_date"),
        sqlite_autoincrement=True,
    )

    # ------------------------------------------------------------------
    # B2C sales and security deposits
    # ------------------------------------------------------------------
    op.create_table(
        "b2c_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("bill_number", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time", sa.Time(), nullable=False),
        sa.Column("total_amount_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("delivery_charges_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("delivery_cost_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("refund_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("final_amount_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_cost_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("actual_profit_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(length=16), nullable=False, server_default="CASH"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        *_timestamps(updated=False),
        *_void_columns(),
        sa.ForeignKeyConstraint(["customer_id"], ["b2c_customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bill_number", name="uq_b2c_transactions_bill_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_b2c_transactions_customer_id", "b2c_transactions", ["customer_id"], unique=False)
    op.create_index("ix_b2c_transactions_voided", "b2c_transactions", ["voided"], unique=False)
    op.create_index("ix_b2c_tx_customer_date_time", "b2c_transactions", ["customer_id", "date", "time"], unique=False)

    op.create_table(
        "b2c_transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("item_kind", sa.String(length=16), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("cylinder_type", sa.String(length=32), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_per_item_cents", sa.BigInteger(), nullable=False),
        sa.Column("total_price_cents", sa.BigInteger(), nullable=False),
        sa.Column("cost_price_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_cost_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("profit_margin_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["transaction_id"], ["b2c_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_b2c_transaction_items_transaction_id", "b2c_transaction_items", ["transaction_id"], unique=False)

    op.create_table(
        "b2c_security_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("cylinder_type", sa.String(length=32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("price_per_item_cents", sa.BigInteger(), nullable=False),
        sa.Column("total_price_cents", sa.BigInteger(), nullable=False),
        sa.Column("is_return", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deduction_rate", sa.Numeric(6, 4), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["transaction_id"], ["b2c_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_b2c_security_items_transaction_id", "b2c_security_items", ["transaction_id"], unique=False)

    op.create_table(
        "b2c_cylinder_holdings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("cylinder_type", sa.String(length=32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("security_amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("is_returned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("return_date", sa.Date(), nullable=True),
        sa.Column("return_deduction_cents", sa.BigInteger(), nullable=True),
        sa.Column("opened_by_transaction_id", sa.Integer(), nullable=False),
        sa.Column("closed_by_transaction_id", sa.Integer(), nullable=True),
        sa.Column("is_voided", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["customer_id"], ["b2c_customers.id"]),
        sa.ForeignKeyConstraint(["opened_by_transaction_id"], ["b2c_transactions.id"]),
        sa.ForeignKeyConstraint(["closed_by_transaction_id"], ["b2c_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_b2c_cylinder_holdings_customer_id", "b2c_cylinder_holdings", ["customer_id"], unique=False)
    op.create_index("ix_b2c_cylinder_holdings_opened_by_transaction_id", "b2c_cylinder_holdings", ["opened_by_transaction_id"], unique=False)
    op.create_index("ix_b2c_cylinder_holdings_closed_by_transaction_id", "b2c_cylinder_holdings", ["closed_by_transaction_id"], unique=False)
    op.create_index(
        "ix_holdings_customer_type_open",
        "b2c_cylinder_holdings",
        ["customer_id", "cylinder_type", "is_returned"],
        unique=False,
    )

    # ------------------------------------------------------------------
    # Cylinder fleet
    # ------------------------------------------------------------------
    op.create_table(
        "cylinders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("cylinder_type", sa.String(length=32), nullable=False),
        sa.Column("capacity_kg", sa.Numeric(8, 2), nullable=False),
        sa.Column("current_status", sa.String(length=16), nullable=False, server_default="FULL"),
        sa.Column("remaining_kg", sa.Numeric(10, 3), nullable=True),
        sa.Column("store_id", sa.Integer(), nullable=True),
        sa.Column("vehicle_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("b2c_customer_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint(
            "(CASE WHEN store_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN vehicle_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN customer_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN b2c_customer_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="ck_cylinders_single_location",
        ),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.ForeignKeyConstraint(["vehicle_id"], ["vehicles.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["b2c_customer_id"], ["b2c_customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_cylinders_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cylinders_current_status", "cylinders", ["current_status"], unique=False)
    op.create_index("ix_cylinders_store_id", "cylinders", ["store_id"], unique=False)
    op.create_index("ix_cylinders_vehicle_id", "cylinders", ["vehicle_id"], unique=False)
    op.create_index("ix_cylinders_customer_id", "cylinders", ["customer_id"], unique=False)
    op.create_index("ix_cylinders_b2c_customer_id", "cylinders", ["b2c_customer_id"], unique=False)
    op.create_index("ix_cylinders_type_status", "cylinders", ["cylinder_type", "current_status"], unique=False)

    op.create_table(
        "cylinder_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cylinder_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("from_status", sa.String(length=16), nullable=True),
        sa.Column("to_status", sa.String(length=16), nullable=False),
        sa.Column("from_location", sa.JSON(), nullable=True),
        sa.Column("to_location", sa.JSON(), nullable=False),
        sa.Column("from_remaining_kg", sa.Numeric(10, 3), nullable=True),
        sa.Column("b2b_transaction_id", sa.Integer(), nullable=True),
        sa.Column("b2c_transaction_id", sa.Integer(), nullable=True),
        sa.Column("is_reversal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["cylinder_id"], ["cylinders.id"]),
        sa.ForeignKeyConstraint(["b2b_transaction_id"], ["b2b_transactions.id"]),
        sa.ForeignKeyConstraint(["b2c_transaction_id"], ["b2c_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cylinder_movements_cylinder_id", "cylinder_movements", ["cylinder_id"], unique=False)
    op.create_index("ix_cylinder_movements_b2b_transaction_id", "cylinder_movements", ["b2b_transaction_id"], unique=False)
    op.create_index("ix_cylinder_movements_b2c_transaction_id", "cylinder_movements", ["b2c_transaction_id"], unique=False)
    op.create_index("ix_cyl_movements_cylinder_occurred", "cylinder_movements", ["cylinder_id", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("cylinder_movements")
    op.drop_table("cylinders")
    op.drop_table("b2c_cylinder_holdings")
    op.drop_table("b2c_security_items")
    op.drop_table("b2c_transaction_items")
    op.drop_table("b2c_transactions")
    op.drop_table("bill_sequences")
    op.drop_table("b2b_transaction_items")
    op.drop_table("b2b_transactions")
    op.drop_table("b2c_customers")
    op.drop_table("customers")
    op.drop_table("margin_categories")
    op.drop_table("plant_prices")
    op.drop_table("vehicles")
    op.drop_table("stores")
