"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "households",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "household_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "household_id",
            sa.Integer(),
            sa.ForeignKey("households.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "role",
            sa.Enum("owner", "admin", "member", name="householdrole"),
            nullable=False,
        ),
        *_timestamps(),
        sa.UniqueConstraint("household_id", "user_id", name="uq_household_member"),
    )
    op.create_index("ix_household_members_user", "household_members", ["user_id"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("bank", "cash", "credit", name="accountkind"),
            nullable=False,
        ),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user", "accounts", ["user_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="recurringtype"), nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "type", "name", name="uq_category_user_type_name"
        ),
    )

    op.create_table(
        "recurring_incomes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_run_date", sa.Date()),
        sa.Column("next_run_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "day_of_month BETWEEN 1 AND 28", name="ck_recurring_income_day"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_income_amount"),
    )
    op.create_index(
        "ix_recurring_incomes_due",
        "recurring_incomes",
        ["is_active", "next_run_date"],
    )

    op.create_table(
        "recurring_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "type", sa.Enum("income", "expense", name="recurringtype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("day_of_month", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_run_date", sa.Date()),
        sa.Column("next_run_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("household_id", sa.Integer(), sa.ForeignKey("households.id")),
        sa.Column(
            "is_shared", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "day_of_month BETWEEN 1 AND 28", name="ck_recurring_transaction_day"
        ),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_recurring_transaction_amount"
        ),
    )
    op.create_index(
        "ix_recurring_transactions_due",
        "recurring_transactions",
        ["is_active", "next_run_date"],
    )

    op.create_table(
        "savings_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("household_id", sa.Integer(), sa.ForeignKey("households.id")),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False),
        sa.Column("current_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "type",
            sa.Enum("income", "expense", "transfer", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "recurring_income_id",
            sa.Integer(),
            sa.ForeignKey("recurring_incomes.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "recurring_transaction_id",
            sa.Integer(),
            sa.ForeignKey("recurring_transactions.id", ondelete="SET NULL"),
        ),
        sa.Column("occurrence_period", sa.String(length=7)),
        sa.Column(
            "transfer_to_account_id", sa.Integer(), sa.ForeignKey("accounts.id")
        ),
        sa.Column("goal_id", sa.Integer(), sa.ForeignKey("savings_goals.id")),
        sa.Column("household_id", sa.Integer(), sa.ForeignKey("households.id")),
        sa.Column(
            "is_shared", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "recurring_transaction_id",
            "occurrence_period",
            name="uq_txn_recurring_period",
        ),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "date"]
    )
    op.create_index(
        "ix_transactions_account_date", "transactions", ["account_id", "date"]
    )
    op.create_index(
        "ix_transactions_transfer_to", "transactions", ["transfer_to_account_id"]
    )

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("household_id", sa.Integer(), sa.ForeignKey("households.id")),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("last_four_digits", sa.String(length=4), nullable=False),
        sa.Column("billing_day", sa.Integer(), nullable=False),
        sa.Column(
            "linked_account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "billing_day BETWEEN 1 AND 28", name="ck_card_billing_day"
        ),
    )

    op.create_table(
        "credit_card_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "card_id", sa.Integer(), sa.ForeignKey("credit_cards.id"), nullable=False
        ),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("billed_date", sa.Date()),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "status",
            sa.Enum("pending", "billed", name="cardtransactionstatus"),
            nullable=False,
        ),
        sa.Column(
            "bank_transaction_id", sa.Integer(), sa.ForeignKey("transactions.id")
        ),
        sa.Column("goal_id", sa.Integer(), sa.ForeignKey("savings_goals.id")),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_card_txn_amount_positive"),
    )
    op.create_index(
        "ix_card_txn_card_status", "credit_card_transactions", ["card_id", "status"]
    )

    op.create_table(
        "goal_contributions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "goal_id", sa.Integer(), sa.ForeignKey("savings_goals.id"), nullable=False
        ),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column(
            "payment_method",
            sa.Enum("account", "creditCard", "cash", name="paymentmethod"),
            nullable=False,
        ),
        sa.Column("source_id", sa.Integer()),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "card_transaction_id",
            sa.Integer(),
            sa.ForeignKey("credit_card_transactions.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_contribution_amount_positive"
        ),
    )

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("channel", sa.String(length=120), nullable=False),
        sa.Column("event", sa.String(length=80), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("delivered_at", sa.DateTime()),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text()),
    )
    op.create_index(
        "ix_outbox_pending", "outbox_events", ["delivered_at", "id"]
    )


def downgrade():
    op.drop_index("ix_outbox_pending", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_table("goal_contributions")
    op.drop_index("ix_card_txn_card_status", table_name="credit_card_transactions")
    op.drop_table("credit_card_transactions")
    op.drop_table("credit_cards")
    op.drop_index("ix_transactions_transfer_to", table_name="transactions")
    op.drop_index("ix_transactions_account_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("savings_goals")
    op.drop_index("ix_recurring_transactions_due", table_name="recurring_transactions")
    op.drop_table("recurring_transactions")
    op.drop_index("ix_recurring_incomes_due", table_name="recurring_incomes")
    op.drop_table("recurring_incomes")
    op.drop_table("categories")
    op.drop_index("ix_accounts_user", table_name="accounts")
    op.drop_table("accounts")
    op.drop_index("ix_household_members_user", table_name="household_members")
    op.drop_table("household_members")
    op.drop_table("households")
