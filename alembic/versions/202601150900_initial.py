"""initial schema

Revision ID: 202601150900
Revises:
Create Date: 2026-01-15 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601150900"
down_revision = None
branch_labels = None
depends_on = None

EXPENSE_TYPE = sa.Enum("expense", "topup", name="expensetype")
TRANSFER_DIRECTION = sa.Enum("deposit", "withdrawal", name="transferdirection")
FREQUENCY = sa.Enum(
    "daily", "weekly", "biweekly", "monthly", "yearly", name="frequency"
)
BUDGET_PERIOD = sa.Enum("weekly", "monthly", "yearly", name="budgetperiod")
PAYMENT_METHOD_TYPE = sa.Enum("credit", "debit", name="paymentmethodtype")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "spaces",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("space_id", sa.Integer(), sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("color", sa.String(length=9), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("space_id", "name", name="uq_tag_space_name"),
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("space_id", sa.Integer(), sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", PAYMENT_METHOD_TYPE, nullable=False),
        sa.Column("last_four", sa.String(length=4), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "money_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("space_id", sa.Integer(), sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_money_accounts_space", "money_accounts", ["space_id"])

    op.create_table(
        "recurring_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("space_id", sa.Integer(), sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", EXPENSE_TYPE, nullable=False),
        sa.Column(
            "payment_method_id",
            sa.Integer(),
            sa.ForeignKey("payment_methods.id"),
            nullable=True,
        ),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("next_occurrence", sa.DateTime(), nullable=False),
        sa.Column("anchor_day", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_recurring_expense_amount_positive"
        ),
    )
    op.create_index(
        "ix_recurring_expenses_due",
        "recurring_expenses",
        ["is_active", "next_occurrence"],
    )
    op.create_index(
        "ix_recurring_expenses_space_due",
        "recurring_expenses",
        ["space_id", "is_active", "next_occurrence"],
    )

    op.create_table(
        "recurring_expense_tags",
        sa.Column(
            "recurring_expense_id",
            sa.Integer(),
            sa.ForeignKey("recurring_expenses.id"),
            primary_key=True,
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    )

    op.create_table(
        "recurring_deposits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("space_id", sa.Integer(), sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("money_accounts.id"),
            nullable=False,
        ),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=200), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("next_occurrence", sa.DateTime(), nullable=False),
        sa.Column("anchor_day", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents > 0", name="ck_recurring_deposit_amount_positive"
        ),
    )
    op.create_index(
        "ix_recurring_deposits_due",
        "recurring_deposits",
        ["is_active", "next_occurrence"],
    )
    op.create_index(
        "ix_recurring_deposits_space_due",
        "recurring_deposits",
        ["space_id", "is_active", "next_occurrence"],
    )

    op.create_table(
        "skipped_deposits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "recurring_deposit_id",
            sa.Integer(),
            sa.ForeignKey("recurring_deposits.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("occurrence_at", sa.DateTime(), nullable=False),
        sa.Column("needed_cents", sa.Integer(), nullable=False),
        sa.Column("available_cents", sa.Integer(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "recurring_deposit_id",
            "occurrence_at",
            name="uq_skipped_deposit_occurrence",
        ),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("space_id", sa.Integer(), sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("type", EXPENSE_TYPE, nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column(
            "payment_method_id",
            sa.Integer(),
            sa.ForeignKey("payment_methods.id"),
            nullable=True,
        ),
        sa.Column(
            "recurring_expense_id",
            sa.Integer(),
            sa.ForeignKey("recurring_expenses.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("occurrence_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "recurring_expense_id",
            "occurrence_at",
            name="uq_expense_recurring_occurrence",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_space_date", "expenses", ["space_id", "date"])
    op.create_index("ix_expenses_space_type", "expenses", ["space_id", "type"])

    op.create_table(
        "expense_tags",
        sa.Column(
            "expense_id", sa.Integer(), sa.ForeignKey("expenses.id"), primary_key=True
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    )

    op.create_table(
        "account_transfers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("money_accounts.id"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("direction", TRANSFER_DIRECTION, nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column(
            "recurring_deposit_id",
            sa.Integer(),
            sa.ForeignKey("recurring_deposits.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("occurrence_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "recurring_deposit_id",
            "occurrence_at",
            name="uq_transfer_recurring_occurrence",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_transfers_amount_positive"),
    )
    op.create_index(
        "ix_account_transfers_account_direction",
        "account_transfers",
        ["account_id", "direction"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("space_id", sa.Integer(), sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("period", BUDGET_PERIOD, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
    )
    op.create_index("ix_budgets_space_active", "budgets", ["space_id", "is_active"])

    op.create_table(
        "budget_tags",
        sa.Column(
            "budget_id", sa.Integer(), sa.ForeignKey("budgets.id"), primary_key=True
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id"), primary_key=True),
    )


def downgrade() -> None:
    op.drop_table("budget_tags")
    op.drop_index("ix_budgets_space_active", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_account_transfers_account_direction", table_name="account_transfers")
    op.drop_table("account_transfers")
    op.drop_table("expense_tags")
    op.drop_index("ix_expenses_space_type", table_name="expenses")
    op.drop_index("ix_expenses_space_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("skipped_deposits")
    op.drop_index("ix_recurring_deposits_space_due", table_name="recurring_deposits")
    op.drop_index("ix_recurring_deposits_due", table_name="recurring_deposits")
    op.drop_table("recurring_deposits")
    op.drop_table("recurring_expense_tags")
    op.drop_index("ix_recurring_expenses_space_due", table_name="recurring_expenses")
    op.drop_index("ix_recurring_expenses_due", table_name="recurring_expenses")
    op.drop_table("recurring_expenses")
    op.drop_index("ix_money_accounts_space", table_name="money_accounts")
    op.drop_table("money_accounts")
    op.drop_table("payment_methods")
    op.drop_table("tags")
    op.drop_table("spaces")
