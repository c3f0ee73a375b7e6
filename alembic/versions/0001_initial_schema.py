"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Initial database schema for the TON lottery settlement engine.
"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MONEY = sa.Numeric(precision=32, scale=8)


def _str(length: int) -> sqlmodel.sql.sqltypes.AutoString:
    return sqlmodel.sql.sqltypes.AutoString(length=length)


def upgrade() -> None:
    """Create initial database schema."""
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("username", _str(255), nullable=True),
        sa.Column("ton_wallet", _str(128), nullable=True),
        sa.Column("balance_ton", MONEY, nullable=False),
        sa.Column("balance_usdt", MONEY, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_telegram_id"), "users", ["telegram_id"], unique=True)

    # Lotteries and draws
    op.create_table(
        "lotteries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("slug", _str(64), nullable=False),
        sa.Column("name", _str(255), nullable=False),
        sa.Column("numbers_count", sa.Integer(), nullable=False),
        sa.Column("numbers_max", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_lotteries_slug"), "lotteries", ["slug"], unique=True)

    op.create_table(
        "draws",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("lottery_id", sa.Integer(), nullable=False),
        sa.Column("draw_number", sa.Integer(), nullable=False),
        sa.Column("status", _str(20), nullable=False),
        sa.Column("server_seed_hash", _str(64), nullable=False),
        sa.Column("server_seed", _str(128), nullable=True),
        sa.Column("client_seed", _str(128), nullable=True),
        sa.Column("client_seed_block", sa.BigInteger(), nullable=True),
        sa.Column("nonce", sa.Integer(), nullable=False),
        sa.Column("winning_numbers", sa.JSON(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(), nullable=True),
        sa.Column("executed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lottery_id"], ["lotteries.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_draws_lottery_id"), "draws", ["lottery_id"], unique=False)
    op.create_index(op.f("ix_draws_draw_number"), "draws", ["draw_number"], unique=False)
    op.create_index(op.f("ix_draws_status"), "draws", ["status"], unique=False)

    # Payout queue
    op.create_table(
        "payouts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("lottery_id", sa.Integer(), nullable=True),
        sa.Column("draw_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", _str(16), nullable=False),
        sa.Column("recipient_address", _str(128), nullable=False),
        sa.Column("status", _str(20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", _str(1000), nullable=True),
        sa.Column("split_index", sa.Integer(), nullable=False),
        sa.Column("split_total", sa.Integer(), nullable=False),
        sa.Column("total_amount", MONEY, nullable=True),
        sa.Column("deferred", sa.Boolean(), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("message_hash", _str(128), nullable=True),
        sa.Column("tx_hash", _str(128), nullable=True),
        sa.Column("tx_hash_provisional", sa.Boolean(), nullable=False),
        sa.Column("gas_reserved", sa.Boolean(), nullable=False),
        sa.Column("gas_shortfall", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lottery_id"], ["lotteries.id"]),
        sa.ForeignKeyConstraint(["draw_id"], ["draws.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_hash"),
    )
    for column in (
        "lottery_id",
        "draw_id",
        "user_id",
        "ticket_id",
        "currency",
        "status",
        "deferred",
        "next_attempt_at",
        "message_hash",
        "created_at",
        "completed_at",
    ):
        op.create_index(op.f(f"ix_payouts_{column}"), "payouts", [column], unique=False)

    # Transactions table
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", _str(20), nullable=False),
        sa.Column("status", _str(20), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("fee", MONEY, nullable=False),
        sa.Column("currency", _str(16), nullable=False),
        sa.Column("tx_hash", _str(128), nullable=True),
        sa.Column("hash_provisional", sa.Boolean(), nullable=False),
        sa.Column("message_hash", _str(128), nullable=True),
        sa.Column("from_address", _str(128), nullable=True),
        sa.Column("to_address", _str(128), nullable=True),
        sa.Column("memo", _str(128), nullable=True),
        sa.Column("error", _str(1000), nullable=True),
        sa.Column("needs_review", sa.Boolean(), nullable=False),
        sa.Column("payout_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["payout_id"], ["payouts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_hash"),
    )
    for column in ("user_id", "type", "status", "currency", "message_hash", "payout_id", "created_at"):
        op.create_index(op.f(f"ix_transactions_{column}"), "transactions", [column], unique=False)

    # Balance ledger
    op.create_table(
        "balance_ledgers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("currency", _str(16), nullable=False),
        sa.Column("change_type", _str(20), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("pre_balance", MONEY, nullable=False),
        sa.Column("post_balance", MONEY, nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("remark", _str(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("user_id", "change_type", "transaction_id", "created_at"):
        op.create_index(op.f(f"ix_balance_ledgers_{column}"), "balance_ledgers", [column], unique=False)

    # Lottery funds
    op.create_table(
        "lottery_funds",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("lottery_id", sa.Integer(), nullable=False),
        sa.Column("currency", _str(16), nullable=False),
        sa.Column("total_collected", MONEY, nullable=False),
        sa.Column("prize_pool", MONEY, nullable=False),
        sa.Column("reserve_pool", MONEY, nullable=False),
        sa.Column("platform_pool", MONEY, nullable=False),
        sa.Column("total_paid_out", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lottery_id"], ["lotteries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("lottery_id", "currency", name="uq_fund_lottery_currency"),
    )
    op.create_index(op.f("ix_lottery_funds_lottery_id"), "lottery_funds", ["lottery_id"], unique=False)

    op.create_table(
        "fund_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("lottery_id", sa.Integer(), nullable=False),
        sa.Column("currency", _str(16), nullable=False),
        sa.Column("draw_id", sa.Integer(), nullable=True),
        sa.Column("type", _str(20), nullable=False),
        sa.Column("pool", _str(20), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("pool_after", MONEY, nullable=False),
        sa.Column("reference", _str(128), nullable=True),
        sa.Column("note", _str(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lottery_id"], ["lotteries.id"]),
        sa.ForeignKeyConstraint(["draw_id"], ["draws.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("lottery_id", "draw_id", "type", "created_at"):
        op.create_index(op.f(f"ix_fund_transactions_{column}"), "fund_transactions", [column], unique=False)

    # Deposits
    op.create_table(
        "deposit_memos",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("memo", _str(64), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_deposit_memos_user_id"), "deposit_memos", ["user_id"], unique=False)
    op.create_index(op.f("ix_deposit_memos_memo"), "deposit_memos", ["memo"], unique=True)
    op.create_index(op.f("ix_deposit_memos_used"), "deposit_memos", ["used"], unique=False)

    op.create_table(
        "unmatched_deposits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tx_hash", _str(128), nullable=False),
        sa.Column("lt", sa.BigInteger(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", _str(16), nullable=False),
        sa.Column("comment", _str(512), nullable=True),
        sa.Column("from_address", _str(128), nullable=True),
        sa.Column("reason", _str(64), nullable=False),
        sa.Column("status", _str(20), nullable=False),
        sa.Column("resolved_user_id", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["resolved_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_unmatched_deposits_tx_hash"), "unmatched_deposits", ["tx_hash"], unique=True)
    op.create_index(op.f("ix_unmatched_deposits_status"), "unmatched_deposits", ["status"], unique=False)
    op.create_index(op.f("ix_unmatched_deposits_created_at"), "unmatched_deposits", ["created_at"], unique=False)

    op.create_table(
        "scan_cursors",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account", _str(128), nullable=False),
        sa.Column("last_lt", sa.BigInteger(), nullable=False),
        sa.Column("last_hash", _str(128), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_scan_cursors_account"), "scan_cursors", ["account"], unique=True)


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("scan_cursors")
    op.drop_table("unmatched_deposits")
    op.drop_table("deposit_memos")
    op.drop_table("fund_transactions")
    op.drop_table("lottery_funds")
    op.drop_table("balance_ledgers")
    op.drop_table("transactions")
    op.drop_table("payouts")
    op.drop_table("draws")
    op.drop_table("lotteries")
    op.drop_table("users")
