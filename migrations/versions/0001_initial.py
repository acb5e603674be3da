"""initial banking schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(15, 2)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("suspended", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("jti", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])
    op.create_index("ix_refresh_tokens_jti", "refresh_tokens", ["jti"], unique=True)

    op.create_table(
        "banks",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("country", sa.String(3), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("logo_url", sa.Text(), nullable=True),
        sa.Column("api_endpoint", sa.Text(), nullable=True),
        sa.Column("integration_module", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "bank_branches",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("bank_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("country", sa.String(3), nullable=False),
        sa.Column("iban", sa.String(34), nullable=True),
        sa.Column("swift_code", sa.String(11), nullable=True),
        sa.Column("routing_number", sa.String(9), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["bank_id"], ["banks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("iban"),
        sa.UniqueConstraint("swift_code"),
    )
    op.create_index("ix_bank_branches_bank_id", "bank_branches", ["bank_id"])

    op.create_table(
        "user_bank_logins",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("bank_branch_id", sa.String(36), nullable=False),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
        sa.Column("sync_frequency", sa.Integer(), nullable=False, server_default="3600"),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("provider_user_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["bank_branch_id"], ["bank_branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "bank_branch_id", "username", name="uq_user_bank_logins_user_branch_username"),
        sa.CheckConstraint("sync_frequency >= 300 AND sync_frequency <= 86400", name="ck_user_bank_logins_sync_frequency"),
    )
    op.create_index("ix_user_bank_logins_user_id", "user_bank_logins", ["user_id"])
    op.create_index("ix_user_bank_logins_bank_branch_id", "user_bank_logins", ["bank_branch_id"])

    op.create_table(
        "user_bank_accounts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_bank_login_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("account_type", sa.String(20), nullable=False),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("last_four", sa.String(4), nullable=True),
        sa.Column("account_name", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
        sa.Column("external_account_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_bank_login_id"], ["user_bank_logins.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_account_id"),
        sa.CheckConstraint(
            "balance >= 0 OR account_type = 'CREDIT'", name="ck_user_bank_accounts_balance_non_negative"
        ),
    )
    op.create_index("ix_user_bank_accounts_user_bank_login_id", "user_bank_accounts", ["user_bank_login_id"])
    op.create_index("ix_user_bank_accounts_user_id", "user_bank_accounts", ["user_id"])

    op.create_table(
        "user_payments",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_bank_account_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("payment_type", sa.String(20), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("posted_at", sa.DateTime(), nullable=True),
        sa.Column("external_transaction_id", sa.String(64), nullable=True),
        sa.Column("failure_reason", sa.String(64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_bank_account_id"], ["user_bank_accounts.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_transaction_id"),
        sa.CheckConstraint("amount > 0", name="ck_user_payments_amount_positive"),
    )
    op.create_index("ix_user_payments_user_bank_account_id", "user_payments", ["user_bank_account_id"])
    op.create_index("ix_user_payments_user_id", "user_payments", ["user_id"])
    op.create_index("ix_user_payments_status", "user_payments", ["status"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("account_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("posted_at", sa.DateTime(), nullable=False),
        sa.Column("external_transaction_id", sa.String(64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["user_bank_accounts.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_transaction_id"),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_account_id", "transactions", ["account_id"])
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_posted_at", "transactions", ["posted_at"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("queue", sa.String(50), nullable=False),
        sa.Column("worker", sa.String(100), nullable=False),
        sa.Column("args", sa.JSON(), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="available"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("errors", sa.JSON(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("attempted_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("discarded_at", sa.DateTime(), nullable=True),
        sa.Column("inserted_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_jobs_queue", "jobs", ["queue"])
    op.create_index("ix_jobs_state", "jobs", ["state"])
    op.create_index("ix_jobs_scheduled_at", "jobs", ["scheduled_at"])


def downgrade() -> None:
    op.drop_table("jobs")
    op.drop_table("transactions")
    op.drop_table("user_payments")
    op.drop_table("user_bank_accounts")
    op.drop_table("user_bank_logins")
    op.drop_table("bank_branches")
    op.drop_table("banks")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
