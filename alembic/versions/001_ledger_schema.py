"""Ledger schema.

Creates users, task_claims, transactions, streak_case_opens, level_case_opens
and redemptions. Money columns are integer cents.

Revision ID: 001_ledger_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_ledger_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(32) PRIMARY KEY,
            email VARCHAR(320) UNIQUE NOT NULL,
            display_name VARCHAR(64) NOT NULL DEFAULT '',
            role VARCHAR(16) NOT NULL DEFAULT 'USER',
            status VARCHAR(16) NOT NULL DEFAULT 'ACTIVE',
            balance_cents INTEGER NOT NULL DEFAULT 0,
            lifetime_earned_cents INTEGER NOT NULL DEFAULT 0,
            total_withdrawn_cents INTEGER NOT NULL DEFAULT 0,
            level_case_keys INTEGER NOT NULL DEFAULT 0,
            level_rewards_claimed INTEGER NOT NULL DEFAULT 0,
            wheel_last_spun_at TIMESTAMPTZ,
            last_withdrawal_at TIMESTAMPTZ,
            referred_by_id VARCHAR(32) REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_users_referred_by_id
        ON users(referred_by_id)
    """)

    # --- Task claims ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS task_claims (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(32) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            task_key VARCHAR(255) UNIQUE NOT NULL,
            offerwall_name VARCHAR(64) NOT NULL,
            offer_id VARCHAR(255) NOT NULL,
            offer_title VARCHAR(255),
            payout_cents INTEGER NOT NULL,
            claimed_at TIMESTAMPTZ NOT NULL,
            pending_until TIMESTAMPTZ,
            credited_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_task_claims_user_claimed
        ON task_claims(user_id, claimed_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_task_claims_user_pending
        ON task_claims(user_id, credited_at, pending_until)
    """)

    # --- Transactions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(32) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            amount_cents INTEGER NOT NULL,
            description TEXT NOT NULL,
            source_user_id VARCHAR(32) REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_transactions_user_created
        ON transactions(user_id, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_transactions_user_type_description
        ON transactions(user_id, type, description)
    """)

    # --- Streak case opens ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS streak_case_opens (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(32) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            tier INTEGER NOT NULL,
            streak_start_day DATE NOT NULL,
            streak_days_at_open INTEGER NOT NULL,
            amount_cents INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_streak_case_opens_user_start_tier UNIQUE (user_id, streak_start_day, tier)
        )
    """)

    # --- Level case opens ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS level_case_opens (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(32) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount_cents INTEGER NOT NULL,
            level_at_open INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Redemptions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS redemptions (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(32) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            method VARCHAR(64) NOT NULL,
            amount_cents INTEGER NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
            payout_email VARCHAR(320),
            note VARCHAR(120),
            cancel_reason VARCHAR(200),
            referral_bonus_cents INTEGER NOT NULL DEFAULT 0,
            referral_bonus_paid_at TIMESTAMPTZ,
            processed_by_id VARCHAR(32) REFERENCES users(id) ON DELETE SET NULL,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_redemptions_status_created
        ON redemptions(status, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS redemptions CASCADE")
    op.execute("DROP TABLE IF EXISTS level_case_opens CASCADE")
    op.execute("DROP TABLE IF EXISTS streak_case_opens CASCADE")
    op.execute("DROP TABLE IF EXISTS transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS task_claims CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
