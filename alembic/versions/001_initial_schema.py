"""initial schema: api keys, billing profile and ledger, favorites

Revision ID: 001_initial
Revises: None
Create Date: 2026-03-02
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- api_keys ---
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("key_prefix", sa.String(16), nullable=False),
        sa.Column("key_hash", sa.String(128), nullable=False),
        sa.Column("label", sa.String(255), nullable=True),
        sa.Column("last_used_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("revoked_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)

    # --- billing_profile ---
    op.create_table(
        "billing_profile",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("plan", sa.String(32), nullable=False, server_default="free"),
        sa.Column("balance_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("pending_fractional_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("monthly_spend_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("spend_period", sa.String(7), nullable=True),
        sa.Column("monthly_spending_limit_cents", sa.Integer, nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("default_payment_method_id", sa.String(255), nullable=True),
        sa.Column("auto_recharge_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("auto_recharge_threshold_cents", sa.Integer, nullable=True),
        sa.Column("auto_recharge_amount_cents", sa.Integer, nullable=True),
        sa.Column("failed_auto_recharge_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("successful_auto_recharges_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_auto_recharge_attempt", sa.DateTime, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )

    # --- billing_transactions ---
    op.create_table(
        "billing_transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("amount_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("tool_id", sa.String(64), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("stripe_intent_id", sa.String(255), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_billing_transactions_user_id", "billing_transactions", ["user_id"])

    # --- favorites ---
    op.create_table(
        "favorites",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("tool_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("user_id", "tool_id", name="uq_favorites_user_tool"),
    )
    op.create_index("ix_favorites_user_id", "favorites", ["user_id"])


def downgrade() -> None:
    op.drop_table("favorites")
    op.drop_table("billing_transactions")
    op.drop_table("billing_profile")
    op.drop_table("api_keys")
