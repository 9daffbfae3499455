"""initial_signal_relay_schema

Revision ID: 0001a2b3c4d5
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001a2b3c4d5"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    # Accounts
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("plan", sa.String(length=20), nullable=False, server_default="FREE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_accounts_created_at", "accounts", ["created_at"])

    # Strategies
    op.create_table(
        "strategies",
        sa.Column("id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("secret_token", sa.String(length=128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_strategies_created_at", "strategies", ["created_at"])
    op.create_index("ix_strategies_user_id", "strategies", ["user_id"])

    # API keys
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("strategy_id", sa.Integer(), sa.ForeignKey("strategies.id"), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("api_key", sa.String(length=128), nullable=False),
        sa.Column("payload_mapping", sa.JSON(), nullable=False),
        sa.Column("default_values", sa.JSON(), nullable=False),
        sa.Column("rate_limit_per_minute", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("integration_ids", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("request_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("api_key"),
    )
    op.create_index("ix_api_keys_created_at", "api_keys", ["created_at"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    # Signals
    op.create_table(
        "signals",
        sa.Column("id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("strategy_id", sa.Integer(), sa.ForeignKey("strategies.id"), nullable=False),
        sa.Column("api_key_id", sa.Integer(), sa.ForeignKey("api_keys.id"), nullable=True),
        sa.Column("signal_type", sa.String(length=10), nullable=False),
        sa.Column("symbol", sa.String(length=40), nullable=False),
        sa.Column("price", sa.Numeric(precision=24, scale=8), nullable=False),
        sa.Column("signal_time", sa.DateTime(), nullable=False),
        sa.Column("interval", sa.String(length=20), nullable=True),
        sa.Column("alert_id", sa.String(length=200), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("strategy_id", "alert_id", name="uq_signals_strategy_alert"),
    )
    op.create_index("ix_signals_created_at", "signals", ["created_at"])
    op.create_index(
        "ix_signals_strategy_symbol_created", "signals", ["strategy_id", "symbol", "created_at"]
    )
    op.create_index("ix_signals_user_created", "signals", ["user_id", "created_at"])

    # Trades (written by trade pairing, read for performance snapshots)
    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("strategy_id", sa.Integer(), sa.ForeignKey("strategies.id"), nullable=False),
        sa.Column("symbol", sa.String(length=40), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("entry_price", sa.Numeric(precision=24, scale=8), nullable=False),
        sa.Column("entry_time", sa.DateTime(), nullable=False),
        sa.Column("exit_price", sa.Numeric(precision=24, scale=8), nullable=True),
        sa.Column("exit_time", sa.DateTime(), nullable=True),
        sa.Column("pnl", sa.Numeric(precision=24, scale=8), nullable=True),
        sa.Column("pnl_percent", sa.Numeric(precision=12, scale=6), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trades_created_at", "trades", ["created_at"])
    op.create_index("ix_trades_strategy_id", "trades", ["strategy_id"])

    # Integrations (notification channels)
    op.create_table(
        "integrations",
        sa.Column("id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("strategy_id", sa.Integer(), sa.ForeignKey("strategies.id"), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("last_delivery_at", sa.DateTime(), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_integrations_created_at", "integrations", ["created_at"])
    op.create_index("ix_integrations_user_id", "integrations", ["user_id"])
    op.create_index("ix_integrations_strategy_id", "integrations", ["strategy_id"])

    # Delivery log
    op.create_table(
        "alert_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("strategy_id", sa.Integer(), sa.ForeignKey("strategies.id"), nullable=False),
        sa.Column("signal_id", sa.Integer(), sa.ForeignKey("signals.id"), nullable=False),
        sa.Column("integration_id", sa.Integer(), sa.ForeignKey("integrations.id"), nullable=False),
        sa.Column("integration_type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("message", sa.String(length=500), nullable=True),
        sa.Column("response_status", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("retryable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("retried_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_alert_logs_created_at", "alert_logs", ["created_at"])
    op.create_index("ix_alert_logs_status_created", "alert_logs", ["status", "created_at"])
    op.create_index(
        "ix_alert_logs_signal_integration", "alert_logs", ["signal_id", "integration_id"]
    )


def downgrade() -> None:
    op.drop_table("alert_logs")
    op.drop_table("integrations")
    op.drop_table("trades")
    op.drop_table("signals")
    op.drop_table("api_keys")
    op.drop_table("strategies")
    op.drop_table("accounts")
