"""Initial schema: entity tables, statistics, upgrade history and checkpoints.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Arbitrary-precision values (u128/u256) are stored as decimal text.
_DECIMAL_TEXT = sa.String(120)


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("message_obj_addr", sa.String(300), nullable=False),
        sa.Column("creator_addr", sa.String(300), nullable=False),
        sa.Column("creation_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_update_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_update_version", sa.BigInteger(), nullable=False),
        sa.Column("last_update_event_idx", sa.BigInteger(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("message_obj_addr"),
    )
    op.create_index("idx_messages_creator", "messages", ["creator_addr"])

    op.create_table(
        "user_stats",
        sa.Column("user_addr", sa.String(300), nullable=False),
        sa.Column("creation_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_update_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("created_messages", sa.BigInteger(), nullable=False),
        sa.Column("updated_messages", sa.BigInteger(), nullable=False),
        sa.Column("s1_points", sa.BigInteger(), nullable=False),
        sa.Column("total_points", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("user_addr"),
    )

    op.create_table(
        "trades",
        sa.Column("trade_obj_addr", sa.String(300), nullable=False),
        sa.Column("trader_addr", sa.String(300), nullable=False),
        sa.Column("trade_type", sa.SmallInteger(), nullable=False),
        sa.Column("token_from", sa.String(100), nullable=False),
        sa.Column("token_to", sa.String(100), nullable=False),
        sa.Column("amount_from", sa.BigInteger(), nullable=False),
        sa.Column("amount_to", sa.BigInteger(), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.SmallInteger(), nullable=False),
        sa.Column("creation_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_update_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_update_version", sa.BigInteger(), nullable=False),
        sa.Column("last_update_event_idx", sa.BigInteger(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("trade_obj_addr"),
    )
    op.create_index("idx_trades_trader", "trades", ["trader_addr"])
    op.create_index("idx_trades_status", "trades", ["status"])

    op.create_table(
        "trader_stats",
        sa.Column("trader_addr", sa.String(300), nullable=False),
        sa.Column("creation_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_update_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("total_trades", sa.BigInteger(), nullable=False),
        sa.Column("completed_trades", sa.BigInteger(), nullable=False),
        sa.Column("cancelled_trades", sa.BigInteger(), nullable=False),
        sa.Column("total_buy_trades", sa.BigInteger(), nullable=False),
        sa.Column("total_sell_trades", sa.BigInteger(), nullable=False),
        sa.Column("total_swap_trades", sa.BigInteger(), nullable=False),
        sa.Column("total_volume", sa.BigInteger(), nullable=False),
        sa.Column("points", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("trader_addr"),
    )
    op.create_index("idx_trader_stats_points", "trader_stats", ["points"])

    op.create_table(
        "hyperion_pools",
        sa.Column("pool_address", sa.String(300), nullable=False),
        sa.Column("token0_address", sa.String(300), nullable=False),
        sa.Column("token1_address", sa.String(300), nullable=False),
        sa.Column("token0_symbol", sa.String(100), nullable=False),
        sa.Column("token1_symbol", sa.String(100), nullable=False),
        sa.Column("fee_tier", sa.Integer(), nullable=False),
        sa.Column("tick_spacing", sa.Integer(), nullable=False),
        sa.Column("liquidity", _DECIMAL_TEXT, nullable=False),
        sa.Column("sqrt_price_x96", _DECIMAL_TEXT, nullable=False),
        sa.Column("tick", sa.Integer(), nullable=False),
        sa.Column("creation_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_update_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("last_update_version", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("pool_address"),
    )
    op.create_index(
        "idx_hyperion_pools_tokens", "hyperion_pools", ["token0_address", "token1_address"]
    )

    op.create_table(
        "hyperion_swaps",
        sa.Column("swap_id", sa.String(400), nullable=False),
        sa.Column("pool_address", sa.String(300), nullable=False),
        sa.Column("sender", sa.String(300), nullable=False),
        sa.Column("recipient", sa.String(300), nullable=False),
        sa.Column("token_in", sa.String(300), nullable=False),
        sa.Column("token_out", sa.String(300), nullable=False),
        sa.Column("amount_in", _DECIMAL_TEXT, nullable=False),
        sa.Column("amount_out", _DECIMAL_TEXT, nullable=False),
        sa.Column("sqrt_price_x96_after", _DECIMAL_TEXT, nullable=False),
        sa.Column("liquidity_after", _DECIMAL_TEXT, nullable=False),
        sa.Column("tick_after", sa.Integer(), nullable=False),
        sa.Column("tx_version", sa.BigInteger(), nullable=False),
        sa.Column("event_idx", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("swap_id"),
    )
    op.create_index("idx_hyperion_swaps_pool_ts", "hyperion_swaps", ["pool_address", "timestamp"])
    op.create_index("idx_hyperion_swaps_version", "hyperion_swaps", ["tx_version"])

    op.create_table(
        "hyperion_pool_stats",
        sa.Column("pool_address", sa.String(300), nullable=False),
        sa.Column("tvl_usd", _DECIMAL_TEXT, nullable=False),
        sa.Column("volume_24h", _DECIMAL_TEXT, nullable=False),
        sa.Column("volume_7d", _DECIMAL_TEXT, nullable=False),
        sa.Column("fees_24h", _DECIMAL_TEXT, nullable=False),
        sa.Column("fees_7d", _DECIMAL_TEXT, nullable=False),
        sa.Column("apr", _DECIMAL_TEXT, nullable=False),
        sa.Column("swap_count_24h", sa.BigInteger(), nullable=False),
        sa.Column("swap_count_7d", sa.BigInteger(), nullable=False),
        sa.Column("unique_traders_24h", sa.BigInteger(), nullable=False),
        sa.Column("unique_traders_7d", sa.BigInteger(), nullable=False),
        sa.Column("last_price", _DECIMAL_TEXT, nullable=False),
        sa.Column("price_change_24h", _DECIMAL_TEXT, nullable=False),
        sa.Column("last_update_timestamp", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("pool_address"),
    )

    op.create_table(
        "module_upgrade_history",
        sa.Column("module_addr", sa.String(300), nullable=False),
        sa.Column("module_name", sa.String(300), nullable=False),
        sa.Column("upgrade_number", sa.BigInteger(), nullable=False),
        sa.Column("module_bytecode", sa.LargeBinary(), nullable=False),
        sa.Column("module_source_code", sa.Text(), nullable=False),
        sa.Column("module_abi", sa.JSON(), nullable=False),
        sa.Column("tx_version", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("module_addr", "module_name", "upgrade_number"),
    )

    op.create_table(
        "package_upgrade_history",
        sa.Column("package_addr", sa.String(300), nullable=False),
        sa.Column("package_name", sa.String(300), nullable=False),
        sa.Column("upgrade_number", sa.BigInteger(), nullable=False),
        sa.Column("upgrade_policy", sa.BigInteger(), nullable=False),
        sa.Column("package_manifest", sa.Text(), nullable=False),
        sa.Column("source_digest", sa.Text(), nullable=False),
        sa.Column("tx_version", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("package_addr", "package_name", "upgrade_number"),
    )

    op.create_table(
        "processor_status",
        sa.Column("processor", sa.String(50), nullable=False),
        sa.Column("last_success_version", sa.BigInteger(), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_transaction_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("processor"),
    )

    op.create_table(
        "stat_watermarks",
        sa.Column("processor", sa.String(50), nullable=False),
        sa.Column("event_kind", sa.String(50), nullable=False),
        sa.Column("last_applied_version", sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint("processor", "event_kind"),
    )


def downgrade() -> None:
    op.drop_table("stat_watermarks")
    op.drop_table("processor_status")
    op.drop_table("package_upgrade_history")
    op.drop_table("module_upgrade_history")
    op.drop_table("hyperion_pool_stats")
    op.drop_index("idx_hyperion_swaps_version", table_name="hyperion_swaps")
    op.drop_index("idx_hyperion_swaps_pool_ts", table_name="hyperion_swaps")
    op.drop_table("hyperion_swaps")
    op.drop_index("idx_hyperion_pools_tokens", table_name="hyperion_pools")
    op.drop_table("hyperion_pools")
    op.drop_index("idx_trader_stats_points", table_name="trader_stats")
    op.drop_table("trader_stats")
    op.drop_index("idx_trades_status", table_name="trades")
    op.drop_index("idx_trades_trader", table_name="trades")
    op.drop_table("trades")
    op.drop_table("user_stats")
    op.drop_index("idx_messages_creator", table_name="messages")
    op.drop_table("messages")
