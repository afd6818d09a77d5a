"""Create vault_positions snapshot table.

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "vault_positions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("vault_address", sa.String(42), nullable=False),
        sa.Column("asset_symbol", sa.String(16), nullable=False),
        sa.Column("chain", sa.String(20), nullable=False),
        sa.Column("balance", sa.String(80), nullable=False, server_default="0"),
        sa.Column("shares", sa.String(80), nullable=False, server_default="0"),
        sa.Column("usd_value", sa.Float, nullable=False, server_default="0"),
        sa.Column("lock_weeks", sa.Integer, nullable=False, server_default="4"),
        sa.Column("snapshot_date", sa.Date, nullable=False),
        sa.Column("block_number", sa.BigInteger, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_vault_positions_wallet_address", "vault_positions", ["wallet_address"])
    op.create_index("ix_vault_positions_vault_address", "vault_positions", ["vault_address"])
    op.create_index("ix_vault_positions_asset_symbol", "vault_positions", ["asset_symbol"])
    op.create_index("ix_vault_positions_snapshot_date", "vault_positions", ["snapshot_date"])
    op.create_index(
        "ix_vault_positions_wallet_vault_chain_date",
        "vault_positions",
        ["wallet_address", "vault_address", "chain", "snapshot_date"],
        unique=True,
    )
    op.create_index("ix_vault_positions_chain_date", "vault_positions", ["chain", "snapshot_date"])


def downgrade() -> None:
    op.drop_index("ix_vault_positions_chain_date", table_name="vault_positions")
    op.drop_index("ix_vault_positions_wallet_vault_chain_date", table_name="vault_positions")
    op.drop_index("ix_vault_positions_snapshot_date", table_name="vault_positions")
    op.drop_index("ix_vault_positions_asset_symbol", table_name="vault_positions")
    op.drop_index("ix_vault_positions_vault_address", table_name="vault_positions")
    op.drop_index("ix_vault_positions_wallet_address", table_name="vault_positions")
    op.drop_table("vault_positions")
