"""Snapshot store for vault positions.

Every query normalizes wallet and vault addresses to lowercase and dates
to UTC calendar dates, so callers may pass either case or a datetime.
"""

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

import structlog
from sqlalchemy import delete, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shards.core.database import session_scope
from shards.models.vault_position import VaultPosition, to_snapshot_date

logger = structlog.get_logger()

# Columns replaced when an upsert hits an existing natural key
_UPSERT_FIELDS = (
    "asset_symbol",
    "balance",
    "shares",
    "usd_value",
    "lock_weeks",
    "block_number",
)


class SnapshotStore(Protocol):
    """Persistence contract the vault sync orchestrator depends on."""

    async def delete_by_date_and_chain(self, snapshot_date: date, chain: str) -> int: ...

    async def create_batch(self, positions: Sequence[VaultPosition]) -> None: ...

    async def upsert(self, position: VaultPosition) -> VaultPosition: ...

    async def find_by_wallet_and_date(self, wallet_address: str, snapshot_date: date) -> List[VaultPosition]: ...


class VaultPositionRepository:
    """SQLAlchemy implementation of the vault position snapshot store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_by_id(self, position_id: str) -> Optional[VaultPosition]:
        async with self.session_factory() as db:
            return await db.get(VaultPosition, position_id)

    async def find_by_wallet_and_date(self, wallet_address: str, snapshot_date: date) -> List[VaultPosition]:
        stmt = select(VaultPosition).where(
            VaultPosition.wallet_address == wallet_address.lower(),
            VaultPosition.snapshot_date == to_snapshot_date(snapshot_date),
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def find_by_vault_and_date(self, vault_address: str, snapshot_date: date) -> List[VaultPosition]:
        stmt = select(VaultPosition).where(
            VaultPosition.vault_address == vault_address.lower(),
            VaultPosition.snapshot_date == to_snapshot_date(snapshot_date),
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def find_latest_by_wallet(self, wallet_address: str, chain: Optional[str] = None) -> List[VaultPosition]:
        """Positions from the wallet's most recent snapshot date."""
        filters = [VaultPosition.wallet_address == wallet_address.lower()]
        if chain:
            filters.append(VaultPosition.chain == chain)

        async with self.session_factory() as db:
            latest = await db.scalar(select(func.max(VaultPosition.snapshot_date)).where(*filters))
            if latest is None:
                return []
            result = await db.execute(
                select(VaultPosition).where(*filters, VaultPosition.snapshot_date == latest)
            )
            return list(result.scalars().all())

    async def find_stale_positions(self, before: date, chain: Optional[str] = None) -> List[VaultPosition]:
        stmt = select(VaultPosition).where(VaultPosition.snapshot_date < to_snapshot_date(before))
        if chain:
            stmt = stmt.where(VaultPosition.chain == chain)
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def create_batch(self, positions: Sequence[VaultPosition]) -> None:
        """Insert many snapshots in one transaction, replacing same-key rows.

        Rows already stored under a batch member's natural key (for example
        from an earlier wallet sync or a redelivered task) are deleted in the
        same transaction. Either the whole batch is committed or the
        transaction is rolled back and the error re-raised.
        """
        if not positions:
            return

        wallets_by_slot: Dict[Tuple[str, str, date], Set[str]] = defaultdict(set)
        for position in positions:
            slot = (
                position.vault_address.lower(),
                position.chain,
                to_snapshot_date(position.snapshot_date),
            )
            wallets_by_slot[slot].add(position.wallet_address.lower())

        try:
            async with session_scope(self.session_factory) as db:
                for (vault, chain, snapshot_date), wallets in wallets_by_slot.items():
                    await db.execute(
                        delete(VaultPosition).where(
                            VaultPosition.vault_address == vault,
                            VaultPosition.chain == chain,
                            VaultPosition.snapshot_date == snapshot_date,
                            VaultPosition.wallet_address.in_(sorted(wallets)),
                        )
                    )
                db.add_all(positions)
        except Exception as e:
            logger.error("Vault position batch insert failed", count=len(positions), error=str(e))
            raise
        logger.debug("Vault position batch inserted", count=len(positions))

    async def upsert(self, position: VaultPosition) -> VaultPosition:
        """Insert or replace by (wallet, vault, chain, snapshot date)."""
        wallet = position.wallet_address.lower()
        vault = position.vault_address.lower()
        snapshot_date = to_snapshot_date(position.snapshot_date)

        async with session_scope(self.session_factory) as db:
            result = await db.execute(
                select(VaultPosition).where(
                    VaultPosition.wallet_address == wallet,
                    VaultPosition.vault_address == vault,
                    VaultPosition.chain == position.chain,
                    VaultPosition.snapshot_date == snapshot_date,
                )
            )
            existing = result.scalar_one_or_none()

            if existing is not None:
                for field in _UPSERT_FIELDS:
                    setattr(existing, field, getattr(position, field))
                return existing

            position.wallet_address = wallet
            position.vault_address = vault
            position.snapshot_date = snapshot_date
            db.add(position)
            return position

    async def delete_by_date_and_chain(self, snapshot_date: date, chain: str) -> int:
        stmt = delete(VaultPosition).where(
            VaultPosition.snapshot_date == to_snapshot_date(snapshot_date),
            VaultPosition.chain == chain,
        )
        async with session_scope(self.session_factory) as db:
            result = await db.execute(stmt)
            deleted = result.rowcount or 0

        logger.info("Deleted vault position snapshots", chain=chain, date=str(snapshot_date), count=deleted)
        return deleted

    async def get_total_value_locked(self, chain: str, snapshot_date: date) -> Dict[str, object]:
        stmt = (
            select(VaultPosition.asset_symbol, func.sum(VaultPosition.usd_value))
            .where(
                VaultPosition.chain == chain,
                VaultPosition.snapshot_date == to_snapshot_date(snapshot_date),
            )
            .group_by(VaultPosition.asset_symbol)
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        by_asset = {symbol: float(total or 0) for symbol, total in rows}
        return {"total_usd_value": sum(by_asset.values()), "by_asset": by_asset}

    async def get_unique_wallet_count(self, chain: str, snapshot_date: date) -> int:
        stmt = select(func.count(distinct(VaultPosition.wallet_address))).where(
            VaultPosition.chain == chain,
            VaultPosition.snapshot_date == to_snapshot_date(snapshot_date),
        )
        async with self.session_factory() as db:
            return int(await db.scalar(stmt) or 0)

    async def get_top_positions_by_value(self, chain: str, snapshot_date: date, limit: int) -> List[VaultPosition]:
        stmt = (
            select(VaultPosition)
            .where(
                VaultPosition.chain == chain,
                VaultPosition.snapshot_date == to_snapshot_date(snapshot_date),
            )
            .order_by(VaultPosition.usd_value.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())


def sum_usd_value(positions: Iterable[VaultPosition]) -> float:
    return float(sum(p.usd_value for p in positions))
