"""Vault position sync and valuation.

Daily path: for each supported chain, list eligible vaults, purge that
day's snapshots for the chain, then enqueue one ``sync-vault`` task per
vault. Each task resolves the snapshot block, reads vault totals and
holder shares at that block, prices the underlying asset once and batch
inserts the valued snapshots.

On-demand path: ``sync_wallet_positions`` values a single wallet and
upserts its snapshots without touching other wallets' rows.

Share-to-asset conversion is integer math end to end; only the final USD
multiplication produces a float.
"""

import asyncio
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog

from shards.core.config import SUPPORTED_CHAINS
from shards.core.queue import TaskQueue
from shards.models.vault_position import VaultPosition, to_snapshot_date
from shards.repositories.vault_position import SnapshotStore, sum_usd_value
from shards.services.chain.base import ChainDataProvider
from shards.services.chain.models import RawPositionRecord, VaultSyncJob
from shards.services.pricing.coingecko_client import CoinGeckoClient

logger = structlog.get_logger()

SYNC_VAULT_JOB = "sync-vault"

# Block number recorded on live reads that were not pinned to a block
UNPINNED_BLOCK = 0


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def snapshot_timestamp(snapshot_date: date) -> int:
    """Unix timestamp of the snapshot date's UTC midnight."""
    day = to_snapshot_date(snapshot_date)
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp())


def shares_to_assets(shares: int, total_assets: int, total_supply: int) -> int:
    """Underlying amount for a share count, truncated like an on-chain redeem."""
    return shares * total_assets // total_supply


def usd_value_of(balance: int, decimals: int, price: float) -> float:
    amount = Decimal(balance).scaleb(-decimals)
    return float(amount * Decimal(str(price)))


class VaultSyncService:
    """Reconciles on-chain vault share balances into valued snapshots."""

    def __init__(
        self,
        provider: ChainDataProvider,
        price_oracle: CoinGeckoClient,
        repository: SnapshotStore,
        queue: TaskQueue,
        supported_chains: Iterable[str] = SUPPORTED_CHAINS,
        attempts: int = 3,
        backoff_ms: int = 5000,
    ):
        self.provider = provider
        self.price_oracle = price_oracle
        self.repository = repository
        self.queue = queue
        self.supported_chains = tuple(supported_chains)
        self.attempts = attempts
        self.backoff_ms = backoff_ms

    def _build_position(
        self,
        record: RawPositionRecord,
        price: Optional[float],
        chain: str,
        snapshot_date: date,
        block_number: int,
        wallet_address: Optional[str] = None,
    ) -> Optional[VaultPosition]:
        """Value one raw record against the vault totals read alongside it.

        Returns None for zero-supply vaults; a missing price values at 0.
        """
        vault = record.vault
        total_supply = int(vault.total_supply)
        if total_supply == 0:
            logger.debug("Skipping zero-supply vault", chain=chain, vault=vault.id)
            return None

        shares = int(record.shares)
        balance = shares_to_assets(shares, int(vault.total_assets), total_supply)
        usd_value = usd_value_of(balance, vault.asset.decimals, price) if price is not None else 0.0

        return VaultPosition.create(
            wallet_address=wallet_address or record.account,
            vault_address=vault.id,
            asset_symbol=vault.asset.symbol,
            chain=chain,
            balance=balance,
            shares=shares,
            usd_value=usd_value,
            snapshot_date=snapshot_date,
            block_number=block_number,
        )

    async def schedule_daily_vault_sync(self) -> Dict[str, Union[int, str]]:
        """Sync every supported chain for today's snapshot.

        Chains run one after another. A failing chain is logged and the
        remaining chains still run.
        """
        snapshot_date = utc_today()
        summary: Dict[str, Union[int, str]] = {}
        logger.info("Daily vault sync starting", date=snapshot_date.isoformat())

        for chain in self.supported_chains:
            try:
                summary[chain] = await self.sync_chain_vaults(chain, snapshot_date)
            except Exception as e:
                logger.error("Chain vault sync failed", chain=chain, error=str(e))
                summary[chain] = str(e)

        logger.info("Daily vault sync scheduled", date=snapshot_date.isoformat(), summary=summary)
        return summary

    async def sync_chain_vaults(self, chain: str, snapshot_date: date) -> int:
        """Purge the chain's snapshots for the date and enqueue a task per vault.

        Returns the number of tasks enqueued.
        """
        snapshot_date = to_snapshot_date(snapshot_date)
        try:
            vault_addresses = await self.provider.get_eligible_vaults(chain)
            if not vault_addresses:
                logger.warning("No eligible vaults", chain=chain)
                return 0

            # Every task is enqueued after the purge completes
            await self.repository.delete_by_date_and_chain(snapshot_date, chain)

            for vault_address in vault_addresses:
                job = VaultSyncJob(chain=chain, vault_address=vault_address, snapshot_date=snapshot_date)
                await self.queue.add(
                    SYNC_VAULT_JOB,
                    job.model_dump(mode="json"),
                    attempts=self.attempts,
                    backoff_ms=self.backoff_ms,
                )
        except Exception as e:
            logger.error("Failed to sync chain vaults", chain=chain, error=str(e))
            raise

        logger.info("Vault sync tasks enqueued", chain=chain, date=snapshot_date.isoformat(), count=len(vault_addresses))
        return len(vault_addresses)

    async def process_vault_sync(self, job: Union[VaultSyncJob, Dict[str, Any]]) -> int:
        """Queue task body: value and persist every holder of one vault.

        Errors are logged and re-raised so the queue can retry the message.
        Returns the number of snapshots written.
        """
        if not isinstance(job, VaultSyncJob):
            job = VaultSyncJob.model_validate(job)
        chain, vault_address = job.chain, job.vault_address

        try:
            block_number = job.block_number
            if block_number is None:
                block_number = await self.provider.get_block_by_timestamp(
                    chain, snapshot_timestamp(job.snapshot_date)
                )

            vault_data, raw_positions = await asyncio.gather(
                self.provider.get_vault_data(vault_address, chain),
                self.provider.get_vault_positions(vault_address, chain, block_number),
            )
            if vault_data is None:
                logger.warning("Vault not found, skipping", chain=chain, vault=vault_address)
                return 0

            price = await self.price_oracle.get_token_price(vault_data.asset.symbol)

            positions: List[VaultPosition] = []
            for record in raw_positions:
                # Totals on the record were read at the pinned block
                position = self._build_position(
                    record, price, chain, job.snapshot_date, block_number
                )
                if position is not None:
                    positions.append(position)

            if positions:
                await self.repository.create_batch(positions)
        except Exception as e:
            logger.error("Vault sync failed", chain=chain, vault=vault_address, error=str(e))
            raise

        logger.info(
            "Vault synced",
            chain=chain,
            vault=vault_address,
            block=block_number,
            positions=len(positions),
        )
        return len(positions)

    async def sync_wallet_positions(
        self,
        wallet_address: str,
        season_id: str,
        chain: str,
        snapshot_date: date,
    ) -> List[VaultPosition]:
        """Value one wallet's positions and upsert them by natural key.

        Errors propagate to the caller; a thrown error means valuation is
        unavailable, not that the wallet holds nothing.
        """
        snapshot_date = to_snapshot_date(snapshot_date)
        block_number = await self.provider.get_block_by_timestamp(chain, snapshot_timestamp(snapshot_date))
        raw_positions = await self.provider.get_user_vault_positions(wallet_address, chain, block_number)
        if not raw_positions:
            logger.info("Wallet has no vault positions", wallet=wallet_address, chain=chain, season=season_id)
            return []

        symbols = list(dict.fromkeys(record.vault.asset.symbol for record in raw_positions))
        prices = await self.price_oracle.get_multiple_token_prices(symbols)

        saved: List[VaultPosition] = []
        for record in raw_positions:
            symbol = record.vault.asset.symbol
            if symbol not in prices:
                logger.warning("No price for asset, valuing at 0", symbol=symbol, wallet=wallet_address)
            position = self._build_position(
                record,
                prices.get(symbol),
                chain,
                snapshot_date,
                block_number,
                wallet_address=wallet_address,
            )
            if position is not None:
                saved.append(await self.repository.upsert(position))

        logger.info(
            "Wallet positions synced",
            wallet=wallet_address.lower(),
            chain=chain,
            season=season_id,
            positions=len(saved),
        )
        return saved

    async def get_historical_vault_value(self, wallet_address: str, vault_address: str, snapshot_date: date) -> float:
        positions = await self.repository.find_by_wallet_and_date(wallet_address, snapshot_date)
        vault = vault_address.lower()
        for position in positions:
            if position.vault_address.lower() == vault:
                return position.usd_value
        return 0.0

    async def get_total_vault_value(self, wallet_address: str, chain: str, snapshot_date: date) -> float:
        positions = await self.repository.find_by_wallet_and_date(wallet_address, snapshot_date)
        return sum_usd_value(p for p in positions if p.is_from_chain(chain))

    async def get_vault_position(
        self,
        wallet_address: str,
        vault_address: str,
        chain: str,
        block_number: Optional[int] = None,
    ) -> Optional[VaultPosition]:
        """Live, unsaved valuation of one wallet's stake in one vault.

        Reads the latest block unless `block_number` is given; an unpinned
        result carries block number 0.
        """
        raw_positions = await self.provider.get_user_vault_positions(wallet_address, chain, block_number)
        vault = vault_address.lower()
        record = next((r for r in raw_positions if r.vault.id.lower() == vault), None)
        if record is None:
            return None
        if int(record.vault.total_supply) == 0:
            return None

        price = await self.price_oracle.get_token_price(record.vault.asset.symbol)
        return self._build_position(
            record,
            price,
            chain,
            utc_today(),
            block_number if block_number is not None else UNPINNED_BLOCK,
            wallet_address=wallet_address,
        )
