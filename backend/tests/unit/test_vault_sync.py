"""Tests for the vault sync orchestrator.

Covers share-to-asset conversion, zero-supply skipping, purge-then-enqueue
ordering, per-chain failure isolation, partial price failures and the
read helpers over persisted snapshots.
"""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

SNAPSHOT_DATE = date(2024, 1, 15)
# 2024-01-15T00:00:00Z
SNAPSHOT_TS = 1705276800


def _vault_data(vault="0xvault0000000000000000000000000000000001", total_assets=1000 * 10**18,
                total_supply=900 * 10**18, symbol="ETH", decimals=18):
    from shards.services.chain.models import VaultStaticData

    return VaultStaticData.model_validate({
        "id": vault,
        "totalAssets": str(total_assets),
        "totalSupply": str(total_supply),
        "asset": {"id": "0xasset000000000000000000000000000000000001", "symbol": symbol, "decimals": decimals},
    })


def _service(provider=None, price_oracle=None, repository=None, queue=None, chains=None):
    from shards.core.config import SUPPORTED_CHAINS
    from shards.services.vault_sync import VaultSyncService

    return VaultSyncService(
        provider=provider or AsyncMock(),
        price_oracle=price_oracle or AsyncMock(),
        repository=repository or AsyncMock(),
        queue=queue or AsyncMock(),
        supported_chains=chains or SUPPORTED_CHAINS,
    )


class RecordingQueue:
    """Queue fake keeping enqueued jobs in memory."""

    def __init__(self):
        self.jobs = []

    async def add(self, job_name, data, attempts=3, backoff_ms=5000):
        self.jobs.append((job_name, data, attempts, backoff_ms))
        return str(len(self.jobs))


class TestConversionHelpers:
    """Integer share math and UTC timestamps."""

    def test_shares_to_assets_truncates(self):
        from shards.services.vault_sync import shares_to_assets

        assert shares_to_assets(10, 10, 3) == 33
        assert shares_to_assets(100 * 10**18, 1000 * 10**18, 900 * 10**18) == 111111111111111111111

    def test_shares_to_assets_beyond_64_bits(self):
        """A 1:1 vault returns shares unchanged even for huge integers."""
        from shards.services.vault_sync import shares_to_assets

        shares = 123456789123456789123456789
        total = 999999999999999999999999999999
        assert shares_to_assets(shares, total, total) == shares

    def test_usd_value_uses_decimals(self):
        from shards.services.vault_sync import usd_value_of

        assert usd_value_of(2_500_000, 6, 1.0) == pytest.approx(2.5)
        assert usd_value_of(10**18, 18, 3000) == pytest.approx(3000.0)

    def test_snapshot_timestamp_is_utc_midnight(self):
        from shards.services.vault_sync import snapshot_timestamp

        assert snapshot_timestamp(SNAPSHOT_DATE) == SNAPSHOT_TS
        late = datetime(2024, 1, 15, 23, 59, tzinfo=timezone.utc)
        assert snapshot_timestamp(late) == SNAPSHOT_TS


class TestProcessVaultSync:
    """Per-vault queue task body."""

    @pytest.mark.asyncio
    async def test_end_to_end_valuation(self, make_raw_position):
        """100 shares of a 1000/900 vault priced at $3000."""
        record = make_raw_position(
            account="0xWALLET123",
            vault="0xVAULT123",
            shares=100 * 10**18,
            total_assets=1000 * 10**18,
            total_supply=900 * 10**18,
        )
        provider = AsyncMock()
        provider.get_block_by_timestamp.return_value = 12345
        provider.get_vault_data.return_value = _vault_data(vault="0xVAULT123")
        provider.get_vault_positions.return_value = [record]
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 3000.0
        repository = AsyncMock()

        service = _service(provider, oracle, repository)
        written = await service.process_vault_sync({
            "chain": "base",
            "vault_address": "0xVAULT123",
            "snapshot_date": "2024-01-15",
        })

        assert written == 1
        provider.get_block_by_timestamp.assert_awaited_once_with("base", SNAPSHOT_TS)
        provider.get_vault_positions.assert_awaited_once_with("0xVAULT123", "base", 12345)

        (positions,), _ = repository.create_batch.call_args
        position = positions[0]
        assert position.wallet_address == "0xwallet123"
        assert position.vault_address == "0xvault123"
        assert position.asset_symbol == "ETH"
        assert position.balance == "111111111111111111111"
        assert position.shares == str(100 * 10**18)
        assert position.usd_value == pytest.approx(333333.3333333, rel=1e-9)
        assert position.block_number == 12345
        assert position.snapshot_date == SNAPSHOT_DATE

    @pytest.mark.asyncio
    async def test_large_integers_keep_precision(self, make_raw_position):
        shares = 123456789123456789123456789
        total = 999999999999999999999999999999
        provider = AsyncMock()
        provider.get_vault_data.return_value = _vault_data(total_assets=total, total_supply=total)
        provider.get_vault_positions.return_value = [
            make_raw_position(shares=shares, total_assets=total, total_supply=total)
        ]
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 1.0
        repository = AsyncMock()

        service = _service(provider, oracle, repository)
        await service.process_vault_sync({
            "chain": "base",
            "vault_address": "0xvault0000000000000000000000000000000001",
            "snapshot_date": "2024-01-15",
            "block_number": 99,
        })

        (positions,), _ = repository.create_batch.call_args
        assert positions[0].balance == str(shares)
        provider.get_block_by_timestamp.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_supply_vault_writes_nothing(self, make_raw_position):
        provider = AsyncMock()
        provider.get_vault_data.return_value = _vault_data(total_assets=0, total_supply=0)
        provider.get_vault_positions.return_value = [make_raw_position(total_assets=0, total_supply=0)]
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 3000.0
        repository = AsyncMock()

        service = _service(provider, oracle, repository)
        written = await service.process_vault_sync({
            "chain": "base",
            "vault_address": "0xvault0000000000000000000000000000000001",
            "snapshot_date": "2024-01-15",
            "block_number": 1,
        })

        assert written == 0
        repository.create_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_vault_is_skipped(self, make_raw_position):
        provider = AsyncMock()
        provider.get_vault_data.return_value = None
        provider.get_vault_positions.return_value = [make_raw_position()]
        oracle = AsyncMock()
        repository = AsyncMock()

        service = _service(provider, oracle, repository)
        written = await service.process_vault_sync({
            "chain": "base",
            "vault_address": "0xgone",
            "snapshot_date": "2024-01-15",
            "block_number": 1,
        })

        assert written == 0
        oracle.get_token_price.assert_not_awaited()
        repository.create_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_prices_underlying_once(self, make_raw_position):
        provider = AsyncMock()
        provider.get_vault_data.return_value = _vault_data()
        provider.get_vault_positions.return_value = [
            make_raw_position(account=f"0x{i:040x}") for i in range(1, 6)
        ]
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 2000.0
        repository = AsyncMock()

        service = _service(provider, oracle, repository)
        written = await service.process_vault_sync({
            "chain": "base",
            "vault_address": "0xvault0000000000000000000000000000000001",
            "snapshot_date": "2024-01-15",
            "block_number": 7,
        })

        assert written == 5
        oracle.get_token_price.assert_awaited_once_with("ETH")
        repository.create_batch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_positions_skip_batch_write(self):
        provider = AsyncMock()
        provider.get_vault_data.return_value = _vault_data()
        provider.get_vault_positions.return_value = []
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 2000.0
        repository = AsyncMock()

        service = _service(provider, oracle, repository)
        await service.process_vault_sync({
            "chain": "base",
            "vault_address": "0xvault0000000000000000000000000000000001",
            "snapshot_date": "2024-01-15",
            "block_number": 7,
        })

        repository.create_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_error_propagates_for_retry(self):
        from shards.services.errors import ProviderError

        provider = AsyncMock()
        provider.get_block_by_timestamp.side_effect = ProviderError("rpc down", chain="base")
        repository = AsyncMock()

        service = _service(provider, repository=repository)
        with pytest.raises(ProviderError):
            await service.process_vault_sync({
                "chain": "base",
                "vault_address": "0xvault",
                "snapshot_date": "2024-01-15",
            })
        repository.create_batch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_price_unavailable_propagates(self, make_raw_position):
        from shards.services.errors import PriceUnavailable

        provider = AsyncMock()
        provider.get_vault_data.return_value = _vault_data()
        provider.get_vault_positions.return_value = [make_raw_position()]
        oracle = AsyncMock()
        oracle.get_token_price.side_effect = PriceUnavailable("ETH")

        service = _service(provider, oracle)
        with pytest.raises(PriceUnavailable):
            await service.process_vault_sync({
                "chain": "base",
                "vault_address": "0xvault",
                "snapshot_date": "2024-01-15",
                "block_number": 1,
            })


class TestSyncChainVaults:
    """Purge-then-enqueue per chain."""

    @pytest.mark.asyncio
    async def test_empty_vault_list_has_no_side_effects(self):
        provider = AsyncMock()
        provider.get_eligible_vaults.return_value = []
        repository = AsyncMock()
        queue = AsyncMock()

        service = _service(provider, repository=repository, queue=queue)
        assert await service.sync_chain_vaults("base", SNAPSHOT_DATE) == 0

        repository.delete_by_date_and_chain.assert_not_awaited()
        queue.add.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_purges_before_enqueueing(self):
        calls = []
        provider = AsyncMock()
        provider.get_eligible_vaults.return_value = ["0xaaa", "0xbbb"]
        repository = AsyncMock()
        repository.delete_by_date_and_chain.side_effect = lambda *a: calls.append("delete") or 3
        queue = AsyncMock()
        queue.add.side_effect = lambda *a, **kw: calls.append("enqueue")

        service = _service(provider, repository=repository, queue=queue)
        assert await service.sync_chain_vaults("base", SNAPSHOT_DATE) == 2

        assert calls == ["delete", "enqueue", "enqueue"]
        repository.delete_by_date_and_chain.assert_awaited_once_with(SNAPSHOT_DATE, "base")

    @pytest.mark.asyncio
    async def test_enqueues_with_retry_policy(self):
        provider = AsyncMock()
        provider.get_eligible_vaults.return_value = ["0xaaa"]
        queue = RecordingQueue()

        service = _service(provider, queue=queue)
        await service.sync_chain_vaults("base", SNAPSHOT_DATE)

        job_name, data, attempts, backoff_ms = queue.jobs[0]
        assert job_name == "sync-vault"
        assert data == {
            "chain": "base",
            "vault_address": "0xaaa",
            "snapshot_date": "2024-01-15",
            "block_number": None,
        }
        assert attempts == 3
        assert backoff_ms == 5000

    @pytest.mark.asyncio
    async def test_errors_are_reraised(self):
        from shards.services.errors import ProviderError

        provider = AsyncMock()
        provider.get_eligible_vaults.side_effect = ProviderError("subgraph down")

        service = _service(provider)
        with pytest.raises(ProviderError):
            await service.sync_chain_vaults("base", SNAPSHOT_DATE)


class TestScheduleDailyVaultSync:
    """Daily fan-out across chains."""

    @pytest.mark.asyncio
    async def test_one_chain_failure_does_not_stop_others(self):
        from shards.services.errors import ProviderError

        async def eligible(chain):
            if chain == "base":
                raise ProviderError("boom", chain="base")
            return ["0xvault"]

        provider = AsyncMock()
        provider.get_eligible_vaults.side_effect = eligible
        queue = RecordingQueue()

        service = _service(provider, queue=queue)
        summary = await service.schedule_daily_vault_sync()

        assert [c.args[0] for c in provider.get_eligible_vaults.await_args_list] == [
            "base", "ethereum", "arbitrum", "optimism",
        ]
        assert "boom" in summary["base"]
        assert summary["ethereum"] == 1
        assert summary["arbitrum"] == 1
        assert summary["optimism"] == 1
        assert len(queue.jobs) == 3

    @pytest.mark.asyncio
    async def test_uses_today_utc(self):
        from shards.services import vault_sync

        provider = AsyncMock()
        provider.get_eligible_vaults.return_value = ["0xvault"]
        queue = RecordingQueue()

        service = _service(provider, queue=queue, chains=("base",))
        await service.schedule_daily_vault_sync()

        assert queue.jobs[0][1]["snapshot_date"] == vault_sync.utc_today().isoformat()


class TestIdempotentResync:
    """Running the same day twice leaves one snapshot set."""

    @pytest.mark.asyncio
    async def test_resync_same_day_does_not_duplicate(self, session_factory, make_raw_position):
        from shards.repositories.vault_position import VaultPositionRepository

        vault = "0xvault0000000000000000000000000000000001"
        provider = AsyncMock()
        provider.get_eligible_vaults.return_value = [vault]
        provider.get_vault_data.return_value = _vault_data(vault=vault)
        provider.get_vault_positions.return_value = [
            make_raw_position(account=f"0x{i:040x}", vault=vault) for i in range(1, 4)
        ]
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 1500.0
        repository = VaultPositionRepository(session_factory)

        for _ in range(2):
            queue = RecordingQueue()
            service = _service(provider, oracle, repository, queue, chains=("base",))
            await service.sync_chain_vaults("base", SNAPSHOT_DATE)
            for _, data, _, _ in queue.jobs:
                await service.process_vault_sync({**data, "block_number": 10})

        stored = await repository.find_by_vault_and_date(vault, SNAPSHOT_DATE)
        assert len(stored) == 3
        assert sorted(p.wallet_address for p in stored) == [f"0x{i:040x}" for i in range(1, 4)]

    @pytest.mark.asyncio
    async def test_vault_task_after_wallet_sync_replaces_row(self, session_factory, make_raw_position):
        """A same-day wallet sync never blocks the vault's batch write."""
        from shards.repositories.vault_position import VaultPositionRepository

        vault = "0xvault0000000000000000000000000000000001"
        wallet = "0x" + "0" * 39 + "1"
        holders = [make_raw_position(account=f"0x{i:040x}", vault=vault) for i in range(1, 4)]
        provider = AsyncMock()
        provider.get_block_by_timestamp.return_value = 10
        provider.get_user_vault_positions.return_value = [holders[0]]
        provider.get_vault_data.return_value = _vault_data(vault=vault)
        provider.get_vault_positions.return_value = holders
        oracle = AsyncMock()
        oracle.get_multiple_token_prices.return_value = {"ETH": 1000.0}
        oracle.get_token_price.return_value = 3000.0
        repository = VaultPositionRepository(session_factory)
        service = _service(provider, oracle, repository, RecordingQueue(), chains=("base",))

        await service.sync_wallet_positions(wallet, "s1", "base", SNAPSHOT_DATE)
        written = await service.process_vault_sync(
            {"chain": "base", "vault_address": vault, "snapshot_date": "2024-01-15"}
        )

        assert written == 3
        stored = await repository.find_by_vault_and_date(vault, SNAPSHOT_DATE)
        assert sorted(p.wallet_address for p in stored) == [f"0x{i:040x}" for i in range(1, 4)]
        mine = [p for p in stored if p.wallet_address == wallet]
        assert len(mine) == 1
        assert mine[0].usd_value == pytest.approx(333333.33, rel=1e-6)

    @pytest.mark.asyncio
    async def test_redelivered_task_is_idempotent(self, session_factory, make_raw_position):
        from shards.repositories.vault_position import VaultPositionRepository

        vault = "0xvault0000000000000000000000000000000001"
        provider = AsyncMock()
        provider.get_vault_data.return_value = _vault_data(vault=vault)
        provider.get_vault_positions.return_value = [
            make_raw_position(account=f"0x{i:040x}", vault=vault) for i in range(1, 3)
        ]
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 3000.0
        repository = VaultPositionRepository(session_factory)
        service = _service(provider, oracle, repository, RecordingQueue(), chains=("base",))
        job = {"chain": "base", "vault_address": vault, "snapshot_date": "2024-01-15", "block_number": 10}

        await service.process_vault_sync(job)
        await service.process_vault_sync(job)

        stored = await repository.find_by_vault_and_date(vault, SNAPSHOT_DATE)
        assert len(stored) == 2


class TestSyncWalletPositions:
    """On-demand single wallet path."""

    @pytest.mark.asyncio
    async def test_missing_price_values_at_zero(self, make_raw_position):
        wallet = "0xwallet000000000000000000000000000000001"
        provider = AsyncMock()
        provider.get_block_by_timestamp.return_value = 500
        provider.get_user_vault_positions.return_value = [
            make_raw_position(account=wallet, vault="0xv1", symbol="ETH"),
            make_raw_position(account=wallet, vault="0xv2", symbol="OBSCURE"),
        ]
        oracle = AsyncMock()
        oracle.get_multiple_token_prices.return_value = {"ETH": 3000.0}
        repository = AsyncMock()
        repository.upsert.side_effect = lambda position: position

        service = _service(provider, oracle, repository)
        saved = await service.sync_wallet_positions(wallet, "season-1", "base", SNAPSHOT_DATE)

        assert len(saved) == 2
        by_symbol = {p.asset_symbol: p for p in saved}
        assert by_symbol["ETH"].usd_value > 0
        assert by_symbol["OBSCURE"].usd_value == 0
        assert by_symbol["OBSCURE"].balance != "0"
        oracle.get_multiple_token_prices.assert_awaited_once_with(["ETH", "OBSCURE"])
        assert repository.upsert.await_count == 2

    @pytest.mark.asyncio
    async def test_resolves_block_and_reads_once(self, make_raw_position):
        wallet = "0xWallet000000000000000000000000000000001"
        provider = AsyncMock()
        provider.get_block_by_timestamp.return_value = 777
        provider.get_user_vault_positions.return_value = [make_raw_position(account=wallet)]
        oracle = AsyncMock()
        oracle.get_multiple_token_prices.return_value = {"ETH": 1.0}
        repository = AsyncMock()
        repository.upsert.side_effect = lambda position: position

        service = _service(provider, oracle, repository)
        saved = await service.sync_wallet_positions(wallet, "season-1", "base", SNAPSHOT_DATE)

        provider.get_block_by_timestamp.assert_awaited_once_with("base", SNAPSHOT_TS)
        provider.get_user_vault_positions.assert_awaited_once_with(wallet, "base", 777)
        assert saved[0].wallet_address == wallet.lower()
        assert saved[0].block_number == 777

    @pytest.mark.asyncio
    async def test_zero_supply_is_not_upserted(self, make_raw_position):
        provider = AsyncMock()
        provider.get_block_by_timestamp.return_value = 1
        provider.get_user_vault_positions.return_value = [make_raw_position(total_assets=0, total_supply=0)]
        oracle = AsyncMock()
        oracle.get_multiple_token_prices.return_value = {"ETH": 3000.0}
        repository = AsyncMock()

        service = _service(provider, oracle, repository)
        saved = await service.sync_wallet_positions("0xwallet", "s", "base", SNAPSHOT_DATE)

        assert saved == []
        repository.upsert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_errors_reach_caller(self):
        from shards.services.errors import ProviderError

        provider = AsyncMock()
        provider.get_block_by_timestamp.return_value = 1
        provider.get_user_vault_positions.side_effect = ProviderError("timeout")

        service = _service(provider)
        with pytest.raises(ProviderError):
            await service.sync_wallet_positions("0xwallet", "s", "base", SNAPSHOT_DATE)


class TestSnapshotReads:
    """Reads over persisted snapshots."""

    async def _seed(self, repository):
        from shards.models.vault_position import VaultPosition

        await repository.create_batch([
            VaultPosition.create(
                wallet_address="0xabc0000000000000000000000000000000000001",
                vault_address="0xdef0000000000000000000000000000000000001",
                asset_symbol="ETH", chain="base", balance=1, shares=1,
                usd_value=100.0, snapshot_date=SNAPSHOT_DATE, block_number=1,
            ),
            VaultPosition.create(
                wallet_address="0xabc0000000000000000000000000000000000001",
                vault_address="0xdef0000000000000000000000000000000000002",
                asset_symbol="USDC", chain="base", balance=1, shares=1,
                usd_value=50.0, snapshot_date=SNAPSHOT_DATE, block_number=1,
            ),
            VaultPosition.create(
                wallet_address="0xabc0000000000000000000000000000000000001",
                vault_address="0xdef0000000000000000000000000000000000003",
                asset_symbol="ETH", chain="ethereum", balance=1, shares=1,
                usd_value=1000.0, snapshot_date=SNAPSHOT_DATE, block_number=1,
            ),
        ])

    @pytest.mark.asyncio
    async def test_historical_value_is_case_insensitive(self, session_factory):
        from shards.repositories.vault_position import VaultPositionRepository

        repository = VaultPositionRepository(session_factory)
        await self._seed(repository)
        service = _service(repository=repository)

        upper = await service.get_historical_vault_value(
            "0xABC0000000000000000000000000000000000001",
            "0xDEF0000000000000000000000000000000000001",
            SNAPSHOT_DATE,
        )
        lower = await service.get_historical_vault_value(
            "0xabc0000000000000000000000000000000000001",
            "0xdef0000000000000000000000000000000000001",
            SNAPSHOT_DATE,
        )
        assert upper == lower == 100.0

    @pytest.mark.asyncio
    async def test_historical_value_absent_is_zero(self, session_factory):
        from shards.repositories.vault_position import VaultPositionRepository

        repository = VaultPositionRepository(session_factory)
        await self._seed(repository)
        service = _service(repository=repository)

        assert await service.get_historical_vault_value(
            "0xabc0000000000000000000000000000000000001", "0xnope", SNAPSHOT_DATE
        ) == 0.0

    @pytest.mark.asyncio
    async def test_total_value_filters_chain(self, session_factory):
        from shards.repositories.vault_position import VaultPositionRepository

        repository = VaultPositionRepository(session_factory)
        await self._seed(repository)
        service = _service(repository=repository)

        total = await service.get_total_vault_value(
            "0xABC0000000000000000000000000000000000001", "base", SNAPSHOT_DATE
        )
        assert total == pytest.approx(150.0)


class TestGetVaultPosition:
    """Live single-vault valuation."""

    @pytest.mark.asyncio
    async def test_defaults_to_latest_block(self, make_raw_position):
        wallet = "0xwallet000000000000000000000000000000001"
        provider = AsyncMock()
        provider.get_user_vault_positions.return_value = [
            make_raw_position(account=wallet, vault="0xvault0000000000000000000000000000000001")
        ]
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 3000.0

        service = _service(provider, oracle)
        position = await service.get_vault_position(
            wallet, "0xVAULT0000000000000000000000000000000001", "base"
        )

        provider.get_user_vault_positions.assert_awaited_once_with(wallet, "base", None)
        assert position is not None
        assert position.block_number == 0
        assert position.balance == "111111111111111111111"
        assert position.usd_value == pytest.approx(333333.3333333, rel=1e-9)

    @pytest.mark.asyncio
    async def test_pinned_block_is_recorded(self, make_raw_position):
        provider = AsyncMock()
        provider.get_user_vault_positions.return_value = [make_raw_position()]
        oracle = AsyncMock()
        oracle.get_token_price.return_value = 1.0

        service = _service(provider, oracle)
        position = await service.get_vault_position(
            "0xwallet000000000000000000000000000000001",
            "0xvault0000000000000000000000000000000001",
            "base",
            block_number=4242,
        )

        provider.get_user_vault_positions.assert_awaited_once_with(
            "0xwallet000000000000000000000000000000001", "base", 4242
        )
        assert position.block_number == 4242

    @pytest.mark.asyncio
    async def test_no_position_in_vault_returns_none(self, make_raw_position):
        provider = AsyncMock()
        provider.get_user_vault_positions.return_value = [make_raw_position(vault="0xother")]
        oracle = AsyncMock()

        service = _service(provider, oracle)
        assert await service.get_vault_position("0xwallet", "0xvault", "base") is None
        oracle.get_token_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_supply_returns_none(self, make_raw_position):
        provider = AsyncMock()
        provider.get_user_vault_positions.return_value = [
            make_raw_position(vault="0xvault", total_assets=0, total_supply=0)
        ]

        service = _service(provider)
        assert await service.get_vault_position("0xwallet", "0xvault", "base") is None
