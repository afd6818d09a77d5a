"""Composition root.

The only place settings are turned into wired components. Everything
below this module receives its configuration explicitly.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from shards.core.config import SUPPORTED_CHAINS, Settings, get_settings
from shards.core.database import get_session_factory
from shards.core.queue import QueueWorker, TaskQueue
from shards.core.redis import Cache
from shards.repositories.vault_position import VaultPositionRepository
from shards.services.chain.base import ChainDataProvider
from shards.services.chain.blocks import BlockTimestampResolver
from shards.services.chain.rpc_provider import RpcChainDataProvider
from shards.services.chain.subgraph_provider import SubgraphChainDataProvider
from shards.services.chain.web3_pool import Web3ClientPool
from shards.services.pricing.coingecko_client import CoinGeckoClient
from shards.services.vault_sync import SYNC_VAULT_JOB, VaultSyncService

logger = structlog.get_logger()

PROVIDER_KINDS = ("subgraph", "rpc")


@dataclass
class Services:
    settings: Settings
    cache: Cache
    price_oracle: CoinGeckoClient
    web3_clients: Web3ClientPool
    provider: ChainDataProvider
    repository: VaultPositionRepository
    queue: TaskQueue
    vault_sync: VaultSyncService
    worker: QueueWorker


def build_chain_data_provider(
    settings: Settings,
    cache: Cache,
    web3_clients: Web3ClientPool,
) -> ChainDataProvider:
    """Pick the chain data provider variant named by settings."""
    kind = settings.chain_data_provider.lower()
    if kind not in PROVIDER_KINDS:
        raise ValueError(f"Unknown chain data provider {settings.chain_data_provider!r}, expected one of {PROVIDER_KINDS}")

    resolver = BlockTimestampResolver(web3_clients, cache, settings.historical_cache_ttl_seconds)
    if kind == "rpc":
        return RpcChainDataProvider(settings, cache, web3_clients, resolver)
    return SubgraphChainDataProvider(settings, cache, resolver)


def build_services(settings: Settings, session_factory=None) -> Services:
    cache = Cache(prefix=settings.cache_prefix)
    web3_clients = Web3ClientPool(settings)
    price_oracle = CoinGeckoClient(settings, cache)
    provider = build_chain_data_provider(settings, cache, web3_clients)
    repository = VaultPositionRepository(session_factory or get_session_factory())
    queue = TaskQueue(settings.queue_name, prefix=settings.cache_prefix)

    vault_sync = VaultSyncService(
        provider=provider,
        price_oracle=price_oracle,
        repository=repository,
        queue=queue,
        supported_chains=SUPPORTED_CHAINS,
        attempts=settings.vault_sync_attempts,
        backoff_ms=settings.vault_sync_backoff_ms,
    )
    worker = QueueWorker(
        queue,
        {SYNC_VAULT_JOB: vault_sync.process_vault_sync},
        concurrency=settings.queue_concurrency,
        poll_timeout=settings.queue_poll_timeout_seconds,
        visibility_timeout=settings.queue_visibility_timeout_seconds,
    )

    logger.info("Services built", chain_data_provider=settings.chain_data_provider, queue=settings.queue_name)
    return Services(
        settings=settings,
        cache=cache,
        price_oracle=price_oracle,
        web3_clients=web3_clients,
        provider=provider,
        repository=repository,
        queue=queue,
        vault_sync=vault_sync,
        worker=worker,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Get or build the process-wide services."""
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


def reset_services() -> None:
    global _services
    _services = None
