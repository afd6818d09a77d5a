"""Resolve the block number for a wall-clock instant.

Binary search over [0, head] comparing each candidate block's own
timestamp. Each step depends on the previous comparison, so lookups run
sequentially; any failed lookup aborts the whole search.
"""

from typing import Awaitable, Callable

import structlog

from shards.core.redis import Cache
from shards.services.chain.base import VAULT_DATA_CACHE_PREFIX
from shards.services.chain.web3_pool import Web3ClientPool

logger = structlog.get_logger()


def block_cache_key(chain: str, timestamp: int) -> str:
    return f"{VAULT_DATA_CACHE_PREFIX}:{chain}:block:{timestamp}"


async def find_block_by_timestamp(
    head: int,
    block_timestamp: Callable[[int], Awaitable[int]],
    target: int,
) -> int:
    """Earliest block in [0, head] whose timestamp is >= target.

    Returns head when every block is older than target.
    """
    left, right = 0, head
    while left < right:
        mid = (left + right) // 2
        if await block_timestamp(mid) < target:
            left = mid + 1
        else:
            right = mid
    return left


class BlockTimestampResolver:
    """JSON-RPC backed block lookup, cached per (chain, timestamp).

    Finalized block/timestamp pairs never change, so entries live long.
    A target newer than the head block resolves to head and is not cached.
    """

    def __init__(self, clients: Web3ClientPool, cache: Cache, ttl: int):
        self.clients = clients
        self.cache = cache
        self.ttl = ttl

    async def resolve(self, chain: str, timestamp: int) -> int:
        cache_key = block_cache_key(chain, timestamp)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return int(cached)

        w3 = self.clients.get(chain)
        head = await self.clients.call(chain, w3.eth.block_number, "eth_blockNumber")

        async def block_timestamp(number: int) -> int:
            block = await self.clients.call(
                chain, w3.eth.get_block(number), f"eth_getBlockByNumber({number})"
            )
            return int(block["timestamp"])

        block_number = await find_block_by_timestamp(int(head), block_timestamp, timestamp)

        # Head older than the target is a provisional answer, not a finalized mapping
        if block_number == int(head) and await block_timestamp(block_number) < timestamp:
            logger.warning("Target timestamp is past chain head", chain=chain, timestamp=timestamp, head=head)
            return block_number

        await self.cache.set(cache_key, block_number, self.ttl)
        logger.debug("Resolved block", chain=chain, timestamp=timestamp, block=block_number, head=head)
        return block_number
