"""Per-chain AsyncWeb3 clients with a bounded per-call deadline."""

import asyncio
from typing import Any, Awaitable, Dict

import aiohttp
import structlog
from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, Web3Exception

from shards.core.config import Settings
from shards.services.chain.base import require_supported_chain
from shards.services.errors import ProviderError, UnsupportedChainError

logger = structlog.get_logger()

# Raised by contracts that do not implement a function; callers use these
# to try ABI variants, so they pass through untranslated.
ABI_MISMATCH_ERRORS = (ContractLogicError, BadFunctionCallOutput)


class Web3ClientPool:
    """Lazily created AsyncWeb3 client per configured chain."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.timeout = settings.provider_timeout_seconds
        self._clients: Dict[str, AsyncWeb3] = {}

    def get(self, chain: str) -> AsyncWeb3:
        require_supported_chain(chain)
        client = self._clients.get(chain)
        if client is None:
            url = self.settings.rpc_url_for(chain)
            if not url:
                raise UnsupportedChainError(chain, "no RPC endpoint configured")
            client = AsyncWeb3(
                AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": self.timeout})
            )
            self._clients[chain] = client
            logger.info("Initialized RPC client", chain=chain)
        return client

    async def call(self, chain: str, awaitable: Awaitable[Any], operation: str) -> Any:
        """Await one RPC call under the configured deadline.

        Transport, timeout and RPC errors become ProviderError. ABI mismatch
        errors are re-raised as-is.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except ABI_MISMATCH_ERRORS:
            raise
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("RPC call failed", chain=chain, operation=operation, error=str(e))
            raise ProviderError(f"{operation} failed on {chain}: {e}", chain=chain) from e
