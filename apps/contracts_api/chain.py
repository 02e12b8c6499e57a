from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

from aiohttp import ClientTimeout
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .config import Settings

logger = logging.getLogger(__name__)


class ChainReader(Protocol):
    async def read(self, address: str, abi: Sequence[dict[str, Any]], function_name: str) -> Any:
        ...


def build_web3(settings: Settings) -> AsyncWeb3:
    logger.info(
        'connecting chain reader network=%s rpc_url=%s timeout_seconds=%s',
        settings.network_mode,
        settings.rpc_url,
        settings.rpc_timeout_seconds
    )
    # web3 retries eth_call by default; reads here must reach the node at most once.
    provider = AsyncHTTPProvider(
        settings.rpc_url,
        request_kwargs={'timeout': ClientTimeout(total=settings.rpc_timeout_seconds)},
        exception_retry_configuration=None
    )
    return AsyncWeb3(provider)


class Web3ChainReader:
    """Zero-argument view calls against one RPC endpoint.

    Each call is issued exactly once; retrying a failed read is left to the
    next sync run.
    """

    def __init__(self, web3: AsyncWeb3) -> None:
        self.web3 = web3

    async def read(self, address: str, abi: Sequence[dict[str, Any]], function_name: str) -> Any:
        contract = self.web3.eth.contract(address=Web3.to_checksum_address(address), abi=list(abi))
        function = getattr(contract.functions, function_name)
        return await function().call()
