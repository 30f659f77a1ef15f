"""
clients.py - Per-chain client bundles.

Built once per chain key on first use and shared by every later request for
that chain. Construction is serialized per key so concurrent first requests
build exactly one bundle. The registry is created in the app lifespan and
passed down explicitly; there are no module-level client singletons.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx
from web3 import AsyncHTTPProvider, AsyncWeb3

from taco_wallet.chains import ChainConfig
from taco_wallet.config import Settings
from taco_wallet.services.bundler import BundlerClient
from taco_wallet.services.signing import PorterSigningClient

logger = logging.getLogger(__name__)


@dataclass
class ChainClients:
    execution: AsyncWeb3  # account, balances, EntryPoint, child coordinator
    coordinator: AsyncWeb3  # root SigningCoordinator
    bundler: BundlerClient
    porter: PorterSigningClient
    http_client: Optional[httpx.AsyncClient] = None

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()


def build_chain_clients(config: ChainConfig, settings: Settings) -> ChainClients:
    execution = AsyncWeb3(AsyncHTTPProvider(config.execution_rpc_url))
    if config.coordinator_rpc_url == config.execution_rpc_url:
        coordinator = execution
    else:
        coordinator = AsyncWeb3(AsyncHTTPProvider(config.coordinator_rpc_url))

    http_client = httpx.AsyncClient(
        timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
        headers={"Content-Type": "application/json"},
    )
    return ChainClients(
        execution=execution,
        coordinator=coordinator,
        bundler=BundlerClient(http_client, config.bundler_url, settings.ENTRY_POINT_ADDRESS),
        porter=PorterSigningClient(http_client, config.porter_url, settings.TACO_AA_VERSION),
        http_client=http_client,
    )


ClientBuilder = Callable[[ChainConfig, Settings], ChainClients]


class ClientRegistry:
    def __init__(self, settings: Settings, builder: ClientBuilder = build_chain_clients):
        self.settings = settings
        self.builder = builder
        self._clients: Dict[str, ChainClients] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def get(self, config: ChainConfig) -> ChainClients:
        clients = self._clients.get(config.key)
        if clients is not None:
            return clients

        lock = self._locks.setdefault(config.key, asyncio.Lock())
        async with lock:
            clients = self._clients.get(config.key)
            if clients is None:
                clients = self.builder(config, self.settings)
                self._clients[config.key] = clients
                logger.info("Initialized clients for chain %s (%d)", config.key, config.chain_id)
            return clients

    async def aclose(self) -> None:
        for key, clients in list(self._clients.items()):
            await clients.aclose()
            logger.debug("Closed clients for chain %s", key)
        self._clients.clear()
