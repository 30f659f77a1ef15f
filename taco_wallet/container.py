"""
container.py - Wiring of the long-lived service objects.

One ServiceContainer per application. It owns the ClientRegistry (and with
it every RPC and HTTP connection) and is closed on shutdown.
"""

import logging
from dataclasses import dataclass

from taco_wallet.chains import ChainRegistry
from taco_wallet.config import Settings
from taco_wallet.services.account import AccountDeriver, AccountFactory
from taco_wallet.services.clients import ClientRegistry
from taco_wallet.services.cohort import build_cohort_resolver
from taco_wallet.services.fees import FeePolicy
from taco_wallet.services.orchestrator import TransferOrchestrator
from taco_wallet.services.retry import RetryPolicy
from taco_wallet.services.signing import SigningContextBuilder
from taco_wallet.services.wallet import WalletService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    chains: ChainRegistry
    clients: ClientRegistry
    orchestrator: TransferOrchestrator
    wallet: WalletService

    async def aclose(self) -> None:
        await self.clients.aclose()


def build_container(settings: Settings) -> ServiceContainer:
    """
    Build every service from settings. No network I/O happens here.

    Raises:
        ConfigurationError: account factory parameters are incomplete
    """
    chains = ChainRegistry(settings)
    clients = ClientRegistry(settings)
    timeout = settings.UPSTREAM_TIMEOUT_SECONDS

    deriver = AccountDeriver(
        AccountFactory.from_settings(settings),
        origin_label=settings.SALT_ORIGIN_LABEL,
        tenant_label=settings.SALT_TENANT_LABEL,
    )
    orchestrator = TransferOrchestrator(
        chains=chains,
        clients=clients,
        cohorts=build_cohort_resolver(clients, timeout, settings.COHORT_CACHE_TTL_SECONDS),
        deriver=deriver,
        fee_policy=FeePolicy(),
        signing=SigningContextBuilder(clients, timeout),
        retry=RetryPolicy(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            min_wait=settings.RETRY_MIN_WAIT_SECONDS,
            max_wait=settings.RETRY_MAX_WAIT_SECONDS,
        ),
        entry_point=settings.ENTRY_POINT_ADDRESS,
        paymaster_enabled=settings.PAYMASTER_ENABLED,
        upstream_timeout=timeout,
        receipt_timeout=settings.RECEIPT_TIMEOUT_SECONDS,
        receipt_poll_interval=settings.RECEIPT_POLL_INTERVAL_SECONDS,
    )
    logger.info("Service container built (paymaster=%s)", settings.PAYMASTER_ENABLED)
    return ServiceContainer(
        chains=chains,
        clients=clients,
        orchestrator=orchestrator,
        wallet=WalletService(orchestrator),
    )
