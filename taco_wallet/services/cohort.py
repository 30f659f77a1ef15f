"""
cohort.py - Resolution of the signing cohort behind a chain.

One resolver per coordinator addressing scheme, selected by ChainConfig.resolver:

- root:  multisig from the child coordinator on the execution chain,
         participants and threshold from the root SigningCoordinator on the
         coordinator chain.
- child: multisig from the child coordinator, participants and threshold
         read straight from the multisig on the execution chain.

The multisig address rotates with the cohort, so it is always read, never
configured.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from web3 import AsyncWeb3

from taco_wallet.chains import RESOLVER_CHILD, RESOLVER_ROOT, ChainConfig
from taco_wallet.errors import CohortUnavailableError, ConfigurationError
from taco_wallet.services import contracts

if TYPE_CHECKING:
    from taco_wallet.services.clients import ClientRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Participant:
    signer_address: str
    provider: str = ""


@dataclass(frozen=True)
class CohortDescriptor:
    """Signer set for one cohort at one instant."""

    multisig_address: str
    participants: Tuple[Participant, ...]
    threshold: int

    @property
    def signers(self) -> List[str]:
        return [p.signer_address for p in self.participants]


def validated_cohort(
    multisig_address: str, participants: List[Participant], threshold: int
) -> CohortDescriptor:
    """
    Build a CohortDescriptor, rejecting empty or unsatisfiable cohorts.

    Raises:
        CohortUnavailableError: no participants, or threshold outside 1..len(participants)
    """
    details = {
        "multisig": multisig_address,
        "participants": len(participants),
        "threshold": threshold,
    }
    if not participants:
        raise CohortUnavailableError("Cohort has no participants", details=details)
    if threshold < 1 or threshold > len(participants):
        raise CohortUnavailableError(
            f"Cohort threshold {threshold} invalid for {len(participants)} participants",
            details=details,
        )
    return CohortDescriptor(
        multisig_address=multisig_address,
        participants=tuple(participants),
        threshold=int(threshold),
    )


class CohortResolver(ABC):
    """Resolves the current CohortDescriptor for a chain. Read-only."""

    @abstractmethod
    async def resolve(self, config: ChainConfig) -> CohortDescriptor:
        ...


class _CoordinatorResolver(CohortResolver):
    def __init__(self, clients: "ClientRegistry", timeout: float):
        self.clients = clients
        self.timeout = timeout

    async def _cohort_multisig(self, w3: AsyncWeb3, config: ChainConfig) -> str:
        coordinator = contracts.child_coordinator(w3, config.coordinator_address)
        address = await contracts.read_contract(
            coordinator.functions.cohortMultisigs(config.cohort_id).call(),
            f"cohortMultisigs({config.cohort_id}) on {config.key}",
            self.timeout,
        )
        if not address or int(address, 16) == 0:
            raise CohortUnavailableError(
                f"No multisig registered for cohort {config.cohort_id} on {config.key}",
                details={"chain": config.key, "cohort_id": config.cohort_id},
            )
        return AsyncWeb3.to_checksum_address(address)


class RootCoordinatorResolver(_CoordinatorResolver):
    """Participants and threshold from the root SigningCoordinator."""

    async def resolve(self, config: ChainConfig) -> CohortDescriptor:
        clients = await self.clients.get(config)
        multisig_address = await self._cohort_multisig(clients.execution, config)

        coordinator = contracts.signing_coordinator(
            clients.coordinator, config.signing_coordinator_address
        )
        signers, threshold = await asyncio.gather(
            contracts.read_contract(
                coordinator.functions.getSigners(config.cohort_id).call(),
                f"getSigners({config.cohort_id})",
                self.timeout,
            ),
            contracts.read_contract(
                coordinator.functions.getThreshold(config.cohort_id).call(),
                f"getThreshold({config.cohort_id})",
                self.timeout,
            ),
        )

        participants = [
            Participant(
                signer_address=AsyncWeb3.to_checksum_address(signer_address),
                provider=AsyncWeb3.to_checksum_address(provider),
            )
            for provider, signer_address, _static_key in signers
        ]
        cohort = validated_cohort(multisig_address, participants, threshold)
        logger.info(
            "Resolved cohort %d on %s via root coordinator: multisig=%s signers=%d threshold=%d",
            config.cohort_id,
            config.key,
            cohort.multisig_address,
            len(cohort.participants),
            cohort.threshold,
        )
        return cohort


class ChildCoordinatorResolver(_CoordinatorResolver):
    """Participants and threshold from the cohort multisig on the execution chain."""

    async def resolve(self, config: ChainConfig) -> CohortDescriptor:
        clients = await self.clients.get(config)
        w3 = clients.execution
        multisig_address = await self._cohort_multisig(w3, config)

        code = await contracts.read_contract(
            w3.eth.get_code(multisig_address),
            f"getCode({multisig_address})",
            self.timeout,
        )
        if not code:
            raise CohortUnavailableError(
                f"No code at multisig address {multisig_address} on chain {config.chain_id}",
                details={"chain": config.key, "multisig": multisig_address},
            )

        wallet = contracts.multisig(w3, multisig_address)
        owners, threshold = await asyncio.gather(
            contracts.read_contract(
                wallet.functions.getSigners().call(), "multisig getSigners()", self.timeout
            ),
            contracts.read_contract(
                wallet.functions.threshold().call(), "multisig threshold()", self.timeout
            ),
        )

        participants = [
            Participant(signer_address=AsyncWeb3.to_checksum_address(owner)) for owner in owners
        ]
        cohort = validated_cohort(multisig_address, participants, threshold)
        logger.info(
            "Resolved cohort %d on %s via child coordinator: multisig=%s signers=%d threshold=%d",
            config.cohort_id,
            config.key,
            cohort.multisig_address,
            len(cohort.participants),
            cohort.threshold,
        )
        return cohort


class SchemeCohortResolver(CohortResolver):
    """Dispatches to the resolver registered for ChainConfig.resolver."""

    def __init__(self, strategies: Dict[str, CohortResolver]):
        self.strategies = strategies

    async def resolve(self, config: ChainConfig) -> CohortDescriptor:
        strategy = self.strategies.get(config.resolver)
        if strategy is None:
            raise ConfigurationError(
                f'No cohort resolver for scheme "{config.resolver}"',
                details={"chain": config.key, "resolver": config.resolver},
            )
        return await strategy.resolve(config)


class CachingCohortResolver(CohortResolver):
    """
    Short-lived cache in front of another resolver.

    Entries expire after ttl seconds so cohort rotation is picked up quickly.
    Concurrent misses for the same chain share one upstream resolution.
    A ttl of 0 disables caching.
    """

    def __init__(self, inner: CohortResolver, ttl: float):
        self.inner = inner
        self.ttl = ttl
        self._entries: Dict[Tuple[str, int], Tuple[float, CohortDescriptor]] = {}
        self._locks: Dict[Tuple[str, int], asyncio.Lock] = {}

    def _fresh(self, key: Tuple[str, int]) -> Optional[CohortDescriptor]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, cohort = entry
        if time.monotonic() - stored_at >= self.ttl:
            return None
        return cohort

    async def resolve(self, config: ChainConfig) -> CohortDescriptor:
        if self.ttl <= 0:
            return await self.inner.resolve(config)

        key = (config.key, config.cohort_id)
        cohort = self._fresh(key)
        if cohort is not None:
            return cohort

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cohort = self._fresh(key)
            if cohort is None:
                cohort = await self.inner.resolve(config)
                self._entries[key] = (time.monotonic(), cohort)
            return cohort


def build_cohort_resolver(clients: "ClientRegistry", timeout: float, cache_ttl: float) -> CohortResolver:
    scheme = SchemeCohortResolver(
        {
            RESOLVER_ROOT: RootCoordinatorResolver(clients, timeout),
            RESOLVER_CHILD: ChildCoordinatorResolver(clients, timeout),
        }
    )
    return CachingCohortResolver(scheme, cache_ttl)
