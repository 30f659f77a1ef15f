import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import ContractLogicError

from taco_wallet.chains import ChainRegistry
from taco_wallet.errors import CohortUnavailableError, UpstreamUnavailableError
from taco_wallet.services.clients import ClientRegistry
from taco_wallet.services.cohort import (
    CachingCohortResolver,
    ChildCoordinatorResolver,
    RootCoordinatorResolver,
    build_cohort_resolver,
)

S1 = "0x1111111111111111111111111111111111111111"
S2 = "0x2222222222222222222222222222222222222222"
S3 = "0x3333333333333333333333333333333333333333"
P1 = "0xaaaa000000000000000000000000000000000001"
MULTISIG = "0x7777777777777777777777777777777777777777"
ZERO = "0x0000000000000000000000000000000000000000"


def mock_clients():
    clients = MagicMock()
    clients.execution = MagicMock()
    clients.coordinator = MagicMock()
    clients.execution.eth.get_code = AsyncMock(return_value=b"\x60\x80")
    return clients


def registry_for(settings, clients):
    return ClientRegistry(settings, builder=lambda config, settings: clients)


def set_call(contract, function, value):
    getattr(contract.functions, function).return_value.call = AsyncMock(return_value=value)


class TestRootCoordinatorResolver:
    def test_participants_from_root_coordinator(self, settings):
        clients = mock_clients()
        child = clients.execution.eth.contract.return_value
        root = clients.coordinator.eth.contract.return_value
        set_call(child, "cohortMultisigs", MULTISIG)
        set_call(root, "getSigners", [(P1, S1, b"k1"), (P1, S2, b"k2"), (P1, S3, b"k3")])
        set_call(root, "getThreshold", 2)
        config = ChainRegistry(settings).resolve("base-sepolia")

        cohort = asyncio.run(RootCoordinatorResolver(registry_for(settings, clients), 1).resolve(config))

        assert cohort.multisig_address == MULTISIG
        assert cohort.signers == [S1, S2, S3]
        assert cohort.threshold == 2
        child.functions.cohortMultisigs.assert_called_once_with(1)
        root.functions.getSigners.assert_called_once_with(1)

    def test_unregistered_multisig(self, settings):
        clients = mock_clients()
        set_call(clients.execution.eth.contract.return_value, "cohortMultisigs", ZERO)
        config = ChainRegistry(settings).resolve("base-sepolia")

        with pytest.raises(CohortUnavailableError):
            asyncio.run(RootCoordinatorResolver(registry_for(settings, clients), 1).resolve(config))

    def test_empty_signer_set(self, settings):
        clients = mock_clients()
        root = clients.coordinator.eth.contract.return_value
        set_call(clients.execution.eth.contract.return_value, "cohortMultisigs", MULTISIG)
        set_call(root, "getSigners", [])
        set_call(root, "getThreshold", 0)
        config = ChainRegistry(settings).resolve("base-sepolia")

        with pytest.raises(CohortUnavailableError):
            asyncio.run(RootCoordinatorResolver(registry_for(settings, clients), 1).resolve(config))

    def test_revert_is_cohort_unavailable(self, settings):
        clients = mock_clients()
        child = clients.execution.eth.contract.return_value
        child.functions.cohortMultisigs.return_value.call = AsyncMock(
            side_effect=ContractLogicError("execution reverted")
        )
        config = ChainRegistry(settings).resolve("base-sepolia")

        with pytest.raises(CohortUnavailableError):
            asyncio.run(RootCoordinatorResolver(registry_for(settings, clients), 1).resolve(config))

    def test_transport_failure_is_upstream_error(self, settings):
        clients = mock_clients()
        child = clients.execution.eth.contract.return_value
        child.functions.cohortMultisigs.return_value.call = AsyncMock(
            side_effect=ConnectionError("connection reset")
        )
        config = ChainRegistry(settings).resolve("base-sepolia")

        with pytest.raises(UpstreamUnavailableError):
            asyncio.run(RootCoordinatorResolver(registry_for(settings, clients), 1).resolve(config))


class TestChildCoordinatorResolver:
    @pytest.fixture
    def config(self, settings):
        child = settings.model_copy(update={"COHORT_RESOLVER_BASE": "child"})
        return ChainRegistry(child).resolve("base-sepolia")

    def test_participants_from_multisig(self, settings, config):
        clients = mock_clients()
        contract = clients.execution.eth.contract.return_value
        set_call(contract, "cohortMultisigs", MULTISIG)
        set_call(contract, "getSigners", [S1, S2, S3])
        set_call(contract, "threshold", 2)

        cohort = asyncio.run(ChildCoordinatorResolver(registry_for(settings, clients), 1).resolve(config))

        assert cohort.signers == [S1, S2, S3]
        assert cohort.threshold == 2
        clients.execution.eth.get_code.assert_awaited_once_with(MULTISIG)
        clients.coordinator.eth.contract.assert_not_called()

    def test_multisig_without_code(self, settings, config):
        clients = mock_clients()
        clients.execution.eth.get_code = AsyncMock(return_value=b"")
        set_call(clients.execution.eth.contract.return_value, "cohortMultisigs", MULTISIG)

        with pytest.raises(CohortUnavailableError) as exc_info:
            asyncio.run(ChildCoordinatorResolver(registry_for(settings, clients), 1).resolve(config))
        assert "No code at multisig address" in exc_info.value.message


class TestSchemeSelection:
    def test_resolver_selected_by_chain_config(self, settings):
        clients = mock_clients()
        contract = clients.execution.eth.contract.return_value
        set_call(contract, "cohortMultisigs", MULTISIG)
        set_call(contract, "getSigners", [S1, S2])
        set_call(contract, "threshold", 1)
        child = settings.model_copy(update={"COHORT_RESOLVER_BASE": "child"})
        config = ChainRegistry(child).resolve("base-sepolia")

        resolver = build_cohort_resolver(registry_for(settings, clients), timeout=1, cache_ttl=0)
        cohort = asyncio.run(resolver.resolve(config))

        assert cohort.threshold == 1
        clients.coordinator.eth.contract.assert_not_called()


class TestCachingCohortResolver:
    def test_cached_within_ttl(self, settings, cohort):
        inner = MagicMock()
        inner.resolve = AsyncMock(return_value=cohort)
        resolver = CachingCohortResolver(inner, ttl=60)
        config = ChainRegistry(settings).resolve("base-sepolia")

        async def resolve_twice():
            return await resolver.resolve(config), await resolver.resolve(config)

        first, second = asyncio.run(resolve_twice())

        assert first is second is cohort
        assert inner.resolve.await_count == 1

    def test_concurrent_misses_share_one_lookup(self, settings, cohort):
        inner = MagicMock()
        inner.resolve = AsyncMock(return_value=cohort)
        resolver = CachingCohortResolver(inner, ttl=60)
        config = ChainRegistry(settings).resolve("base-sepolia")

        async def resolve_concurrently():
            return await asyncio.gather(*(resolver.resolve(config) for _ in range(5)))

        assert asyncio.run(resolve_concurrently()) == [cohort] * 5
        assert inner.resolve.await_count == 1

    def test_zero_ttl_disables_cache(self, settings, cohort):
        inner = MagicMock()
        inner.resolve = AsyncMock(return_value=cohort)
        resolver = CachingCohortResolver(inner, ttl=0)
        config = ChainRegistry(settings).resolve("base-sepolia")

        asyncio.run(resolver.resolve(config))
        asyncio.run(resolver.resolve(config))

        assert inner.resolve.await_count == 2
