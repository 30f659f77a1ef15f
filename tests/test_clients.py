import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from taco_wallet.chains import ChainRegistry
from taco_wallet.services.clients import ClientRegistry
from taco_wallet.services.orchestrator import KeyedLock


class TestClientRegistry:
    def test_racing_first_access_builds_one_bundle(self, settings):
        builds = []

        def builder(config, app_settings):
            builds.append(config.key)
            return MagicMock(aclose=AsyncMock())

        registry = ClientRegistry(settings, builder=builder)
        chains = ChainRegistry(settings)
        base = chains.resolve("base-sepolia")
        eth = chains.resolve("eth-sepolia")

        async def race():
            return await asyncio.gather(
                *(registry.get(base) for _ in range(5)), *(registry.get(eth) for _ in range(5))
            )

        bundles = asyncio.run(race())

        assert sorted(builds) == ["base-sepolia", "eth-sepolia"]
        assert all(bundle is bundles[0] for bundle in bundles[:5])
        assert all(bundle is bundles[5] for bundle in bundles[5:])
        assert bundles[0] is not bundles[5]

    def test_aclose_closes_every_bundle(self, settings):
        bundle = MagicMock(aclose=AsyncMock())
        registry = ClientRegistry(settings, builder=lambda config, app_settings: bundle)
        config = ChainRegistry(settings).resolve("base-sepolia")

        async def use_and_close():
            await registry.get(config)
            await registry.aclose()

        asyncio.run(use_and_close())

        bundle.aclose.assert_awaited_once()


class TestKeyedLock:
    def test_same_key_holders_do_not_overlap(self):
        locks = KeyedLock()
        events = []

        async def hold(name):
            async with locks.hold("0xsender"):
                events.append(("enter", name))
                await asyncio.sleep(0.01)
                events.append(("exit", name))

        async def main():
            await asyncio.gather(hold("first"), hold("second"))

        asyncio.run(main())

        assert events == [
            ("enter", "first"),
            ("exit", "first"),
            ("enter", "second"),
            ("exit", "second"),
        ]
        assert locks._locks == {}
        assert locks._users == {}

    def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        events = []

        async def hold(key):
            async with locks.hold(key):
                events.append(("enter", key))
                await asyncio.sleep(0.01)
                events.append(("exit", key))

        async def main():
            await asyncio.gather(hold("0xa"), hold("0xb"))

        asyncio.run(main())

        assert events[:2] == [("enter", "0xa"), ("enter", "0xb")]
        assert locks._locks == {}

    def test_entry_released_after_error(self):
        locks = KeyedLock()

        async def fail():
            async with locks.hold("0xsender"):
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(fail())

        assert locks._locks == {}
