"""Tests for the name-to-driver registry."""

import asyncio

import pytest

from hubpanel.database.errors import NotConfiguredError
from hubpanel.database.registry import DriverRegistry


class StubDriver:
    """Minimal driver that records being closed."""

    def __init__(self, config, settings=None):
        self.config = config
        self.closed = False

    async def close(self):
        self.closed = True


class CountingFactory:
    def __init__(self):
        self.created = []

    def __call__(self, config, settings=None):
        driver = StubDriver(config, settings)
        self.created.append(driver)
        return driver


class StoredConnections:
    """Async connection source with a call counter."""

    def __init__(self, configs=None, error=None):
        self.configs = configs or []
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return list(self.configs)


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def factory():
    return CountingFactory()


class TestResolve:
    """Test driver resolution."""

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self, make_config, factory):
        registry = DriverRegistry([make_config("shop")], factory=factory)

        first = await registry.resolve("shop")
        second = await registry.resolve("shop")

        assert first is second
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_requests_share_one_driver(self, make_config, factory):
        source = StoredConnections([make_config("stored", source="stored")])
        registry = DriverRegistry([make_config("shop")], connection_source=source, factory=factory)

        drivers = await asyncio.gather(*[registry.resolve("stored") for _ in range(20)])

        assert all(d is drivers[0] for d in drivers)
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_unknown_name(self, make_config, factory):
        registry = DriverRegistry([make_config("shop")], factory=factory)

        with pytest.raises(NotConfiguredError) as exc_info:
            await registry.resolve("nope")

        assert exc_info.value.message == 'Database "nope" is not configured.'
        assert factory.created == []

    @pytest.mark.asyncio
    async def test_unknown_names_leave_no_locks(self, make_config, factory):
        registry = DriverRegistry([make_config("shop")], factory=factory)
        await registry.resolve("shop")

        for i in range(50):
            with pytest.raises(NotConfiguredError):
                await registry.resolve(f"missing_{i}")

        assert list(registry._locks) == ["shop"]


class TestConfigSources:
    """Test merging of static and stored configurations."""

    @pytest.mark.asyncio
    async def test_static_configs_win(self, make_config, factory):
        source = StoredConnections([
            make_config("shop", host="elsewhere", source="stored"),
            make_config("extra", source="stored"),
        ])
        registry = DriverRegistry([make_config("shop")], connection_source=source, factory=factory)

        configs = await registry.list_configs()

        assert [c.name for c in configs] == ["shop", "extra"]
        assert configs[0].host == "db.local"
        assert (await registry.resolve("shop")).config.source == "static"

    @pytest.mark.asyncio
    async def test_stored_configs_are_cached(self, make_config, factory):
        clock = Clock()
        source = StoredConnections([make_config("extra", source="stored")])
        registry = DriverRegistry([], connection_source=source, cache_ttl=10, factory=factory, clock=clock)

        await registry.list_configs()
        clock.now = 9.0
        await registry.list_configs()
        assert source.calls == 1

        clock.now = 10.5
        await registry.list_configs()
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self, make_config, factory):
        source = StoredConnections([])
        registry = DriverRegistry([], connection_source=source, factory=factory, clock=Clock())

        await registry.list_configs()
        registry.invalidate()
        await registry.list_configs()

        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_refresh_loads_once(self, make_config, factory):
        source = StoredConnections([make_config("extra", source="stored")])
        registry = DriverRegistry([], connection_source=source, factory=factory, clock=Clock())

        results = await asyncio.gather(*[registry.list_configs() for _ in range(10)])

        assert source.calls == 1
        assert all([c.name for c in r] == ["extra"] for r in results)

    @pytest.mark.asyncio
    async def test_failing_source_degrades_to_static(self, make_config, factory):
        source = StoredConnections(error=RuntimeError("metadata database down"))
        registry = DriverRegistry([make_config("shop")], connection_source=source, factory=factory)

        configs = await registry.list_configs()

        assert [c.name for c in configs] == ["shop"]
        assert await registry.find_config("missing") is None


class TestLifecycle:
    """Test eviction and shutdown."""

    @pytest.mark.asyncio
    async def test_evict_closes_and_forgets(self, make_config, factory):
        registry = DriverRegistry([make_config("shop")], factory=factory)
        driver = await registry.resolve("shop")

        assert await registry.evict("shop") is True
        assert driver.closed
        assert await registry.evict("shop") is False
        assert await registry.resolve("shop") is not driver

    @pytest.mark.asyncio
    async def test_close_all(self, make_config, factory):
        registry = DriverRegistry([make_config("a"), make_config("b")], factory=factory)
        a = await registry.resolve("a")
        b = await registry.resolve("b")

        await registry.close_all()

        assert a.closed and b.closed
        assert await registry.resolve("a") is not a
