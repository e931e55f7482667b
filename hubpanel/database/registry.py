"""
Name-to-driver registry over static and stored database configurations
"""

import asyncio
import time
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Sequence

from ..utils.logger import get_logger
from .adapters import DatabaseAdapter
from .errors import NotConfiguredError
from .factory import DatabaseFactory
from .models import DatabaseConfig

if TYPE_CHECKING:
    from ..config import Settings

ConnectionSource = Callable[[], Awaitable[List[DatabaseConfig]]]
DriverFactory = Callable[[DatabaseConfig, Optional["Settings"]], DatabaseAdapter]


class DriverRegistry:
    """Resolve database names to pooled drivers

    At most one driver exists per name; concurrent first requests for a name
    wait on a per-name lock instead of building competing pools. Static
    configurations always win over stored ones with the same name.
    """

    def __init__(self, static_configs: Sequence[DatabaseConfig],
                 connection_source: Optional[ConnectionSource] = None,
                 settings: Optional["Settings"] = None,
                 cache_ttl: Optional[float] = None,
                 factory: DriverFactory = DatabaseFactory.create_connector,
                 clock: Callable[[], float] = time.monotonic):
        self.logger = get_logger("hubpanel.registry")
        self._static = list(static_configs)
        self._source = connection_source
        self._settings = settings
        self._factory = factory
        self._clock = clock

        if cache_ttl is None:
            cache_ttl = getattr(settings, "connections_cache_ttl", 10.0)
        self.cache_ttl = cache_ttl

        self._drivers: Dict[str, DatabaseAdapter] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._dynamic: List[DatabaseConfig] = []
        self._dynamic_loaded_at: Optional[float] = None
        self._refresh_lock: Optional[asyncio.Lock] = None

    @property
    def static_configs(self) -> List[DatabaseConfig]:
        return list(self._static)

    async def _dynamic_configs(self) -> List[DatabaseConfig]:
        if self._source is None:
            return []
        if self._is_fresh():
            return self._dynamic

        if self._refresh_lock is None:
            self._refresh_lock = asyncio.Lock()

        async with self._refresh_lock:
            # Another task may have refreshed while we waited
            if self._is_fresh():
                return self._dynamic
            try:
                self._dynamic = list(await self._source())
            except Exception as e:
                self.logger.warning(f"Stored connections unavailable, using static configs only: {e}")
                self._dynamic = []
            self._dynamic_loaded_at = self._clock()
            return self._dynamic

    def _is_fresh(self) -> bool:
        return (
            self._dynamic_loaded_at is not None
            and self._clock() - self._dynamic_loaded_at < self.cache_ttl
        )

    async def list_configs(self) -> List[DatabaseConfig]:
        """Static configs first, then stored ones whose name is not taken"""
        configs = list(self._static)
        names = {c.name for c in configs}
        for config in await self._dynamic_configs():
            if config.name not in names:
                configs.append(config)
                names.add(config.name)
        return configs

    async def find_config(self, name: str) -> Optional[DatabaseConfig]:
        for config in await self.list_configs():
            if config.name == name:
                return config
        return None

    async def resolve(self, name: str) -> DatabaseAdapter:
        """Return the driver for a name, creating its pool on first use"""
        driver = self._drivers.get(name)
        if driver is not None:
            return driver

        lock = self._locks.setdefault(name, asyncio.Lock())
        async with lock:
            driver = self._drivers.get(name)
            if driver is not None:
                return driver

            config = await self.find_config(name)
            if config is None:
                # Unknown names must not leave a lock behind
                self._locks.pop(name, None)
                raise NotConfiguredError(name)

            driver = self._factory(config, self._settings)
            self._drivers[name] = driver
            self.logger.info(
                f"Registered {config.engine_kind.label} driver for '{name}' ({config.source})"
            )
            return driver

    def invalidate(self) -> None:
        """Force the next lookup to reload stored connections"""
        self._dynamic_loaded_at = None

    async def evict(self, name: str) -> bool:
        """Close and forget the driver of a name; True if one existed"""
        driver = self._drivers.pop(name, None)
        if driver is None:
            return False
        await driver.close()
        self.logger.info(f"Evicted driver for '{name}'")
        return True

    async def close_all(self) -> None:
        drivers = list(self._drivers.values())
        self._drivers.clear()
        for driver in drivers:
            await driver.close()
        if drivers:
            self.logger.info(f"Closed {len(drivers)} database driver(s)")
