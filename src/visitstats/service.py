"""Recompute statistics on demand, letting the newest request win.

Every call to :meth:`StatsService.recompute` takes a new generation number.
Reference data loads are awaited concurrently, and after each await the call
checks whether a newer generation has started; if so it drops its work
instead of publishing a stale result.
"""

from __future__ import annotations

import asyncio
import csv
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Set, Tuple, TypeVar

from .aggregator import aggregate
from .config import AppConfig
from .countries import CountryResolver, load_countries
from .gazetteer import DEFAULT_MATCH_RADIUS_KM, Gazetteer, load_gazetteer
from .schemas import Ping, VisitStatistics

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Loader = Callable[[], Awaitable[Optional[T]]]


class PingSource(Protocol):
    def get_all(self) -> List[Ping]: ...

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]: ...


def cached(loader: Loader[T]) -> Loader[T]:
    """Share one load of ``loader`` between all callers.

    Concurrent callers await the same in-flight task. A failed load is
    forgotten so the next call retries it.
    """
    pending: Optional[asyncio.Future] = None

    async def load() -> Optional[T]:
        nonlocal pending
        if pending is None:
            pending = asyncio.ensure_future(loader())
        task = pending
        try:
            return await asyncio.shield(task)
        except Exception:
            if pending is task:
                pending = None
            raise

    return load


def build_loaders(config: AppConfig) -> Tuple[Loader[Gazetteer], Loader[CountryResolver]]:
    """Gazetteer and country loaders for ``config``, run off the event loop."""

    async def gazetteer_loader() -> Optional[Gazetteer]:
        if config.gazetteer.path is not None:
            return await asyncio.to_thread(load_gazetteer, config.gazetteer.path)
        if config.gazetteer.use_bundled:
            return await asyncio.to_thread(Gazetteer.from_geonamescache)
        return None

    async def countries_loader() -> Optional[CountryResolver]:
        if config.countries.path is None:
            return None
        return await asyncio.to_thread(
            load_countries, config.countries.path, config.countries.simplify_tolerance
        )

    return cached(gazetteer_loader), cached(countries_loader)


class StatsService:
    def __init__(
        self,
        source: PingSource,
        gazetteer_loader: Optional[Loader[Gazetteer]] = None,
        countries_loader: Optional[Loader[CountryResolver]] = None,
        match_radius_km: float = DEFAULT_MATCH_RADIUS_KM,
        on_result: Optional[Callable[[VisitStatistics], None]] = None,
    ) -> None:
        self.source = source
        self.gazetteer_loader = gazetteer_loader
        self.countries_loader = countries_loader
        self.match_radius_km = match_radius_km
        self.on_result = on_result
        self._generation = 0
        self._result: Optional[VisitStatistics] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def result(self) -> Optional[VisitStatistics]:
        return self._result

    async def recompute(self) -> Optional[VisitStatistics]:
        """Run one aggregation; returns ``None`` if a newer request superseded it."""
        self._generation += 1
        generation = self._generation

        gazetteer, countries = await asyncio.gather(
            self._load("gazetteer", self.gazetteer_loader),
            self._load("country polygons", self.countries_loader),
        )
        if generation != self._generation:
            LOGGER.debug("Discarding stale computation %d (current %d)", generation, self._generation)
            return None

        try:
            pings = self.source.get_all()
        except (OSError, ValueError, csv.Error):
            LOGGER.exception("Could not read pings; publishing empty statistics")
            pings = []

        stats = aggregate(pings, countries, gazetteer, self.match_radius_km)
        self._result = stats
        LOGGER.info(
            "Computed statistics for %d pings: %d cities, %d countries",
            stats.total_pings,
            len(stats.cities),
            len(stats.countries),
        )
        if self.on_result is not None:
            self.on_result(stats)
        return stats

    async def start(self) -> Optional[VisitStatistics]:
        """Subscribe to ping updates and compute the initial statistics."""
        self._loop = asyncio.get_running_loop()
        if self._unsubscribe is None:
            self._unsubscribe = self.source.subscribe(self._on_pings_changed)
        return await self.recompute()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _on_pings_changed(self) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        assert self._loop is not None
        task = self._loop.create_task(self.recompute())
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Scheduled recompute failed", exc_info=exc)

    async def _load(self, label: str, loader: Optional[Loader[T]]) -> Optional[T]:
        if loader is None:
            return None
        try:
            return await loader()
        except Exception as exc:
            LOGGER.warning("Loading %s failed (%s); continuing without it", label, exc)
            return None
