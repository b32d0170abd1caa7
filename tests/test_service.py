import asyncio

from visitstats.config import AppConfig
from visitstats.gazetteer import Gazetteer
from visitstats.persistence import PingStore
from visitstats.schemas import GazetteerEntry, Ping
from visitstats.service import StatsService, build_loaders, cached

from .conftest import JAN_1


class BrokenSource:
    def get_all(self):
        raise OSError("disk gone")

    def subscribe(self, listener):
        return lambda: None


def test_newer_request_supersedes_older_one(tmp_path):
    store = PingStore(tmp_path / "pings.tsv")
    store.append(Ping(lat=48.85, lng=2.35, timestamp=JAN_1, city="Paris"))
    calls = []
    gates = {}

    async def gazetteer_loader():
        calls.append(len(calls))
        if len(calls) == 1:
            await gates["release"].wait()
        return Gazetteer([GazetteerEntry(name="Paris", lat=48.8534, lng=2.3488)])

    async def scenario():
        release = gates["release"] = asyncio.Event()
        published = []
        service = StatsService(store, gazetteer_loader=gazetteer_loader, on_result=published.append)
        first = asyncio.create_task(service.recompute())
        await asyncio.sleep(0)
        second = await service.recompute()
        release.set()
        stale = await first
        return service, stale, second, published

    service, stale, second, published = asyncio.run(scenario())
    assert stale is None
    assert second is not None
    assert service.result is second
    assert published == [second]
    assert service.generation == 2
    assert second.cities[0].gazetteer_matched


def test_source_failure_publishes_empty_statistics():
    service = StatsService(BrokenSource())
    stats = asyncio.run(service.recompute())
    assert stats is not None
    assert stats.total_pings == 0
    assert stats.cities == [] and stats.countries == []


def test_failing_loader_degrades_to_no_reference_data(tmp_path):
    store = PingStore(tmp_path / "pings.tsv")
    store.append(Ping(lat=1, lng=1, timestamp=JAN_1, city="Alpha"))

    async def broken_loader():
        raise RuntimeError("unreachable")

    service = StatsService(store, gazetteer_loader=broken_loader, countries_loader=broken_loader)
    stats = asyncio.run(service.recompute())
    assert [row.key for row in stats.cities] == ["Alpha"]
    assert stats.countries == []


def test_appends_trigger_recompute_until_closed(tmp_path):
    store = PingStore(tmp_path / "pings.tsv")

    async def scenario():
        results = []
        updated = asyncio.Event()

        def on_result(stats):
            results.append(stats)
            if len(results) >= 2:
                updated.set()

        service = StatsService(store, on_result=on_result)
        initial = await service.start()
        store.append(Ping(lat=1, lng=1, timestamp=JAN_1, city="Alpha"))
        await asyncio.wait_for(updated.wait(), timeout=5)

        service.close()
        generation = service.generation
        store.append(Ping(lat=2, lng=2, timestamp=JAN_1 + 1, city="Beta"))
        for _ in range(5):
            await asyncio.sleep(0)
        return initial, results, generation, service

    initial, results, generation, service = asyncio.run(scenario())
    assert initial.total_pings == 0
    assert results[-1].total_pings == 1
    assert service.generation == generation
    assert service.result.total_pings == 1


def test_cached_loader_loads_once():
    calls = []

    async def loader():
        calls.append(1)
        return "value"

    async def scenario():
        load = cached(loader)
        return [await load(), await load()]

    assert asyncio.run(scenario()) == ["value", "value"]
    assert calls == [1]


def test_build_loaders_from_config(gazetteer_path, countries_path):
    config = AppConfig.model_validate(
        {
            "gazetteer": {"path": str(gazetteer_path)},
            "countries": {"path": str(countries_path)},
        }
    )
    gazetteer_loader, countries_loader = build_loaders(config)

    async def scenario():
        return await gazetteer_loader(), await countries_loader()

    gazetteer, countries = asyncio.run(scenario())
    assert len(gazetteer) == 5
    assert countries.resolve(lat=1, lng=1) == "Squareland"


def test_build_loaders_without_reference_data():
    config = AppConfig.model_validate({"gazetteer": {"use_bundled": False}})
    gazetteer_loader, countries_loader = build_loaders(config)

    async def scenario():
        return await gazetteer_loader(), await countries_loader()

    assert asyncio.run(scenario()) == (None, None)


class UnreadableSource(BrokenSource):
    def get_all(self):
        raise ValueError("corrupt log")


class CrashingSource(BrokenSource):
    def get_all(self):
        raise RuntimeError("boom")


def test_corrupt_source_publishes_empty_statistics():
    stats = asyncio.run(StatsService(UnreadableSource()).recompute())
    assert stats.total_pings == 0


def test_invalid_bytes_in_log_still_recompute(tmp_path):
    store = PingStore(tmp_path / "pings.tsv")
    store.append(Ping(lat=1.0, lng=1.0, timestamp=JAN_1, city="Alpha"))
    with store.tsv_path.open("ab") as fh:
        fh.write(b"2\t1.0\t1.0\t\tBad\xff\xfeCity\t\n")
    store.append(Ping(lat=1.0, lng=1.0, timestamp=JAN_1 + 1, city="Alpha"))

    stats = asyncio.run(StatsService(store).recompute())
    assert stats.total_pings == 3
    assert "Alpha" in [row.key for row in stats.cities]


def test_concurrent_callers_share_one_cached_load():
    calls = []

    async def loader():
        calls.append(1)
        await asyncio.sleep(0)
        return "value"

    async def scenario():
        load = cached(loader)
        return await asyncio.gather(load(), load())

    assert asyncio.run(scenario()) == ["value", "value"]
    assert calls == [1]


def test_failed_cached_load_is_retried():
    calls = []

    async def loader():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first try fails")
        return "value"

    async def scenario():
        load = cached(loader)
        try:
            await load()
        except RuntimeError:
            pass
        return await load()

    assert asyncio.run(scenario()) == "value"
    assert calls == [1, 1]


def test_failed_scheduled_recompute_is_logged(caplog):
    async def scenario():
        service = StatsService(CrashingSource())
        service._loop = asyncio.get_running_loop()
        service._schedule()
        for _ in range(5):
            await asyncio.sleep(0)
        return service

    with caplog.at_level("ERROR", logger="visitstats.service"):
        service = asyncio.run(scenario())
    assert "Scheduled recompute failed" in caplog.text
    assert not service._tasks
