from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
import asyncio
import logging
import random
import uuid

import pytest

from linkshelf.crawlers.contracts import ScrapedMetadata
from linkshelf.errors import DatabaseError, ExternalServiceError
from linkshelf.jobs.refresh_scheduler import RefreshScheduler, SchedulerState
from linkshelf.services.enrichment import LinkEnricher


def _links(count: int) -> list[SimpleNamespace]:
    return [
        SimpleNamespace(id=uuid.uuid4(), url=f"https://example.com/{index}", refreshed_at=None)
        for index in range(count)
    ]


class StaticRepository:
    def __init__(self, links: list[SimpleNamespace], error: Exception | None = None) -> None:
        self.links = links
        self.error = error
        self.selections: list[tuple[int, int]] = []

    def get_stale_links(self, stale_days: int, limit: int):
        self.selections.append((stale_days, limit))
        if self.error:
            raise self.error
        return self.links[:limit]


class StubEnricher:
    """Stamps refreshed_at like a successful refresh; fails for chosen URLs."""

    def __init__(self, failing_urls: set[str] | None = None) -> None:
        self.failing_urls = failing_urls or set()
        self.in_flight = 0
        self.max_in_flight = 0

    async def refresh_link(self, link):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if link.url in self.failing_urls:
                raise ExternalServiceError(f"Link is not accessible: {link.url}")
            link.refreshed_at = datetime.now(UTC)
            return link
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        pass


def _scheduler(repository, enricher, **overrides) -> RefreshScheduler:
    options = dict(
        interval_hours=1,
        jitter_percent=20,
        stale_after_days=30,
        batch_size=50,
        concurrency=4,
        rng=random.Random(7),
    )
    options.update(overrides)
    return RefreshScheduler(repository, enricher, **options)


@pytest.mark.asyncio
async def test_one_failing_link_does_not_stop_the_batch(caplog) -> None:
    links = _links(5)
    failing = links[2]
    scheduler = _scheduler(StaticRepository(links), StubEnricher({failing.url}))

    with caplog.at_level(logging.WARNING, logger="linkshelf.jobs.refresh_scheduler"):
        stats = await scheduler.run_batch()

    assert stats["selected"] == 5
    assert stats["refreshed"] == 4
    assert stats["failed"] == 1
    assert stats["success"] is False
    assert stats["errors"] == [f"{failing.id}: Link is not accessible: {failing.url}"]
    assert failing.refreshed_at is None
    assert all(link.refreshed_at is not None for link in links if link is not failing)
    assert any(record.getMessage() == "Failed to refresh link" for record in caplog.records)


@pytest.mark.asyncio
async def test_batch_uses_configured_staleness_and_size() -> None:
    repository = StaticRepository(_links(3))
    scheduler = _scheduler(repository, StubEnricher(), stale_after_days=7, batch_size=2)

    stats = await scheduler.run_batch()

    assert repository.selections == [(7, 2)]
    assert stats["refreshed"] == 2
    assert stats["success"] is True


@pytest.mark.asyncio
async def test_refreshes_are_bounded_by_concurrency() -> None:
    enricher = StubEnricher()
    scheduler = _scheduler(StaticRepository(_links(7)), enricher, concurrency=2)

    stats = await scheduler.run_batch()

    assert stats["refreshed"] == 7
    assert enricher.max_in_flight == 2


@pytest.mark.asyncio
async def test_selection_failure_is_reported_not_raised() -> None:
    repository = StaticRepository([], error=DatabaseError("connection refused"))
    scheduler = _scheduler(repository, StubEnricher())

    stats = await scheduler.run_batch()

    assert stats["success"] is False
    assert stats["selected"] == 0
    assert stats["errors"] == ["connection refused"]
    assert scheduler.state is SchedulerState.IDLE


@pytest.mark.asyncio
async def test_overlapping_batch_is_skipped() -> None:
    release = asyncio.Event()

    class BlockingEnricher(StubEnricher):
        async def refresh_link(self, link):
            await release.wait()
            return link

    scheduler = _scheduler(StaticRepository(_links(1)), BlockingEnricher())

    first = asyncio.create_task(scheduler.run_batch())
    while scheduler.state is not SchedulerState.RUNNING:
        await asyncio.sleep(0)

    assert await scheduler.run_batch() == {"success": False, "skipped": True}

    release.set()
    stats = await first
    assert stats["refreshed"] == 1
    assert scheduler.state is SchedulerState.IDLE


@pytest.mark.asyncio
async def test_loop_runs_batches_until_shutdown(monkeypatch) -> None:
    repository = StaticRepository([])
    scheduler = _scheduler(repository, StubEnricher())
    monkeypatch.setattr(scheduler, "next_interval_seconds", lambda: 0.01)

    assert scheduler.running is True
    task = scheduler.start()
    for _ in range(200):
        if len(repository.selections) >= 2:
            break
        await asyncio.sleep(0.01)

    await scheduler.stop(timeout=1)

    assert task.done()
    assert scheduler.running is False
    assert scheduler.state is SchedulerState.IDLE
    assert len(repository.selections) >= 2


@pytest.mark.asyncio
async def test_shutdown_before_first_tick_runs_no_batch() -> None:
    repository = StaticRepository(_links(1))
    scheduler = _scheduler(repository, StubEnricher())

    task = scheduler.start()
    await asyncio.sleep(0)
    scheduler.shutdown_handle().set()
    await asyncio.wait_for(task, timeout=1)

    assert repository.selections == []
    assert scheduler.running is False


def test_interval_jitter_stays_within_bounds() -> None:
    scheduler = _scheduler(StaticRepository([]), StubEnricher())

    samples = [scheduler.next_interval_seconds() for _ in range(500)]

    assert all(2880 <= sample <= 4320 for sample in samples)
    assert len(set(samples)) > 1


def test_interval_without_jitter_is_exact_and_has_a_floor() -> None:
    exact = _scheduler(StaticRepository([]), StubEnricher(), jitter_percent=0)
    tiny = _scheduler(StaticRepository([]), StubEnricher(), interval_hours=0.001, jitter_percent=0)

    assert exact.next_interval_seconds() == 3600
    assert tiny.next_interval_seconds() == 60


USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")


class FakeHealthChecker:
    def __init__(self, dead_urls: set[str]) -> None:
        self.dead_urls = dead_urls

    async def check_health(self, url: str) -> bool:
        return url not in self.dead_urls


class FakeScraper:
    def __init__(self, failing_urls: set[str] | None = None) -> None:
        self.failing_urls = failing_urls or set()

    async def scrape(self, url: str) -> ScrapedMetadata:
        if url in self.failing_urls:
            raise ExternalServiceError(f"Failed to scrape {url}: HTTP 500")
        return ScrapedMetadata(title=f"Title of {url}")


class UnusedGitHubFetcher:
    async def fetch_repo_metadata(self, owner: str, repo: str):
        raise AssertionError(f"unexpected GitHub fetch for {owner}/{repo}")

    async def aclose(self) -> None:
        pass


def _enricher(repository, *, dead_urls=(), failing_urls=()) -> LinkEnricher:
    return LinkEnricher(
        repository,
        scraper=FakeScraper(set(failing_urls)),
        github_fetcher=UnusedGitHubFetcher(),
        health_checker=FakeHealthChecker(set(dead_urls)),
    )


@pytest.mark.asyncio
async def test_batch_with_real_enricher_persists_all_but_the_failing_link(repository) -> None:
    links = [repository.create_link(USER_ID, f"https://example.com/{index}") for index in range(5)]
    failing = links[3]
    scheduler = _scheduler(repository, _enricher(repository, failing_urls={failing.url}), concurrency=2)

    stats = await scheduler.run_batch()

    assert (stats["selected"], stats["refreshed"], stats["failed"]) == (5, 4, 1)
    stored = {link.id: repository.get_by_id(link.id, USER_ID) for link in links}
    assert stored[failing.id].refreshed_at is None
    assert stored[failing.id].last_checked is not None
    for link in links:
        if link.id != failing.id:
            assert stored[link.id].refreshed_at is not None
            assert stored[link.id].title == f"Title of {link.url}"


@pytest.mark.asyncio
async def test_dead_links_do_not_starve_healthy_links(repository) -> None:
    dead = [repository.create_link(USER_ID, f"https://dead.example.com/{index}") for index in range(3)]
    healthy = repository.create_link(USER_ID, "https://example.com/alive")
    enricher = _enricher(repository, dead_urls={link.url for link in dead})
    scheduler = _scheduler(repository, enricher, batch_size=3)

    for _ in range(5):
        await scheduler.run_batch()

    assert repository.get_by_id(healthy.id, USER_ID).refreshed_at is not None
    for link in dead:
        stored = repository.get_by_id(link.id, USER_ID)
        assert stored.refreshed_at is None
        assert stored.last_checked is not None
        assert stored.consecutive_failures >= 3
