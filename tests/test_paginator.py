import asyncio
import pytest

from novelpull.core.backoff import BackoffController
from novelpull.core.merge import ChapterAccumulator
from novelpull.core.paginator import PaginatedListFetcher
from novelpull.errors import Result, ResultKind, BatchExhaustedError, TransportError
from novelpull.models import ChapterDescriptor, ExhaustionPolicy

async def no_sleep(delay):
    return None

def page_of(page, size=100):
    start = (page - 1) * 100
    return [ChapterDescriptor(order=start + i + 1, title=f"Chapter {start + i + 1}",
                              url=f"https://x.test/c/{start + i + 1}") for i in range(size)]

class PageServer:
    """Fake page fetcher recording call order and concurrency."""

    def __init__(self, sizes=None, limited=None, failing=None):
        self.sizes = sizes or {}
        self.limited = limited or {}
        self.failing = failing or {}
        self.calls = []
        self.finished = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, page):
        self.calls.append(page)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.limited.get(page, 0) > 0:
                self.limited[page] -= 1
                return Result.fail(ResultKind.RATE_LIMITED, "slow down")
            if page in self.failing:
                return self.failing[page]
            return Result.ok(page_of(page, self.sizes.get(page, 100)))
        finally:
            self.in_flight -= 1
            self.finished.append(page)

def fetcher(server, policy=ExhaustionPolicy.DISCARD, **kw):
    controller = BackoffController(max_attempts=3, delay=3.5, sleep=no_sleep)
    return PaginatedListFetcher(server, controller=controller, page_size=100, batch_size=5, policy=policy, **kw)

@pytest.mark.asyncio
async def test_known_total_runs_sequential_batches():
    server = PageServer()
    chapters, complete = await fetcher(server).fetch(1200)

    assert complete
    assert sorted(server.calls) == list(range(1, 13))
    assert len(server.calls) == 12
    assert server.max_in_flight <= 5
    # batch 2 starts only after batch 1 has fully finished, and so on
    assert set(server.calls[:5]) == {1, 2, 3, 4, 5}
    assert set(server.finished[:5]) == {1, 2, 3, 4, 5}
    assert set(server.calls[5:10]) == {6, 7, 8, 9, 10}
    assert set(server.calls[10:]) == {11, 12}
    assert len(chapters) == 1200
    assert [c.order for c in chapters] == list(range(1, 1201))

def test_plan_batches():
    batches = fetcher(PageServer()).plan_batches(12)
    assert [b.page_range for b in batches] == [(1, 5), (6, 10), (11, 12)]

@pytest.mark.asyncio
async def test_overstated_total_stops_after_short_batch():
    server = PageServer(sizes={2: 30, **{p: 0 for p in range(3, 13)}})
    chapters, complete = await fetcher(server).fetch(1200)
    assert complete
    assert max(server.calls) <= 5
    assert sorted(server.calls) == [1, 2, 3, 4, 5]
    assert len(chapters) == 130

@pytest.mark.asyncio
async def test_skipped_page_counts_as_short():
    server = PageServer(failing={3: Result.fail(ResultKind.NOT_FOUND, "gone")})
    chapters, complete = await fetcher(server).fetch(1200)
    assert complete
    assert sorted(server.calls) == [1, 2, 3, 4, 5]
    assert len(chapters) == 400

@pytest.mark.asyncio
async def test_unknown_total_stops_on_short_page():
    server = PageServer(sizes={3: 40})
    chapters, complete = await fetcher(server).fetch(0)
    assert complete
    assert server.calls == [1, 2, 3]
    assert len(chapters) == 240

@pytest.mark.asyncio
async def test_unknown_total_stops_on_empty_page():
    server = PageServer(sizes={2: 0})
    chapters, complete = await fetcher(server).fetch(0)
    assert server.calls == [1, 2]
    assert len(chapters) == 100

@pytest.mark.asyncio
async def test_unknown_total_stops_at_cap():
    server = PageServer()
    chapters, complete = await fetcher(server, max_sequential_pages=4).fetch(0)
    assert server.calls == [1, 2, 3, 4]
    assert len(chapters) == 400

@pytest.mark.asyncio
async def test_rate_limited_batch_is_retried_as_a_whole():
    server = PageServer(limited={3: 1})
    chapters, complete = await fetcher(server).fetch(500)
    assert complete
    assert sorted(server.calls) == sorted(list(range(1, 6)) * 2)
    assert len(chapters) == 500

@pytest.mark.asyncio
async def test_exhausted_batch_discard_raises_with_partial():
    server = PageServer(limited={7: 99})
    with pytest.raises(BatchExhaustedError) as info:
        await fetcher(server).fetch(1000)
    err = info.value
    assert err.pages == [6, 7, 8, 9, 10]
    assert server.calls.count(7) == 3
    # pages merged before the failure are never taken back
    orders = {c.order for c in err.partial}
    assert set(range(1, 601)) <= orders
    assert not any(601 <= o <= 700 for o in orders)

@pytest.mark.asyncio
async def test_exhausted_batch_retain_returns_incomplete():
    server = PageServer(limited={7: 99})
    chapters, complete = await fetcher(server, policy=ExhaustionPolicy.RETAIN).fetch(1200)
    assert not complete
    assert 11 not in server.calls
    assert len(chapters) == 900
    assert [c.order for c in chapters] == sorted(c.order for c in chapters)

@pytest.mark.asyncio
async def test_parse_error_page_counts_as_empty():
    server = PageServer(failing={2: Result.fail(ResultKind.PARSE_ERROR, "garbled")})
    chapters, complete = await fetcher(server).fetch(300)
    assert complete
    assert len(chapters) == 200
    assert server.calls.count(2) == 1

@pytest.mark.asyncio
async def test_transport_error_fails_batch_without_retry():
    async def flaky(page):
        if page == 2:
            raise TransportError("https://x.test/p/2", "connection reset")
        return Result.ok(page_of(page))

    controller = BackoffController(max_attempts=3, delay=3.5, sleep=no_sleep)
    pager = PaginatedListFetcher(flaky, controller=controller, policy=ExhaustionPolicy.RETAIN)
    chapters, complete = await pager.fetch(300)
    assert not complete
    assert len(chapters) == 200

@pytest.mark.asyncio
async def test_cancellation_keeps_merged_chapters():
    accumulator = ChapterAccumulator()
    hang = asyncio.Event()
    second_batch = asyncio.Event()

    async def fetch_page(page):
        if page > 5:
            second_batch.set()
            await hang.wait()
        return Result.ok(page_of(page))

    pager = PaginatedListFetcher(fetch_page, batch_size=5, accumulator=accumulator)
    task = asyncio.create_task(pager.fetch(1000))
    await second_batch.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(accumulator.snapshot()) == 500
