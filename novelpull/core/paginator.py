import asyncio
from typing import Awaitable, Callable, List, Optional, Tuple

from ..models import (
    log, ChapterDescriptor, FetchBatch, ExhaustionPolicy, page_count,
    PAGE_SIZE, BATCH_SIZE, MAX_SEQUENTIAL_PAGES
)
from ..errors import Result, ResultKind, TransportError, BatchExhaustedError
from .backoff import BackoffController
from .merge import ChapterAccumulator

PageFetcher = Callable[[int], Awaitable[Result]]

# Page failures that leave the page empty instead of failing the batch
_SKIPPABLE = (ResultKind.PARSE_ERROR, ResultKind.NOT_FOUND, ResultKind.ENDPOINT_NOT_FOUND)


class PaginatedListFetcher:
    """Page-by-page chapter list fetch.

    With a known total, pages are grouped into batches; the pages of one
    batch are fetched concurrently and batches run one after another, which
    is what keeps the request rate under the source's limiter. With an
    unknown total, pages are walked one at a time until a short or empty
    page (or the page cap) ends the list.
    """

    def __init__(self, fetch_page: PageFetcher, controller: Optional[BackoffController] = None,
                 page_size: int = PAGE_SIZE, batch_size: int = BATCH_SIZE,
                 max_sequential_pages: int = MAX_SEQUENTIAL_PAGES,
                 policy: ExhaustionPolicy = ExhaustionPolicy.DISCARD,
                 accumulator: Optional[ChapterAccumulator] = None):
        self.fetch_page = fetch_page
        self.controller = controller or BackoffController()
        self.page_size = page_size
        self.batch_size = max(1, batch_size)
        self.max_sequential_pages = max_sequential_pages
        self.policy = policy
        self.accumulator = accumulator if accumulator is not None else ChapterAccumulator()

    async def fetch(self, total_chapter_count: int = 0) -> Tuple[List[ChapterDescriptor], bool]:
        """Return ``(chapters, complete)``; chapters are deduplicated and ordered."""
        total_pages = page_count(total_chapter_count, self.page_size)
        if total_pages > 0:
            complete = await self._fetch_known(total_pages)
        else:
            complete = await self._fetch_sequential()
        return self.accumulator.snapshot(), complete

    def plan_batches(self, total_pages: int) -> List[FetchBatch]:
        batches = []
        for start in range(1, total_pages + 1, self.batch_size):
            end = min(start + self.batch_size - 1, total_pages)
            batches.append(FetchBatch(pages=list(range(start, end + 1))))
        return batches

    async def _fetch_known(self, total_pages: int) -> bool:
        batches = self.plan_batches(total_pages)
        log.info(f"Fetching {total_pages} chapter pages in {len(batches)} batches of up to {self.batch_size}.")
        for batch in batches:
            first, last = batch.page_range
            result = await self.controller.run(
                lambda attempt, b=batch: self._run_batch(b, attempt),
                label=f"pages {first}-{last}",
            )
            if not result.is_ok:
                self._give_up(result, batch.pages)
                return False
            if result.value and last < total_pages:
                # the advertised total is only a hint; a short page ends the list
                log.info(f"Short page in {first}-{last}; skipping pages {last + 1}-{total_pages}.")
                break
        return True

    async def _run_batch(self, batch: FetchBatch, attempt: int) -> Result:
        batch.attempt = attempt
        results = await asyncio.gather(*(self._fetch_one(page) for page in batch.pages))

        limited = [p for p, r in zip(batch.pages, results) if r.kind is ResultKind.RATE_LIMITED]
        if limited:
            return Result.fail(ResultKind.RATE_LIMITED, f"rate limited on pages {limited}")
        broken = [p for p, r in zip(batch.pages, results) if r.kind is ResultKind.TRANSPORT_ERROR]
        if broken:
            return Result.fail(ResultKind.TRANSPORT_ERROR, f"transport failure on pages {broken}")
        # True when any page came back empty or short (skipped pages count as empty)
        return Result.ok(any(len(r.value) < self.page_size for r in results))

    async def _fetch_sequential(self) -> bool:
        page = 1
        while page <= self.max_sequential_pages:
            result = await self.controller.run(lambda attempt, p=page: self._fetch_one(p), label=f"page {page}")
            if not result.is_ok:
                self._give_up(result, [page])
                return False
            chapters = result.value
            if not chapters:
                break
            if len(chapters) < self.page_size:
                break
            page += 1
        else:
            log.warning(f"Stopped at the {self.max_sequential_pages} page cap without reaching a short page.")
        return True

    async def _fetch_one(self, page: int) -> Result:
        """Fetch one page and merge it; skippable failures count as an empty page."""
        try:
            result = await self.fetch_page(page)
        except TransportError as e:
            log.warning(f"Page {page} unreachable: {e}")
            return Result.fail(ResultKind.TRANSPORT_ERROR, str(e))

        if result.is_ok:
            added = self.accumulator.add_all(result.value)
            log.debug(f"Page {page}: {len(result.value)} chapters ({added} new)")
            return result
        if result.kind in _SKIPPABLE:
            log.warning(f"Page {page} skipped ({result.kind.value}): {result.message}")
            return Result.ok([])
        return result

    def _give_up(self, result: Result, pages: List[int]):
        partial = self.accumulator.snapshot()
        message = f"Chapter pages {pages} failed ({result.kind.value}) after {result.attempts} attempts"
        if self.policy is ExhaustionPolicy.RETAIN:
            log.warning(f"{message}; keeping {len(partial)} chapters merged so far.")
            return
        raise BatchExhaustedError(message, partial=partial, pages=pages)
