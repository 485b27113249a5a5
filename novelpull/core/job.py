import asyncio
from typing import Callable, List, Optional, Tuple

from ..models import (
    log, AcquisitionOptions, CatalogListing, ChapterDescriptor, DecodeStrategy,
    FetchContext, SiteProfile
)
from ..errors import Result, ResultKind, NotFoundError, RateLimitedError
from ..drivers.base import BaseDriver
from .backoff import BackoffController
from .bulk import BulkListFetcher
from .decoder import ContentDecoder
from .dispatcher import DriverDispatcher
from .merge import ChapterAccumulator
from .paginator import PaginatedListFetcher
from .profiles import ProfileManager
from .resolver import CatalogResolver, IdentifierCache


class AcquisitionJob:
    """One cancellable acquisition scope.

    Owns the identifier cache and the chapter accumulator, so nothing leaks
    between jobs. Cancelling the task running ``acquire`` cancels in-flight
    page fetches and any backoff sleep; ``merged`` still returns whatever
    had been merged before that point.
    """

    def __init__(self, client, options: Optional[AcquisitionOptions] = None,
                 profile: Optional[SiteProfile] = None, driver: Optional[BaseDriver] = None):
        self.client = client
        self.options = options or AcquisitionOptions()
        self.profile = profile
        self.driver = driver
        self.cache = IdentifierCache()
        self.accumulator = ChapterAccumulator()
        self.controller = self._build_controller()

    def _build_controller(self) -> BackoffController:
        attempts, delay = self.options.max_attempts, self.options.retry_delay
        if self.profile:
            if self.profile.max_attempts: attempts = self.profile.max_attempts
            if self.profile.retry_delay is not None: delay = self.profile.retry_delay
        return BackoffController(max_attempts=attempts, delay=delay)

    @property
    def batch_size(self) -> int:
        if self.profile and self.profile.batch_size:
            return self.profile.batch_size
        return self.options.batch_size

    @property
    def merged(self) -> List[ChapterDescriptor]:
        return self.accumulator.snapshot()

    @property
    def context(self) -> FetchContext:
        return FetchContext(client=self.client, controller=self.controller, options=self.options,
                            profile=self.profile, cache=self.cache)

    def driver_for(self, url: str) -> BaseDriver:
        if self.driver is not None:
            return self.driver
        if self.profile is None:
            self.profile = ProfileManager.get_instance().get_profile(url)
            self.controller = self._build_controller()
        driver = DriverDispatcher.get_driver(url, self.profile)
        if driver is None:
            raise NotFoundError(f"No driver for '{url}'")
        self.driver = driver
        return driver

    async def acquire(self, url: str) -> CatalogListing:
        """Resolve the catalog at ``url`` and return its full chapter list.

        Bulk first; pagination when the bulk endpoint is missing, failed or
        (with ``fallback_on_empty_bulk``) came back empty.
        """
        driver = self.driver_for(url)
        context = self.context
        self.accumulator = ChapterAccumulator()

        identifier = await CatalogResolver(context, driver).resolve(url)

        bulk = await BulkListFetcher(context, driver).fetch(identifier)
        if bulk.is_ok and (bulk.value or not self.options.fallback_on_empty_bulk or not driver.paginated):
            self.accumulator.add_all(bulk.value)
            return CatalogListing(identifier=identifier, chapters=self.merged, strategy="bulk")

        if not driver.paginated:
            if bulk.kind is ResultKind.RATE_LIMITED:
                raise RateLimitedError(f"Chapter list for {identifier.slug} stayed rate limited")
            raise NotFoundError(f"No chapter list for {identifier.slug}: {bulk.message}")

        if bulk.is_ok:
            log.info(f"Bulk list for {identifier.slug} was empty; falling back to pagination.")
        paginator = PaginatedListFetcher(
            lambda page: driver.fetch_page(context, identifier, page),
            controller=self.controller,
            page_size=driver.page_size,
            batch_size=self.batch_size,
            max_sequential_pages=self.options.max_sequential_pages,
            policy=self.options.exhaustion_policy,
            accumulator=self.accumulator,
        )
        chapters, complete = await paginator.fetch(identifier.total_chapter_count)
        if not complete:
            log.warning(f"Returning incomplete list of {len(chapters)} chapters for {identifier.slug}")
        return CatalogListing(identifier=identifier, chapters=chapters, strategy="paginated", complete=complete)

    async def decode(self, url: str, strategy: Optional[DecodeStrategy] = None) -> Result:
        driver = self.driver_for(url)
        return await ContentDecoder(self.context, driver).decode(url, strategy)

    async def decode_chapters(self, chapters: List[ChapterDescriptor], concurrency: Optional[int] = None,
                              gather: Callable = asyncio.gather) -> List[Tuple[ChapterDescriptor, Result]]:
        """Decode chapters concurrently; each failure stays with its chapter."""
        semaphore = asyncio.Semaphore(max(1, concurrency or self.options.decode_concurrency))

        async def one(chapter: ChapterDescriptor):
            async with semaphore:
                try:
                    return chapter, await self.decode(chapter.url)
                except (NotFoundError, ValueError) as e:
                    log.exception(f"Failed to decode {chapter.url}: {e}")
                    return chapter, Result.fail(ResultKind.NOT_FOUND, str(e))

        return list(await gather(*(one(c) for c in chapters)))
