import threading
from typing import Dict, Optional, Tuple

from ..models import log, CatalogIdentifier, FetchContext
from ..errors import Result, ResultKind, NotFoundError, RateLimitedError, TransportError
from ..drivers.base import BaseDriver


class IdentifierCache:
    """Resolved identifiers keyed by (source, slug); each key is written once."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], CatalogIdentifier] = {}

    def get(self, source: str, slug: str) -> Optional[CatalogIdentifier]:
        with self._lock:
            return self._entries.get((source, slug))

    def put(self, identifier: CatalogIdentifier) -> CatalogIdentifier:
        with self._lock:
            return self._entries.setdefault((identifier.source, identifier.slug), identifier)

    def __len__(self):
        with self._lock:
            return len(self._entries)


class CatalogResolver:
    def __init__(self, context: FetchContext, driver: BaseDriver):
        self.context = context
        self.driver = driver

    async def resolve(self, url: str) -> CatalogIdentifier:
        """Resolve the landing page at ``url`` into a CatalogIdentifier.

        Raises NotFoundError when the page or its required markers are
        missing, ParseError when embedded data is malformed, and
        RateLimitedError when the landing page stays rate limited.
        """
        slug = self.driver.slug_from_url(url)
        cache = self.context.cache
        if cache is not None:
            cached = cache.get(self.driver.name, slug)
            if cached is not None:
                log.debug(f"Catalog identifiers for {slug} served from cache")
                return cached

        landing = self.driver.landing_url(url)
        result = await self.context.controller.run(lambda attempt: self._load(landing), label=f"catalog {landing}")
        if result.kind is ResultKind.RATE_LIMITED:
            raise RateLimitedError(f"Catalog page {landing} stayed rate limited after {result.attempts} attempts")
        if result.kind is ResultKind.TRANSPORT_ERROR:
            raise TransportError(landing, result.message)
        if not result.is_ok:
            raise NotFoundError(f"Catalog page {landing} unavailable: {result.message}")

        identifier = await self.driver.build_identifier(self.context, result.value, url)
        log.info(f"Resolved '{identifier.title}' on {identifier.source} "
                 f"({identifier.total_chapter_count or 'unknown'} chapters advertised)")
        if cache is not None:
            identifier = cache.put(identifier)
        return identifier

    async def _load(self, landing: str) -> Result:
        try:
            response = await self.context.client.get(landing)
        except TransportError as e:
            return Result.fail(ResultKind.TRANSPORT_ERROR, str(e))
        failure = self.driver.check_response(self.context, response)
        return failure or Result.ok(response)
