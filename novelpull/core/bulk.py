from ..models import log, CatalogIdentifier, FetchContext
from ..errors import Result, ResultKind, TransportError
from ..drivers.base import BaseDriver
from .merge import merge_chapters


class BulkListFetcher:
    """One-shot chapter list fetch, preferred over pagination when available.

    ENDPOINT_NOT_FOUND is the expected answer for sources without a bulk
    endpoint and tells the caller to paginate instead.
    """

    def __init__(self, context: FetchContext, driver: BaseDriver):
        self.context = context
        self.driver = driver

    async def fetch(self, identifier: CatalogIdentifier) -> Result:
        result = await self.context.controller.run(
            lambda attempt: self._attempt(identifier), label=f"bulk list for {identifier.slug}")
        if result.is_ok:
            chapters = merge_chapters(result.value)
            log.info(f"Bulk list returned {len(chapters)} chapters for {identifier.slug}")
            return Result(ResultKind.OK, chapters, attempts=result.attempts)
        if result.kind is ResultKind.ENDPOINT_NOT_FOUND:
            log.info(f"No bulk list for {identifier.slug}: {result.message}")
        else:
            log.warning(f"Bulk list failed for {identifier.slug} ({result.kind.value}): {result.message}")
        return result

    async def _attempt(self, identifier: CatalogIdentifier) -> Result:
        try:
            return await self.driver.fetch_bulk(self.context, identifier)
        except TransportError as e:
            return Result.fail(ResultKind.TRANSPORT_ERROR, str(e))
