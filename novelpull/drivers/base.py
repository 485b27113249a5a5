from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
from urllib.parse import urlparse, urljoin

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from ..models import (
    log, CatalogIdentifier, DecodeStrategy, FetchContext, PAGE_SIZE, ENDPOINT_MISSING_MARKER
)
from ..errors import Result, ResultKind
from ..core.session import PageResponse


class BaseDriver(ABC):
    """Site-specific knowledge: where the ids live and what the lists look like.

    Drivers never retry or sleep; they classify each response into a
    ``Result`` and leave pacing to the core fetchers.
    """

    name: str = "base"
    base_url: str = ""
    domains: Tuple[str, ...] = ()
    page_size: int = PAGE_SIZE
    paginated: bool = True
    decode_strategy: DecodeStrategy = DecodeStrategy.PLAIN_HTML
    content_selectors: List[str] = []
    remove_selectors: List[str] = []
    reader_key: Optional[str] = None

    def matches(self, url: str) -> bool:
        netloc = urlparse(url).netloc.lower()
        return any(netloc == d or netloc.endswith("." + d) for d in self.domains)

    def absolute(self, href: str) -> str:
        return urljoin(self.base_url + "/", href)

    # --- Catalog resolution ------------------------------------------------
    @abstractmethod
    def slug_from_url(self, url: str) -> str:
        pass

    def landing_url(self, url: str) -> str:
        return url if url.startswith("http") else self.absolute(url)

    @abstractmethod
    async def build_identifier(self, context: FetchContext, response: PageResponse, url: str) -> CatalogIdentifier:
        pass

    # --- Chapter lists -----------------------------------------------------
    async def fetch_bulk(self, context: FetchContext, identifier: CatalogIdentifier) -> Result:
        return Result.fail(ResultKind.ENDPOINT_NOT_FOUND, f"{self.name} has no bulk chapter endpoint")

    async def fetch_page(self, context: FetchContext, identifier: CatalogIdentifier, page: int) -> Result:
        return Result.fail(ResultKind.ENDPOINT_NOT_FOUND, f"{self.name} has no paginated chapter list")

    # --- Content -----------------------------------------------------------
    def extract_content(self, document: BeautifulSoup, context: FetchContext) -> Optional[Tag]:
        selectors = list(self.content_selectors)
        if context.profile and context.profile.content_selector:
            selectors.insert(0, context.profile.content_selector)
        for selector in selectors:
            try:
                found = document.select_one(selector)
            except (SelectorSyntaxError, ValueError) as e:
                log.warning(f"Skipping invalid content selector '{selector}': {e}")
                continue
            if found is not None:
                return found
        return None

    async def fetch_reader_body(self, context: FetchContext, url: str, backend: str) -> Result:
        return Result.fail(ResultKind.ENDPOINT_NOT_FOUND, f"{self.name} has no reader API")

    # --- Helpers -----------------------------------------------------------
    @staticmethod
    def check_response(context: FetchContext, response: PageResponse,
                       missing: ResultKind = ResultKind.NOT_FOUND) -> Optional[Result]:
        """Return a failure Result for rate-limited or missing responses, else None."""
        if context.controller.detect(response.text):
            return Result.fail(ResultKind.RATE_LIMITED, response.url)
        if response.status == 404 or ENDPOINT_MISSING_MARKER in response.text:
            return Result.fail(missing, f"HTTP {response.status} at {response.url}")
        if not response.ok:
            return Result.fail(missing, f"HTTP {response.status} at {response.url}")
        return None
