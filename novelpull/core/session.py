import asyncio
import aiohttp
import socket
from contextlib import asynccontextmanager
from typing import Dict, Optional
from aiohttp.resolver import ThreadedResolver
from bs4 import BeautifulSoup

from ..models import log, REQUEST_TIMEOUT, MAX_RETRIES, RETRY_DELAY, USER_AGENT
from ..errors import TransportError

@asynccontextmanager
async def get_session(headers: Optional[Dict[str, str]] = None):
    # Use threaded DNS to avoid pycares issues on Termux/Android and force IPv4 where needed
    connector = aiohttp.TCPConnector(
        resolver=ThreadedResolver(),
        ttl_dns_cache=300,
        family=socket.AF_INET
    )
    async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT, connector=connector, headers=headers) as session:
        yield session


class PageResponse:
    """Status, body text and a lazily parsed document for one request."""

    def __init__(self, status: int, text: str, url: str):
        self.status = status
        self.text = text
        self.url = url
        self._document = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def document(self) -> BeautifulSoup:
        if self._document is None:
            self._document = BeautifulSoup(self.text, 'lxml')
        return self._document

    def __repr__(self):
        return f"<PageResponse {self.status} {self.url}>"


class HttpClient:
    """Thin wrapper over an aiohttp session exposing ``get`` and ``post``.

    Connection-level failures are retried with exponential backoff. HTTP
    statuses are never raised; the caller classifies them, since the sources
    signal rate limits and missing endpoints inside 200 bodies.
    """

    def __init__(self, session: aiohttp.ClientSession, headers: Optional[Dict[str, str]] = None,
                 max_retries: int = MAX_RETRIES, backoff: float = RETRY_DELAY):
        self.session = session
        self.headers = {
            'User-Agent': USER_AGENT,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.9,*/*;q=0.8',
            'Accept-Language': 'en-US,en;q=0.5',
        }
        if headers:
            self.headers.update(headers)
        self.max_retries = max_retries
        self.backoff = backoff

    async def get(self, url: str, referer: Optional[str] = None, extra_headers: Optional[Dict[str, str]] = None) -> PageResponse:
        return await self._request("GET", url, referer=referer, extra_headers=extra_headers)

    async def post(self, url: str, data: Dict[str, str], referer: Optional[str] = None,
                   extra_headers: Optional[Dict[str, str]] = None) -> PageResponse:
        return await self._request("POST", url, data=data, referer=referer, extra_headers=extra_headers)

    async def _request(self, method, url, data=None, referer=None, extra_headers=None) -> PageResponse:
        headers = dict(self.headers)
        if referer:
            headers['Referer'] = referer
        if extra_headers:
            headers.update(extra_headers)

        last_error = None
        for attempt in range(self.max_retries):
            try:
                async with self.session.request(method, url, data=data, headers=headers, timeout=REQUEST_TIMEOUT) as response:
                    text = await response.text(encoding='utf-8', errors='replace')
                    if response.status >= 400:
                        log.warning(f"HTTP {response.status} for {method} {url}")
                    return PageResponse(response.status, text, str(response.url))
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                wait = self.backoff * (2 ** attempt)
                if attempt + 1 == self.max_retries:
                    break
                log.warning(f"Attempt {attempt + 1}/{self.max_retries} failed for {url}: {e}. Retrying in {wait}s.")
                await asyncio.sleep(wait)
        log.error(f"Giving up on {method} {url}: {last_error}")
        raise TransportError(url, str(last_error))
