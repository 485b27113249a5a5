import re
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from .base import BaseDriver
from ..models import CatalogIdentifier, ChapterDescriptor, DecodeStrategy, FetchContext
from ..errors import Result, NotFoundError
from ..core.session import PageResponse

VOLUME_RE = re.compile(r"Volume\s+(\d+)")


class WebNovelDriver(BaseDriver):
    name = "webnovel"
    base_url = "https://www.webnovel.com"
    domains = ("webnovel.com",)
    decode_strategy = DecodeStrategy.STRIP_ADS
    content_selectors = [".cha-words"]
    remove_selectors = [".para-comment"]

    def slug_from_url(self, url: str) -> str:
        path = urlparse(url).path if url.startswith("http") else url
        path = re.sub(r"/catalog/?$", "", path.strip("/"))
        slug = path.split("/")[-1] if path else ""
        if not slug:
            raise NotFoundError(f"No book slug in '{url}'")
        return slug

    def landing_url(self, url: str) -> str:
        url = url if url.startswith("http") else self.absolute(url)
        return re.sub(r"/catalog/?$", "", url.split("?")[0].rstrip("/"))

    async def build_identifier(self, context: FetchContext, response: PageResponse, url: str) -> CatalogIdentifier:
        cover = response.document.select_one(".g_thumb > img")
        name = (cover.get("alt") or "").strip() if cover else ""
        if not name:
            raise NotFoundError(f"Invalid name for '{url}'")
        return CatalogIdentifier(source=self.name, url=self.landing_url(url),
                                 slug=self.slug_from_url(url), title=name)

    async def fetch_page(self, context: FetchContext, identifier: CatalogIdentifier, page: int) -> Result:
        # The catalog page is a single document
        if page > 1:
            return Result.ok([])
        response = await context.client.get(f"{identifier.url}/catalog")
        failure = self.check_response(context, response)
        if failure: return failure

        chapters = []
        for volume in response.document.select(".volume-item"):
            match = VOLUME_RE.search("".join(volume.find_all(string=True, recursive=False)))
            volume_name = f"Volume {match.group(1)}" if match else ""
            for item in volume.select("li"):
                link = item.select_one("a")
                href = link.get("href") if link else None
                if not href: continue
                title = (link.get("title") or link.get_text()).strip()
                if volume_name:
                    title = f"{volume_name}: {title}"
                if item.select("svg"):
                    title = f"{title} 🔒"
                chapters.append(ChapterDescriptor(order=len(chapters) + 1, title=title, url=self.absolute(href)))
        return Result.ok(chapters)

    def extract_content(self, document: BeautifulSoup, context: FetchContext) -> Optional[Tag]:
        words = super().extract_content(document, context)
        if words is None:
            return None
        heading = document.select_one(".cha-tit")
        if heading is not None and words.select_one(".cha-tit") is None:
            words.insert(0, heading.extract())
        return words
