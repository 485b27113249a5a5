import json
from typing import List
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from .base import BaseDriver
from ..models import (
    log, CatalogIdentifier, ChapterDescriptor, DecodeStrategy, FetchContext,
    chapter_number_from_url, digits_only
)
from ..errors import Result, ResultKind, NotFoundError
from ..core.session import PageResponse


class NovelFireDriver(BaseDriver):
    name = "novelfire"
    base_url = "https://novelfire.net"
    domains = ("novelfire.net",)
    page_size = 100
    decode_strategy = DecodeStrategy.STRIP_ADS
    content_selectors = ["#content", ".chapter-content"]

    def slug_from_url(self, url: str) -> str:
        path = urlparse(url).path if url.startswith("http") else url
        path = path.strip("/")
        if path.startswith("book/"):
            path = path[len("book/"):]
        slug = path.split("/")[0] if path else ""
        if not slug:
            raise NotFoundError(f"No novel slug in '{url}'")
        return slug

    def landing_url(self, url: str) -> str:
        return f"{self.base_url}/book/{self.slug_from_url(url)}"

    def chapter_url(self, slug: str, order: int) -> str:
        return f"{self.base_url}/book/{slug}/chapter-{order}"

    async def build_identifier(self, context: FetchContext, response: PageResponse, url: str) -> CatalogIdentifier:
        doc = response.document
        title_tag = doc.select_one(".novel-title")
        title = title_tag.get_text(strip=True) if title_tag else None
        if not title:
            cover = doc.select_one(".cover > img")
            title = (cover.get("alt") or "").strip() if cover else None
        if not title:
            raise NotFoundError(f"Name not found for '{url}'")

        report = doc.select_one("#novel-report[report-post_id]")
        post_id = (report.get("report-post_id") or "").strip() if report else ""

        total = 0
        book_icon = doc.select_one(".header-stats .icon-book-open")
        if book_icon is not None and book_icon.parent is not None:
            total = digits_only(book_icon.parent.get_text(strip=True))

        return CatalogIdentifier(
            source=self.name, url=self.landing_url(url), slug=self.slug_from_url(url),
            title=title, total_chapter_count=total, post_id=post_id or None,
        )

    async def fetch_bulk(self, context: FetchContext, identifier: CatalogIdentifier) -> Result:
        if not identifier.post_id:
            return Result.fail(ResultKind.ENDPOINT_NOT_FOUND, "no post id on catalog page")

        response = await context.client.get(f"{self.base_url}/listChapterDataAjax?post_id={identifier.post_id}")
        failure = self.check_response(context, response, missing=ResultKind.ENDPOINT_NOT_FOUND)
        if failure: return failure
        try:
            payload = json.loads(response.text)
        except json.JSONDecodeError as e:
            return Result.fail(ResultKind.PARSE_ERROR, f"chapter list is not JSON: {e}")

        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            return Result.ok([])

        chapters = []
        for i, row in enumerate(rows):
            if not isinstance(row, dict): continue
            try:
                order = int(row.get("n_sort", i + 1))
            except (TypeError, ValueError):
                order = i + 1
            title = row.get("title") or ""
            slug = row.get("slug") or ""
            if title:
                name = BeautifulSoup(title, "html.parser").get_text()
            elif slug:
                name = BeautifulSoup(slug, "html.parser").get_text()
            else:
                name = f"Chapter {order}"
            chapters.append(ChapterDescriptor(
                order=order, title=name, url=self.chapter_url(identifier.slug, order),
                published_at=row.get("created_at"),
            ))
        return Result.ok(chapters)

    async def fetch_page(self, context: FetchContext, identifier: CatalogIdentifier, page: int) -> Result:
        response = await context.client.get(f"{self.base_url}/book/{identifier.slug}/chapters?page={page}")
        failure = self.check_response(context, response)
        if failure: return failure
        return Result.ok(self.parse_chapter_rows(response.document))

    def parse_chapter_rows(self, doc) -> List[ChapterDescriptor]:
        chapters = []
        for item in doc.select("ul.chapter-list li"):
            link = item.select_one("a")
            if link is None: continue
            href = link.get("href") or ""
            if "/chapter-" not in href: continue

            title = (link.get("title") or "").strip()
            if not title:
                strong = item.select_one("strong.chapter-title")
                title = strong.get_text(strip=True) if strong else link.get_text(strip=True)
            time_tag = item.select_one("time.chapter-update")
            url = self.absolute(href)
            order = chapter_number_from_url(url)
            if order is None:
                log.debug(f"No chapter number in {url}")
                order = 0
            chapters.append(ChapterDescriptor(
                order=order, title=title, url=url,
                published_at=time_tag.get_text(strip=True) if time_tag else None,
            ))
        return chapters
