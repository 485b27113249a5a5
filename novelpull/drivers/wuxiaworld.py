import json
from urllib.parse import urlparse

from .base import BaseDriver
from ..models import log, CatalogIdentifier, ChapterDescriptor, FetchContext, chapter_number_from_url
from ..errors import Result, ResultKind, NotFoundError
from ..core.session import PageResponse


class WuxiaWorldDriver(BaseDriver):
    name = "wuxiaworld"
    base_url = "https://www.wuxiaworld.com"
    domains = ("wuxiaworld.com",)
    content_selectors = ["#chapter-content", ".chapter-content", "div.chapter-body", "div[class*=chapter]"]
    remove_selectors = [".chapter-nav", ".ads", ".advertisement"]

    def slug_from_url(self, url: str) -> str:
        path = urlparse(url).path if url.startswith("http") else "/" + url.lstrip("/")
        if "/novel/" not in path:
            raise NotFoundError(f"Invalid novel URL '{url}'")
        slug = path.split("/novel/", 1)[1].split("/")[0].strip()
        if not slug:
            raise NotFoundError(f"Invalid novel URL '{url}'")
        return slug

    def landing_url(self, url: str) -> str:
        return f"{self.base_url}/novel/{self.slug_from_url(url)}"

    async def build_identifier(self, context: FetchContext, response: PageResponse, url: str) -> CatalogIdentifier:
        slug = self.slug_from_url(url)
        title = None
        total = 0

        # The JSON API carries cleaner metadata; the landing page is the fallback
        api = await context.client.get(f"{self.base_url}/api/novels/{slug}")
        if api.ok:
            try:
                meta = json.loads(api.text)
            except json.JSONDecodeError:
                meta = None
            if isinstance(meta, dict):
                title = meta.get("name") or None
                total = meta.get("chapterCount") or 0
        if not title:
            doc = response.document
            for selector in ("h1.novel-title", "h1"):
                tag = doc.select_one(selector)
                if tag and tag.get_text(strip=True):
                    title = tag.get_text(strip=True)
                    break
        if not title:
            raise NotFoundError(f"Could not find novel name for '{url}'")

        try:
            total = int(total)
        except (TypeError, ValueError):
            total = 0
        return CatalogIdentifier(source=self.name, url=self.landing_url(url), slug=slug,
                                 title=title, total_chapter_count=max(total, 0))

    async def fetch_bulk(self, context: FetchContext, identifier: CatalogIdentifier) -> Result:
        response = await context.client.get(f"{self.base_url}/api/novels/{identifier.slug}/chapters")
        failure = self.check_response(context, response, missing=ResultKind.ENDPOINT_NOT_FOUND)
        if failure: return failure
        try:
            payload = json.loads(response.text)
        except json.JSONDecodeError:
            # HTML where JSON was expected means the API is gone for this novel
            return Result.fail(ResultKind.ENDPOINT_NOT_FOUND, "chapter API did not return JSON")
        if not isinstance(payload, dict):
            return Result.fail(ResultKind.PARSE_ERROR, "chapter API returned a non-object")

        chapters = []
        for group in payload.get("items") or []:
            for j, row in enumerate((group or {}).get("chapterList") or []):
                chapter_slug = row.get("slug") or ""
                if not chapter_slug: continue
                name = row.get("name") or f"Chapter {j + 1}"
                unlocked = ((row.get("relatedUserInfo") or {}).get("isChapterUnlocked") or {}).get("value", True)
                if unlocked is False:
                    name = f"{name} 🔒"
                order = row.get("number")
                if not isinstance(order, (int, float)):
                    order = len(chapters) + 1
                chapters.append(ChapterDescriptor(
                    order=int(order), title=name,
                    url=f"{self.base_url}/novel/{identifier.slug}/{chapter_slug}",
                ))
        return Result.ok(chapters)

    async def fetch_page(self, context: FetchContext, identifier: CatalogIdentifier, page: int) -> Result:
        # The novel page lists every chapter link at once; there is no page 2
        if page > 1:
            return Result.ok([])
        response = await context.client.get(identifier.url)
        failure = self.check_response(context, response)
        if failure: return failure

        prefix = f"/novel/{identifier.slug}/"
        chapters, seen = [], set()
        for link in response.document.select(f"a[href*='{prefix}']"):
            url = self.absolute(link.get("href") or "")
            name = link.get_text(strip=True)
            if not name or url in seen or url.rstrip("/").endswith(f"/{identifier.slug}"):
                continue
            seen.add(url)
            order = chapter_number_from_url(url) or len(chapters) + 1
            chapters.append(ChapterDescriptor(order=order, title=name, url=url))
        log.info(f"Scraped {len(chapters)} chapter links from {identifier.url}")
        return Result.ok(chapters)
