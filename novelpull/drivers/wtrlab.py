import json
import re
from typing import Any, Dict
from urllib.parse import urlparse

from .base import BaseDriver
from ..models import (
    log, CatalogIdentifier, ChapterDescriptor, DecodeStrategy, FetchContext,
    chapter_number_from_url
)
from ..errors import Result, ResultKind, NotFoundError, ParseError
from ..core.session import PageResponse

CHAPTERS_PER_REQUEST = 500
READER_KEY = "IJAFUUxjM25hyzL2AZrn0wl7cESED6Ru"

_CHAPTER_SUFFIX_RE = re.compile(r"/chapter-\d+/?$")


def read_next_data(doc) -> Dict[str, Any]:
    """Parse the Next.js ``#__NEXT_DATA__`` block embedded in a page."""
    node = doc.select_one("#__NEXT_DATA__")
    if node is None:
        raise NotFoundError("Page has no __NEXT_DATA__ block")
    raw = node.string or node.get_text()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ParseError(f"__NEXT_DATA__ is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("__NEXT_DATA__ is not a JSON object")
    return data


def serie_from_next_data(data: Dict[str, Any]) -> Dict[str, Any]:
    try:
        serie = data["props"]["pageProps"]["serie"]
    except (KeyError, TypeError) as e:
        raise ParseError(f"__NEXT_DATA__ has no serie: {e}") from e
    if not isinstance(serie, dict) or not isinstance(serie.get("serie_data"), dict):
        raise ParseError("__NEXT_DATA__ serie has no serie_data")
    return serie


class WtrLabDriver(BaseDriver):
    name = "wtrlab"
    base_url = "https://wtr-lab.com"
    domains = ("wtr-lab.com",)
    paginated = False
    decode_strategy = DecodeStrategy.ENCRYPTED
    content_selectors = [".chapter-body"]
    reader_key = READER_KEY

    def novel_url(self, url: str) -> str:
        url = url if url.startswith("http") else self.absolute(url)
        return _CHAPTER_SUFFIX_RE.sub("", url.split("?")[0]).rstrip("/")

    def slug_from_url(self, url: str) -> str:
        path = urlparse(self.novel_url(url)).path.strip("/")
        slug = path.split("/")[-1] if path else ""
        if not slug:
            raise NotFoundError(f"No novel slug in '{url}'")
        return slug

    def landing_url(self, url: str) -> str:
        return self.novel_url(url)

    async def build_identifier(self, context: FetchContext, response: PageResponse, url: str) -> CatalogIdentifier:
        doc = response.document
        title = None
        for selector in (".title-wrap .text-uppercase", "h1.title", ".novel-title"):
            tag = doc.select_one(selector)
            if tag and tag.get_text(strip=True):
                title = tag.get_text(strip=True)
                break
        if not title:
            raise NotFoundError(f"Could not find title for '{url}'")

        serie_data = serie_from_next_data(read_next_data(doc))["serie_data"]
        raw_id = serie_data.get("raw_id")
        if raw_id is None:
            raise ParseError("serie_data has no raw_id")
        total = serie_data.get("raw_chapter_count") or serie_data.get("chapter_count") or 0
        try:
            total = int(total)
        except (TypeError, ValueError):
            total = 0

        return CatalogIdentifier(
            source=self.name, url=self.novel_url(url), slug=self.slug_from_url(url),
            title=title, total_chapter_count=max(total, 0), raw_id=str(raw_id),
            extra={"serie_id": serie_data.get("id"), "serie_slug": serie_data.get("slug")},
        )

    async def fetch_bulk(self, context: FetchContext, identifier: CatalogIdentifier) -> Result:
        if not identifier.raw_id:
            return Result.fail(ResultKind.ENDPOINT_NOT_FOUND, "no raw id")

        chapters = []
        total = identifier.total_chapter_count
        start = 1
        while True:
            end = start + CHAPTERS_PER_REQUEST - 1
            if total > 0:
                end = min(end, total)
            response = await context.client.get(
                f"{self.base_url}/api/chapters/{identifier.raw_id}?start={start}&end={end}")
            failure = self.check_response(context, response, missing=ResultKind.ENDPOINT_NOT_FOUND)
            if failure: return failure
            try:
                rows = json.loads(response.text).get("chapters")
            except (json.JSONDecodeError, AttributeError) as e:
                return Result.fail(ResultKind.PARSE_ERROR, f"chapter range {start}-{end} is not JSON: {e}")
            if not isinstance(rows, list):
                return Result.fail(ResultKind.PARSE_ERROR, f"chapter range {start}-{end} has no chapters array")

            for row in rows:
                try:
                    order = int(row["order"])
                except (KeyError, TypeError, ValueError):
                    log.debug(f"Skipping chapter row without order: {row}")
                    continue
                chapters.append(ChapterDescriptor(
                    order=order,
                    title=f"#{order} {row.get('title') or ''}".strip(),
                    url=f"{identifier.url}/chapter-{order}",
                    published_at=row.get("updated_at"),
                ))

            if total > 0 and end >= total:
                break
            if total <= 0 and len(rows) < CHAPTERS_PER_REQUEST:
                break
            start = end + 1
        return Result.ok(chapters)

    async def fetch_reader_body(self, context: FetchContext, url: str, backend: str) -> Result:
        response = await context.client.get(url)
        failure = self.check_response(context, response)
        if failure: return failure
        try:
            serie = serie_from_next_data(read_next_data(response.document))
        except NotFoundError as e:
            return Result.fail(ResultKind.NOT_FOUND, str(e))
        except ParseError as e:
            return Result.fail(ResultKind.PARSE_ERROR, str(e))

        chapter = serie.get("chapter") or {}
        serie_data = serie["serie_data"]
        raw_id = serie_data.get("raw_id")
        if raw_id is None and context.cache is not None:
            cached = context.cache.get(self.name, self.slug_from_url(url))
            raw_id = cached.raw_id if cached else None
        if chapter.get("id") is None or raw_id is None:
            return Result.fail(ResultKind.PARSE_ERROR, f"chapter or raw id missing on {url}")
        chapter_no = chapter.get("order") or chapter_number_from_url(url) or serie_data.get("slug")

        form = {
            "chapter_id": str(chapter["id"]),
            "chapter_no": str(chapter_no),
            "force_retry": "false",
            "language": context.options.language,
            "raw_id": str(raw_id),
            "retry": "false",
            "translate": backend,
        }
        reply = await context.client.post(f"{self.base_url}/api/reader/get", data=form, referer=url)
        failure = self.check_response(context, reply)
        if failure: return failure
        try:
            # a reply without a body (translation still queued) counts as empty
            body = json.loads(reply.text)["data"]["data"].get("body", "")
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            return Result.fail(ResultKind.PARSE_ERROR, f"reader reply has no data.data: {e}")
        if not isinstance(body, str):
            return Result.fail(ResultKind.PARSE_ERROR, "reader body is not a string")
        return Result.ok(body)
