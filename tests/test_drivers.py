import json
import aiohttp
import pytest
from aioresponses import aioresponses

from novelpull.core.bulk import BulkListFetcher
from novelpull.core.paginator import PaginatedListFetcher
from novelpull.core.resolver import CatalogResolver
from novelpull.drivers.novelfire import NovelFireDriver
from novelpull.drivers.wtrlab import WtrLabDriver
from novelpull.drivers.wuxiaworld import WuxiaWorldDriver
from novelpull.errors import ResultKind, NotFoundError, ParseError, RateLimitedError
from novelpull.models import CatalogIdentifier, RATE_LIMIT_MARKER

NF_LANDING = "https://novelfire.net/book/sword-saint"
NF_BULK = "https://novelfire.net/listChapterDataAjax?post_id=4242"

def novelfire_landing(total=250):
    return f"""<html><body>
    <div class="cover"><img alt="Sword Saint (cover)"></div>
    <h1 class="novel-title">Sword Saint</h1>
    <div id="novel-report" report-post_id="4242"></div>
    <div class="header-stats"><span><i class="icon-book-open"></i>{total} Chapters</span></div>
    </body></html>"""

def chapter_title(n):
    return "Dawn &amp; Dusk" if n == 1 else f"Chapter {n}"

def novelfire_bulk(total=250):
    rows = [{"n_sort": n, "title": chapter_title(n), "slug": f"chapter-{n}"} for n in range(1, total + 1)]
    return {"data": rows}

def novelfire_page(first, last):
    items = "".join(
        f'<li><a href="/book/sword-saint/chapter-{n}" title="{chapter_title(n)}">'
        f'<strong class="chapter-title">x</strong></a><time class="chapter-update">2 days ago</time></li>'
        for n in range(first, last + 1))
    return f'<html><body><ul class="chapter-list">{items}</ul></body></html>'

def essentials(chapters):
    return [(c.order, c.title, c.url) for c in chapters]

@pytest.mark.asyncio
async def test_novelfire_resolve(make_context):
    with aioresponses() as m:
        m.get(NF_LANDING, status=200, body=novelfire_landing())
        async with aiohttp.ClientSession() as session:
            context = make_context(session)
            ident = await CatalogResolver(context, NovelFireDriver()).resolve(NF_LANDING + "/chapter-3")
            again = await CatalogResolver(context, NovelFireDriver()).resolve(NF_LANDING)

    assert ident.title == "Sword Saint"
    assert ident.slug == "sword-saint"
    assert ident.post_id == "4242"
    assert ident.total_chapter_count == 250
    # second lookup comes from the job cache (only one landing response was mocked)
    assert again is ident

@pytest.mark.asyncio
async def test_novelfire_resolve_missing_title(make_context):
    with aioresponses() as m:
        m.get(NF_LANDING, status=200, body="<html><body><p>empty</p></body></html>")
        async with aiohttp.ClientSession() as session:
            with pytest.raises(NotFoundError):
                await CatalogResolver(make_context(session), NovelFireDriver()).resolve(NF_LANDING)

@pytest.mark.asyncio
async def test_resolve_rate_limited(make_context):
    with aioresponses() as m:
        m.get(NF_LANDING, status=200, body=RATE_LIMIT_MARKER, repeat=True)
        async with aiohttp.ClientSession() as session:
            with pytest.raises(RateLimitedError):
                await CatalogResolver(make_context(session), NovelFireDriver()).resolve(NF_LANDING)

@pytest.mark.asyncio
async def test_novelfire_bulk(make_context):
    ident = CatalogIdentifier(source="novelfire", url=NF_LANDING, slug="sword-saint", title="Sword Saint",
                              total_chapter_count=3, post_id="4242")
    with aioresponses() as m:
        m.get(NF_BULK, status=200, payload=novelfire_bulk(3))
        async with aiohttp.ClientSession() as session:
            result = await BulkListFetcher(make_context(session), NovelFireDriver()).fetch(ident)

    assert result.is_ok
    assert essentials(result.value) == [
        (1, "Dawn & Dusk", "https://novelfire.net/book/sword-saint/chapter-1"),
        (2, "Chapter 2", "https://novelfire.net/book/sword-saint/chapter-2"),
        (3, "Chapter 3", "https://novelfire.net/book/sword-saint/chapter-3"),
    ]

@pytest.mark.asyncio
async def test_novelfire_bulk_missing_endpoint(make_context):
    ident = CatalogIdentifier(source="novelfire", url=NF_LANDING, slug="sword-saint", title="S", post_id="4242")
    with aioresponses() as m:
        m.get(NF_BULK, status=200, body="<html><h1>Page Not Found 404</h1></html>")
        async with aiohttp.ClientSession() as session:
            result = await BulkListFetcher(make_context(session), NovelFireDriver()).fetch(ident)
    assert result.kind is ResultKind.ENDPOINT_NOT_FOUND

@pytest.mark.asyncio
async def test_novelfire_bulk_empty_is_ok(make_context):
    ident = CatalogIdentifier(source="novelfire", url=NF_LANDING, slug="sword-saint", title="S", post_id="4242")
    with aioresponses() as m:
        m.get(NF_BULK, status=200, payload={"data": []})
        async with aiohttp.ClientSession() as session:
            result = await BulkListFetcher(make_context(session), NovelFireDriver()).fetch(ident)
    assert result.is_ok and result.value == []

def test_novelfire_page_rows():
    from bs4 import BeautifulSoup
    doc = BeautifulSoup(novelfire_page(5, 7), "lxml")
    chapters = NovelFireDriver().parse_chapter_rows(doc)
    assert [c.order for c in chapters] == [5, 6, 7]
    assert chapters[0].url == "https://novelfire.net/book/sword-saint/chapter-5"
    assert chapters[0].published_at == "2 days ago"

@pytest.mark.asyncio
async def test_bulk_and_paginated_lists_match(make_context):
    driver = NovelFireDriver()
    ident = CatalogIdentifier(source="novelfire", url=NF_LANDING, slug="sword-saint", title="Sword Saint",
                              total_chapter_count=250, post_id="4242")
    base = "https://novelfire.net/book/sword-saint/chapters?page="
    with aioresponses() as m:
        m.get(NF_BULK, status=200, payload=novelfire_bulk(250))
        m.get(base + "1", status=200, body=novelfire_page(1, 100))
        m.get(base + "2", status=200, body=novelfire_page(101, 200))
        m.get(base + "3", status=200, body=novelfire_page(201, 250))
        async with aiohttp.ClientSession() as session:
            context = make_context(session)
            bulk = await BulkListFetcher(context, driver).fetch(ident)
            pager = PaginatedListFetcher(lambda page: driver.fetch_page(context, ident, page),
                                         controller=context.controller, page_size=driver.page_size)
            paged, complete = await pager.fetch(ident.total_chapter_count)

    assert complete
    assert len(paged) == 250
    assert essentials(bulk.value) == essentials(paged)

WTR_NOVEL = "https://wtr-lab.com/en/serie-123/sword-saint"

def wtr_landing(next_data=None, raw=None):
    if raw is None:
        raw = json.dumps(next_data if next_data is not None else {"props": {"pageProps": {"serie": {
            "serie_data": {"id": 123, "raw_id": 9001, "slug": "sword-saint", "raw_chapter_count": 700},
        }}}})
    return f"""<html><body><h1 class="title">Sword Saint</h1>
    <script id="__NEXT_DATA__" type="application/json">{raw}</script></body></html>"""

@pytest.mark.asyncio
async def test_wtrlab_resolve(make_context):
    with aioresponses() as m:
        m.get(WTR_NOVEL, status=200, body=wtr_landing())
        async with aiohttp.ClientSession() as session:
            ident = await CatalogResolver(make_context(session), WtrLabDriver()).resolve(WTR_NOVEL + "/chapter-4")
    assert ident.title == "Sword Saint"
    assert ident.raw_id == "9001"
    assert ident.total_chapter_count == 700
    assert ident.url == WTR_NOVEL

@pytest.mark.asyncio
async def test_wtrlab_resolve_without_next_data(make_context):
    with aioresponses() as m:
        m.get(WTR_NOVEL, status=200, body='<html><body><h1 class="title">Sword Saint</h1></body></html>')
        async with aiohttp.ClientSession() as session:
            with pytest.raises(NotFoundError):
                await CatalogResolver(make_context(session), WtrLabDriver()).resolve(WTR_NOVEL)

@pytest.mark.asyncio
async def test_wtrlab_resolve_malformed_next_data(make_context):
    with aioresponses() as m:
        m.get(WTR_NOVEL, status=200, body=wtr_landing(raw="{not json"))
        async with aiohttp.ClientSession() as session:
            with pytest.raises(ParseError):
                await CatalogResolver(make_context(session), WtrLabDriver()).resolve(WTR_NOVEL)

@pytest.mark.asyncio
async def test_wtrlab_resolve_missing_keys(make_context):
    with aioresponses() as m:
        m.get(WTR_NOVEL, status=200, body=wtr_landing({"props": {"pageProps": {}}}))
        async with aiohttp.ClientSession() as session:
            with pytest.raises(ParseError):
                await CatalogResolver(make_context(session), WtrLabDriver()).resolve(WTR_NOVEL)

@pytest.mark.asyncio
async def test_wtrlab_bulk_in_ranges(make_context):
    ident = CatalogIdentifier(source="wtrlab", url=WTR_NOVEL, slug="sword-saint", title="Sword Saint",
                              total_chapter_count=700, raw_id="9001")

    def rows(start, end):
        return {"chapters": [{"order": n, "title": f"Name {n}", "updated_at": "2024-01-01"}
                             for n in range(start, end + 1)]}

    with aioresponses() as m:
        m.get("https://wtr-lab.com/api/chapters/9001?start=1&end=500", status=200, payload=rows(1, 500))
        m.get("https://wtr-lab.com/api/chapters/9001?start=501&end=700", status=200, payload=rows(501, 700))
        async with aiohttp.ClientSession() as session:
            result = await BulkListFetcher(make_context(session), WtrLabDriver()).fetch(ident)

    assert result.is_ok
    assert len(result.value) == 700
    first = result.value[0]
    assert first.title == "#1 Name 1"
    assert first.url == f"{WTR_NOVEL}/chapter-1"
    assert result.value[-1].order == 700

@pytest.mark.asyncio
async def test_wuxiaworld_bulk_marks_locked(make_context):
    ident = CatalogIdentifier(source="wuxiaworld", url="https://www.wuxiaworld.com/novel/mga",
                              slug="mga", title="MGA")
    payload = {"items": [{"chapterList": [
        {"slug": "mga-chapter-1", "name": "Chapter 1", "number": 1},
        {"slug": "mga-chapter-2", "name": "Chapter 2", "number": 2,
         "relatedUserInfo": {"isChapterUnlocked": {"value": False}}},
    ]}]}
    with aioresponses() as m:
        m.get("https://www.wuxiaworld.com/api/novels/mga/chapters", status=200, payload=payload)
        async with aiohttp.ClientSession() as session:
            result = await BulkListFetcher(make_context(session), WuxiaWorldDriver()).fetch(ident)
    assert [c.title for c in result.value] == ["Chapter 1", "Chapter 2 🔒"]
    assert result.value[1].url == "https://www.wuxiaworld.com/novel/mga/mga-chapter-2"

@pytest.mark.asyncio
async def test_wuxiaworld_html_api_means_no_endpoint(make_context):
    ident = CatalogIdentifier(source="wuxiaworld", url="https://www.wuxiaworld.com/novel/mga",
                              slug="mga", title="MGA")
    with aioresponses() as m:
        m.get("https://www.wuxiaworld.com/api/novels/mga/chapters", status=200, body="<html>app shell</html>")
        async with aiohttp.ClientSession() as session:
            result = await BulkListFetcher(make_context(session), WuxiaWorldDriver()).fetch(ident)
    assert result.kind is ResultKind.ENDPOINT_NOT_FOUND
