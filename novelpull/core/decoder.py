from typing import Optional

from bs4 import BeautifulSoup, Tag

from ..models import log, DecodeStrategy, DecodedContent, ContentPayload, PayloadKind, FetchContext
from ..errors import Result, ResultKind, DecryptError, ParseError, TransportError
from ..drivers.base import BaseDriver
from ..utils.formatting import (
    AD_SELECTORS, remove_obfuscation_tags, remove_selectors, drop_marker_blocks,
    filter_paragraphs, wrap_paragraphs, inner_html, paragraph_texts
)
from .envelope import decrypt_envelope


class ContentDecoder:
    """Fetches one chapter body and turns it into clean paragraphs.

    Every failure comes back as a Result scoped to that chapter; nothing
    here touches other chapters or the merged chapter list.
    """

    def __init__(self, context: FetchContext, driver: BaseDriver):
        self.context = context
        self.driver = driver

    async def decode(self, url: str, strategy: Optional[DecodeStrategy] = None) -> Result:
        strategy = strategy or self.driver.decode_strategy
        try:
            if strategy is DecodeStrategy.ENCRYPTED:
                result = await self._decode_encrypted(url)
            else:
                result = await self.context.controller.run(
                    lambda attempt: self._decode_html(url, strategy), label=f"chapter {url}")
        except TransportError as e:
            result = Result.fail(ResultKind.TRANSPORT_ERROR, str(e))
        if not result.is_ok:
            log.warning(f"Chapter {url} failed ({result.kind.value}): {result.message}")
        return result

    async def _decode_html(self, url: str, strategy: DecodeStrategy) -> Result:
        response = await self.context.client.get(url)
        failure = self.driver.check_response(self.context, response)
        if failure: return failure
        root = self.driver.extract_content(response.document, self.context)
        if root is None:
            return Result.fail(ResultKind.NOT_FOUND, f"no content element on {url}")
        return Result.ok(self.clean_html(root, strategy))

    def clean_html(self, root: Tag, strategy: DecodeStrategy) -> DecodedContent:
        # markers usually sit in inline scripts, so check before scripts go
        drop_marker_blocks(root, self.context.disallowed_markers)
        remove_selectors(root, ["script", "style"])
        if strategy is DecodeStrategy.STRIP_ADS:
            junk = remove_obfuscation_tags(root)
            if junk:
                log.debug(f"Removed {junk} obfuscation elements")
            remove_selectors(root, AD_SELECTORS)
        extra = list(self.driver.remove_selectors)
        if self.context.profile:
            extra.extend(self.context.profile.remove_selectors)
        remove_selectors(root, extra)
        return DecodedContent(paragraphs=tuple(paragraph_texts(root)), html=inner_html(root))

    async def _decode_encrypted(self, url: str) -> Result:
        # primary backend plus at most one alternate
        backends = (self.context.options.translation_backends or ["web"])[:2]
        result = None
        for i, backend in enumerate(backends):
            result = await self.context.controller.run(
                lambda attempt, b=backend: self._decode_envelope(url, b), label=f"chapter {url} ({backend})")
            if not result.is_ok or result.value.paragraphs:
                return result
            if i + 1 < len(backends):
                log.info(f"No paragraphs from '{backend}' for {url}; trying '{backends[i + 1]}'.")
        return result

    async def _decode_envelope(self, url: str, backend: str) -> Result:
        reply = await self.driver.fetch_reader_body(self.context, url, backend)
        if not reply.is_ok:
            return reply
        body = reply.value or ""
        if not body.strip():
            return Result.ok(DecodedContent(paragraphs=(), html=""))

        payload = ContentPayload.classify(body)
        if payload.kind is PayloadKind.PLAIN_HTML:
            soup = BeautifulSoup(body, 'lxml')
            return Result.ok(self.clean_html(soup.body or soup, DecodeStrategy.STRIP_ADS))

        if not self.driver.reader_key:
            return Result.fail(ResultKind.DECRYPT_ERROR, f"{self.driver.name} has no reader key")
        try:
            paragraphs = decrypt_envelope(payload.raw, self.driver.reader_key)
        except DecryptError as e:
            return Result.fail(ResultKind.DECRYPT_ERROR, str(e))
        except ParseError as e:
            return Result.fail(ResultKind.PARSE_ERROR, str(e))

        paragraphs = filter_paragraphs(paragraphs, self.context.disallowed_markers)
        return Result.ok(DecodedContent(paragraphs=tuple(paragraphs), html=wrap_paragraphs(paragraphs)))
