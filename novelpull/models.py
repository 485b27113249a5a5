import os
import re
import base64
import binascii
import logging
import aiohttp
from enum import Enum
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Tuple

# --- Constants ---
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=45)
MAX_RETRIES = 3
RETRY_DELAY = 2.0

# Rate-limit pacing observed on the supported sources
RATE_LIMIT_MAX_ATTEMPTS = 3
RATE_LIMIT_DELAY = 3.5
BATCH_SIZE = 5
PAGE_SIZE = 100
MAX_SEQUENTIAL_PAGES = 100

RATE_LIMIT_MARKER = "You are being rate limited"
ENDPOINT_MISSING_MARKER = "Page Not Found 404"
DEFAULT_DISALLOWED_MARKERS = ["window._taboola", "googletag", "adsbygoogle"]

USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'

CHAPTER_NUMBER_RE = re.compile(r"chapter-(\d+)")

# --- Logging ---
_LOGLEVEL = os.getenv("LOGLEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, _LOGLEVEL, logging.INFO),
                    format='%(asctime)s - %(levelname)s - %(message)s')
log = logging.getLogger(__name__)

# --- Data Structures ---

class ExhaustionPolicy(Enum):
    """What a list fetch does once a batch runs out of rate-limit retries."""
    DISCARD = "discard"
    RETAIN = "retain"

class DecodeStrategy(Enum):
    PLAIN_HTML = "plain"
    STRIP_ADS = "strip_ads"
    ENCRYPTED = "encrypted"

class PayloadKind(Enum):
    PLAIN_HTML = "plain"
    ENCRYPTED_SINGLE = "str"
    ENCRYPTED_ARRAY = "arr"

@dataclass
class AcquisitionOptions:
    """Configuration passed from CLI or Server to the acquisition job."""
    page_size: int = PAGE_SIZE
    batch_size: int = BATCH_SIZE
    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS
    retry_delay: float = RATE_LIMIT_DELAY
    max_sequential_pages: int = MAX_SEQUENTIAL_PAGES
    exhaustion_policy: ExhaustionPolicy = ExhaustionPolicy.DISCARD
    fallback_on_empty_bulk: bool = True
    decode_concurrency: int = 4
    language: str = "en"
    translation_backends: List[str] = field(default_factory=lambda: ["web", "ai"])

@dataclass
class SiteProfile:
    name: str
    domain_patterns: List[str]
    driver_alias: Optional[str] = None
    content_selector: Optional[str] = None
    remove_selectors: List[str] = field(default_factory=list)
    disallowed_markers: List[str] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    batch_size: Optional[int] = None
    max_attempts: Optional[int] = None
    retry_delay: Optional[float] = None

@dataclass
class FetchContext:
    """State shared by the driver calls of one acquisition job."""
    client: Any
    controller: Any
    options: AcquisitionOptions
    profile: Optional[SiteProfile] = None
    cache: Any = None

    @property
    def disallowed_markers(self) -> List[str]:
        markers = list(DEFAULT_DISALLOWED_MARKERS)
        if self.profile and self.profile.disallowed_markers:
            markers.extend(self.profile.disallowed_markers)
        return markers

@dataclass(frozen=True)
class CatalogIdentifier:
    """Source-assigned ids for one novel, resolved once per job."""
    source: str
    url: str
    slug: str
    title: str
    total_chapter_count: int = 0
    post_id: Optional[str] = None
    raw_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

@dataclass(frozen=True)
class ChapterDescriptor:
    order: int
    title: str
    url: str
    published_at: Optional[str] = None

@dataclass
class FetchBatch:
    pages: List[int]
    attempt: int = 0

    @property
    def page_range(self) -> Tuple[int, int]:
        return (self.pages[0], self.pages[-1])

@dataclass
class RetryState:
    max_attempts: int
    delay: float
    attempts_used: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts_used >= self.max_attempts

    def record_attempt(self):
        if self.exhausted:
            raise RuntimeError(f"Retry budget of {self.max_attempts} already spent")
        self.attempts_used += 1

@dataclass(frozen=True)
class ContentPayload:
    kind: PayloadKind
    raw: str

    @classmethod
    def classify(cls, raw: str) -> "ContentPayload":
        if raw.startswith("arr:"):
            return cls(PayloadKind.ENCRYPTED_ARRAY, raw)
        if raw.startswith("str:"):
            return cls(PayloadKind.ENCRYPTED_SINGLE, raw)
        if looks_like_envelope(raw):
            return cls(PayloadKind.ENCRYPTED_SINGLE, raw)
        return cls(PayloadKind.PLAIN_HTML, raw)

@dataclass(frozen=True)
class DecodedContent:
    paragraphs: Tuple[str, ...]
    html: str

    @property
    def is_empty(self) -> bool:
        return not self.paragraphs and not self.html.strip()

@dataclass
class CatalogListing:
    identifier: CatalogIdentifier
    chapters: List[ChapterDescriptor]
    strategy: str
    complete: bool = True

# --- Helper Functions ---

ENVELOPE_IV_LENGTH = 12

def _strict_b64(field: str) -> Optional[bytes]:
    try:
        return base64.b64decode(field, validate=True)
    except (binascii.Error, ValueError):
        return None

def looks_like_envelope(raw: str) -> bool:
    """Untagged envelopes are three strict base64 fields joined by colons, the first a 12-byte iv."""
    if not raw: return False
    parts = raw.strip().split(":")
    if len(parts) != 3:
        return False
    # validate=True rejects whitespace and any non-alphabet character
    decoded = [_strict_b64(p) for p in parts]
    if any(not d for d in decoded):
        return False
    return len(decoded[0]) == ENVELOPE_IV_LENGTH

def page_count(total: int, page_size: int) -> int:
    if total <= 0 or page_size <= 0:
        return 0
    return (total + page_size - 1) // page_size

def chapter_number_from_url(url: str) -> Optional[int]:
    match = CHAPTER_NUMBER_RE.search(url or "")
    return int(match.group(1)) if match else None

def digits_only(text: Optional[str]) -> int:
    if not text: return 0
    cleaned = re.sub(r"[^0-9]", "", text)
    return int(cleaned) if cleaned else 0

def parse_chapter_spec(spec: str) -> Optional[List[int]]:
    if not spec: return None
    orders = set()
    for part in spec.split(','):
        part = part.strip()
        if not part: continue
        if '-' in part:
            try:
                start, end = part.split('-')
                start, end = int(start), int(end)
            except ValueError:
                continue
            if start > end: start, end = end, start
            orders.update(range(start, end + 1))
        else:
            try:
                orders.add(int(part))
            except ValueError:
                continue
    if not orders: return None
    return sorted(o for o in orders if o > 0)

def chapter_to_dict(chapter: ChapterDescriptor) -> Dict[str, Any]:
    return {
        "order": chapter.order,
        "title": chapter.title,
        "url": chapter.url,
        "published_at": chapter.published_at,
    }

def listing_to_dict(listing: CatalogListing) -> Dict[str, Any]:
    ident = listing.identifier
    return {
        "source": ident.source,
        "url": ident.url,
        "slug": ident.slug,
        "title": ident.title,
        "total_chapter_count": ident.total_chapter_count,
        "strategy": listing.strategy,
        "complete": listing.complete,
        "chapters": [chapter_to_dict(c) for c in listing.chapters],
    }
