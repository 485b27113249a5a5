import soupsieve
from bs4 import Tag
from soupsieve import SelectorSyntaxError
from typing import Iterable, List, Optional

from ..models import log

AD_SELECTORS = [
    ".ads", ".adsbygoogle", "script", "style", ".ads-holder", ".ads-middle",
    "[id*='ads']", "[class*='ads']", ".hidden",
    "[style*='display:none']", "[style*='display: none']",
]

BLOCK_TAGS = ['p', 'div', 'section', 'blockquote', 'li']

def is_obfuscation_tag(tag: Tag) -> bool:
    # NovelFire injects junk elements named nf<random>, always longer than 5 chars
    name = tag.name or ""
    return len(name) > 5 and name.startswith("nf")

def remove_obfuscation_tags(root: Tag) -> int:
    junk = [el for el in root.find_all(True) if is_obfuscation_tag(el)]
    for el in junk:
        if not el.decomposed:
            el.decompose()
    return len(junk)

def is_valid_selector(selector: str) -> bool:
    try:
        soupsieve.compile(selector)
    except (SelectorSyntaxError, ValueError):
        return False
    return True

def valid_selectors(selectors: Iterable[str], where: str = "profile") -> List[str]:
    kept = []
    for selector in selectors:
        if isinstance(selector, str) and is_valid_selector(selector):
            kept.append(selector)
        else:
            log.warning(f"Dropping invalid selector '{selector}' in {where}")
    return kept

def remove_selectors(root: Tag, selectors: Iterable[str]) -> int:
    removed = 0
    for selector in selectors:
        try:
            matches = root.select(selector)
        except (SelectorSyntaxError, ValueError) as e:
            log.warning(f"Skipping invalid remove selector '{selector}': {e}")
            continue
        for el in matches:
            if not el.decomposed:
                el.decompose()
                removed += 1
    return removed

def contains_marker(text: str, markers: Iterable[str]) -> bool:
    return any(m and m in text for m in markers)

def drop_marker_blocks(root: Tag, markers: Iterable[str]) -> int:
    """Remove innermost content blocks whose markup contains a disallowed marker."""
    markers = [m for m in markers if m]
    if not markers: return 0
    dropped = 0
    for el in root.find_all(BLOCK_TAGS):
        if el.decomposed or el.find(BLOCK_TAGS) is not None:
            continue
        if contains_marker(str(el), markers):
            el.decompose()
            dropped += 1
    for node in list(root.children):
        if not isinstance(node, Tag) and contains_marker(str(node), markers):
            node.extract()
            dropped += 1
    return dropped

def filter_paragraphs(paragraphs: Iterable[str], markers: Iterable[str]) -> List[str]:
    markers = [m for m in markers if m]
    return [p for p in paragraphs if not contains_marker(p, markers)]

def wrap_paragraphs(paragraphs: Iterable[str]) -> str:
    return "".join(f"<p>{p}</p>" for p in paragraphs)

def inner_html(root: Optional[Tag]) -> str:
    if root is None: return ""
    return root.decode_contents().replace("&nbsp;", " ").replace("\xa0", " ").strip()

def paragraph_texts(root: Tag) -> List[str]:
    texts = [p.get_text(" ", strip=True).replace("\xa0", " ") for p in root.find_all('p')]
    texts = [t for t in texts if t]
    if texts:
        return texts
    text = root.get_text("\n").replace("\xa0", " ")
    return [line.strip() for line in text.splitlines() if line.strip()]
