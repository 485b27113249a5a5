import threading
from typing import Iterable, List

from ..models import ChapterDescriptor


def merge_chapters(*sequences: Iterable[ChapterDescriptor]) -> List[ChapterDescriptor]:
    """Deduplicate by url (first occurrence wins) and sort by order.

    ``sorted`` is stable, so chapters sharing an order keep their input order.
    """
    seen = set()
    merged = []
    for sequence in sequences:
        for chapter in sequence:
            if chapter.url in seen:
                continue
            seen.add(chapter.url)
            merged.append(chapter)
    return sorted(merged, key=lambda c: c.order)


class ChapterAccumulator:
    """Lock-guarded dedup set fed by concurrent page fetches.

    Entries are only ever added, so a failure later in the fetch cannot take
    back chapters merged earlier.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._seen = set()
        self._chapters: List[ChapterDescriptor] = []

    def add_all(self, chapters: Iterable[ChapterDescriptor]) -> int:
        added = 0
        with self._lock:
            for chapter in chapters:
                if chapter.url in self._seen:
                    continue
                self._seen.add(chapter.url)
                self._chapters.append(chapter)
                added += 1
        return added

    def snapshot(self) -> List[ChapterDescriptor]:
        with self._lock:
            return merge_chapters(self._chapters)

    def __len__(self):
        with self._lock:
            return len(self._chapters)

    def __contains__(self, url):
        with self._lock:
            return url in self._seen
