from novelpull.models import ChapterDescriptor
from novelpull.core.merge import merge_chapters, ChapterAccumulator

def ch(order, url=None, title=None):
    return ChapterDescriptor(order=order, title=title or f"Chapter {order}", url=url or f"https://x.test/c/{order}")

def test_merge_dedup_first_wins():
    a = [ch(1, title="first"), ch(2)]
    b = [ch(1, title="second"), ch(3)]
    merged = merge_chapters(a, b)
    assert [c.order for c in merged] == [1, 2, 3]
    assert merged[0].title == "first"

def test_merge_is_idempotent():
    chapters = [ch(3), ch(1), ch(2), ch(1)]
    once = merge_chapters(chapters)
    assert merge_chapters(once) == once
    assert merge_chapters(once, once) == once

def test_merge_orders_and_is_stable():
    tied_a = ch(5, url="https://x.test/a")
    tied_b = ch(5, url="https://x.test/b")
    merged = merge_chapters([ch(9), tied_a, ch(0), tied_b])
    assert [c.order for c in merged] == [0, 5, 5, 9]
    assert merged[1] is tied_a and merged[2] is tied_b

def test_merge_empty():
    assert merge_chapters() == []
    assert merge_chapters([], []) == []

def test_accumulator_monotonic():
    acc = ChapterAccumulator()
    assert acc.add_all([ch(2), ch(1)]) == 2
    assert acc.add_all([ch(1), ch(3)]) == 1
    assert len(acc) == 3
    assert "https://x.test/c/3" in acc
    assert [c.order for c in acc.snapshot()] == [1, 2, 3]
