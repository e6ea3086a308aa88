"""
Approximate text search and pagination over already-fetched lists.
"""

from __future__ import annotations

import difflib
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

DEFAULT_THRESHOLD = 0.3

KeyFn = Callable[[Any], Any]


def _norm(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).lower().split())


def _windows(text: str, n: int) -> Iterator[str]:
    # Slices one shorter/longer than the query so a single dropped or extra
    # character still lines up.
    if len(text) <= n + 1:
        yield text
        return
    for size in (n - 1, n, n + 1):
        if size < 1:
            continue
        for i in range(len(text) - size + 1):
            yield text[i : i + size]


def similarity(query_norm: str, candidate_norm: str) -> float:
    """
    1.0 for an exact or substring hit, otherwise the best SequenceMatcher
    ratio between the query and any query-sized window of the candidate.
    """
    if not query_norm or not candidate_norm:
        return 0.0
    if query_norm in candidate_norm:
        return 1.0
    # seq2 is the one SequenceMatcher caches, so the query goes there.
    sm = difflib.SequenceMatcher(None, b=query_norm)
    best = 0.0
    for w in _windows(candidate_norm, len(query_norm)):
        sm.set_seq1(w)
        if sm.real_quick_ratio() <= best or sm.quick_ratio() <= best:
            continue
        best = max(best, sm.ratio())
        if best == 1.0:
            break
    return best


def _key_fns(keys: Sequence[str | KeyFn]) -> list[KeyFn]:
    out: list[KeyFn] = []
    for k in keys:
        if callable(k):
            out.append(k)
        else:
            out.append(lambda item, _attr=k: getattr(item, _attr, None))
    return out


def fuzzy_search(
    items: Iterable[T],
    query: str | None,
    keys: Sequence[str | KeyFn],
    *,
    threshold: float = DEFAULT_THRESHOLD,
) -> Iterator[T]:
    """
    Yield items whose best key matches `query` within `threshold`
    (0.0 = exact, 1.0 = anything), best matches first. Ties keep input order.
    An empty query yields every item unchanged.
    """
    q = _norm(query)
    if not q:
        yield from items
        return
    fns = _key_fns(keys)
    scored: list[tuple[float, int, T]] = []
    for idx, item in enumerate(items):
        best = max((similarity(q, _norm(fn(item))) for fn in fns), default=0.0)
        if 1.0 - best <= threshold:
            scored.append((best, idx, item))
    scored.sort(key=lambda t: (-t[0], t[1]))
    for _, _, item in scored:
        yield item


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    page: int
    per_page: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.per_page))

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def first_index(self) -> int:
        return 0 if self.total == 0 else (self.page - 1) * self.per_page + 1

    @property
    def last_index(self) -> int:
        return min(self.page * self.per_page, self.total)


def paginate(items: Iterable[T], page: int | str | None, per_page: int) -> Page[T]:
    rows = list(items)
    try:
        p = int(page or 1)
    except (TypeError, ValueError):
        p = 1
    per_page = max(1, int(per_page))
    last = max(1, -(-len(rows) // per_page))
    p = min(max(p, 1), last)
    start = (p - 1) * per_page
    return Page(items=rows[start : start + per_page], page=p, per_page=per_page, total=len(rows))
