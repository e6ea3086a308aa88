from app.csrdash.search import fuzzy_search, paginate, similarity
from app.csrdash.seed import seed_data

KEYS = ("first_name", "last_name", "email", "phone")


def _names(rows):
    return [c.full_name for c in rows]


def test_empty_query_returns_everything_in_order():
    customers = seed_data().customers
    assert list(fuzzy_search(customers, "", KEYS)) == customers
    assert list(fuzzy_search(customers, None, KEYS)) == customers


def test_typo_still_matches():
    out = list(fuzzy_search(seed_data().customers, "jonhson", KEYS))
    assert _names(out) == ["Alice Johnson"]


def test_substring_is_exact_hit():
    assert similarity("mart", "bob martinez") == 1.0
    out = list(fuzzy_search(seed_data().customers, "MARTINEZ", KEYS))
    assert _names(out) == ["Bob Martinez"]


def test_unrelated_query_matches_nothing():
    assert list(fuzzy_search(seed_data().customers, "qqqqxxxx", KEYS)) == []


def test_threshold_one_matches_anything():
    customers = seed_data().customers
    assert len(list(fuzzy_search(customers, "qqqqxxxx", KEYS, threshold=1.0))) == len(customers)


def test_callable_keys():
    reqs = seed_data().requests
    out = list(fuzzy_search(reqs, "billing issue", (lambda r: r.request_type.label,)))
    assert [r.id for r in out] == ["req-004"]


def test_paginate_clamps_page():
    rows = list(range(23))
    p = paginate(rows, 1, 10)
    assert p.items == list(range(10))
    assert p.pages == 3
    assert not p.has_prev and p.has_next
    assert (p.first_index, p.last_index) == (1, 10)

    p = paginate(rows, "99", 10)
    assert p.page == 3
    assert p.items == [20, 21, 22]
    assert (p.first_index, p.last_index) == (21, 23)

    p = paginate(rows, "junk", 10)
    assert p.page == 1


def test_paginate_empty():
    p = paginate([], 2, 10)
    assert p.page == 1
    assert p.pages == 1
    assert p.items == []
    assert p.first_index == 0
