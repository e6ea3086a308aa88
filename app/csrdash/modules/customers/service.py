from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from app.csrdash.entities import Purchase, Vehicle

_NAME_RE = re.compile(r"^[a-zA-Z\s]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_STREET_RE = re.compile(r"^[a-zA-Z0-9\s,.'-]{3,}$")
_STATE_RE = re.compile(r"^[A-Z]{2}$")
_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")

PURCHASES_PER_PAGE = 10
PURCHASE_SORT_FIELDS = ("date", "amount")
PURCHASE_FILTERS = ("all", "subscription", "paid")


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


def phone_digits(raw: str | None) -> str:
    return re.sub(r"\D", "", raw or "")


def format_phone(raw: str | None) -> str:
    digits = phone_digits(raw)
    if len(digits) != 10:
        return raw or ""
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"


def validate_customer_payload(payload: dict[str, Any]) -> list[ValidationError]:
    """Profile edit form: every field is required, then shape-checked."""
    errs: list[ValidationError] = []

    def _val(key: str) -> str:
        return (payload.get(key) or "").strip()

    labels = {
        "first_name": "First name",
        "last_name": "Last name",
        "email": "Email",
        "phone": "Phone",
        "street": "Street",
        "city": "City",
        "state": "State",
        "zip_code": "ZIP code",
    }
    missing = [k for k in labels if not _val(k)]
    for k in missing:
        errs.append(ValidationError(k, f"{labels[k]} is required."))

    checks = (
        ("first_name", lambda v: bool(_NAME_RE.match(v)), "First name may only contain letters and spaces."),
        ("last_name", lambda v: bool(_NAME_RE.match(v)), "Last name may only contain letters and spaces."),
        ("email", lambda v: bool(_EMAIL_RE.match(v)), "Email address is not valid."),
        ("phone", lambda v: len(phone_digits(v)) == 10, "Phone must have 10 digits."),
        ("street", lambda v: bool(_STREET_RE.match(v)), "Street must be at least 3 characters."),
        ("city", lambda v: bool(_NAME_RE.match(v)), "City may only contain letters and spaces."),
        ("state", lambda v: bool(_STATE_RE.match(v)), "State must be a 2-letter code, e.g. CA."),
        ("zip_code", lambda v: bool(_ZIP_RE.match(v)), "ZIP code must be 12345 or 12345-6789."),
    )
    for key, ok, message in checks:
        if key in missing:
            continue
        if not ok(_val(key)):
            errs.append(ValidationError(key, message))
    return errs


def user_fields_from_payload(payload: dict[str, Any]) -> dict[str, str]:
    return {
        "first_name": (payload.get("first_name") or "").strip(),
        "last_name": (payload.get("last_name") or "").strip(),
        "email": (payload.get("email") or "").strip().lower(),
        "phone": phone_digits(payload.get("phone")),
    }


def address_fields_from_payload(payload: dict[str, Any]) -> dict[str, str]:
    return {
        "street": (payload.get("street") or "").strip(),
        "city": (payload.get("city") or "").strip(),
        "state": (payload.get("state") or "").strip(),
        "zip_code": (payload.get("zip_code") or "").strip(),
    }


# ---------------------------------------------------------------------------
# Purchase history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PurchaseCounts:
    all: int
    subscription: int
    paid: int


def purchase_counts(purchases: Iterable[Purchase]) -> PurchaseCounts:
    total = sub = 0
    for p in purchases:
        total += 1
        if p.covered_by_subscription:
            sub += 1
    return PurchaseCounts(all=total, subscription=sub, paid=total - sub)


def purchase_history(
    purchases: Iterable[Purchase],
    *,
    sort: str = "date",
    direction: str = "desc",
    kind: str = "all",
) -> list[Purchase]:
    """
    Sort then filter, the order the history tab applies them.
    Unknown sort/filter values fall back to date/desc/all.
    """
    if sort not in PURCHASE_SORT_FIELDS:
        sort = "date"
    if kind not in PURCHASE_FILTERS:
        kind = "all"
    key = (lambda p: p.amount) if sort == "amount" else (lambda p: p.purchase_date)
    rows = sorted(purchases, key=key, reverse=(direction != "asc"))
    if kind == "subscription":
        return [p for p in rows if p.covered_by_subscription]
    if kind == "paid":
        return [p for p in rows if not p.covered_by_subscription]
    return rows


def vehicle_label(purchase: Purchase, vehicles_by_id: dict[str, Vehicle]) -> str:
    v = vehicles_by_id.get(purchase.vehicle_id or "")
    if v:
        return v.display_name
    return purchase.vehicle_id or "Unknown Vehicle"
