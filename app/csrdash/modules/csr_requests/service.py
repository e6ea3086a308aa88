"""
Request status ledger.

Every status change on a CSR request is recorded as an immutable HistoryEntry
prepended to request.history (newest first). After any action:

- history[0].status == request.status
- history[0].timestamp == request.updated_at
- entries already in the history are never edited or removed

Only pending requests can be actioned, and the action form never offers
"approved": pending -> rejected | completed is the only reachable transition.
"approved" rows exist in legacy data and are displayed and counted as-is.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from app.csrdash.entities import Customer, CSRRequest, HistoryEntry, RequestStatus, RequestType

ACTIONABLE_STATUSES: tuple[RequestStatus, ...] = (
    RequestStatus.PENDING,
    RequestStatus.REJECTED,
    RequestStatus.COMPLETED,
)

UNKNOWN_EMAIL = "Unknown Email"
INITIAL_COMMENT = "Initial request received"


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


def validate_action(new_status: str | None, comment: str | None) -> list[ValidationError]:
    errs: list[ValidationError] = []
    if not (comment or "").strip():
        errs.append(ValidationError("comment", "Action description required."))
    try:
        status = RequestStatus((new_status or "").strip())
    except ValueError:
        status = None
    if status not in ACTIONABLE_STATUSES:
        errs.append(ValidationError("status", "Choose pending, rejected or completed."))
    return errs


def can_action(request: CSRRequest) -> bool:
    return request.status == RequestStatus.PENDING


def apply_action(
    request: CSRRequest,
    new_status: RequestStatus,
    actor_id: str,
    comment: str | None,
    *,
    now: datetime | None = None,
) -> HistoryEntry:
    """
    Record a status change on `request` and return the new history entry.

    No input validation here; callers run validate_action/can_action first.
    The history list is replaced, not mutated, so references to the previous
    list (and its frozen entries) are left untouched.
    """
    ts = now or datetime.utcnow()
    entry = HistoryEntry(
        timestamp=ts,
        status=RequestStatus(new_status),
        updated_by=actor_id,
        comment=comment,
    )
    request.history = [entry, *request.history]
    request.status = entry.status
    request.updated_at = ts
    return entry


def new_request(
    *,
    request_id: str,
    customer_id: str,
    request_type: RequestType,
    details: str,
    actor_id: str,
    now: datetime | None = None,
) -> CSRRequest:
    ts = now or datetime.utcnow()
    first = HistoryEntry(timestamp=ts, status=RequestStatus.PENDING, updated_by=actor_id, comment=INITIAL_COMMENT)
    return CSRRequest(
        id=request_id,
        customer_id=customer_id,
        request_type=RequestType(request_type),
        status=RequestStatus.PENDING,
        details=details,
        created_at=ts,
        updated_at=ts,
        history=[first],
    )


def next_request_id(existing_ids: Iterable[str]) -> str:
    highest = 0
    for rid in existing_ids:
        _, _, suffix = (rid or "").rpartition("-")
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"req-{highest + 1:03d}"


def hydrate_customer_emails(
    requests: Iterable[CSRRequest],
    lookup: Callable[[str], Customer | None],
) -> list[CSRRequest]:
    """Fill customer_email for display; each customer is looked up once."""
    cache: dict[str, str] = {}
    out: list[CSRRequest] = []
    for r in requests:
        if r.customer_id not in cache:
            c = lookup(r.customer_id)
            cache[r.customer_id] = c.email if c else UNKNOWN_EMAIL
        r.customer_email = cache[r.customer_id]
        out.append(r)
    return out


def status_counts(requests: Iterable[CSRRequest]) -> dict[str, int]:
    counts = {"all": 0, **{st.value: 0 for st in RequestStatus}}
    for r in requests:
        counts["all"] += 1
        counts[RequestStatus(r.status).value] += 1
    return counts


def filter_by_status(requests: Iterable[CSRRequest], status: str | None) -> list[CSRRequest]:
    status = (status or "all").strip().lower()
    if status == "all":
        return list(requests)
    return [r for r in requests if RequestStatus(r.status).value == status]


def sort_newest_first(requests: Iterable[CSRRequest]) -> list[CSRRequest]:
    return sorted(requests, key=lambda r: r.created_at, reverse=True)
