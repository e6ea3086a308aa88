"""
Data access facade.

Views talk to a DataAPI and only ever see the dataclasses from
app.csrdash.entities. Two backends satisfy the same contract:

- MockAPI: in-memory, seeded from app.csrdash.seed (DATA_BACKEND=memory)
- SqlAPI: SQLAlchemy session over the snake_case tables (DATA_BACKEND=sql)

Contract:
- lookups by id/email return None when nothing matches; list lookups return []
- mutations that name a missing record return None
- requests and subscriptions carry `version`; a mutation given an
  `expected_version` that no longer matches raises ConflictError, and every
  successful write bumps the version
- store failures raise DataAPIError with the underlying message
- SqlAPI never commits; the caller owns the transaction
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from flask import current_app, g
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from app.csrdash.entities import (
    Address,
    BankTransferPayment,
    BillingFrequency,
    BillingInfo,
    CardPayment,
    CarWashLocation,
    Customer,
    CSRRequest,
    DeleteResult,
    Discount,
    HistoryEntry,
    NewSubscription,
    NewVehicle,
    PaymentMethod,
    PayPalPayment,
    PlanFeatures,
    PlanType,
    Purchase,
    RequestStatus,
    RequestType,
    SubscriptionStatus,
    Vehicle,
    VehicleSubscription,
)
from app.csrdash.models import IdSequence
from app.csrdash.modules.csr_requests import models as req_m
from app.csrdash.modules.customers import models as cust_m
from app.csrdash.modules.subscriptions import models as sub_m
from app.csrdash.modules.subscriptions.service import (
    add_vehicle,
    check_can_add_vehicle,
    monthly_revenue,
    next_vehicle_id,
    remove_vehicle,
    set_status,
)
from app.csrdash.seed import SeedData, seed_data

logger = logging.getLogger(__name__)


class DataAPIError(RuntimeError):
    pass


class ConflictError(DataAPIError):
    def __init__(self, message: str = "This record changed, please reload."):
        super().__init__(message)


@dataclass(frozen=True)
class DashboardStats:
    total_requests: int
    pending_requests: int
    completed_requests: int
    total_customers: int
    active_subscriptions: int
    monthly_revenue: Decimal


@dataclass
class CustomerWithSubscriptions:
    customer: Customer
    subscriptions: list[VehicleSubscription]


def _check_version(current: int, expected: int | str | None) -> None:
    if expected is None or expected == "":
        return
    try:
        wanted = int(expected)
    except (TypeError, ValueError):
        raise ConflictError() from None
    if wanted != current:
        raise ConflictError()


def _next_id(prefix: str, existing: Iterable[str]) -> str:
    highest = 0
    for value in existing:
        _, _, suffix = (value or "").rpartition("-")
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}-{highest + 1:03d}"


def _name_matches(c: Customer, needle: str) -> bool:
    needle = needle.strip().lower()
    return (
        needle in c.first_name.lower()
        or needle in c.last_name.lower()
        or needle in c.full_name.lower()
    )


class DataAPI:
    """
    Abstract facade. Subclasses implement the lookups and the `_persist_*`
    primitives; the lifecycle operations below are shared so both backends
    apply the same rules in the same order.
    """

    backend = "abstract"

    # -- requests -----------------------------------------------------------

    def get_all_requests(self) -> list[CSRRequest]:
        raise NotImplementedError

    def get_request_by_id(self, request_id: str) -> CSRRequest | None:
        raise NotImplementedError

    def get_requests_by_status(self, status: RequestStatus | str) -> list[CSRRequest]:
        wanted = RequestStatus(status)
        return [r for r in self.get_all_requests() if r.status == wanted]

    def get_requests_by_customer_id(self, customer_id: str) -> list[CSRRequest]:
        return [r for r in self.get_all_requests() if r.customer_id == customer_id]

    def create_request(self, request: CSRRequest) -> CSRRequest:
        """Insert a new request with its history; DataAPIError on unknown customer or id clash."""
        raise NotImplementedError

    def update_request(self, request: CSRRequest, *, expected_version: int | str | None = None) -> CSRRequest | None:
        """Full overwrite: main record and the entire history collection."""
        raise NotImplementedError

    def append_history_entry(
        self,
        request_id: str,
        entry: HistoryEntry,
        *,
        expected_version: int | str | None = None,
    ) -> CSRRequest | None:
        """Prepend one entry; status and updated_at follow the entry."""
        raise NotImplementedError

    # -- customers ----------------------------------------------------------

    def get_all_customers(self) -> list[Customer]:
        raise NotImplementedError

    def get_customer_by_id(self, customer_id: str) -> Customer | None:
        raise NotImplementedError

    def get_customer_by_email(self, email: str) -> Customer | None:
        raise NotImplementedError

    def get_customers_by_name(self, name: str) -> list[Customer]:
        if not (name or "").strip():
            return []
        return [c for c in self.get_all_customers() if _name_matches(c, name)]

    def get_customers_by_phone(self, phone: str) -> list[Customer]:
        return [c for c in self.get_all_customers() if c.phone == phone]

    def update_customer_details(
        self,
        customer_id: str,
        user_fields: Mapping[str, Any],
        address_fields: Mapping[str, Any],
    ) -> Customer | None:
        raise NotImplementedError

    def get_customer_with_subscriptions(self, customer_id: str) -> CustomerWithSubscriptions | None:
        c = self.get_customer_by_id(customer_id)
        if c is None:
            return None
        subs = self.get_subscriptions_by_customer_id(customer_id)
        c.subscription_ids = [s.id for s in subs]
        c.request_ids = [r.id for r in self.get_requests_by_customer_id(customer_id)]
        return CustomerWithSubscriptions(customer=c, subscriptions=subs)

    def get_purchases_by_customer_id(self, customer_id: str) -> list[Purchase]:
        raise NotImplementedError

    # -- subscriptions ------------------------------------------------------

    def get_all_subscriptions(self) -> list[VehicleSubscription]:
        raise NotImplementedError

    def get_subscription_by_id(self, subscription_id: str) -> VehicleSubscription | None:
        raise NotImplementedError

    def get_subscriptions_by_customer_id(self, customer_id: str) -> list[VehicleSubscription]:
        return [s for s in self.get_all_subscriptions() if s.customer_id == customer_id]

    def create_subscription(self, draft: NewSubscription) -> VehicleSubscription:
        raise NotImplementedError

    def delete_subscription(self, subscription_id: str) -> DeleteResult:
        raise NotImplementedError

    def get_all_locations(self) -> list[CarWashLocation]:
        raise NotImplementedError

    def get_vehicle_by_id(self, vehicle_id: str) -> Vehicle | None:
        raise NotImplementedError

    def get_vehicles_by_ids(self, vehicle_ids: Iterable[str]) -> list[Vehicle]:
        out = []
        for vid in dict.fromkeys(vehicle_ids):
            v = self.get_vehicle_by_id(vid)
            if v is not None:
                out.append(v)
        return out

    def _all_vehicle_ids(self) -> list[str]:
        raise NotImplementedError

    def _vin_in_use(self, vin: str) -> bool:
        raise NotImplementedError

    def _persist_subscription(
        self,
        subscription: VehicleSubscription,
        *,
        added: Iterable[Vehicle] = (),
        removed_ids: Iterable[str] = (),
    ) -> VehicleSubscription | None:
        """Write the aggregate back (version checked against subscription.version)."""
        raise NotImplementedError

    def update_subscription_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus | str,
        *,
        expected_version: int | str | None = None,
        now: datetime | None = None,
    ) -> VehicleSubscription | None:
        sub = self.get_subscription_by_id(subscription_id)
        if sub is None:
            return None
        _check_version(sub.version, expected_version)
        set_status(sub, status, now=now)
        return self._persist_subscription(sub)

    def update_subscription(
        self,
        subscription: VehicleSubscription,
        *,
        expected_version: int | str | None = None,
    ) -> VehicleSubscription | None:
        """Plan, features, billing amount, status timestamps and owner."""
        current = self.get_subscription_by_id(subscription.id)
        if current is None:
            return None
        _check_version(current.version, expected_version)
        if subscription.customer_id != current.customer_id and self.get_customer_by_id(subscription.customer_id) is None:
            raise DataAPIError(f"Customer not found: {subscription.customer_id}")
        subscription = replace(subscription, version=current.version, vehicles=current.vehicles)
        return self._persist_subscription(subscription)

    def add_vehicle_to_subscription(
        self,
        subscription_id: str,
        vehicle: NewVehicle,
        *,
        expected_version: int | str | None = None,
        now: datetime | None = None,
    ) -> VehicleSubscription | None:
        """
        Raises VehicleLimitError / DuplicateVehicleError before anything is
        written; DataAPIError when the VIN belongs to another subscription.
        """
        sub = self.get_subscription_by_id(subscription_id)
        if sub is None:
            return None
        _check_version(sub.version, expected_version)
        check_can_add_vehicle(sub, vehicle.vin)
        if self._vin_in_use(vehicle.vin):
            raise DataAPIError(f"VIN {vehicle.vin} is already registered to another subscription")
        v = add_vehicle(sub, vehicle, vehicle_id=next_vehicle_id(self._all_vehicle_ids()), now=now)
        return self._persist_subscription(sub, added=[v])

    def remove_vehicle_from_subscription(
        self,
        subscription_id: str,
        vehicle_id: str,
        *,
        expected_version: int | str | None = None,
        now: datetime | None = None,
    ) -> VehicleSubscription | None:
        sub = self.get_subscription_by_id(subscription_id)
        if sub is None:
            return None
        _check_version(sub.version, expected_version)
        removed = remove_vehicle(sub, vehicle_id, now=now)
        return self._persist_subscription(sub, removed_ids=[removed.id] if removed else [])

    # -- dashboard ----------------------------------------------------------

    def get_dashboard_stats(self) -> DashboardStats:
        reqs = self.get_all_requests()
        subs = self.get_all_subscriptions()
        return DashboardStats(
            total_requests=len(reqs),
            pending_requests=sum(1 for r in reqs if r.status == RequestStatus.PENDING),
            completed_requests=sum(1 for r in reqs if r.status == RequestStatus.COMPLETED),
            total_customers=len(self.get_all_customers()),
            active_subscriptions=sum(1 for s in subs if s.status == SubscriptionStatus.ACTIVE),
            monthly_revenue=monthly_revenue(subs),
        )


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MockAPI(DataAPI):
    """
    Process-local store. Every read hands out a deep copy and every write
    stores one, so callers can never mutate the store by accident.
    """

    backend = "memory"

    def __init__(self, data: SeedData | None = None):
        data = data or seed_data()
        self._lock = threading.RLock()
        self._requests = {r.id: r for r in data.requests}
        self._customers = {c.id: c for c in data.customers}
        self._locations = {loc.id: loc for loc in data.locations}
        self._subscriptions = {s.id: s for s in data.subscriptions}
        self._purchases = {p.id: p for p in data.purchases}
        # Ids ever handed out, so deleted ids are not reused.
        self._issued_ids: set[str] = {v.id for s in data.subscriptions for v in s.vehicles}
        self._issued_ids |= {s.billing_info.payment_method.id for s in data.subscriptions}
        self._issued_ids |= {p.vehicle_id for p in data.purchases if p.vehicle_id}

    @staticmethod
    def _out(obj):
        return copy.deepcopy(obj)

    # requests

    def get_all_requests(self) -> list[CSRRequest]:
        return [self._out(r) for r in sorted(self._requests.values(), key=lambda r: r.id)]

    def get_request_by_id(self, request_id: str) -> CSRRequest | None:
        r = self._requests.get(request_id)
        return self._out(r) if r else None

    def create_request(self, request: CSRRequest) -> CSRRequest:
        with self._lock:
            if request.customer_id not in self._customers:
                raise DataAPIError(f"Failed to create request: customer not found: {request.customer_id}")
            if request.id in self._requests:
                raise DataAPIError(f"Failed to create request: {request.id} already exists")
            stored = replace(copy.deepcopy(request), version=1, customer_email=None)
            self._requests[stored.id] = stored
            return self._out(stored)

    def update_request(self, request: CSRRequest, *, expected_version: int | str | None = None) -> CSRRequest | None:
        with self._lock:
            current = self._requests.get(request.id)
            if current is None:
                return None
            _check_version(current.version, expected_version)
            stored = replace(copy.deepcopy(request), version=current.version + 1)
            self._requests[request.id] = stored
            return self._out(stored)

    def append_history_entry(
        self,
        request_id: str,
        entry: HistoryEntry,
        *,
        expected_version: int | str | None = None,
    ) -> CSRRequest | None:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                return None
            _check_version(current.version, expected_version)
            stored = replace(
                current,
                history=[entry, *current.history],
                status=RequestStatus(entry.status),
                updated_at=entry.timestamp,
                version=current.version + 1,
            )
            self._requests[request_id] = stored
            return self._out(stored)

    # customers

    def get_all_customers(self) -> list[Customer]:
        rows = sorted(self._customers.values(), key=lambda c: (c.last_name.lower(), c.first_name.lower(), c.id))
        return [self._out(c) for c in rows]

    def get_customer_by_id(self, customer_id: str) -> Customer | None:
        c = self._customers.get(customer_id)
        return self._out(c) if c else None

    def get_customer_by_email(self, email: str) -> Customer | None:
        wanted = (email or "").strip().lower()
        for c in self._customers.values():
            if c.email.lower() == wanted:
                return self._out(c)
        return None

    def update_customer_details(
        self,
        customer_id: str,
        user_fields: Mapping[str, Any],
        address_fields: Mapping[str, Any],
    ) -> Customer | None:
        with self._lock:
            current = self._customers.get(customer_id)
            if current is None:
                return None
            email = (user_fields.get("email") or current.email).lower()
            if any(c.email.lower() == email and c.id != customer_id for c in self._customers.values()):
                raise DataAPIError("Failed to update user info: email already in use")
            updated = replace(
                current,
                first_name=user_fields.get("first_name", current.first_name),
                last_name=user_fields.get("last_name", current.last_name),
                email=email,
                phone=user_fields.get("phone", current.phone),
                address=Address(
                    street=address_fields["street"],
                    city=address_fields["city"],
                    state=address_fields["state"],
                    zip_code=address_fields["zip_code"],
                ),
                updated_at=datetime.utcnow(),
            )
            self._customers[customer_id] = updated
            return self._out(updated)

    def get_purchases_by_customer_id(self, customer_id: str) -> list[Purchase]:
        rows = [p for p in self._purchases.values() if p.customer_id == customer_id]
        rows.sort(key=lambda p: p.purchase_date, reverse=True)
        return [self._out(p) for p in rows]

    # subscriptions

    def get_all_subscriptions(self) -> list[VehicleSubscription]:
        return [self._out(s) for s in sorted(self._subscriptions.values(), key=lambda s: s.id)]

    def get_subscription_by_id(self, subscription_id: str) -> VehicleSubscription | None:
        s = self._subscriptions.get(subscription_id)
        return self._out(s) if s else None

    def get_all_locations(self) -> list[CarWashLocation]:
        return [self._out(loc) for loc in sorted(self._locations.values(), key=lambda loc: loc.name)]

    def get_vehicle_by_id(self, vehicle_id: str) -> Vehicle | None:
        for s in self._subscriptions.values():
            for v in s.vehicles:
                if v.id == vehicle_id:
                    return self._out(v)
        return None

    def _all_vehicle_ids(self) -> list[str]:
        return [i for i in self._issued_ids if i.startswith("veh-")]

    def _vin_in_use(self, vin: str) -> bool:
        wanted = (vin or "").strip().upper()
        return any(v.vin.upper() == wanted for s in self._subscriptions.values() for v in s.vehicles)

    def _persist_subscription(
        self,
        subscription: VehicleSubscription,
        *,
        added: Iterable[Vehicle] = (),
        removed_ids: Iterable[str] = (),
    ) -> VehicleSubscription | None:
        with self._lock:
            current = self._subscriptions.get(subscription.id)
            if current is None:
                return None
            _check_version(current.version, subscription.version)
            for v in added:
                self._issued_ids.add(v.id)
            stored = replace(copy.deepcopy(subscription), version=current.version + 1)
            self._subscriptions[subscription.id] = stored
            return self._out(stored)

    def create_subscription(self, draft: NewSubscription) -> VehicleSubscription:
        with self._lock:
            if draft.customer_id not in self._customers:
                raise DataAPIError(f"Failed to create subscription: customer not found: {draft.customer_id}")
            locations = []
            for lid in draft.location_ids:
                loc = self._locations.get(lid)
                if loc is None:
                    raise DataAPIError(f"Failed to create subscription: unknown location {lid}")
                locations.append(copy.deepcopy(loc))
            pm = draft.payment_method
            if not pm.id:
                pm = replace(pm, id=_next_id("pm", self._issued_ids_with("pm-")))
            now = datetime.utcnow()
            sub = VehicleSubscription(
                id=_next_id("sub", self._subscriptions.keys()),
                customer_id=draft.customer_id,
                plan_type=PlanType(draft.plan_type),
                plan_features=copy.deepcopy(draft.plan_features),
                status=SubscriptionStatus(draft.status),
                billing_info=BillingInfo(
                    amount=draft.amount,
                    currency=draft.currency,
                    frequency=BillingFrequency(draft.frequency),
                    next_billing_date=draft.next_billing_date,
                    payment_method=pm,
                    discount=draft.discount,
                ),
                start_date=draft.start_date,
                created_at=now,
                updated_at=now,
                locations=locations,
            )
            self._issued_ids.add(pm.id)
            self._subscriptions[sub.id] = sub
            return self._out(sub)

    def _issued_ids_with(self, prefix: str) -> list[str]:
        return [i for i in self._issued_ids if i.startswith(prefix)]

    def delete_subscription(self, subscription_id: str) -> DeleteResult:
        with self._lock:
            if self._subscriptions.pop(subscription_id, None) is None:
                return DeleteResult(success=False, error="Subscription not found")
            return DeleteResult(success=True)


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------


def _payment_to_entity(row: sub_m.PaymentMethod) -> PaymentMethod:
    if row.type == "card":
        return CardPayment(id=row.id, card_brand=row.card_brand or "", card_last4=row.card_last4 or "")
    if row.type == "paypal":
        return PayPalPayment(id=row.id, paypal_email=row.paypal_email or "")
    if row.type == "bank_transfer":
        return BankTransferPayment(id=row.id, bank_account_last4=row.bank_account_last4 or "")
    raise DataAPIError(f"Unknown payment method type: {row.type!r}")


def _payment_to_row(pm: PaymentMethod) -> sub_m.PaymentMethod:
    row = sub_m.PaymentMethod(id=pm.id, type=pm.type)
    if isinstance(pm, CardPayment):
        row.card_brand = pm.card_brand
        row.card_last4 = pm.card_last4
    elif isinstance(pm, PayPalPayment):
        row.paypal_email = pm.paypal_email
    elif isinstance(pm, BankTransferPayment):
        row.bank_account_last4 = pm.bank_account_last4
    return row


def _vehicle_to_entity(row: sub_m.Vehicle) -> Vehicle:
    return Vehicle(
        id=row.id,
        vin=row.vin,
        make=row.make,
        model=row.model,
        year=row.year,
        color=row.color,
        license_plate=row.license_plate,
        added_at=row.added_at,
    )


def _vehicle_to_row(v: Vehicle, subscription_id: str | None) -> sub_m.Vehicle:
    return sub_m.Vehicle(
        id=v.id,
        subscription_id=subscription_id,
        vin=v.vin,
        make=v.make,
        model=v.model,
        year=v.year,
        color=v.color,
        license_plate=v.license_plate,
        added_at=v.added_at,
    )


def _location_to_entity(row: sub_m.CarWashLocation) -> CarWashLocation:
    return CarWashLocation(
        id=row.id,
        name=row.name,
        address=row.address,
        city=row.city,
        state=row.state,
        zip=row.zip,
        phone=row.phone,
        email=row.email,
        website=row.website,
    )


def _customer_to_entity(row: cust_m.Customer) -> Customer:
    addr = None
    if row.address is not None:
        addr = Address(
            street=row.address.street,
            city=row.address.city,
            state=row.address.state,
            zip_code=row.address.zip_code,
        )
    return Customer(
        id=row.id,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        phone=row.phone,
        profile_picture=row.profile_picture,
        role=row.role,
        address=addr,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _request_to_entity(row: req_m.CSRRequest) -> CSRRequest:
    return CSRRequest(
        id=row.id,
        customer_id=row.customer_id,
        request_type=RequestType(row.request_type),
        status=RequestStatus(row.status),
        details=row.details,
        created_at=row.created_at,
        updated_at=row.updated_at,
        history=[
            HistoryEntry(
                timestamp=h.timestamp,
                status=RequestStatus(h.status),
                updated_by=h.updated_by,
                comment=h.comment,
            )
            for h in row.history
        ],
        version=row.version,
    )


def _history_row(entry: HistoryEntry) -> req_m.CSRRequestHistory:
    return req_m.CSRRequestHistory(
        timestamp=entry.timestamp,
        status=RequestStatus(entry.status).value,
        updated_by=entry.updated_by,
        comment=entry.comment,
    )


def _purchase_to_entity(row: cust_m.Purchase) -> Purchase:
    return Purchase(
        id=row.id,
        customer_id=row.customer_id,
        vehicle_id=row.vehicle_id,
        purchase_date=row.purchase_date,
        amount=Decimal(row.amount),
        payment_method=row.payment_method,
        covered_by_subscription=bool(row.covered_by_subscription),
    )


def _subscription_to_entity(row: sub_m.VehicleSubscription) -> VehicleSubscription:
    if row.features is None or row.billing is None:
        raise DataAPIError(f"Subscription {row.id} is missing its plan features or billing record")
    b = row.billing
    discount = None
    if row.discount is not None:
        discount = Discount(
            reason=row.discount.reason,
            percentage=row.discount.percentage,
            amount=row.discount.amount,
            valid_until=row.discount.valid_until,
        )
    return VehicleSubscription(
        id=row.id,
        customer_id=row.customer_id,
        plan_type=PlanType(row.plan_type),
        plan_features=PlanFeatures(
            max_vehicles=row.features.max_vehicles,
            max_washes_per_month=row.features.max_washes_per_month,
            detailing_included=bool(row.features.detailing_included),
        ),
        status=SubscriptionStatus(row.status),
        billing_info=BillingInfo(
            amount=Decimal(b.amount),
            currency=b.currency,
            frequency=BillingFrequency(b.frequency),
            next_billing_date=b.next_billing_date,
            last_billing_date=b.last_billing_date,
            payment_method=_payment_to_entity(b.payment_method),
            discount=discount,
        ),
        start_date=row.start_date,
        end_date=row.end_date,
        paused_at=row.paused_at,
        cancelled_at=row.cancelled_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        vehicles=[_vehicle_to_entity(v) for v in row.vehicles],
        locations=[_location_to_entity(loc) for loc in row.locations],
        version=row.version,
    )


class SqlAPI(DataAPI):
    """
    Facade over a SQLAlchemy session. Multi-step writes run inside a
    SAVEPOINT so a failure leaves no partial rows behind.
    """

    backend = "sql"

    def __init__(self, session: Session):
        self.s = session

    # requests

    def get_all_requests(self) -> list[CSRRequest]:
        rows = self.s.query(req_m.CSRRequest).order_by(req_m.CSRRequest.id.asc()).all()
        return [_request_to_entity(r) for r in rows]

    def get_request_by_id(self, request_id: str) -> CSRRequest | None:
        row = self.s.get(req_m.CSRRequest, request_id)
        return _request_to_entity(row) if row else None

    def get_requests_by_status(self, status: RequestStatus | str) -> list[CSRRequest]:
        rows = (
            self.s.query(req_m.CSRRequest)
            .filter(req_m.CSRRequest.status == RequestStatus(status).value)
            .order_by(req_m.CSRRequest.id.asc())
            .all()
        )
        return [_request_to_entity(r) for r in rows]

    def get_requests_by_customer_id(self, customer_id: str) -> list[CSRRequest]:
        rows = (
            self.s.query(req_m.CSRRequest)
            .filter(req_m.CSRRequest.customer_id == customer_id)
            .order_by(req_m.CSRRequest.id.asc())
            .all()
        )
        return [_request_to_entity(r) for r in rows]

    def _flush(self, what: str) -> None:
        try:
            self.s.flush()
        except StaleDataError as e:
            raise ConflictError() from e
        except SQLAlchemyError as e:
            logger.exception("%s failed", what)
            raise DataAPIError(f"{what} failed: {e}") from e

    def create_request(self, request: CSRRequest) -> CSRRequest:
        if self.s.get(cust_m.Customer, request.customer_id) is None:
            raise DataAPIError(f"Failed to create request: customer not found: {request.customer_id}")
        if self.s.get(req_m.CSRRequest, request.id) is not None:
            raise DataAPIError(f"Failed to create request: {request.id} already exists")
        row = req_m.CSRRequest(
            id=request.id,
            customer_id=request.customer_id,
            request_type=RequestType(request.request_type).value,
            status=RequestStatus(request.status).value,
            details=request.details,
            created_at=request.created_at,
            updated_at=request.updated_at,
        )
        for entry in reversed(request.history):
            row.history.append(_history_row(entry))
        self.s.add(row)
        self._flush("Creating request")
        self.s.expire(row)
        return _request_to_entity(row)

    def update_request(self, request: CSRRequest, *, expected_version: int | str | None = None) -> CSRRequest | None:
        row = self.s.get(req_m.CSRRequest, request.id)
        if row is None:
            return None
        _check_version(row.version, expected_version)
        try:
            with self.s.begin_nested():
                row.customer_id = request.customer_id
                row.request_type = RequestType(request.request_type).value
                row.status = RequestStatus(request.status).value
                row.details = request.details
                row.updated_at = request.updated_at
                # History lives in its own table; touch the parent so the version moves.
                flag_modified(row, "updated_at")
                row.history.clear()
                self.s.flush()
                # Oldest first so id DESC reads back newest first.
                for entry in reversed(request.history):
                    row.history.append(_history_row(entry))
        except StaleDataError as e:
            raise ConflictError() from e
        except SQLAlchemyError as e:
            logger.exception("update_request failed (id=%s)", request.id)
            raise DataAPIError(f"Failed to update request: {e}") from e
        self.s.expire(row)
        return _request_to_entity(row)

    def append_history_entry(
        self,
        request_id: str,
        entry: HistoryEntry,
        *,
        expected_version: int | str | None = None,
    ) -> CSRRequest | None:
        row = self.s.get(req_m.CSRRequest, request_id)
        if row is None:
            return None
        _check_version(row.version, expected_version)
        row.history.append(_history_row(entry))
        row.status = RequestStatus(entry.status).value
        row.updated_at = entry.timestamp
        flag_modified(row, "updated_at")
        self._flush("Appending history entry")
        self.s.expire(row)
        return _request_to_entity(row)

    # customers

    def get_all_customers(self) -> list[Customer]:
        rows = (
            self.s.query(cust_m.Customer)
            .order_by(cust_m.Customer.last_name.asc(), cust_m.Customer.first_name.asc(), cust_m.Customer.id.asc())
            .all()
        )
        return [_customer_to_entity(c) for c in rows]

    def get_customer_by_id(self, customer_id: str) -> Customer | None:
        row = self.s.get(cust_m.Customer, customer_id)
        return _customer_to_entity(row) if row else None

    def get_customer_by_email(self, email: str) -> Customer | None:
        wanted = (email or "").strip().lower()
        if not wanted:
            return None
        row = self.s.query(cust_m.Customer).filter(func.lower(cust_m.Customer.email) == wanted).one_or_none()
        return _customer_to_entity(row) if row else None

    def get_customers_by_name(self, name: str) -> list[Customer]:
        needle = (name or "").strip()
        if not needle:
            return []
        like = f"%{needle}%"
        C = cust_m.Customer
        rows = (
            self.s.query(C)
            .filter(or_(C.first_name.ilike(like), C.last_name.ilike(like), (C.first_name + " " + C.last_name).ilike(like)))
            .order_by(C.last_name.asc(), C.first_name.asc())
            .all()
        )
        return [_customer_to_entity(c) for c in rows]

    def get_customers_by_phone(self, phone: str) -> list[Customer]:
        rows = self.s.query(cust_m.Customer).filter(cust_m.Customer.phone == phone).all()
        return [_customer_to_entity(c) for c in rows]

    def update_customer_details(
        self,
        customer_id: str,
        user_fields: Mapping[str, Any],
        address_fields: Mapping[str, Any],
    ) -> Customer | None:
        row = self.s.get(cust_m.Customer, customer_id)
        if row is None:
            return None
        now = datetime.utcnow()
        try:
            with self.s.begin_nested():
                for key in ("first_name", "last_name", "email", "phone"):
                    if key in user_fields:
                        setattr(row, key, user_fields[key])
                row.updated_at = now
        except SQLAlchemyError as e:
            self.s.expire(row)
            raise DataAPIError(f"Failed to update user info: {getattr(e, 'orig', None) or e}") from e
        try:
            with self.s.begin_nested():
                if row.address is None:
                    row.address = cust_m.CustomerAddress(customer_id=row.id, **dict(address_fields))
                else:
                    for key in ("street", "city", "state", "zip_code"):
                        setattr(row.address, key, address_fields[key])
        except SQLAlchemyError as e:
            self.s.expire(row)
            raise DataAPIError(f"Failed to update address: {getattr(e, 'orig', None) or e}") from e
        return _customer_to_entity(row)

    def get_purchases_by_customer_id(self, customer_id: str) -> list[Purchase]:
        rows = (
            self.s.query(cust_m.Purchase)
            .filter(cust_m.Purchase.customer_id == customer_id)
            .order_by(cust_m.Purchase.purchase_date.desc())
            .all()
        )
        return [_purchase_to_entity(p) for p in rows]

    # subscriptions

    def get_all_subscriptions(self) -> list[VehicleSubscription]:
        rows = self.s.query(sub_m.VehicleSubscription).order_by(sub_m.VehicleSubscription.id.asc()).all()
        return [_subscription_to_entity(r) for r in rows]

    def get_subscription_by_id(self, subscription_id: str) -> VehicleSubscription | None:
        row = self.s.get(sub_m.VehicleSubscription, subscription_id)
        return _subscription_to_entity(row) if row else None

    def get_subscriptions_by_customer_id(self, customer_id: str) -> list[VehicleSubscription]:
        rows = (
            self.s.query(sub_m.VehicleSubscription)
            .filter(sub_m.VehicleSubscription.customer_id == customer_id)
            .order_by(sub_m.VehicleSubscription.id.asc())
            .all()
        )
        return [_subscription_to_entity(r) for r in rows]

    def get_all_locations(self) -> list[CarWashLocation]:
        rows = self.s.query(sub_m.CarWashLocation).order_by(sub_m.CarWashLocation.name.asc()).all()
        return [_location_to_entity(r) for r in rows]

    def get_vehicle_by_id(self, vehicle_id: str) -> Vehicle | None:
        row = self.s.get(sub_m.Vehicle, vehicle_id)
        return _vehicle_to_entity(row) if row else None

    def get_vehicles_by_ids(self, vehicle_ids: Iterable[str]) -> list[Vehicle]:
        ids = [i for i in dict.fromkeys(vehicle_ids) if i]
        if not ids:
            return []
        rows = self.s.query(sub_m.Vehicle).filter(sub_m.Vehicle.id.in_(ids)).all()
        by_id = {r.id: r for r in rows}
        return [_vehicle_to_entity(by_id[i]) for i in ids if i in by_id]

    def _all_vehicle_ids(self) -> list[str]:
        ids = list(self.s.scalars(select(sub_m.Vehicle.id)))
        ids += [v for v in self.s.scalars(select(cust_m.Purchase.vehicle_id).distinct()) if v]
        seq = self.s.get(IdSequence, "veh")
        if seq is not None and seq.last_value:
            ids.append(f"veh-{seq.last_value:03d}")
        return ids

    def _bump_sequence(self, prefix: str, issued: Iterable[str]) -> None:
        highest = 0
        for value in issued:
            _, _, suffix = value.rpartition("-")
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        seq = self.s.get(IdSequence, prefix)
        if seq is None:
            self.s.add(IdSequence(prefix=prefix, last_value=highest))
        elif highest > seq.last_value:
            seq.last_value = highest

    def _vin_in_use(self, vin: str) -> bool:
        wanted = (vin or "").strip().upper()
        n = self.s.query(func.count(sub_m.Vehicle.id)).filter(func.upper(sub_m.Vehicle.vin) == wanted).scalar()
        return bool(n)

    def _persist_subscription(
        self,
        subscription: VehicleSubscription,
        *,
        added: Iterable[Vehicle] = (),
        removed_ids: Iterable[str] = (),
    ) -> VehicleSubscription | None:
        added = list(added)
        row = self.s.get(sub_m.VehicleSubscription, subscription.id)
        if row is None:
            return None
        _check_version(row.version, subscription.version)
        try:
            with self.s.begin_nested():
                row.customer_id = subscription.customer_id
                row.plan_type = PlanType(subscription.plan_type).value
                row.status = SubscriptionStatus(subscription.status).value
                row.start_date = subscription.start_date
                row.end_date = subscription.end_date
                row.paused_at = subscription.paused_at
                row.cancelled_at = subscription.cancelled_at
                row.updated_at = subscription.updated_at
                flag_modified(row, "updated_at")
                if row.features is not None:
                    row.features.max_vehicles = subscription.plan_features.max_vehicles
                    row.features.max_washes_per_month = subscription.plan_features.max_washes_per_month
                    row.features.detailing_included = subscription.plan_features.detailing_included
                if row.billing is not None:
                    row.billing.amount = subscription.billing_info.amount
                for v in added:
                    self.s.add(_vehicle_to_row(v, subscription.id))
                if added:
                    self._bump_sequence("veh", [v.id for v in added])
                for vid in removed_ids:
                    self.s.query(sub_m.Vehicle).filter(
                        sub_m.Vehicle.id == vid,
                        sub_m.Vehicle.subscription_id == subscription.id,
                    ).delete()
        except StaleDataError as e:
            raise ConflictError() from e
        except SQLAlchemyError as e:
            logger.exception("Saving subscription %s failed", subscription.id)
            raise DataAPIError(f"Failed to update subscription: {getattr(e, 'orig', None) or e}") from e
        self.s.expire(row)
        return _subscription_to_entity(row)

    def create_subscription(self, draft: NewSubscription) -> VehicleSubscription:
        if self.s.get(cust_m.Customer, draft.customer_id) is None:
            raise DataAPIError(f"Failed to create subscription: customer not found: {draft.customer_id}")
        for lid in draft.location_ids:
            if self.s.get(sub_m.CarWashLocation, lid) is None:
                raise DataAPIError(f"Failed to create subscription: unknown location {lid}")

        sub_id = _next_id("sub", self.s.scalars(select(sub_m.VehicleSubscription.id)))
        pm = draft.payment_method
        if not pm.id:
            pm = replace(pm, id=_next_id("pm", self.s.scalars(select(sub_m.PaymentMethod.id))))
        now = datetime.utcnow()
        try:
            with self.s.begin_nested():
                self.s.add(_payment_to_row(pm))
                self.s.add(
                    sub_m.VehicleSubscription(
                        id=sub_id,
                        customer_id=draft.customer_id,
                        plan_type=PlanType(draft.plan_type).value,
                        status=SubscriptionStatus(draft.status).value,
                        start_date=draft.start_date,
                        created_at=now,
                        updated_at=now,
                    )
                )
                self.s.flush()
                self.s.add(
                    sub_m.SubscriptionPlanFeatures(
                        subscription_id=sub_id,
                        max_vehicles=draft.plan_features.max_vehicles,
                        max_washes_per_month=draft.plan_features.max_washes_per_month,
                        detailing_included=draft.plan_features.detailing_included,
                    )
                )
                self.s.add(
                    sub_m.BillingInfo(
                        subscription_id=sub_id,
                        amount=draft.amount,
                        currency=draft.currency,
                        frequency=BillingFrequency(draft.frequency).value,
                        next_billing_date=draft.next_billing_date,
                        payment_method_id=pm.id,
                    )
                )
                if draft.discount is not None:
                    self.s.add(
                        sub_m.BillingDiscount(
                            subscription_id=sub_id,
                            percentage=draft.discount.percentage,
                            amount=draft.discount.amount,
                            reason=draft.discount.reason,
                            valid_until=draft.discount.valid_until,
                        )
                    )
                for lid in dict.fromkeys(draft.location_ids):
                    self.s.add(sub_m.SubscriptionLocation(subscription_id=sub_id, location_id=lid))
        except SQLAlchemyError as e:
            logger.exception("create_subscription failed (customer_id=%s)", draft.customer_id)
            raise DataAPIError(f"Failed to create subscription: {getattr(e, 'orig', None) or e}") from e
        created = self.get_subscription_by_id(sub_id)
        if created is None:
            raise DataAPIError("Failed to create subscription: row not readable after insert")
        return created

    def delete_subscription(self, subscription_id: str) -> DeleteResult:
        row = self.s.get(sub_m.VehicleSubscription, subscription_id)
        if row is None:
            return DeleteResult(success=False, error="Subscription not found")
        pm_id = row.billing.payment_method_id if row.billing else None
        steps = (
            ("discount", lambda: self.s.query(sub_m.BillingDiscount).filter_by(subscription_id=subscription_id)),
            ("billing info", lambda: self.s.query(sub_m.BillingInfo).filter_by(subscription_id=subscription_id)),
            ("payment method", lambda: self.s.query(sub_m.PaymentMethod).filter_by(id=pm_id)),
            ("location links", lambda: self.s.query(sub_m.SubscriptionLocation).filter_by(subscription_id=subscription_id)),
            ("vehicles", lambda: self.s.query(sub_m.Vehicle).filter_by(subscription_id=subscription_id)),
            ("plan features", lambda: self.s.query(sub_m.SubscriptionPlanFeatures).filter_by(subscription_id=subscription_id)),
            ("subscription", lambda: self.s.query(sub_m.VehicleSubscription).filter_by(id=subscription_id)),
        )
        step = ""
        try:
            with self.s.begin_nested():
                for step, q in steps:
                    q().delete()
        except SQLAlchemyError as e:
            logger.exception("delete_subscription failed at %s (id=%s)", step, subscription_id)
            return DeleteResult(success=False, error=f"Failed to delete {step}: {getattr(e, 'orig', None) or e}")
        finally:
            self.s.expire_all()
        return DeleteResult(success=True)

    # loading

    def import_seed(self, data: SeedData) -> None:
        """Insert a full SeedData set; existing ids are skipped."""
        for c in data.customers:
            if self.s.get(cust_m.Customer, c.id) is not None:
                continue
            row = cust_m.Customer(
                id=c.id,
                first_name=c.first_name,
                last_name=c.last_name,
                email=c.email,
                phone=c.phone,
                profile_picture=c.profile_picture,
                role=c.role,
                created_at=c.created_at,
                updated_at=c.updated_at,
            )
            if c.address is not None:
                row.address = cust_m.CustomerAddress(
                    customer_id=c.id,
                    street=c.address.street,
                    city=c.address.city,
                    state=c.address.state,
                    zip_code=c.address.zip_code,
                )
            self.s.add(row)
        for loc in data.locations:
            if self.s.get(sub_m.CarWashLocation, loc.id) is None:
                self.s.add(sub_m.CarWashLocation(**loc.__dict__))
        self.s.flush()

        for r in data.requests:
            if self.s.get(req_m.CSRRequest, r.id) is not None:
                continue
            row = req_m.CSRRequest(
                id=r.id,
                customer_id=r.customer_id,
                request_type=RequestType(r.request_type).value,
                status=RequestStatus(r.status).value,
                details=r.details,
                created_at=r.created_at,
                updated_at=r.updated_at,
            )
            for entry in reversed(r.history):
                row.history.append(_history_row(entry))
            self.s.add(row)

        for sub in data.subscriptions:
            if self.s.get(sub_m.VehicleSubscription, sub.id) is not None:
                continue
            pm = sub.billing_info.payment_method
            if self.s.get(sub_m.PaymentMethod, pm.id) is None:
                self.s.add(_payment_to_row(pm))
            self.s.add(
                sub_m.VehicleSubscription(
                    id=sub.id,
                    customer_id=sub.customer_id,
                    plan_type=PlanType(sub.plan_type).value,
                    status=SubscriptionStatus(sub.status).value,
                    start_date=sub.start_date,
                    end_date=sub.end_date,
                    paused_at=sub.paused_at,
                    cancelled_at=sub.cancelled_at,
                    created_at=sub.created_at,
                    updated_at=sub.updated_at,
                )
            )
            self.s.flush()
            self.s.add(
                sub_m.SubscriptionPlanFeatures(
                    subscription_id=sub.id,
                    max_vehicles=sub.plan_features.max_vehicles,
                    max_washes_per_month=sub.plan_features.max_washes_per_month,
                    detailing_included=sub.plan_features.detailing_included,
                )
            )
            b = sub.billing_info
            self.s.add(
                sub_m.BillingInfo(
                    subscription_id=sub.id,
                    amount=b.amount,
                    currency=b.currency,
                    frequency=BillingFrequency(b.frequency).value,
                    next_billing_date=b.next_billing_date,
                    last_billing_date=b.last_billing_date,
                    payment_method_id=pm.id,
                )
            )
            if b.discount is not None:
                self.s.add(
                    sub_m.BillingDiscount(
                        subscription_id=sub.id,
                        percentage=b.discount.percentage,
                        amount=b.discount.amount,
                        reason=b.discount.reason,
                        valid_until=b.discount.valid_until,
                    )
                )
            for v in sub.vehicles:
                self.s.add(_vehicle_to_row(v, sub.id))
            for loc in sub.locations:
                self.s.add(sub_m.SubscriptionLocation(subscription_id=sub.id, location_id=loc.id))

        for p in data.purchases:
            if self.s.get(cust_m.Purchase, p.id) is None:
                self.s.add(
                    cust_m.Purchase(
                        id=p.id,
                        customer_id=p.customer_id,
                        vehicle_id=p.vehicle_id,
                        purchase_date=p.purchase_date,
                        amount=p.amount,
                        payment_method=p.payment_method,
                        covered_by_subscription=p.covered_by_subscription,
                    )
                )
        self.s.flush()


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def api_from_config(config: Mapping[str, Any], session: Session | None = None) -> DataAPI:
    backend = (config.get("DATA_BACKEND") or "sql").strip().lower()
    if backend == "memory":
        return MockAPI()
    if backend == "sql":
        if session is None:
            raise ValueError("DATA_BACKEND=sql needs a database session")
        return SqlAPI(session)
    raise ValueError(f"Unknown DATA_BACKEND: {backend!r}")


def data_api() -> DataAPI:
    """
    Request-scoped facade for views. The memory backend is one store per
    app (it must survive between requests); the SQL backend wraps the
    request's db session.
    """
    api = getattr(g, "data_api", None)
    if api is not None:
        return api
    if (current_app.config.get("DATA_BACKEND") or "sql").strip().lower() == "memory":
        api = current_app.extensions.get("csrdash_memory_api")
        if api is None:
            api = current_app.extensions.setdefault("csrdash_memory_api", MockAPI())
    else:
        from app.csrdash.db import db_session

        api = api_from_config(current_app.config, session=db_session())
    g.data_api = api
    return api
