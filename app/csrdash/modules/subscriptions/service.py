"""
Subscription lifecycle rules.

Status changes only stamp timestamps; no predecessor table is enforced
(cancelled -> active is allowed). "expired" is accepted from the store but no
operation here ever sets it.

Vehicle membership is bounded by plan_features.max_vehicles and unique by VIN
within the subscription; both checks run before anything is appended.
"""

from __future__ import annotations

import calendar
import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from app.csrdash.entities import (
    BankTransferPayment,
    BillingFrequency,
    BillingInfo,
    CardPayment,
    Discount,
    NewSubscription,
    NewVehicle,
    PaymentMethod,
    PayPalPayment,
    PlanFeatures,
    PlanType,
    SubscriptionStatus,
    Vehicle,
    VehicleSubscription,
)

CENT = Decimal("0.01")

_MONTHS_PER_PERIOD: dict[BillingFrequency, int] = {
    BillingFrequency.MONTHLY: 1,
    BillingFrequency.QUARTERLY: 3,
    BillingFrequency.SEMI_ANNUAL: 6,
    BillingFrequency.ANNUAL: 12,
}

# Statuses a CSR can pick; "expired" comes from outside the dashboard.
SELECTABLE_STATUSES: tuple[SubscriptionStatus, ...] = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAUSED,
    SubscriptionStatus.CANCELLED,
)

_VIN_RE = re.compile(r"^[A-Za-z0-9]{1,17}$")


class VehicleLimitError(ValueError):
    def __init__(self, max_vehicles: int):
        self.max_vehicles = max_vehicles
        super().__init__(f"Maximum vehicles ({max_vehicles}) reached for this plan")


class DuplicateVehicleError(ValueError):
    def __init__(self, vin: str):
        self.vin = vin
        super().__init__("Vehicle already exists")


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


@dataclass(frozen=True)
class PlanPreset:
    max_vehicles: int
    max_washes_per_month: int
    detailing_included: bool
    amount: Decimal

    def features(self) -> PlanFeatures:
        return PlanFeatures(
            max_vehicles=self.max_vehicles,
            max_washes_per_month=self.max_washes_per_month,
            detailing_included=self.detailing_included,
        )


PLAN_PRESETS: dict[PlanType, PlanPreset] = {
    PlanType.BASIC: PlanPreset(1, 4, False, Decimal("29.99")),
    PlanType.STANDARD: PlanPreset(2, 8, False, Decimal("49.99")),
    PlanType.PREMIUM: PlanPreset(3, 12, True, Decimal("89.99")),
    PlanType.ENTERPRISE: PlanPreset(5, 50, True, Decimal("199.99")),
}


@dataclass(frozen=True)
class SubscriptionSummary:
    has_active_subscription: bool
    active_count: int
    total_vehicles: int


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


def set_status(
    subscription: VehicleSubscription,
    new_status: SubscriptionStatus | str,
    *,
    now: datetime | None = None,
) -> VehicleSubscription:
    ts = now or datetime.utcnow()
    status = SubscriptionStatus(new_status)
    if status == SubscriptionStatus.PAUSED:
        subscription.paused_at = ts
    elif status == SubscriptionStatus.CANCELLED:
        subscription.cancelled_at = ts
        subscription.end_date = ts
    elif status == SubscriptionStatus.ACTIVE:
        subscription.paused_at = None
    subscription.status = status
    subscription.updated_at = ts
    return subscription


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------


def _norm_vin(vin: str | None) -> str:
    return (vin or "").strip().upper()


def check_can_add_vehicle(subscription: VehicleSubscription, vin: str) -> None:
    cap = subscription.plan_features.max_vehicles
    if len(subscription.vehicles) >= cap:
        raise VehicleLimitError(cap)
    wanted = _norm_vin(vin)
    if any(_norm_vin(v.vin) == wanted for v in subscription.vehicles):
        raise DuplicateVehicleError(wanted)


def add_vehicle(
    subscription: VehicleSubscription,
    vehicle: NewVehicle,
    *,
    vehicle_id: str,
    now: datetime | None = None,
) -> Vehicle:
    check_can_add_vehicle(subscription, vehicle.vin)
    ts = now or datetime.utcnow()
    v = Vehicle(
        id=vehicle_id,
        vin=_norm_vin(vehicle.vin),
        make=vehicle.make,
        model=vehicle.model,
        year=vehicle.year,
        color=vehicle.color,
        license_plate=vehicle.license_plate,
        added_at=ts,
    )
    subscription.vehicles = [*subscription.vehicles, v]
    subscription.updated_at = ts
    return v


def remove_vehicle(
    subscription: VehicleSubscription,
    vehicle_id: str,
    *,
    now: datetime | None = None,
) -> Vehicle | None:
    """Remove the vehicle if present. A subscription may end up with no vehicles."""
    removed = None
    kept: list[Vehicle] = []
    for v in subscription.vehicles:
        if v.id == vehicle_id and removed is None:
            removed = v
        else:
            kept.append(v)
    subscription.vehicles = kept
    subscription.updated_at = now or datetime.utcnow()
    return removed


def next_vehicle_id(existing_ids: Iterable[str]) -> str:
    highest = 0
    for vid in existing_ids:
        _, _, suffix = (vid or "").rpartition("-")
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"veh-{highest + 1:03d}"


def validate_vehicle_payload(payload: dict[str, Any]) -> list[ValidationError]:
    errs: list[ValidationError] = []
    for key, label in (
        ("make", "Make"),
        ("model", "Model"),
        ("color", "Color"),
        ("license_plate", "License plate"),
    ):
        if not (payload.get(key) or "").strip():
            errs.append(ValidationError(key, f"{label} is required."))
    if not _VIN_RE.match((payload.get("vin") or "").strip()):
        errs.append(ValidationError("vin", "VIN must be 1-17 letters or digits."))
    year = (payload.get("year") or "").strip()
    if not year.isdigit() or not (1900 <= int(year) <= date.today().year + 1):
        errs.append(ValidationError("year", "Year must be a valid model year."))
    return errs


def build_vehicle(payload: dict[str, Any]) -> NewVehicle:
    return NewVehicle(
        vin=_norm_vin(payload.get("vin")),
        make=(payload.get("make") or "").strip(),
        model=(payload.get("model") or "").strip(),
        year=int((payload.get("year") or "0").strip()),
        color=(payload.get("color") or "").strip(),
        license_plate=(payload.get("license_plate") or "").strip().upper(),
    )


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def monthly_amount(billing: BillingInfo) -> Decimal:
    months = _MONTHS_PER_PERIOD[BillingFrequency(billing.frequency)]
    return (_to_decimal(billing.amount) / months).quantize(CENT, rounding=ROUND_HALF_UP)


def monthly_revenue(subscriptions: Iterable[VehicleSubscription]) -> Decimal:
    """Sum of active subscriptions normalized to a monthly figure."""
    total = Decimal("0")
    for sub in subscriptions:
        if sub.status != SubscriptionStatus.ACTIVE:
            continue
        months = _MONTHS_PER_PERIOD[BillingFrequency(sub.billing_info.frequency)]
        total += _to_decimal(sub.billing_info.amount) / months
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def _add_months(value: datetime, months: int) -> datetime:
    m = value.month - 1 + months
    year = value.year + m // 12
    month = m % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_billing_date(start: datetime, frequency: BillingFrequency | str) -> datetime:
    return _add_months(start, _MONTHS_PER_PERIOD[BillingFrequency(frequency)])


def payment_method_display(pm: PaymentMethod | None) -> str:
    if isinstance(pm, CardPayment):
        return f"{pm.card_brand} •••• {pm.card_last4}"
    if isinstance(pm, BankTransferPayment):
        return f"Bank Account •••• {pm.bank_account_last4}"
    if isinstance(pm, PayPalPayment):
        return f"PayPal ({pm.paypal_email})"
    return "Unknown"


def discount_display(discount: Discount | None) -> str:
    if discount is None:
        return ""
    if discount.percentage is not None:
        return f"{discount.percentage.normalize():f}% off"
    if discount.amount is not None:
        return f"${discount.amount.quantize(CENT)} off"
    return ""


# ---------------------------------------------------------------------------
# New subscription form
# ---------------------------------------------------------------------------


def _parse_decimal(raw: Any) -> Decimal | None:
    try:
        d = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def _parse_date(raw: Any) -> datetime | None:
    try:
        return datetime.strptime(str(raw or "").strip(), "%Y-%m-%d")
    except ValueError:
        return None


def _parse_int(raw: Any) -> int | None:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def validate_new_subscription(payload: dict[str, Any]) -> list[ValidationError]:
    """
    Payload keys mirror the new-subscription form. location_ids is a list;
    everything else is a raw string from request.form.
    """
    errs: list[ValidationError] = []
    if not (payload.get("customer_id") or "").strip():
        errs.append(ValidationError("customer_id", "Customer ID is required"))
    if not payload.get("location_ids"):
        errs.append(ValidationError("location_ids", "Please select at least one location"))

    try:
        PlanType(payload.get("plan_type") or "")
    except ValueError:
        errs.append(ValidationError("plan_type", "Choose a plan type."))
    try:
        BillingFrequency(payload.get("frequency") or "")
    except ValueError:
        errs.append(ValidationError("frequency", "Choose a billing frequency."))

    for key in ("max_vehicles", "max_washes_per_month"):
        n = _parse_int(payload.get(key))
        if n is None or n < 1:
            errs.append(ValidationError(key, "Must be a whole number of at least 1."))
    amount = _parse_decimal(payload.get("amount"))
    if amount is None or amount < 0:
        errs.append(ValidationError("amount", "Billing amount must be a non-negative number."))
    if _parse_date(payload.get("start_date")) is None:
        errs.append(ValidationError("start_date", "Start date must be YYYY-MM-DD."))

    ptype = (payload.get("payment_type") or "").strip()
    if ptype == "card":
        last4 = (payload.get("card_last4") or "").strip()
        if not (payload.get("card_brand") or "").strip() or len(last4) != 4 or not last4.isdigit():
            errs.append(ValidationError("payment", "Please enter valid card details"))
    elif ptype == "paypal":
        if not (payload.get("paypal_email") or "").strip():
            errs.append(ValidationError("payment", "Please enter PayPal email"))
    elif ptype == "bank_transfer":
        last4 = (payload.get("bank_account_last4") or "").strip()
        if len(last4) != 4 or not last4.isdigit():
            errs.append(ValidationError("payment", "Please enter valid bank account details"))
    else:
        errs.append(ValidationError("payment", "Choose a payment method."))

    if payload.get("has_discount"):
        dtype = (payload.get("discount_type") or "percentage").strip()
        if dtype == "percentage":
            pct = _parse_decimal(payload.get("discount_percentage"))
            if pct is None or pct <= 0 or pct > 100:
                errs.append(ValidationError("discount", "Discount percentage must be between 1 and 100"))
        else:
            amt = _parse_decimal(payload.get("discount_amount"))
            if amt is None or amt <= 0:
                errs.append(ValidationError("discount", "Discount amount must be greater than 0"))
        if not (payload.get("discount_reason") or "").strip():
            errs.append(ValidationError("discount", "Please provide a reason for the discount"))
        if (payload.get("discount_valid_until") or "").strip() and _parse_date(payload["discount_valid_until"]) is None:
            errs.append(ValidationError("discount", "Discount end date must be YYYY-MM-DD."))
    return errs


def build_payment_method(payload: dict[str, Any], *, payment_id: str) -> PaymentMethod:
    ptype = (payload.get("payment_type") or "").strip()
    if ptype == "card":
        return CardPayment(
            id=payment_id,
            card_brand=(payload.get("card_brand") or "").strip(),
            card_last4=(payload.get("card_last4") or "").strip(),
        )
    if ptype == "paypal":
        return PayPalPayment(id=payment_id, paypal_email=(payload.get("paypal_email") or "").strip())
    if ptype == "bank_transfer":
        return BankTransferPayment(id=payment_id, bank_account_last4=(payload.get("bank_account_last4") or "").strip())
    raise ValueError(f"Unknown payment type: {ptype!r}")


def build_new_subscription(payload: dict[str, Any], *, payment_id: str = "") -> NewSubscription:
    """
    Turn a validated form payload into a NewSubscription (new subscriptions
    start active). An empty payment_id lets the store assign one.
    """
    start = _parse_date(payload.get("start_date"))
    if start is None:
        raise ValueError("Start date must be YYYY-MM-DD.")
    frequency = BillingFrequency(payload.get("frequency"))

    discount = None
    if payload.get("has_discount"):
        valid_until = _parse_date(payload.get("discount_valid_until"))
        if (payload.get("discount_type") or "percentage").strip() == "percentage":
            discount = Discount(
                reason=(payload.get("discount_reason") or "").strip(),
                percentage=_parse_decimal(payload.get("discount_percentage")),
                valid_until=valid_until.date() if valid_until else None,
            )
        else:
            discount = Discount(
                reason=(payload.get("discount_reason") or "").strip(),
                amount=_parse_decimal(payload.get("discount_amount")),
                valid_until=valid_until.date() if valid_until else None,
            )

    return NewSubscription(
        customer_id=(payload.get("customer_id") or "").strip(),
        plan_type=PlanType(payload.get("plan_type")),
        plan_features=PlanFeatures(
            max_vehicles=int(payload["max_vehicles"]),
            max_washes_per_month=int(payload["max_washes_per_month"]),
            detailing_included=bool(payload.get("detailing_included")),
        ),
        status=SubscriptionStatus.ACTIVE,
        start_date=start,
        location_ids=tuple(payload.get("location_ids") or ()),
        amount=_parse_decimal(payload.get("amount")).quantize(CENT),  # type: ignore[union-attr]
        currency="USD",
        frequency=frequency,
        next_billing_date=next_billing_date(start, frequency),
        payment_method=build_payment_method(payload, payment_id=payment_id),
        discount=discount,
    )


# ---------------------------------------------------------------------------
# Modify / transfer
# ---------------------------------------------------------------------------


def validate_modify_payload(payload: dict[str, Any]) -> list[ValidationError]:
    errs: list[ValidationError] = []
    try:
        PlanType(payload.get("plan_type") or "")
    except ValueError:
        errs.append(ValidationError("plan_type", "Choose a plan type."))
    try:
        status = SubscriptionStatus(payload.get("status") or "")
    except ValueError:
        status = None
    if status is None:
        errs.append(ValidationError("status", "Choose a status."))
    for key in ("max_vehicles", "max_washes_per_month"):
        n = _parse_int(payload.get(key))
        if n is None or n < 1:
            errs.append(ValidationError(key, "Must be a whole number of at least 1."))
    amount = _parse_decimal(payload.get("amount"))
    if amount is None or amount < 0:
        errs.append(ValidationError("amount", "Billing amount must be a non-negative number."))
    return errs


def modify_subscription(
    subscription: VehicleSubscription,
    *,
    plan_type: PlanType | str,
    plan_features: PlanFeatures,
    status: SubscriptionStatus | str,
    amount: Decimal,
    now: datetime | None = None,
) -> VehicleSubscription:
    """
    Plan, features, billing amount and status in one edit. Lowering
    max_vehicles below the current vehicle count is allowed; it only blocks
    further additions.
    """
    ts = now or datetime.utcnow()
    subscription.plan_type = PlanType(plan_type)
    subscription.plan_features = plan_features
    subscription.billing_info = replace(subscription.billing_info, amount=_to_decimal(amount).quantize(CENT))
    if SubscriptionStatus(status) != subscription.status:
        set_status(subscription, status, now=ts)
    subscription.updated_at = ts
    return subscription


def transfer_subscription(
    subscription: VehicleSubscription,
    new_customer_id: str,
    *,
    now: datetime | None = None,
) -> VehicleSubscription:
    new_customer_id = (new_customer_id or "").strip()
    if not new_customer_id:
        raise ValueError("Select a customer to transfer to.")
    if new_customer_id == subscription.customer_id:
        raise ValueError("Subscription already belongs to this customer.")
    subscription.customer_id = new_customer_id
    subscription.updated_at = now or datetime.utcnow()
    return subscription


def summarize_customer_subscriptions(subscriptions: Iterable[VehicleSubscription]) -> SubscriptionSummary:
    active = 0
    vehicles = 0
    for sub in subscriptions:
        if sub.status == SubscriptionStatus.ACTIVE:
            active += 1
        vehicles += len(sub.vehicles)
    return SubscriptionSummary(
        has_active_subscription=active > 0,
        active_count=active,
        total_vehicles=vehicles,
    )
