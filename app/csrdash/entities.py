"""
Store-independent entity shapes shared by every data backend.

Both the in-memory backend and the SQL backend hand these objects to the views;
nothing above the data layer ever sees an ORM row.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal


class RequestType(str, enum.Enum):
    ADDRESS_CHANGE = "address_change"
    ACCOUNT_ACCESS = "account_access"
    SUBSCRIPTION_MANAGEMENT = "subscription_management"
    BILLING_ISSUE = "billing_issue"
    SERVICE_CANCELLATION = "service_cancellation"
    OTHER = "other"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    # Legacy: present in seed data, never produced by an action.
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class PlanType(str, enum.Enum):
    BASIC = "Basic"
    STANDARD = "Standard"
    PREMIUM = "Premium"
    ENTERPRISE = "Enterprise"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    # Set by an external expiry job only.
    EXPIRED = "expired"


class BillingFrequency(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"


# ---------------------------------------------------------------------------
# CSR requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: datetime
    status: RequestStatus
    updated_by: str
    comment: str | None = None


@dataclass
class CSRRequest:
    id: str
    customer_id: str
    request_type: RequestType
    status: RequestStatus
    details: str
    created_at: datetime
    updated_at: datetime
    history: list[HistoryEntry] = field(default_factory=list)  # newest first
    version: int = 1
    customer_email: str | None = None


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


@dataclass
class Address:
    street: str
    city: str
    state: str
    zip_code: str


@dataclass
class Customer:
    id: str
    first_name: str
    last_name: str
    email: str
    phone: str
    created_at: datetime
    updated_at: datetime
    address: Address | None = None
    profile_picture: str | None = None
    role: str = "customer"
    # Display-only back-references; not enforced.
    subscription_ids: list[str] = field(default_factory=list)
    request_ids: list[str] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Purchase:
    id: str
    customer_id: str
    vehicle_id: str | None
    purchase_date: datetime
    amount: Decimal
    payment_method: str
    covered_by_subscription: bool = False


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@dataclass
class Vehicle:
    id: str
    vin: str
    make: str
    model: str
    year: int
    color: str
    license_plate: str
    added_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return f"{self.year} {self.make} {self.model}"


@dataclass
class PlanFeatures:
    max_vehicles: int
    max_washes_per_month: int
    detailing_included: bool


@dataclass
class CarWashLocation:
    id: str
    name: str
    address: str
    city: str
    state: str
    zip: str
    phone: str
    email: str
    website: str | None = None


@dataclass(frozen=True)
class CardPayment:
    id: str
    card_brand: str
    card_last4: str
    type: str = field(default="card", init=False)


@dataclass(frozen=True)
class PayPalPayment:
    id: str
    paypal_email: str
    type: str = field(default="paypal", init=False)


@dataclass(frozen=True)
class BankTransferPayment:
    id: str
    bank_account_last4: str
    type: str = field(default="bank_transfer", init=False)


PaymentMethod = CardPayment | PayPalPayment | BankTransferPayment


@dataclass(frozen=True)
class Discount:
    reason: str
    percentage: Decimal | None = None
    amount: Decimal | None = None
    valid_until: date | None = None


@dataclass
class BillingInfo:
    amount: Decimal
    currency: str
    frequency: BillingFrequency
    next_billing_date: datetime
    payment_method: PaymentMethod
    last_billing_date: datetime | None = None
    discount: Discount | None = None


@dataclass
class VehicleSubscription:
    id: str
    customer_id: str
    plan_type: PlanType
    plan_features: PlanFeatures
    status: SubscriptionStatus
    billing_info: BillingInfo
    start_date: datetime
    created_at: datetime
    updated_at: datetime
    vehicles: list[Vehicle] = field(default_factory=list)
    locations: list[CarWashLocation] = field(default_factory=list)
    end_date: datetime | None = None
    paused_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int = 1


@dataclass(frozen=True)
class NewVehicle:
    """Vehicle fields as entered by a CSR, before an id is assigned."""

    vin: str
    make: str
    model: str
    year: int
    color: str
    license_plate: str


@dataclass(frozen=True)
class NewSubscription:
    """Everything needed to create a subscription and its dependent records."""

    customer_id: str
    plan_type: PlanType
    plan_features: PlanFeatures
    status: SubscriptionStatus
    start_date: datetime
    location_ids: tuple[str, ...]
    amount: Decimal
    currency: str
    frequency: BillingFrequency
    next_billing_date: datetime
    payment_method: PaymentMethod
    discount: Discount | None = None


@dataclass(frozen=True)
class DeleteResult:
    success: bool
    error: str | None = None
