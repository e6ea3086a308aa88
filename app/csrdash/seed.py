"""
Demo data: four customers, six requests, four subscriptions.

seed_data() builds fresh objects on every call, so callers may mutate what
they get back. The in-memory backend starts from it and
scripts/seed_demo_data.py loads the same records into the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from app.csrdash.entities import (
    Address,
    BankTransferPayment,
    BillingFrequency,
    BillingInfo,
    CardPayment,
    CarWashLocation,
    Customer,
    CSRRequest,
    Discount,
    HistoryEntry,
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

SEED_ACTOR = "csr-001"


@dataclass
class SeedData:
    customers: list[Customer]
    requests: list[CSRRequest]
    locations: list[CarWashLocation]
    subscriptions: list[VehicleSubscription]
    purchases: list[Purchase]


def _ts(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d %H:%M")


def _h(when: str, status: RequestStatus, comment: str) -> HistoryEntry:
    return HistoryEntry(timestamp=_ts(when), status=status, updated_by=SEED_ACTOR, comment=comment)


def _customers() -> list[Customer]:
    created = _ts("2025-01-15 09:00")
    rows = [
        ("cust-1001", "Alice", "Johnson", "alice.johnson@example.com", "5551234567",
         Address("123 Main St", "Springfield", "IL", "62701")),
        ("cust-1002", "Bob", "Martinez", "bob.martinez@example.com", "5552345678",
         Address("45 Oak Ave", "Austin", "TX", "73301")),
        ("cust-1003", "Carol", "Nguyen", "carol.nguyen@example.com", "5553456789",
         Address("789 Pine Rd", "Portland", "OR", "97201")),
        ("cust-1004", "David", "Smith", "david.smith@example.com", "5554567890",
         Address("12 Elm St", "Denver", "CO", "80202-1234")),
    ]
    return [
        Customer(
            id=cid,
            first_name=first,
            last_name=last,
            email=email,
            phone=phone,
            address=addr,
            created_at=created,
            updated_at=created,
        )
        for cid, first, last, email, phone, addr in rows
    ]


def _requests() -> list[CSRRequest]:
    P, A, R, C = RequestStatus.PENDING, RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.COMPLETED
    specs = [
        ("req-001", "cust-1001", RequestType.ADDRESS_CHANGE,
         "Changing address from 123 Old St to 456 New Ave",
         [_h("2025-06-01 10:00", P, "Initial request received")]),
        ("req-002", "cust-1002", RequestType.ACCOUNT_ACCESS,
         "Forgot my password and need access to my account",
         [
             _h("2025-06-02 11:00", A, "Access granted after verification"),
             _h("2025-06-02 10:00", P, "Customer verified identity via security questions"),
             _h("2025-06-02 09:30", P, "Initial request received"),
         ]),
        ("req-003", "cust-1003", RequestType.SUBSCRIPTION_MANAGEMENT,
         "I'd like to change my subscription to the Basic plan",
         [
             _h("2025-06-03 16:00", R, "Subscription change rejected due to plan restrictions"),
             _h("2025-06-03 14:30", P, "Explained to customer that primary location does not support Basic plan"),
             _h("2025-06-03 14:15", P, "Initial request received"),
         ]),
        ("req-004", "cust-1004", RequestType.BILLING_ISSUE,
         "I was charged twice for my last bill",
         [_h("2025-06-04 08:45", P, "Billing issue reported by customer")]),
        ("req-005", "cust-1004", RequestType.SERVICE_CANCELLATION,
         "I'm relocating and need to cancel my service",
         [
             _h("2025-06-05 13:30", C, "Service cancellation processed successfully"),
             _h("2025-06-05 12:30", P, "Customer confirmed relocation and requested cancellation"),
             _h("2025-06-05 12:00", P, "Initial request received"),
         ]),
        ("req-006", "cust-1001", RequestType.OTHER,
         "I'd like to learn more about your services!",
         [_h("2025-06-06 15:00", P, "Initial request received")]),
    ]
    out = []
    for rid, cid, rtype, details, history in specs:
        out.append(
            CSRRequest(
                id=rid,
                customer_id=cid,
                request_type=rtype,
                status=history[0].status,
                details=details,
                created_at=history[-1].timestamp,
                updated_at=history[0].timestamp,
                history=history,
            )
        )
    return out


def _locations() -> list[CarWashLocation]:
    return [
        CarWashLocation("loc-001", "Sparkle Wash Downtown", "100 Center St", "Springfield", "IL", "62701",
                        "5550001000", "downtown@sparklewash.example.com", "https://sparklewash.example.com/downtown"),
        CarWashLocation("loc-002", "Sparkle Wash Northside", "2200 North Blvd", "Springfield", "IL", "62702",
                        "5550002000", "northside@sparklewash.example.com"),
        CarWashLocation("loc-003", "Sparkle Wash Riverside", "8 River Rd", "Portland", "OR", "97201",
                        "5550003000", "riverside@sparklewash.example.com"),
    ]


def _vehicle(vid: str, vin: str, make: str, model: str, year: int, color: str, plate: str, added: str) -> Vehicle:
    return Vehicle(id=vid, vin=vin, make=make, model=model, year=year, color=color,
                   license_plate=plate, added_at=_ts(added))


def _subscriptions(locations: list[CarWashLocation]) -> list[VehicleSubscription]:
    loc = {location.id: location for location in locations}
    created = _ts("2025-02-01 09:00")
    return [
        VehicleSubscription(
            id="sub-001",
            customer_id="cust-1001",
            plan_type=PlanType.STANDARD,
            plan_features=PlanFeatures(2, 8, False),
            status=SubscriptionStatus.ACTIVE,
            vehicles=[
                _vehicle("veh-001", "1HGCM82633A004352", "Honda", "Accord", 2019, "Silver", "ABC1234", "2025-02-01 09:00"),
                _vehicle("veh-002", "2T1BURHE0JC123456", "Toyota", "Corolla", 2018, "Blue", "XYZ5678", "2025-03-10 14:00"),
            ],
            locations=[loc["loc-001"], loc["loc-002"]],
            billing_info=BillingInfo(
                amount=Decimal("49.99"),
                currency="USD",
                frequency=BillingFrequency.MONTHLY,
                next_billing_date=_ts("2025-07-01 00:00"),
                last_billing_date=_ts("2025-06-01 00:00"),
                payment_method=CardPayment(id="pm-001", card_brand="Visa", card_last4="4242"),
            ),
            start_date=created,
            created_at=created,
            updated_at=_ts("2025-03-10 14:00"),
        ),
        VehicleSubscription(
            id="sub-002",
            customer_id="cust-1002",
            plan_type=PlanType.BASIC,
            plan_features=PlanFeatures(1, 4, False),
            status=SubscriptionStatus.ACTIVE,
            vehicles=[
                _vehicle("veh-003", "3FAHP0HA7AR123457", "Ford", "Fusion", 2020, "Black", "JKL9012", "2025-02-15 10:00"),
            ],
            locations=[loc["loc-001"]],
            billing_info=BillingInfo(
                amount=Decimal("89.97"),
                currency="USD",
                frequency=BillingFrequency.QUARTERLY,
                next_billing_date=_ts("2025-08-15 00:00"),
                last_billing_date=_ts("2025-05-15 00:00"),
                payment_method=PayPalPayment(id="pm-002", paypal_email="bob.martinez@example.com"),
            ),
            start_date=_ts("2025-02-15 10:00"),
            created_at=_ts("2025-02-15 10:00"),
            updated_at=_ts("2025-02-15 10:00"),
        ),
        VehicleSubscription(
            id="sub-003",
            customer_id="cust-1003",
            plan_type=PlanType.PREMIUM,
            plan_features=PlanFeatures(3, 12, True),
            status=SubscriptionStatus.PAUSED,
            vehicles=[
                _vehicle("veh-004", "5YJ3E1EA7KF317000", "Tesla", "Model 3", 2021, "White", "EV12345", "2025-01-20 12:00"),
            ],
            locations=[loc["loc-002"], loc["loc-003"]],
            billing_info=BillingInfo(
                amount=Decimal("999.00"),
                currency="USD",
                frequency=BillingFrequency.ANNUAL,
                next_billing_date=_ts("2026-01-20 00:00"),
                last_billing_date=_ts("2025-01-20 00:00"),
                payment_method=BankTransferPayment(id="pm-003", bank_account_last4="6789"),
                discount=Discount(reason="Loyalty discount", percentage=Decimal("10"), valid_until=date(2025, 12, 31)),
            ),
            start_date=_ts("2025-01-20 12:00"),
            paused_at=_ts("2025-05-01 09:00"),
            created_at=_ts("2025-01-20 12:00"),
            updated_at=_ts("2025-05-01 09:00"),
        ),
        VehicleSubscription(
            id="sub-004",
            customer_id="cust-1004",
            plan_type=PlanType.ENTERPRISE,
            plan_features=PlanFeatures(5, 50, True),
            status=SubscriptionStatus.CANCELLED,
            vehicles=[
                _vehicle("veh-005", "1FTFW1ET5DFC10312", "Ford", "F-150", 2017, "Red", "TRK4321", "2025-03-01 08:00"),
            ],
            locations=[loc["loc-001"]],
            billing_info=BillingInfo(
                amount=Decimal("1199.94"),
                currency="USD",
                frequency=BillingFrequency.SEMI_ANNUAL,
                next_billing_date=_ts("2025-09-01 00:00"),
                last_billing_date=_ts("2025-03-01 00:00"),
                payment_method=CardPayment(id="pm-004", card_brand="Mastercard", card_last4="5555"),
            ),
            start_date=_ts("2025-03-01 08:00"),
            end_date=_ts("2025-06-05 13:30"),
            cancelled_at=_ts("2025-06-05 13:30"),
            created_at=_ts("2025-03-01 08:00"),
            updated_at=_ts("2025-06-05 13:30"),
        ),
    ]


def _purchases() -> list[Purchase]:
    rows = [
        ("pur-001", "cust-1001", "veh-001", "2025-03-02 10:15", "0.00", "Subscription", True),
        ("pur-002", "cust-1001", "veh-002", "2025-03-12 16:40", "0.00", "Subscription", True),
        ("pur-003", "cust-1001", "veh-001", "2025-04-20 11:05", "24.99", "Visa", False),
        ("pur-004", "cust-1001", "veh-002", "2025-05-18 09:30", "0.00", "Subscription", True),
        ("pur-005", "cust-1002", "veh-003", "2025-03-01 13:00", "0.00", "Subscription", True),
        ("pur-006", "cust-1002", None, "2025-04-11 17:45", "15.00", "PayPal", False),
        ("pur-007", "cust-1003", "veh-004", "2025-02-14 08:20", "39.99", "Bank Transfer", False),
        ("pur-008", "cust-1004", "veh-005", "2025-04-02 12:00", "0.00", "Subscription", True),
    ]
    return [
        Purchase(
            id=pid,
            customer_id=cid,
            vehicle_id=vid,
            purchase_date=_ts(when),
            amount=Decimal(amount),
            payment_method=method,
            covered_by_subscription=covered,
        )
        for pid, cid, vid, when, amount, method, covered in rows
    ]


def seed_data() -> SeedData:
    locations = _locations()
    return SeedData(
        customers=_customers(),
        requests=_requests(),
        locations=locations,
        subscriptions=_subscriptions(locations),
        purchases=_purchases(),
    )
