from datetime import date, datetime
from decimal import Decimal

import pytest

from app.csrdash.entities import (
    BankTransferPayment,
    BillingFrequency,
    BillingInfo,
    CardPayment,
    Discount,
    PayPalPayment,
    PlanType,
    SubscriptionStatus,
)
from app.csrdash.modules.subscriptions.service import (
    PLAN_PRESETS,
    build_new_subscription,
    discount_display,
    monthly_amount,
    monthly_revenue,
    next_billing_date,
    payment_method_display,
    validate_new_subscription,
)
from app.csrdash.seed import seed_data


def test_monthly_revenue_counts_active_only():
    # sub-001 49.99/month + sub-002 89.97/quarter; paused and cancelled are ignored
    assert monthly_revenue(seed_data().subscriptions) == Decimal("79.98")


def test_monthly_revenue_empty():
    assert monthly_revenue([]) == Decimal("0.00")


@pytest.mark.parametrize(
    "sid,expected",
    [
        ("sub-001", "49.99"),
        ("sub-002", "29.99"),
        ("sub-003", "83.25"),
        ("sub-004", "199.99"),
    ],
)
def test_monthly_amount(sid, expected):
    sub = next(s for s in seed_data().subscriptions if s.id == sid)
    assert monthly_amount(sub.billing_info) == Decimal(expected)


@pytest.mark.parametrize(
    "frequency,amount",
    [
        (BillingFrequency.MONTHLY, "100"),
        (BillingFrequency.QUARTERLY, "300"),
        (BillingFrequency.SEMI_ANNUAL, "600"),
        (BillingFrequency.ANNUAL, "1200"),
    ],
)
def test_monthly_amount_prorates_by_frequency(frequency, amount):
    billing = BillingInfo(
        amount=Decimal(amount),
        currency="USD",
        frequency=frequency,
        next_billing_date=datetime(2025, 8, 1),
        payment_method=CardPayment(id="pm-900", card_brand="Visa", card_last4="4242"),
    )
    assert monthly_amount(billing) == Decimal("100.00")


def test_next_billing_date_clamps_to_month_end():
    assert next_billing_date(datetime(2025, 1, 31), BillingFrequency.MONTHLY) == datetime(2025, 2, 28)
    assert next_billing_date(datetime(2024, 1, 31), "monthly") == datetime(2024, 2, 29)
    assert next_billing_date(datetime(2025, 11, 30), BillingFrequency.QUARTERLY) == datetime(2026, 2, 28)
    assert next_billing_date(datetime(2025, 3, 15), BillingFrequency.SEMI_ANNUAL) == datetime(2025, 9, 15)
    assert next_billing_date(datetime(2024, 2, 29), BillingFrequency.ANNUAL) == datetime(2025, 2, 28)


def test_payment_method_display():
    assert payment_method_display(CardPayment(id="pm-1", card_brand="Visa", card_last4="4242")) == "Visa •••• 4242"
    assert payment_method_display(BankTransferPayment(id="pm-2", bank_account_last4="6789")) == "Bank Account •••• 6789"
    assert payment_method_display(PayPalPayment(id="pm-3", paypal_email="a@b.co")) == "PayPal (a@b.co)"
    assert payment_method_display(None) == "Unknown"


def test_discount_display():
    assert discount_display(Discount(reason="Loyalty", percentage=Decimal("10"))) == "10% off"
    assert discount_display(Discount(reason="Promo", amount=Decimal("5"))) == "$5.00 off"
    assert discount_display(None) == ""


def _form(**overrides):
    base = {
        "customer_id": "cust-1003",
        "location_ids": ["loc-001", "loc-003"],
        "plan_type": "Premium",
        "max_vehicles": "3",
        "max_washes_per_month": "12",
        "detailing_included": True,
        "amount": "89.99",
        "frequency": "monthly",
        "start_date": "2025-01-31",
        "payment_type": "card",
        "card_brand": "Visa",
        "card_last4": "1111",
        "has_discount": False,
    }
    base.update(overrides)
    return base


def test_validate_new_subscription_happy_path():
    assert validate_new_subscription(_form()) == []


@pytest.mark.parametrize(
    "overrides,field,message",
    [
        ({"location_ids": []}, "location_ids", "Please select at least one location"),
        ({"card_last4": "12a4"}, "payment", "Please enter valid card details"),
        ({"payment_type": "paypal", "paypal_email": ""}, "payment", "Please enter PayPal email"),
        ({"payment_type": "bank_transfer", "bank_account_last4": "123"}, "payment", "Please enter valid bank account details"),
        (
            {"has_discount": True, "discount_type": "percentage", "discount_percentage": "150", "discount_reason": "x"},
            "discount",
            "Discount percentage must be between 1 and 100",
        ),
        (
            {"has_discount": True, "discount_type": "amount", "discount_amount": "0", "discount_reason": "x"},
            "discount",
            "Discount amount must be greater than 0",
        ),
        (
            {"has_discount": True, "discount_type": "percentage", "discount_percentage": "10", "discount_reason": ""},
            "discount",
            "Please provide a reason for the discount",
        ),
    ],
)
def test_validate_new_subscription_errors(overrides, field, message):
    errs = validate_new_subscription(_form(**overrides))
    assert (field, message) in [(e.field, e.message) for e in errs]


def test_build_new_subscription():
    draft = build_new_subscription(
        _form(
            has_discount=True,
            discount_type="percentage",
            discount_percentage="15",
            discount_reason="Fleet",
            discount_valid_until="2025-12-31",
        )
    )
    assert draft.status == SubscriptionStatus.ACTIVE
    assert draft.plan_type == PlanType.PREMIUM
    assert draft.amount == Decimal("89.99")
    assert draft.next_billing_date == datetime(2025, 2, 28)
    assert draft.location_ids == ("loc-001", "loc-003")
    assert isinstance(draft.payment_method, CardPayment)
    assert draft.payment_method.id == ""
    assert draft.discount == Discount(reason="Fleet", percentage=Decimal("15"), valid_until=date(2025, 12, 31))


def test_plan_presets():
    assert PLAN_PRESETS[PlanType.BASIC].amount == Decimal("29.99")
    assert PLAN_PRESETS[PlanType.PREMIUM].features().detailing_included is True
