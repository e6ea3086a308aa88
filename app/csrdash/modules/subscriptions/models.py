from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.csrdash.models import Base


class VehicleSubscription(Base):
    __tablename__ = "vehicle_subscriptions"
    __table_args__ = (
        Index("idx_vehicle_subscriptions_customer_id", "customer_id"),
        Index("idx_vehicle_subscriptions_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # e.g. "sub-001"
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    plan_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    features: Mapped["SubscriptionPlanFeatures | None"] = relationship(
        "SubscriptionPlanFeatures", uselist=False, lazy="selectin"
    )
    billing: Mapped["BillingInfo | None"] = relationship("BillingInfo", uselist=False, lazy="selectin")
    discount: Mapped["BillingDiscount | None"] = relationship("BillingDiscount", uselist=False, lazy="selectin")
    vehicles: Mapped[list["Vehicle"]] = relationship(
        "Vehicle",
        order_by="Vehicle.added_at",
        lazy="selectin",
    )
    locations: Mapped[list["CarWashLocation"]] = relationship(
        "CarWashLocation",
        secondary="subscription_locations",
        order_by="CarWashLocation.name",
        lazy="selectin",
    )


class SubscriptionPlanFeatures(Base):
    __tablename__ = "subscription_plan_features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    max_vehicles: Mapped[int] = mapped_column(Integer, nullable=False)
    max_washes_per_month: Mapped[int] = mapped_column(Integer, nullable=False)
    detailing_included: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class CarWashLocation(Base):
    __tablename__ = "car_wash_locations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # e.g. "loc-001"
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    city: Mapped[str] = mapped_column(Text, nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    zip: Mapped[str] = mapped_column(String(10), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)


class SubscriptionLocation(Base):
    __tablename__ = "subscription_locations"

    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"), primary_key=True
    )
    location_id: Mapped[str] = mapped_column(ForeignKey("car_wash_locations.id", ondelete="CASCADE"), primary_key=True)


class Vehicle(Base):
    __tablename__ = "vehicles"
    __table_args__ = (
        Index("idx_vehicles_subscription_id", "subscription_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # e.g. "veh-007"
    subscription_id: Mapped[str | None] = mapped_column(
        ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"), nullable=True
    )
    # VINs are unique across the whole store, not just within a subscription.
    vin: Mapped[str] = mapped_column(String(17), nullable=False, unique=True)
    make: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str] = mapped_column(Text, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    color: Mapped[str] = mapped_column(Text, nullable=False)
    license_plate: Mapped[str] = mapped_column(String(16), nullable=False)
    added_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)


class PaymentMethod(Base):
    """
    Single table for all payment variants; `type` selects which columns are meaningful.
    card -> card_brand, card_last4; paypal -> paypal_email; bank_transfer -> bank_account_last4
    """

    __tablename__ = "payment_methods"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    card_brand: Mapped[str | None] = mapped_column(String(32), nullable=True)
    card_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)
    paypal_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    bank_account_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)


class BillingInfo(Base):
    __tablename__ = "billing_info"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="monthly")
    next_billing_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    last_billing_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    payment_method_id: Mapped[str] = mapped_column(ForeignKey("payment_methods.id"), nullable=False)

    payment_method: Mapped[PaymentMethod] = relationship("PaymentMethod", lazy="selectin")


class BillingDiscount(Base):
    __tablename__ = "billing_discounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
