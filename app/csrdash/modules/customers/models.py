from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.csrdash.models import Base


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        Index("idx_customers_last_name", "last_name"),
        Index("idx_customers_phone", "phone"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)  # e.g. "cust-1001"
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    profile_picture: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="customer")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    address: Mapped["CustomerAddress | None"] = relationship(
        "CustomerAddress",
        back_populates="customer",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class CustomerAddress(Base):
    __tablename__ = "customer_addresses"

    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), primary_key=True)
    street: Mapped[str] = mapped_column(Text, nullable=False)
    city: Mapped[str] = mapped_column(Text, nullable=False)
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    zip_code: Mapped[str] = mapped_column(String(10), nullable=False)

    customer: Mapped[Customer] = relationship("Customer", back_populates="address", lazy="selectin")


class Purchase(Base):
    __tablename__ = "purchases"
    __table_args__ = (
        Index("idx_purchases_customer_id", "customer_id", "purchase_date"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    # Not a foreign key: purchase history outlives vehicles removed from a subscription.
    vehicle_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    purchase_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    covered_by_subscription: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
