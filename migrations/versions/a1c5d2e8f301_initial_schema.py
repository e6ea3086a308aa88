"""initial schema: auth, audit, customers, requests, subscriptions

Revision ID: a1c5d2e8f301
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "a1c5d2e8f301"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=False),
        nullable=nullable,
        server_default=None if nullable else sa.func.current_timestamp(),
    )


def upgrade() -> None:
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    def _create(name: str, *cols, indexes: tuple[tuple[str, list[str]], ...] = ()) -> None:
        if name in existing_tables:
            return
        op.create_table(name, *cols)
        for idx_name, idx_cols in indexes:
            op.create_index(idx_name, name, idx_cols)
        existing_tables.add(name)

    # -- auth / audit --------------------------------------------------------
    _create(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(128), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts("created_at"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    _create(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("key", name="uq_roles_key"),
    )
    _create(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        _ts("created_at"),
        sa.UniqueConstraint("key", name="uq_permissions_key"),
    )
    _create(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    _create(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column(
            "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
        ),
    )
    _create(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _ts("created_at"),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        indexes=(
            ("idx_audit_events_created_at", ["created_at"]),
            ("idx_audit_events_entity", ["entity_type", "entity_id"]),
        ),
    )

    # -- customers -----------------------------------------------------------
    _create(
        "customers",
        sa.Column("id", sa.String(32), primary_key=True, nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False, server_default=""),
        sa.Column("profile_picture", sa.Text(), nullable=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="customer"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("email", name="uq_customers_email"),
        indexes=(
            ("idx_customers_last_name", ["last_name"]),
            ("idx_customers_phone", ["phone"]),
        ),
    )
    _create(
        "customer_addresses",
        sa.Column(
            "customer_id", sa.String(32), sa.ForeignKey("customers.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("street", sa.Text(), nullable=False),
        sa.Column("city", sa.Text(), nullable=False),
        sa.Column("state", sa.String(2), nullable=False),
        sa.Column("zip_code", sa.String(10), nullable=False),
    )
    _create(
        "purchases",
        sa.Column("id", sa.String(32), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(32), sa.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("vehicle_id", sa.String(32), nullable=True),
        sa.Column("purchase_date", sa.DateTime(timezone=False), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False),
        sa.Column("covered_by_subscription", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at"),
        _ts("updated_at"),
        indexes=(("idx_purchases_customer_id", ["customer_id", "purchase_date"]),),
    )

    # -- requests ------------------------------------------------------------
    _create(
        "csr_requests",
        sa.Column("id", sa.String(32), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(32), sa.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("request_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("details", sa.Text(), nullable=False, server_default=""),
        _ts("created_at"),
        _ts("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        indexes=(
            ("idx_csr_requests_status", ["status", "created_at"]),
            ("idx_csr_requests_customer_id", ["customer_id"]),
        ),
    )
    _create(
        "csr_request_history",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "request_id", sa.String(32), sa.ForeignKey("csr_requests.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("timestamp", sa.DateTime(timezone=False), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("updated_by", sa.String(320), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        indexes=(("idx_csr_request_history_request_id", ["request_id"]),),
    )

    # -- subscriptions -------------------------------------------------------
    _create(
        "vehicle_subscriptions",
        sa.Column("id", sa.String(32), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(32), sa.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("start_date", sa.DateTime(timezone=False), nullable=False),
        _ts("end_date", nullable=True),
        _ts("paused_at", nullable=True),
        _ts("cancelled_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        indexes=(
            ("idx_vehicle_subscriptions_customer_id", ["customer_id"]),
            ("idx_vehicle_subscriptions_status", ["status"]),
        ),
    )
    _create(
        "subscription_plan_features",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "subscription_id",
            sa.String(32),
            sa.ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("max_vehicles", sa.Integer(), nullable=False),
        sa.Column("max_washes_per_month", sa.Integer(), nullable=False),
        sa.Column("detailing_included", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("subscription_id", name="uq_subscription_plan_features_subscription_id"),
    )
    _create(
        "car_wash_locations",
        sa.Column("id", sa.String(32), primary_key=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("city", sa.Text(), nullable=False),
        sa.Column("state", sa.String(2), nullable=False),
        sa.Column("zip", sa.String(10), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("website", sa.Text(), nullable=True),
    )
    _create(
        "subscription_locations",
        sa.Column(
            "subscription_id",
            sa.String(32),
            sa.ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "location_id", sa.String(32), sa.ForeignKey("car_wash_locations.id", ondelete="CASCADE"), primary_key=True
        ),
    )
    _create(
        "vehicles",
        sa.Column("id", sa.String(32), primary_key=True, nullable=False),
        sa.Column(
            "subscription_id",
            sa.String(32),
            sa.ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("vin", sa.String(17), nullable=False),
        sa.Column("make", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("color", sa.Text(), nullable=False),
        sa.Column("license_plate", sa.String(16), nullable=False),
        _ts("added_at", nullable=True),
        sa.UniqueConstraint("vin", name="uq_vehicles_vin"),
        indexes=(("idx_vehicles_subscription_id", ["subscription_id"]),),
    )
    _create(
        "payment_methods",
        sa.Column("id", sa.String(32), primary_key=True, nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("card_brand", sa.String(32), nullable=True),
        sa.Column("card_last4", sa.String(4), nullable=True),
        sa.Column("paypal_email", sa.String(320), nullable=True),
        sa.Column("bank_account_last4", sa.String(4), nullable=True),
    )
    _create(
        "billing_info",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "subscription_id",
            sa.String(32),
            sa.ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("frequency", sa.String(16), nullable=False, server_default="monthly"),
        sa.Column("next_billing_date", sa.DateTime(timezone=False), nullable=False),
        _ts("last_billing_date", nullable=True),
        sa.Column("payment_method_id", sa.String(32), sa.ForeignKey("payment_methods.id"), nullable=False),
        sa.UniqueConstraint("subscription_id", name="uq_billing_info_subscription_id"),
    )
    _create(
        "billing_discounts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "subscription_id",
            sa.String(32),
            sa.ForeignKey("vehicle_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("valid_until", sa.Date(), nullable=True),
        sa.UniqueConstraint("subscription_id", name="uq_billing_discounts_subscription_id"),
    )


def downgrade() -> None:
    for name in (
        "billing_discounts",
        "billing_info",
        "payment_methods",
        "vehicles",
        "subscription_locations",
        "car_wash_locations",
        "subscription_plan_features",
        "vehicle_subscriptions",
        "csr_request_history",
        "csr_requests",
        "purchases",
        "customer_addresses",
        "customers",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(name)
