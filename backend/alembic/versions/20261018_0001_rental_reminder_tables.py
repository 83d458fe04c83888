"""Create rental, billing, notification, and reminder queue tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=256), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("phone_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_opt_in", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sms_opt_in", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tenant_occupancies",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("landlord_id", sa.String(length=64), nullable=False),
        sa.Column("property_id", sa.String(length=64), nullable=False),
        sa.Column("property_title", sa.String(length=256), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("contract_end_date", sa.Date(), nullable=True),
        _money("rent_amount"),
        sa.Column("wifi_due_day", sa.Integer(), nullable=True),
        _money("late_payment_fee"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenant_occupancies_tenant_id", "tenant_occupancies", ["tenant_id"], unique=False)
    op.create_index("ix_tenant_occupancies_status", "tenant_occupancies", ["status"], unique=False)

    op.create_table(
        "payment_requests",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("occupancy_id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("landlord_id", sa.String(length=64), nullable=False),
        sa.Column("property_id", sa.String(length=64), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        _money("rent_amount"),
        _money("water_bill"),
        _money("electrical_bill"),
        _money("wifi_bill"),
        _money("other_bills"),
        _money("security_deposit_amount"),
        _money("advance_amount"),
        sa.Column("bills_description", sa.Text(), nullable=False, server_default=""),
        sa.Column("late_fee_applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        _money("late_fee_amount"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_requests_occupancy_id", "payment_requests", ["occupancy_id"], unique=False)
    op.create_index("ix_payment_requests_due_date", "payment_requests", ["due_date"], unique=False)
    op.create_index("ix_payment_requests_status", "payment_requests", ["status"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("property_title", sa.String(length=256), nullable=False, server_default=""),
        sa.Column("booking_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bookings_booking_date", "bookings", ["booking_date"], unique=False)

    op.create_table(
        "messages",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("sender_id", sa.String(length=64), nullable=False),
        sa.Column("receiver_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_messages_receiver_id", "messages", ["receiver_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("recipient", sa.String(length=64), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(length=512), nullable=True),
        sa.Column("reference_id", sa.String(length=64), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_recipient", "notifications", ["recipient"], unique=False)
    op.create_index("ix_notifications_type", "notifications", ["type"], unique=False)
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)

    op.create_table(
        "scheduled_reminders",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("target_id", sa.String(length=64), nullable=False),
        sa.Column("send_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_scheduled_reminders_send_at", "scheduled_reminders", ["send_at"], unique=False)
    op.create_index("ix_scheduled_reminders_sent", "scheduled_reminders", ["sent"], unique=False)

    op.create_table(
        "system_settings",
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("system_settings")

    op.drop_index("ix_scheduled_reminders_sent", table_name="scheduled_reminders")
    op.drop_index("ix_scheduled_reminders_send_at", table_name="scheduled_reminders")
    op.drop_table("scheduled_reminders")

    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_type", table_name="notifications")
    op.drop_index("ix_notifications_recipient", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_messages_receiver_id", table_name="messages")
    op.drop_table("messages")

    op.drop_index("ix_bookings_booking_date", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_payment_requests_status", table_name="payment_requests")
    op.drop_index("ix_payment_requests_due_date", table_name="payment_requests")
    op.drop_index("ix_payment_requests_occupancy_id", table_name="payment_requests")
    op.drop_table("payment_requests")

    op.drop_index("ix_tenant_occupancies_status", table_name="tenant_occupancies")
    op.drop_index("ix_tenant_occupancies_tenant_id", table_name="tenant_occupancies")
    op.drop_table("tenant_occupancies")

    op.drop_table("profiles")
