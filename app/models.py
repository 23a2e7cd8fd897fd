import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, JSON, UniqueConstraint, Boolean, Date, Numeric
from sqlalchemy.orm import relationship

from app.database import Base


# Closed set of subscription tiers, in display order
TIERS = ("free", "trial", "premium", "unlimited", "managed")


def generate_uuid():
    return str(uuid.uuid4())


def utc_now():
    return datetime.now(timezone.utc)


def ensure_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    """
    One row per extension install/account.

    `extension_user_id` is the stable identifier the browser extension sends
    with every call. Billing columns mirror the Stripe customer/subscription
    the user is linked to and are only written by the billing reconciler.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    extension_user_id = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, nullable=True, index=True)
    tier = Column(String, nullable=False, default="free")  # one of TIERS
    plan_name = Column(String, nullable=True)

    # Stripe identifiers
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, nullable=True, index=True)
    stripe_price_id = Column(String, nullable=True)

    # Subscription lifecycle
    subscription_status = Column(String, nullable=True)  # trialing, active, past_due, canceled, ...
    subscription_start_date = Column(DateTime(timezone=True), nullable=True)
    subscription_end_date = Column(DateTime(timezone=True), nullable=True)
    subscription_cancel_at = Column(DateTime(timezone=True), nullable=True)
    trial_end_date = Column(DateTime(timezone=True), nullable=True)

    # Student discount eligibility (NULL expiry = does not expire)
    student_verified = Column(Boolean, default=False, nullable=False)
    student_verified_at = Column(DateTime(timezone=True), nullable=True)
    student_verification_expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now)

    usage_records = relationship("UsageRecord", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)


class ModelConfig(Base):
    """
    AI model assigned to a tier, with the pricing used for cost accounting.

    Prices are in dollars per 1M tokens. Edited by administrators; read on
    every processing request (through the config cache).
    """
    __tablename__ = "model_configs"

    id = Column(String, primary_key=True, default=generate_uuid)
    tier = Column(String, nullable=False, unique=True, index=True)
    model_id = Column(String, nullable=False)  # OpenRouter id: anthropic/claude-sonnet-4.5
    model_name = Column(String, nullable=False)  # Display name
    max_output_tokens = Column(Integer, nullable=False, default=8192)
    cost_per_1m_input = Column(Numeric(10, 4, asdecimal=False), nullable=False, default=0)
    cost_per_1m_output = Column(Numeric(10, 4, asdecimal=False), nullable=False, default=0)
    context_window = Column(Integer, nullable=True)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class UsageRecord(Base):
    """
    Per-user, per-day usage totals.

    Rows are only ever written through the usage ledger's atomic
    insert-or-add upsert keyed on (user_id, date).
    """
    __tablename__ = "user_usage"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    extension_user_id = Column(String, nullable=False, index=True)  # Denormalized for reporting
    date = Column(Date, nullable=False, index=True)
    videos_processed = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    api_calls = Column(Integer, nullable=False, default=0)
    # Dollars; sub-cent precision is needed since single chunks cost fractions of a cent
    cost_incurred = Column(Numeric(12, 6, asdecimal=False), nullable=False, default=0)

    user = relationship("User", back_populates="usage_records")

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="unique_user_usage_day"),
    )


class SystemSetting(Base):
    """
    Runtime-tunable key/value configuration.

    Known keys:
    - openrouter_api_key: shared AI-provider key (stored encrypted)
    - require_api_key_for_<tier>: "true"/"false"
    """
    __tablename__ = "system_settings"

    id = Column(String, primary_key=True, default=generate_uuid)
    setting_key = Column(String, nullable=False, unique=True, index=True)
    setting_value = Column(Text, nullable=True)
    is_secret = Column(Boolean, default=False, nullable=False)  # Value is Fernet-encrypted
    description = Column(Text, nullable=True)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now)


class PaymentEvent(Base):
    """
    Invoice outcomes received from Stripe.

    event_key is "<invoice_id>:<status>:<attempt>" so webhook replays are no-ops.
    """
    __tablename__ = "payment_events"

    id = Column(String, primary_key=True, default=generate_uuid)
    event_key = Column(String, nullable=False, unique=True)
    extension_user_id = Column(String, nullable=True, index=True)
    amount = Column(Integer, nullable=True)  # cents
    currency = Column(String, nullable=True)
    status = Column(String, nullable=False)  # succeeded, failed
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)


class AdminAction(Base):
    """Audit trail for administrative mutations."""
    __tablename__ = "admin_actions"

    id = Column(String, primary_key=True, default=generate_uuid)
    admin_email = Column(String, nullable=False)
    action = Column(String, nullable=False, index=True)  # UPDATE_SETTING, UPDATE_MODEL, ...
    target_entity = Column(String, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
