"""
Billing events parsed from Stripe webhook payloads.

Each event type we act on becomes its own dataclass; everything else
becomes IgnoredEvent. Payloads are plain dicts (the verified webhook body),
and all timestamps are converted from Stripe's unix seconds to aware UTC
datetimes here, so handlers never look at the wall clock.

Newer Stripe API versions moved a few fields (current_period_* onto the
subscription item, invoice.subscription under invoice.parent); both shapes
are accepted.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def from_timestamp(value) -> Optional[datetime]:
    """Unix seconds -> aware UTC datetime (None passes through)."""
    if value is None or value == "":
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(obj: dict) -> dict:
    items = (obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """The subscription fields the reconciler reads."""
    id: str
    customer_id: Optional[str]
    status: Optional[str]
    price_id: Optional[str]
    item_id: Optional[str]
    metadata: dict = field(default_factory=dict)
    start_date: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    unit_amount: Optional[int] = None
    quantity: int = 1

    @classmethod
    def from_stripe(cls, obj: dict) -> "SubscriptionSnapshot":
        item = _first_item(obj)
        price = item.get("price") or {}
        return cls(
            id=obj.get("id"),
            customer_id=obj.get("customer"),
            status=obj.get("status"),
            price_id=price.get("id"),
            item_id=item.get("id"),
            metadata=dict(obj.get("metadata") or {}),
            start_date=from_timestamp(obj.get("start_date")),
            current_period_start=from_timestamp(obj.get("current_period_start") or item.get("current_period_start")),
            current_period_end=from_timestamp(obj.get("current_period_end") or item.get("current_period_end")),
            trial_end=from_timestamp(obj.get("trial_end")),
            cancel_at=from_timestamp(obj.get("cancel_at")),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            canceled_at=from_timestamp(obj.get("canceled_at")),
            ended_at=from_timestamp(obj.get("ended_at")),
            unit_amount=price.get("unit_amount"),
            quantity=int(item.get("quantity") or 1),
        )

    @property
    def grace_period_end(self) -> Optional[datetime]:
        """
        When access ends for a cancel-at-period-end subscription.

        A trialing subscription ends at trial_end; its period fields
        describe the trial window's billing cycle, not the access end.
        """
        if self.status == "trialing" and self.trial_end is not None:
            return self.trial_end
        return self.current_period_end or self.cancel_at or self.trial_end


@dataclass(frozen=True)
class BillingEvent:
    event_id: str
    event_type: str
    created: datetime


@dataclass(frozen=True)
class CheckoutSessionEvent(BillingEvent):
    session_id: str
    mode: Optional[str]
    payment_status: Optional[str]
    customer_id: Optional[str]
    customer_email: Optional[str]
    amount_total: Optional[int]
    metadata: dict

    @property
    def extension_user_id(self) -> Optional[str]:
        return self.metadata.get("extension_user_id")


@dataclass(frozen=True)
class CheckoutCompleted(CheckoutSessionEvent):
    pass


@dataclass(frozen=True)
class CheckoutAsyncPaymentSucceeded(CheckoutSessionEvent):
    pass


@dataclass(frozen=True)
class SubscriptionEvent(BillingEvent):
    subscription: SubscriptionSnapshot


@dataclass(frozen=True)
class SubscriptionCreated(SubscriptionEvent):
    pass


@dataclass(frozen=True)
class SubscriptionUpdated(SubscriptionEvent):
    pass


@dataclass(frozen=True)
class SubscriptionDeleted(SubscriptionEvent):
    pass


@dataclass(frozen=True)
class TrialWillEnd(SubscriptionEvent):
    pass


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    invoice_id: str
    customer_id: Optional[str]
    subscription_id: Optional[str]
    amount: Optional[int]
    currency: Optional[str]
    attempt_count: int
    payment_intent: Optional[str]


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    pass


@dataclass(frozen=True)
class InvoicePaymentFailed(InvoiceEvent):
    pass


@dataclass(frozen=True)
class CustomerDeleted(BillingEvent):
    customer_id: str
    email: Optional[str]


@dataclass(frozen=True)
class IgnoredEvent(BillingEvent):
    pass


def _checkout(cls, base: dict, obj: dict):
    details = obj.get("customer_details") or {}
    return cls(
        **base,
        session_id=obj.get("id"),
        mode=obj.get("mode"),
        payment_status=obj.get("payment_status"),
        customer_id=obj.get("customer"),
        customer_email=details.get("email") or obj.get("customer_email"),
        amount_total=obj.get("amount_total"),
        metadata=dict(obj.get("metadata") or {}),
    )


def _subscription(cls, base: dict, obj: dict):
    return cls(**base, subscription=SubscriptionSnapshot.from_stripe(obj))


def _invoice(cls, base: dict, obj: dict):
    subscription_id = obj.get("subscription")
    if not subscription_id:
        parent = obj.get("parent") or {}
        subscription_id = (parent.get("subscription_details") or {}).get("subscription")
    amount = obj.get("amount_paid") if cls is InvoicePaid else obj.get("amount_due")
    return cls(
        **base,
        invoice_id=obj.get("id"),
        customer_id=obj.get("customer"),
        subscription_id=subscription_id,
        amount=amount,
        currency=obj.get("currency"),
        attempt_count=int(obj.get("attempt_count") or 0),
        payment_intent=obj.get("payment_intent"),
    )


def _customer(cls, base: dict, obj: dict):
    return cls(**base, customer_id=obj.get("id"), email=obj.get("email"))


# Stripe event type -> (variant, builder)
EVENT_TYPES = {
    "checkout.session.completed": (CheckoutCompleted, _checkout),
    "checkout.session.async_payment_succeeded": (CheckoutAsyncPaymentSucceeded, _checkout),
    "customer.subscription.created": (SubscriptionCreated, _subscription),
    "customer.subscription.updated": (SubscriptionUpdated, _subscription),
    "customer.subscription.deleted": (SubscriptionDeleted, _subscription),
    "customer.subscription.trial_will_end": (TrialWillEnd, _subscription),
    "invoice.payment_succeeded": (InvoicePaid, _invoice),
    "invoice.payment_failed": (InvoicePaymentFailed, _invoice),
    "customer.deleted": (CustomerDeleted, _customer),
}

# Every concrete variant parse_event can return
EVENT_VARIANTS = tuple(cls for cls, _ in EVENT_TYPES.values()) + (IgnoredEvent,)


def parse_event(payload: dict) -> BillingEvent:
    """Turn a verified webhook body into a BillingEvent."""
    event_type = payload.get("type") or ""
    base = {
        "event_id": payload.get("id"),
        "event_type": event_type,
        "created": from_timestamp(payload.get("created")) or datetime.now(timezone.utc),
    }
    entry = EVENT_TYPES.get(event_type)
    if entry is None:
        return IgnoredEvent(**base)
    cls, build = entry
    obj = (payload.get("data") or {}).get("object") or {}
    return build(cls, base, obj)
