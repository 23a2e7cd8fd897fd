"""
Billing reconciler - keeps users' tier/subscription columns in line with Stripe.

Two channels feed it:
- push: verified webhook events, dispatched through handle()
- pull: subscription-status requests, which re-read Stripe and repair drift

Rules every handler follows:
- idempotent: replaying an event leaves the row as the first delivery did
- timestamps come from the event (or the Stripe object), never the wall clock
- a row is only written, and updated_at only bumped, when a field changes
- a tier change evicts the user's config cache entry before returning

A price id missing from the plan catalog raises UnknownPriceError before
anything is written, so the webhook answers 5xx and Stripe redelivers once
the mapping is fixed.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.billing.events import (
    EVENT_VARIANTS,
    BillingEvent,
    CheckoutSessionEvent,
    CheckoutCompleted,
    CheckoutAsyncPaymentSucceeded,
    SubscriptionEvent,
    SubscriptionCreated,
    SubscriptionUpdated,
    SubscriptionDeleted,
    TrialWillEnd,
    InvoiceEvent,
    InvoicePaid,
    InvoicePaymentFailed,
    CustomerDeleted,
    IgnoredEvent,
    SubscriptionSnapshot,
)
from app.billing.plans import PlanCatalog, Plan
from app.config import settings
from app.errors import AppError, ValidationError, NotFoundError, ForbiddenError, UpstreamError
from app.models import User, PaymentEvent, utc_now, ensure_utc
from app.services.user_service import UserService

logger = logging.getLogger(__name__)

# Statuses that keep the paid tier
ENTITLED_STATUSES = ("active", "trialing", "past_due")
# Statuses the previous subscription must be in to be canceled after a lifetime purchase
CANCELABLE_STATUSES = ("active", "trialing")
# Invoice paid moves these back to active
RECOVERABLE_STATUSES = ("past_due", "unpaid", "incomplete")
# Provider-side terminal states
ENDED_STATUSES = ("canceled", "incomplete_expired")


def compute_proration_credit(subscription: SubscriptionSnapshot, now: datetime) -> int:
    """
    Unused-time credit for a subscription being replaced, in cents.

    Linear in the time left in the current period. Trials have paid nothing
    toward the period, so they earn no credit.
    """
    if subscription.status == "trialing":
        return 0
    start = subscription.current_period_start
    end = subscription.current_period_end
    if not start or not end or not subscription.unit_amount or end <= start:
        return 0
    remaining = (end - now).total_seconds()
    fraction = min(max(remaining / (end - start).total_seconds(), 0.0), 1.0)
    return int(round(subscription.unit_amount * subscription.quantity * fraction))


def _same(current, new) -> bool:
    if isinstance(current, datetime) or isinstance(new, datetime):
        return ensure_utc(current) == ensure_utc(new)
    return current == new


class BillingReconciler:
    """Applies Stripe state to local user rows."""

    def __init__(self, db: AsyncSession, gateway, catalog: PlanCatalog, config_cache=None):
        self.db = db
        self.gateway = gateway
        self.catalog = catalog
        self.config_cache = config_cache
        self.users = UserService(db, config_cache)

    # ------------------------------------------------------------------ helpers

    async def _find_user(self, column, value) -> Optional[User]:
        if not value:
            return None
        result = await self.db.execute(select(User).where(column == value))
        return result.scalars().first()

    async def _find_user_for_subscription(self, subscription: SubscriptionSnapshot) -> Optional[User]:
        """Metadata extension_user_id, then subscription id, then customer id."""
        user = await self._find_user(User.extension_user_id, subscription.metadata.get("extension_user_id"))
        if user is None:
            user = await self._find_user(User.stripe_subscription_id, subscription.id)
        if user is None:
            user = await self._find_user(User.stripe_customer_id, subscription.customer_id)
        return user

    async def _apply(self, user: User, changes: dict, at: datetime, reason: str) -> bool:
        """Write only the fields that differ. Returns True if anything changed."""
        changed = {
            name: value for name, value in changes.items()
            if not _same(getattr(user, name), value)
        }
        if not changed:
            logger.debug(f"{reason}: no changes", extra={"extension_user_id": user.extension_user_id})
            return False

        for name, value in changed.items():
            setattr(user, name, value)
        user.updated_at = at
        await self.db.commit()

        if self.config_cache is not None:
            self.config_cache.invalidate_user(user.extension_user_id)

        logger.info(
            f"{reason}: updated {', '.join(sorted(changed))}",
            extra={"extension_user_id": user.extension_user_id, "tier": user.tier},
        )
        return True

    def _is_lifetime(self, user: User) -> bool:
        return user.stripe_subscription_id is None and self.catalog.is_lifetime_price(user.stripe_price_id)

    def _free_changes(self, ended_at: datetime) -> dict:
        return {
            "tier": "free",
            "plan_name": None,
            "stripe_subscription_id": None,
            "stripe_price_id": None,
            "subscription_status": "canceled",
            "subscription_end_date": ended_at,
            "subscription_cancel_at": None,
            "trial_end_date": None,
        }

    def _subscription_changes(self, subscription: SubscriptionSnapshot, plan: Plan) -> dict:
        entitled = subscription.status in ENTITLED_STATUSES
        cancel_at = subscription.cancel_at
        if cancel_at is None and subscription.cancel_at_period_end:
            cancel_at = subscription.grace_period_end
        return {
            "tier": plan.tier if entitled else "free",
            "plan_name": plan.plan_name if entitled else None,
            "stripe_customer_id": subscription.customer_id,
            "stripe_subscription_id": subscription.id,
            "stripe_price_id": subscription.price_id,
            "subscription_status": subscription.status,
            "subscription_start_date": subscription.start_date or subscription.current_period_start,
            "subscription_cancel_at": cancel_at,
            "trial_end_date": subscription.trial_end,
        }

    async def _apply_subscription(self, user: User, subscription: SubscriptionSnapshot, at: datetime, reason: str) -> bool:
        if subscription.status in ENDED_STATUSES:
            # Only the subscription the user is on can end their access
            if user.stripe_subscription_id != subscription.id:
                return False
            return await self._apply(user, self._free_changes(subscription.ended_at or at), at, reason)
        plan = self.catalog.require(subscription.price_id)
        return await self._apply(user, self._subscription_changes(subscription, plan), at, reason)

    # --------------------------------------------------------------- dispatch

    async def handle(self, event: BillingEvent) -> None:
        handler = getattr(self, _HANDLERS[type(event)])
        logger.info(
            f"Billing event {event.event_type}",
            extra={"event_id": event.event_id, "event_type": event.event_type},
        )
        await handler(event)

    # ---------------------------------------------------------- push channel

    async def on_checkout_completed(self, event: CheckoutSessionEvent):
        ext_id = event.extension_user_id
        if not ext_id:
            logger.error("Checkout session without extension_user_id metadata", extra={"session_id": event.session_id})
            return

        user = await self._find_user(User.extension_user_id, ext_id)
        if user is None:
            user = await self._find_user(User.stripe_customer_id, event.customer_id)
        if user is None:
            logger.error("No user for completed checkout", extra={"session_id": event.session_id, "extension_user_id": ext_id})
            return

        if event.mode != "payment":
            # Subscriptions are applied by the subscription events; just link the customer
            if event.customer_id and not user.stripe_customer_id:
                await self._apply(user, {"stripe_customer_id": event.customer_id}, event.created, "checkout completed")
            return

        if event.payment_status != "paid" and not isinstance(event, CheckoutAsyncPaymentSucceeded):
            logger.info(
                "Checkout payment not settled yet, waiting for async payment event",
                extra={"session_id": event.session_id, "payment_status": event.payment_status},
            )
            return

        plan = self.catalog.require(event.metadata.get("price_id"))
        if not plan.is_lifetime:
            logger.warning(
                f"One-time checkout for non-lifetime plan {plan.key}; ignoring",
                extra={"session_id": event.session_id},
            )
            return

        previous_subscription_id = event.metadata.get("previous_subscription_id") or user.stripe_subscription_id

        # Entitlement first; the old subscription is only canceled once the lifetime payment has landed
        await self._apply(user, {
            "tier": plan.tier,
            "plan_name": plan.plan_name,
            "stripe_customer_id": event.customer_id or user.stripe_customer_id,
            "stripe_price_id": plan.price_id,
            "stripe_subscription_id": None,
            "subscription_status": "active",
            "subscription_start_date": event.created,
            "subscription_end_date": None,
            "subscription_cancel_at": None,
            "trial_end_date": None,
        }, event.created, "lifetime activated")

        if previous_subscription_id:
            await self._cancel_replaced_subscription(previous_subscription_id, user)

    async def _cancel_replaced_subscription(self, subscription_id: str, user: User):
        try:
            previous = SubscriptionSnapshot.from_stripe(await self.gateway.retrieve_subscription(subscription_id))
            if previous.status not in CANCELABLE_STATUSES:
                logger.info(
                    f"Previous subscription already {previous.status}, not canceling",
                    extra={"subscription_id": subscription_id},
                )
                return
            await self.gateway.cancel_subscription(subscription_id, prorate=True, invoice_now=True)
            logger.info(
                "Previous subscription canceled with prorated refund",
                extra={"subscription_id": subscription_id, "extension_user_id": user.extension_user_id},
            )
        except UpstreamError as e:
            # Lifetime access stays; the old subscription needs manual cleanup
            logger.error(
                f"Could not cancel previous subscription {subscription_id}: {e.message}",
                extra={"subscription_id": subscription_id, "extension_user_id": user.extension_user_id},
            )

    async def on_subscription_changed(self, event: SubscriptionEvent):
        subscription = event.subscription
        user = await self._find_user_for_subscription(subscription)
        if user is None:
            logger.error("No user for subscription", extra={"subscription_id": subscription.id})
            return

        if self._is_lifetime(user):
            logger.info(
                "Ignoring subscription event for lifetime user",
                extra={"subscription_id": subscription.id, "extension_user_id": user.extension_user_id},
            )
            return

        if (
            subscription.status not in ENTITLED_STATUSES
            and user.stripe_subscription_id
            and user.stripe_subscription_id != subscription.id
            and user.subscription_status in ENTITLED_STATUSES
        ):
            # An abandoned second subscription must not downgrade a paying user
            logger.info(
                f"Ignoring {subscription.status} subscription; user is on another active subscription",
                extra={"subscription_id": subscription.id, "extension_user_id": user.extension_user_id},
            )
            return

        await self._apply_subscription(user, subscription, event.created, event.event_type)

    async def on_subscription_deleted(self, event: SubscriptionDeleted):
        subscription = event.subscription
        user = await self._find_user(User.stripe_subscription_id, subscription.id)
        if user is None:
            logger.info("Deleted subscription not linked to any user", extra={"subscription_id": subscription.id})
            return
        ended_at = subscription.ended_at or subscription.canceled_at or event.created
        await self._apply(user, self._free_changes(ended_at), event.created, "subscription deleted")

    async def _record_payment(self, event: InvoiceEvent, status: str, user: Optional[User]):
        event_key = f"{event.invoice_id}:{status}:{event.attempt_count}"
        existing = await self.db.execute(select(PaymentEvent.id).where(PaymentEvent.event_key == event_key))
        if existing.scalar_one_or_none() is not None:
            return
        self.db.add(PaymentEvent(
            event_key=event_key,
            extension_user_id=user.extension_user_id if user else None,
            amount=event.amount,
            currency=event.currency,
            status=status,
            details={
                "invoice_id": event.invoice_id,
                "subscription_id": event.subscription_id,
                "customer_id": event.customer_id,
                "payment_intent": event.payment_intent,
                "attempt_count": event.attempt_count,
            },
            created_at=event.created,
        ))
        await self.db.commit()

    async def on_invoice_paid(self, event: InvoicePaid):
        user = await self._find_user(User.stripe_subscription_id, event.subscription_id)
        if user is not None and user.subscription_status in RECOVERABLE_STATUSES:
            await self._apply(user, {"subscription_status": "active"}, event.created, "invoice paid")
        if user is None:
            user = await self._find_user(User.stripe_customer_id, event.customer_id)
        await self._record_payment(event, "succeeded", user)

    async def on_invoice_payment_failed(self, event: InvoicePaymentFailed):
        user = await self._find_user(User.stripe_subscription_id, event.subscription_id)
        if user is not None:
            # unpaid and ended subscriptions stay where they are
            if user.subscription_status in ("active", "trialing"):
                await self._apply(user, {"subscription_status": "past_due"}, event.created, "invoice payment failed")
        else:
            user = await self._find_user(User.stripe_customer_id, event.customer_id)
        await self._record_payment(event, "failed", user)

    async def on_trial_will_end(self, event: TrialWillEnd):
        user = await self._find_user(User.stripe_subscription_id, event.subscription.id)
        # Reminder emails are sent by the mailer, outside this service
        logger.info(
            "Trial ending soon",
            extra={
                "subscription_id": event.subscription.id,
                "extension_user_id": user.extension_user_id if user else None,
                "trial_end": event.subscription.trial_end.isoformat() if event.subscription.trial_end else None,
            },
        )

    async def on_customer_deleted(self, event: CustomerDeleted):
        user = await self._find_user(User.stripe_customer_id, event.customer_id)
        if user is None:
            logger.info("Deleted customer not linked to any user", extra={"customer_id": event.customer_id})
            return
        changes = self._free_changes(event.created)
        changes["stripe_customer_id"] = None
        await self._apply(user, changes, event.created, "customer deleted")

    async def on_ignored(self, event: IgnoredEvent):
        logger.debug(f"Unhandled event type {event.event_type}", extra={"event_id": event.event_id})

    # ---------------------------------------------------------- user actions

    async def _require_subscribed_user(self, extension_user_id: str) -> User:
        if not extension_user_id:
            raise ValidationError("Missing required field: extensionUserId")
        user = await self.users.get_by_extension_id(extension_user_id)
        if user is None or not user.stripe_subscription_id:
            raise NotFoundError("No active subscription found", context={"extension_user_id": extension_user_id})
        return user

    async def _check_student(self, user: Optional[User], plan: Plan):
        if not plan.is_student:
            return
        if user is None or not await self.users.is_student_verified(user):
            raise ForbiddenError(
                "Student verification required. Please verify your student status first.",
                context={"price_id": plan.price_id},
            )

    async def cancel_subscription(self, extension_user_id: str, immediate: bool = False) -> dict:
        """
        Cancel now (downgrade immediately) or at period end (keep access
        until the grace period end).
        """
        user = await self._require_subscribed_user(extension_user_id)
        subscription_id = user.stripe_subscription_id

        if immediate:
            canceled = SubscriptionSnapshot.from_stripe(await self.gateway.cancel_subscription(subscription_id))
            ended_at = canceled.ended_at or canceled.canceled_at or utc_now()
            changes = self._free_changes(ended_at)
            # Keep the id so a late subscription.deleted event still finds this user
            changes["stripe_subscription_id"] = subscription_id
            await self._apply(user, changes, ended_at, "subscription canceled")
            return {
                "subscription": {"id": subscription_id, "status": canceled.status},
                "message": "Subscription canceled immediately",
            }

        updated = SubscriptionSnapshot.from_stripe(
            await self.gateway.update_subscription(subscription_id, cancel_at_period_end=True)
        )
        grace_end = updated.grace_period_end
        await self._apply(user, {"subscription_cancel_at": grace_end}, utc_now(), "cancel at period end")
        return {
            "subscription": {
                "id": subscription_id,
                "status": updated.status,
                "cancelAt": grace_end.isoformat() if grace_end else None,
            },
            "message": "Subscription will cancel at the end of the billing period",
        }

    async def change_subscription(self, extension_user_id: str, new_price_id: str) -> dict:
        """Switch the user's subscription to another price, prorated."""
        if not extension_user_id or not new_price_id:
            raise ValidationError("Missing required fields: extensionUserId and newPriceId")
        plan = self.catalog.find(new_price_id)
        if plan is None:
            raise ValidationError(f"Unknown price: {new_price_id}", context={"price_id": new_price_id})
        if plan.is_lifetime:
            raise ValidationError("Lifetime plans are purchased through checkout, not a subscription change")

        user = await self.users.get_by_extension_id(extension_user_id)
        await self._check_student(user, plan)
        user = await self._require_subscribed_user(extension_user_id)

        current = SubscriptionSnapshot.from_stripe(await self.gateway.retrieve_subscription(user.stripe_subscription_id))
        now = utc_now()
        updated = SubscriptionSnapshot.from_stripe(await self.gateway.update_subscription(
            user.stripe_subscription_id,
            items=[{"id": current.item_id, "price": plan.price_id}],
            proration_behavior="create_prorations",
            metadata={"extension_user_id": extension_user_id, "changed_at": now.isoformat()},
        ))

        await self._apply(user, {
            "tier": plan.tier,
            "plan_name": plan.plan_name,
            "stripe_price_id": plan.price_id,
            "subscription_status": updated.status or user.subscription_status,
        }, now, "subscription changed")
        return {
            "subscription": {"id": updated.id, "status": updated.status, "priceId": plan.price_id},
            "message": f"Successfully changed to {plan.plan_name}",
        }

    async def create_checkout(
        self,
        extension_user_id: str,
        price_id: str,
        email: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Create a Stripe checkout session for a plan."""
        if not extension_user_id or not price_id:
            raise ValidationError("Missing required fields: priceId and extensionUserId are required")
        plan = self.catalog.find(price_id)
        if plan is None:
            raise ValidationError(f"Unknown price: {price_id}", context={"price_id": price_id})

        user = await self.users.get_by_extension_id(extension_user_id)
        if user is not None and self._is_lifetime(user):
            # Subscription events are ignored for lifetime users
            raise ValidationError(
                "Lifetime plan already active; no further purchase is needed",
                context={"extension_user_id": extension_user_id, "price_id": price_id},
            )
        await self._check_student(user, plan)

        if user is None:
            user, _ = await self.users.get_or_create(extension_user_id, email)
        customer_id = user.stripe_customer_id
        if not customer_id:
            customer = await self.gateway.create_customer(
                email or user.email, {"extension_user_id": extension_user_id},
            )
            customer_id = customer["id"]
            user.stripe_customer_id = customer_id
            user.updated_at = utc_now()
            await self.db.commit()

        mode = "payment" if plan.is_lifetime else "subscription"
        metadata = {"extension_user_id": extension_user_id, "price_id": price_id}
        params = {
            "customer": customer_id,
            "mode": mode,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url or f"{settings.FRONTEND_URL}/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": cancel_url or f"{settings.FRONTEND_URL}/pricing",
            "metadata": metadata,
        }

        if mode == "subscription":
            subscription_metadata = {"extension_user_id": extension_user_id}
            params["subscription_data"] = {"metadata": subscription_metadata}
            if plan.has_trial:
                subscription_metadata["has_trial"] = "true"
                params["subscription_data"]["trial_period_days"] = plan.trial_days
                params["line_items"].append({
                    "price_data": {
                        "currency": "usd",
                        "product_data": {
                            "name": "Trial Period",
                            "description": f"{plan.trial_days}-day trial access",
                        },
                        "unit_amount": plan.trial_amount_cents,
                    },
                    "quantity": 1,
                })
        elif user.stripe_subscription_id:
            # Lifetime upgrade: the old subscription is canceled with a refund
            # only after this payment succeeds (see on_checkout_completed)
            try:
                current = SubscriptionSnapshot.from_stripe(
                    await self.gateway.retrieve_subscription(user.stripe_subscription_id)
                )
            except UpstreamError as e:
                logger.warning(
                    f"Could not load current subscription for upgrade credit: {e.message}",
                    extra={"extension_user_id": extension_user_id},
                )
                current = None
            if current is not None and current.status in CANCELABLE_STATUSES:
                metadata["previous_subscription_id"] = current.id
                metadata["proration_credit_cents"] = str(compute_proration_credit(current, now or utc_now()))

        session = await self.gateway.create_checkout_session(params)
        logger.info(
            f"Checkout session created for {plan.key}",
            extra={"extension_user_id": extension_user_id, "mode": mode},
        )
        return {"sessionId": session.get("id"), "url": session.get("url")}

    # ----------------------------------------------------------- pull channel

    async def _relink_by_email(self, user: User) -> Optional[SubscriptionSnapshot]:
        """
        Find an active subscription on any Stripe customer with the user's
        email. Covers customers deleted and recreated outside this service.
        """
        if not user.email:
            return None
        for customer in await self.gateway.find_customers_by_email(user.email):
            for raw in await self.gateway.list_subscriptions(customer["id"]):
                subscription = SubscriptionSnapshot.from_stripe(raw)
                if subscription.status in CANCELABLE_STATUSES and self.catalog.find(subscription.price_id):
                    if customer["id"] != user.stripe_customer_id:
                        logger.warning(
                            "Re-linking user to Stripe customer found by email",
                            extra={
                                "extension_user_id": user.extension_user_id,
                                "old_customer_id": user.stripe_customer_id,
                                "new_customer_id": customer["id"],
                            },
                        )
                    return subscription
        return None

    async def get_subscription_status(self, extension_user_id: str, now: Optional[datetime] = None) -> dict:
        """Current subscription, re-read from Stripe, repairing local drift."""
        user = await self.users.get_by_extension_id(extension_user_id)
        if user is None:
            return {"tier": "free", "planName": None, "subscription": None, "repaired": False}

        now = now or utc_now()
        repaired = False
        subscription = None
        lookup_failed = False

        if user.stripe_subscription_id:
            try:
                subscription = SubscriptionSnapshot.from_stripe(
                    await self.gateway.retrieve_subscription(user.stripe_subscription_id)
                )
            except AppError as e:
                if e.status_code != 404:
                    lookup_failed = True
                logger.warning(
                    f"Subscription lookup failed: {e.message}",
                    extra={"extension_user_id": extension_user_id, "status_code": e.status_code},
                )

        if lookup_failed:
            return self._status_from_db(user, repaired=False)

        if not self._is_lifetime(user) and (subscription is None or subscription.status not in ENTITLED_STATUSES):
            try:
                relinked = await self._relink_by_email(user)
            except AppError as e:
                logger.warning(
                    f"Relink by email failed: {e.message}",
                    extra={"extension_user_id": extension_user_id, "status_code": e.status_code},
                )
                return self._status_from_db(user, repaired=False)
            if relinked is not None:
                subscription = relinked

        if subscription is not None:
            if subscription.status in ENDED_STATUSES and user.stripe_subscription_id == subscription.id:
                repaired = await self._apply(
                    user, self._free_changes(subscription.ended_at or subscription.canceled_at or now), now,
                    "subscription ended (pull)",
                )
            elif subscription.status not in ENDED_STATUSES:
                plan = self.catalog.find(subscription.price_id)
                if plan is None:
                    logger.error(
                        "Subscription has a price missing from the plan catalog",
                        extra={"price_id": subscription.price_id, "extension_user_id": extension_user_id},
                    )
                else:
                    repaired = await self._apply(
                        user, self._subscription_changes(subscription, plan), now, "subscription status (pull)",
                    )
        elif user.stripe_subscription_id:
            # Gone from Stripe and nothing to re-link to
            repaired = await self._apply(user, self._free_changes(now), now, "subscription missing (pull)")

        if subscription is None or subscription.id != user.stripe_subscription_id:
            return self._status_from_db(user, repaired=repaired)

        return {
            "tier": user.tier,
            "planName": user.plan_name,
            "subscription": {
                "id": subscription.id,
                "status": subscription.status,
                "currentPeriodEnd": subscription.current_period_end.isoformat() if subscription.current_period_end else None,
                "cancelAtPeriodEnd": subscription.cancel_at_period_end,
                "trialEnd": subscription.trial_end.isoformat() if subscription.trial_end else None,
                "priceId": subscription.price_id,
            },
            "repaired": repaired,
        }

    def _status_from_db(self, user: User, repaired: bool) -> dict:
        def iso(value):
            value = ensure_utc(value)
            return value.isoformat() if value else None

        return {
            "tier": user.tier,
            "planName": user.plan_name,
            "subscription": {
                "id": user.stripe_subscription_id,
                "status": user.subscription_status,
                "cancelAt": iso(user.subscription_cancel_at),
                "endDate": iso(user.subscription_end_date),
            } if user.stripe_subscription_id else None,
            "repaired": repaired,
        }


# Event variant -> handler method. Checked below so a new variant can't be
# added to events.py without a handler.
_HANDLERS = {
    CheckoutCompleted: "on_checkout_completed",
    CheckoutAsyncPaymentSucceeded: "on_checkout_completed",
    SubscriptionCreated: "on_subscription_changed",
    SubscriptionUpdated: "on_subscription_changed",
    SubscriptionDeleted: "on_subscription_deleted",
    TrialWillEnd: "on_trial_will_end",
    InvoicePaid: "on_invoice_paid",
    InvoicePaymentFailed: "on_invoice_payment_failed",
    CustomerDeleted: "on_customer_deleted",
    IgnoredEvent: "on_ignored",
}

_unhandled = set(EVENT_VARIANTS) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"Billing events without a handler: {sorted(cls.__name__ for cls in _unhandled)}")
for _method in set(_HANDLERS.values()):
    if not callable(getattr(BillingReconciler, _method, None)):
        raise RuntimeError(f"BillingReconciler has no handler method {_method}")
