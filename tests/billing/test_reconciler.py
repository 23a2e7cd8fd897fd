"""Tests for the billing reconciler: webhook handlers, user actions, drift repair."""
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from app.billing.events import SubscriptionSnapshot, parse_event
from app.billing.reconciler import BillingReconciler, compute_proration_credit
from app.errors import ConfigurationError, ForbiddenError, NotFoundError, UnknownPriceError, ValidationError
from app.models import PaymentEvent, User, ensure_utc

T0 = 1735689600
DAY = 86400


def at(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def row_state(user: User) -> dict:
    return {column.name: getattr(user, column.name) for column in User.__table__.columns}


@pytest.fixture
def reconciler(db, gateway, catalog, config_cache):
    return BillingReconciler(db, gateway, catalog, config_cache)


@pytest.fixture
def handle(reconciler, stripe_event):
    """Parse and apply one webhook body."""
    async def _handle(event_type: str, obj: dict, created: int = T0):
        await reconciler.handle(parse_event(stripe_event(event_type, obj, created)))
    return _handle


async def reload(db, extension_user_id: str) -> User:
    user = (await db.execute(select(User).where(User.extension_user_id == extension_user_id))).scalar_one()
    await db.refresh(user)
    return user


class TestSubscriptionEvents:
    """Test subscription created/updated/deleted handling."""

    @pytest.mark.asyncio
    async def test_created_sets_paid_tier(self, db, handle, make_user, stripe_subscription):
        await make_user("u1", stripe_customer_id="cus_1")

        await handle("customer.subscription.created", stripe_subscription(metadata={"extension_user_id": "u1"}), T0 + 60)

        user = await reload(db, "u1")
        assert user.tier == "managed"
        assert user.plan_name == "Monthly - Managed"
        assert user.stripe_subscription_id == "sub_1"
        assert user.stripe_price_id == "price_managed_monthly"
        assert user.subscription_status == "active"
        assert ensure_utc(user.updated_at) == at(T0 + 60)

    @pytest.mark.asyncio
    async def test_user_found_by_customer_id(self, db, handle, make_user, stripe_subscription):
        await make_user("u1", stripe_customer_id="cus_1")

        await handle("customer.subscription.created", stripe_subscription(price="price_byok_premium_yearly"))

        assert (await reload(db, "u1")).tier == "premium"

    @pytest.mark.asyncio
    async def test_replayed_update_is_a_no_op(self, db, handle, make_user, stripe_subscription):
        """The second delivery leaves the row exactly as the first did."""
        await make_user("u1", stripe_customer_id="cus_1")
        subscription = stripe_subscription(metadata={"extension_user_id": "u1"}, cancel_at_period_end=True)

        await handle("customer.subscription.updated", subscription, T0 + 60)
        first = row_state(await reload(db, "u1"))

        await handle("customer.subscription.updated", subscription, T0 + 120)
        second = row_state(await reload(db, "u1"))

        assert second == first
        assert ensure_utc(second["updated_at"]) == at(T0 + 60)

    @pytest.mark.asyncio
    async def test_trialing_subscription(self, db, handle, make_user, stripe_subscription):
        await make_user("u1", stripe_customer_id="cus_1")

        await handle("customer.subscription.created", stripe_subscription(status="trialing", trial_end=T0 + 14 * DAY))

        user = await reload(db, "u1")
        assert user.tier == "managed"
        assert user.subscription_status == "trialing"
        assert ensure_utc(user.trial_end_date) == at(T0 + 14 * DAY)

    @pytest.mark.asyncio
    async def test_past_due_keeps_tier(self, db, handle, make_user, stripe_subscription):
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_1")

        await handle("customer.subscription.updated", stripe_subscription(status="past_due"))

        user = await reload(db, "u1")
        assert user.tier == "managed"
        assert user.subscription_status == "past_due"

    @pytest.mark.asyncio
    async def test_unpaid_drops_to_free(self, db, handle, make_user, stripe_subscription):
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_1")

        await handle("customer.subscription.updated", stripe_subscription(status="unpaid"))

        user = await reload(db, "u1")
        assert user.tier == "free"
        assert user.stripe_subscription_id == "sub_1"

    @pytest.mark.asyncio
    async def test_unknown_price_changes_nothing(self, db, handle, make_user, stripe_subscription):
        """An unmapped price is an error, never an implicit free tier."""
        await make_user(
            "u1", tier="premium", plan_name="Premium - BYOK (Annual)",
            stripe_customer_id="cus_1", stripe_subscription_id="sub_old",
            subscription_status="active",
        )
        before = row_state(await reload(db, "u1"))

        with pytest.raises(UnknownPriceError):
            await handle(
                "customer.subscription.created",
                stripe_subscription("sub_2", price="price_unmapped", metadata={"extension_user_id": "u1"}),
            )

        assert row_state(await reload(db, "u1")) == before

    @pytest.mark.asyncio
    async def test_abandoned_second_subscription_ignored(self, db, handle, make_user, stripe_subscription):
        await make_user(
            "u1", tier="managed", stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1", subscription_status="active",
        )

        await handle("customer.subscription.updated", stripe_subscription("sub_2", status="incomplete"))

        user = await reload(db, "u1")
        assert user.tier == "managed"
        assert user.stripe_subscription_id == "sub_1"

    @pytest.mark.asyncio
    async def test_tier_change_evicts_cached_config(self, seeded, db, handle, make_user, stripe_subscription, config_cache):
        await make_user("u1", stripe_customer_id="cus_1")
        assert (await config_cache.get_user_config("u1")).tier == "free"

        await handle("customer.subscription.created", stripe_subscription())

        assert (await config_cache.get_user_config("u1")).tier == "managed"

    @pytest.mark.asyncio
    async def test_deleted_downgrades(self, db, handle, make_user, stripe_subscription):
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_1")

        await handle(
            "customer.subscription.deleted",
            stripe_subscription(status="canceled", ended_at=T0 + 5 * DAY),
            T0 + 5 * DAY,
        )

        user = await reload(db, "u1")
        assert user.tier == "free"
        assert user.plan_name is None
        assert user.stripe_subscription_id is None
        assert user.subscription_status == "canceled"
        assert ensure_utc(user.subscription_end_date) == at(T0 + 5 * DAY)
        assert user.stripe_customer_id == "cus_1"

    @pytest.mark.asyncio
    async def test_deleted_other_subscription_ignored(self, db, handle, make_user, stripe_subscription):
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_2")

        await handle("customer.subscription.deleted", stripe_subscription("sub_1", status="canceled"))

        assert (await reload(db, "u1")).tier == "managed"


class TestCustomerAndInvoiceEvents:
    """Test customer deletion and invoice outcomes."""

    @pytest.mark.asyncio
    async def test_customer_deleted_clears_billing_link(self, db, handle, make_user):
        await make_user(
            "u1", tier="unlimited", plan_name="Unlimited - BYOK (Annual)",
            stripe_customer_id="cus_1", stripe_subscription_id="sub_1",
            stripe_price_id="price_byok_unlimited_yearly", subscription_status="active",
        )

        await handle("customer.deleted", {"id": "cus_1", "email": "a@example.com"})

        user = await reload(db, "u1")
        assert user.tier == "free"
        assert user.stripe_customer_id is None
        assert user.stripe_subscription_id is None
        assert user.stripe_price_id is None

    @pytest.mark.asyncio
    async def test_payment_failed_marks_past_due_once(self, db, handle, make_user):
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_1",
                        subscription_status="active")
        invoice = {"id": "in_1", "customer": "cus_1", "subscription": "sub_1", "amount_due": 2000,
                   "currency": "usd", "attempt_count": 1}

        await handle("invoice.payment_failed", invoice)
        await handle("invoice.payment_failed", invoice)

        user = await reload(db, "u1")
        assert user.subscription_status == "past_due"
        assert user.tier == "managed"
        events = (await db.execute(select(PaymentEvent))).scalars().all()
        assert [(e.event_key, e.status, e.amount) for e in events] == [("in_1:failed:1", "failed", 2000)]

    @pytest.mark.asyncio
    async def test_payment_failed_moves_trial_to_past_due(self, db, handle, make_user):
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_1",
                        subscription_status="trialing")

        await handle("invoice.payment_failed", {"id": "in_1", "customer": "cus_1", "subscription": "sub_1",
                                                "amount_due": 2000, "currency": "usd", "attempt_count": 1})

        assert (await reload(db, "u1")).subscription_status == "past_due"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["incomplete", "unpaid", "canceled"])
    async def test_payment_failed_keeps_later_states(self, db, handle, make_user, status):
        await make_user("u1", stripe_customer_id="cus_1", stripe_subscription_id="sub_1", subscription_status=status)

        await handle("invoice.payment_failed", {"id": "in_4", "customer": "cus_1", "subscription": "sub_1",
                                                "amount_due": 2000, "currency": "usd", "attempt_count": 4})

        assert (await reload(db, "u1")).subscription_status == status
        event = (await db.execute(select(PaymentEvent))).scalar_one()
        assert event.status == "failed"
        assert event.extension_user_id == "u1"

    @pytest.mark.asyncio
    async def test_invoice_paid_recovers(self, db, handle, make_user):
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_1",
                        subscription_status="past_due")

        await handle("invoice.payment_succeeded", {"id": "in_1", "customer": "cus_1", "subscription": "sub_1",
                                                   "amount_paid": 2000, "currency": "usd", "attempt_count": 2})

        assert (await reload(db, "u1")).subscription_status == "active"
        event = (await db.execute(select(PaymentEvent))).scalar_one()
        assert event.extension_user_id == "u1"
        assert event.status == "succeeded"

    @pytest.mark.asyncio
    async def test_ignored_event(self, handle):
        await handle("charge.refunded", {"id": "ch_1"})


class TestLifetimeCheckout:
    """Test one-time lifetime purchases replacing a subscription."""

    def lifetime_session(self, **overrides) -> dict:
        session = {
            "id": "cs_1",
            "mode": "payment",
            "payment_status": "paid",
            "customer": "cus_1",
            "metadata": {
                "extension_user_id": "u1",
                "price_id": "price_byok_lifetime",
                "previous_subscription_id": "sub_old",
            },
        }
        session.update(overrides)
        return session

    @pytest.fixture
    async def subscriber(self, make_user, gateway, stripe_subscription):
        gateway.add_subscription(stripe_subscription("sub_old"))
        return await make_user(
            "u1", tier="managed", stripe_customer_id="cus_1",
            stripe_subscription_id="sub_old", stripe_price_id="price_managed_monthly",
            subscription_status="active",
        )

    @pytest.mark.asyncio
    async def test_grants_lifetime_then_cancels_old(self, db, handle, gateway, subscriber):
        await handle("checkout.session.completed", self.lifetime_session())

        user = await reload(db, "u1")
        assert user.tier == "unlimited"
        assert user.plan_name == "Lifetime - BYOK"
        assert user.stripe_subscription_id is None
        assert user.stripe_price_id == "price_byok_lifetime"
        assert gateway.cancellations == [("sub_old", True, True)]

    @pytest.mark.asyncio
    async def test_cancel_failure_keeps_lifetime(self, db, handle, gateway, subscriber):
        gateway.fail["cancel"] = 500

        await handle("checkout.session.completed", self.lifetime_session())

        assert (await reload(db, "u1")).plan_name == "Lifetime - BYOK"

    @pytest.mark.asyncio
    async def test_old_subscription_events_leave_lifetime_alone(self, db, handle, gateway, subscriber, stripe_subscription):
        await handle("checkout.session.completed", self.lifetime_session())

        ended = stripe_subscription("sub_old", status="canceled", metadata={"extension_user_id": "u1"})
        await handle("customer.subscription.updated", ended)
        await handle("customer.subscription.deleted", ended)

        user = await reload(db, "u1")
        assert user.tier == "unlimited"
        assert user.plan_name == "Lifetime - BYOK"

    @pytest.mark.asyncio
    async def test_waits_for_async_payment(self, db, handle, gateway, subscriber):
        await handle("checkout.session.completed", self.lifetime_session(payment_status="unpaid"))

        assert (await reload(db, "u1")).tier == "managed"
        assert gateway.cancellations == []

        await handle("checkout.session.async_payment_succeeded", self.lifetime_session(payment_status="paid"))

        assert (await reload(db, "u1")).plan_name == "Lifetime - BYOK"

    @pytest.mark.asyncio
    async def test_already_canceled_subscription_not_canceled_again(self, db, handle, gateway, subscriber):
        gateway.subscriptions["sub_old"]["status"] = "canceled"

        await handle("checkout.session.completed", self.lifetime_session())

        assert gateway.cancellations == []

    @pytest.mark.asyncio
    async def test_subscription_checkout_only_links_customer(self, db, handle, make_user):
        await make_user("u2")

        await handle("checkout.session.completed", {
            "id": "cs_2", "mode": "subscription", "payment_status": "paid", "customer": "cus_9",
            "metadata": {"extension_user_id": "u2", "price_id": "price_managed_monthly"},
        })

        user = await reload(db, "u2")
        assert user.stripe_customer_id == "cus_9"
        assert user.tier == "free"


class TestCancelSubscription:
    """Test user-initiated cancellation."""

    @pytest.mark.asyncio
    async def test_trial_cancels_at_trial_end(self, db, reconciler, gateway, make_user, stripe_subscription):
        """A trialing subscription's access ends at trial end, not period end."""
        gateway.add_subscription(stripe_subscription(status="trialing", trial_end=T0 + 14 * DAY, period_end=T0 + 30 * DAY))
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_1",
                        subscription_status="trialing")

        result = await reconciler.cancel_subscription("u1")

        assert result["subscription"]["cancelAt"] == at(T0 + 14 * DAY).isoformat()
        assert gateway.updates == [("sub_1", {"cancel_at_period_end": True})]
        user = await reload(db, "u1")
        assert ensure_utc(user.subscription_cancel_at) == at(T0 + 14 * DAY)
        assert user.tier == "managed"

    @pytest.mark.asyncio
    async def test_active_cancels_at_period_end(self, db, reconciler, gateway, make_user, stripe_subscription):
        gateway.add_subscription(stripe_subscription(period_end=T0 + 30 * DAY))
        await make_user("u1", tier="managed", stripe_subscription_id="sub_1")

        result = await reconciler.cancel_subscription("u1")

        assert result["subscription"]["cancelAt"] == at(T0 + 30 * DAY).isoformat()

    @pytest.mark.asyncio
    async def test_immediate_cancel_downgrades(self, db, reconciler, gateway, make_user, stripe_subscription):
        gateway.add_subscription(stripe_subscription())
        await make_user("u1", tier="managed", stripe_subscription_id="sub_1", subscription_status="active")

        result = await reconciler.cancel_subscription("u1", immediate=True)

        assert result["subscription"]["status"] == "canceled"
        assert gateway.cancellations == [("sub_1", False, False)]
        user = await reload(db, "u1")
        assert user.tier == "free"
        assert user.subscription_status == "canceled"
        assert user.stripe_subscription_id == "sub_1"

    @pytest.mark.asyncio
    async def test_no_subscription(self, reconciler, make_user):
        await make_user("u1")

        with pytest.raises(NotFoundError):
            await reconciler.cancel_subscription("u1")


class TestChangeSubscription:
    """Test prorated plan switches."""

    @pytest.fixture
    async def premium_user(self, gateway, make_user, stripe_subscription):
        gateway.add_subscription(stripe_subscription(price="price_byok_premium_yearly"))
        return await make_user("u1", tier="premium", stripe_customer_id="cus_1", stripe_subscription_id="sub_1",
                               stripe_price_id="price_byok_premium_yearly", subscription_status="active")

    @pytest.mark.asyncio
    async def test_switch_plan(self, db, reconciler, gateway, premium_user):
        result = await reconciler.change_subscription("u1", "price_byok_unlimited_yearly")

        assert result["subscription"]["priceId"] == "price_byok_unlimited_yearly"
        subscription_id, params = gateway.updates[-1]
        assert subscription_id == "sub_1"
        assert params["items"] == [{"id": "si_sub_1", "price": "price_byok_unlimited_yearly"}]
        assert params["proration_behavior"] == "create_prorations"
        user = await reload(db, "u1")
        assert user.tier == "unlimited"
        assert user.plan_name == "Unlimited - BYOK (Annual)"

    @pytest.mark.asyncio
    async def test_unknown_price(self, reconciler, gateway, premium_user):
        with pytest.raises(ValidationError):
            await reconciler.change_subscription("u1", "price_nope")
        assert gateway.updates == []

    @pytest.mark.asyncio
    async def test_lifetime_not_allowed(self, reconciler, premium_user):
        with pytest.raises(ValidationError):
            await reconciler.change_subscription("u1", "price_byok_lifetime")

    @pytest.mark.asyncio
    async def test_student_plan_requires_verification(self, reconciler, gateway, premium_user):
        with pytest.raises(ForbiddenError):
            await reconciler.change_subscription("u1", "price_student_premium_byok")
        assert gateway.updates == []


class TestCreateCheckout:
    """Test checkout session parameters."""

    @pytest.mark.asyncio
    async def test_new_user_and_customer(self, db, reconciler, gateway):
        result = await reconciler.create_checkout("u1", "price_byok_premium_yearly", email="a@example.com")

        assert result == {"sessionId": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}
        [params] = gateway.checkout_sessions
        assert params["customer"] == "cus_new_1"
        assert params["mode"] == "subscription"
        assert params["subscription_data"]["metadata"] == {"extension_user_id": "u1"}
        assert params["metadata"]["price_id"] == "price_byok_premium_yearly"
        user = await reload(db, "u1")
        assert user.stripe_customer_id == "cus_new_1"
        assert user.tier == "free"

    @pytest.mark.asyncio
    async def test_existing_customer_reused(self, reconciler, gateway, make_user):
        await make_user("u1", stripe_customer_id="cus_1")

        await reconciler.create_checkout("u1", "price_managed_annual")

        assert gateway.customers == {}
        assert gateway.checkout_sessions[0]["customer"] == "cus_1"

    @pytest.mark.asyncio
    async def test_trial_plan_adds_trial_fee(self, reconciler, gateway, make_user):
        await make_user("u1", stripe_customer_id="cus_1")

        await reconciler.create_checkout("u1", "price_managed_monthly")

        params = gateway.checkout_sessions[0]
        assert params["subscription_data"]["trial_period_days"] == 14
        assert params["subscription_data"]["metadata"]["has_trial"] == "true"
        assert len(params["line_items"]) == 2
        assert params["line_items"][1]["price_data"]["unit_amount"] == 100

    @pytest.mark.asyncio
    async def test_lifetime_upgrade_carries_credit(self, reconciler, gateway, make_user, stripe_subscription):
        gateway.add_subscription(stripe_subscription(period_start=T0, period_end=T0 + 30 * DAY, unit_amount=2000))
        await make_user("u1", tier="managed", stripe_customer_id="cus_1", stripe_subscription_id="sub_1")

        await reconciler.create_checkout("u1", "price_byok_lifetime", now=at(T0 + 15 * DAY))

        params = gateway.checkout_sessions[0]
        assert params["mode"] == "payment"
        assert "subscription_data" not in params
        assert params["metadata"]["previous_subscription_id"] == "sub_1"
        assert params["metadata"]["proration_credit_cents"] == "1000"
        assert gateway.cancellations == []

    @pytest.mark.asyncio
    async def test_student_plan_requires_verification(self, reconciler, gateway, make_user):
        await make_user("u1")

        with pytest.raises(ForbiddenError):
            await reconciler.create_checkout("u1", "price_student_monthly_managed")
        assert gateway.checkout_sessions == []

    @pytest.mark.asyncio
    async def test_missing_fields(self, reconciler):
        with pytest.raises(ValidationError):
            await reconciler.create_checkout("", "price_managed_monthly")

    @pytest.mark.asyncio
    async def test_lifetime_user_cannot_start_subscription(self, db, reconciler, gateway, make_user):
        await make_user("u1", tier="unlimited", plan_name="Lifetime - BYOK", stripe_customer_id="cus_1",
                        stripe_price_id="price_byok_lifetime", subscription_status="active")

        with pytest.raises(ValidationError):
            await reconciler.create_checkout("u1", "price_managed_monthly")

        assert gateway.checkout_sessions == []
        assert (await reload(db, "u1")).plan_name == "Lifetime - BYOK"


class TestProrationCredit:
    """Test unused-time credit for a replaced subscription."""

    def test_half_period_left(self, stripe_subscription):
        snapshot = SubscriptionSnapshot.from_stripe(stripe_subscription(unit_amount=2000))

        assert compute_proration_credit(snapshot, at(T0 + 15 * DAY)) == 1000

    def test_trial_earns_nothing(self, stripe_subscription):
        snapshot = SubscriptionSnapshot.from_stripe(stripe_subscription(status="trialing", trial_end=T0 + 14 * DAY))

        assert compute_proration_credit(snapshot, at(T0 + DAY)) == 0

    def test_period_over(self, stripe_subscription):
        snapshot = SubscriptionSnapshot.from_stripe(stripe_subscription())

        assert compute_proration_credit(snapshot, at(T0 + 31 * DAY)) == 0


class TestSubscriptionStatus:
    """Test the pull channel and its drift repair."""

    @pytest.mark.asyncio
    async def test_in_sync(self, db, reconciler, gateway, make_user, stripe_subscription):
        gateway.add_subscription(stripe_subscription())
        await make_user("u1", tier="managed", plan_name="Monthly - Managed", stripe_customer_id="cus_1",
                        stripe_subscription_id="sub_1", stripe_price_id="price_managed_monthly",
                        subscription_status="active", subscription_start_date=at(T0))

        status = await reconciler.get_subscription_status("u1", now=at(T0 + DAY))

        assert status["repaired"] is False
        assert status["tier"] == "managed"
        assert status["subscription"]["id"] == "sub_1"
        assert status["subscription"]["currentPeriodEnd"] == at(T0 + 30 * DAY).isoformat()

    @pytest.mark.asyncio
    async def test_relinks_customer_found_by_email(self, db, reconciler, gateway, make_user, stripe_subscription):
        gateway.add_customer("cus_new", "a@example.com")
        gateway.add_subscription(stripe_subscription("sub_new", customer="cus_new", price="price_managed_annual"))
        await make_user("u1", email="a@example.com", tier="managed", stripe_customer_id="cus_old",
                        stripe_subscription_id="sub_gone", subscription_status="active")

        status = await reconciler.get_subscription_status("u1", now=at(T0 + DAY))

        assert status["repaired"] is True
        assert status["subscription"]["id"] == "sub_new"
        user = await reload(db, "u1")
        assert user.stripe_customer_id == "cus_new"
        assert user.stripe_subscription_id == "sub_new"
        assert user.plan_name == "Annual - Managed"

    @pytest.mark.asyncio
    async def test_missing_subscription_downgrades(self, db, reconciler, make_user):
        await make_user("u1", tier="managed", stripe_subscription_id="sub_gone", subscription_status="active")

        status = await reconciler.get_subscription_status("u1", now=at(T0 + DAY))

        assert status["repaired"] is True
        assert status["tier"] == "free"
        assert status["subscription"] is None

    @pytest.mark.asyncio
    async def test_ended_subscription_downgrades(self, db, reconciler, gateway, make_user, stripe_subscription):
        gateway.add_subscription(stripe_subscription(status="canceled", ended_at=T0 + 2 * DAY))
        await make_user("u1", tier="managed", stripe_subscription_id="sub_1", subscription_status="active")

        status = await reconciler.get_subscription_status("u1", now=at(T0 + 3 * DAY))

        assert status["tier"] == "free"
        user = await reload(db, "u1")
        assert ensure_utc(user.subscription_end_date) == at(T0 + 2 * DAY)

    @pytest.mark.asyncio
    async def test_stripe_outage_serves_local_state(self, db, reconciler, gateway, make_user):
        gateway.fail["retrieve"] = 503
        await make_user("u1", tier="managed", stripe_subscription_id="sub_1", subscription_status="active")

        status = await reconciler.get_subscription_status("u1")

        assert status["repaired"] is False
        assert status["tier"] == "managed"
        assert status["subscription"]["id"] == "sub_1"

    @pytest.mark.asyncio
    async def test_unconfigured_stripe_serves_local_state(self, reconciler, gateway, make_user, monkeypatch):
        async def not_configured(email):
            raise ConfigurationError("Stripe is not configured (STRIPE_SECRET_KEY is empty)")
        monkeypatch.setattr(gateway, "find_customers_by_email", not_configured)
        await make_user("u1", email="a@example.com", tier="managed", plan_name="Comp")

        status = await reconciler.get_subscription_status("u1")

        assert status["repaired"] is False
        assert status["tier"] == "managed"
        assert status["planName"] == "Comp"

    @pytest.mark.asyncio
    async def test_relink_outage_does_not_downgrade(self, db, reconciler, gateway, make_user):
        gateway.fail["list"] = 503
        await make_user("u1", email="a@example.com", tier="managed", stripe_subscription_id="sub_gone",
                        subscription_status="active")

        status = await reconciler.get_subscription_status("u1")

        assert status["repaired"] is False
        assert (await reload(db, "u1")).tier == "managed"

    @pytest.mark.asyncio
    async def test_unknown_user(self, reconciler):
        status = await reconciler.get_subscription_status("ghost")

        assert status == {"tier": "free", "planName": None, "subscription": None, "repaired": False}
