"""
Stripe gateway.

Every call the billing code makes to Stripe goes through StripeGateway, so
tests can swap in an in-memory fake with the same methods. Results are
returned as plain dicts; Stripe SDK failures become UpstreamError with
Stripe's HTTP status, and nothing here retries.
"""
import json
import logging
from typing import Optional

import stripe

from app.config import settings
from app.errors import UpstreamError, ConfigurationError, WebhookSignatureError

logger = logging.getLogger(__name__)

PROVIDER = "stripe"


def _plain(obj) -> dict:
    """StripeObject -> dict (StripeObject renders itself as JSON)."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return json.loads(str(obj))


def _upstream(e: stripe.StripeError, operation: str) -> UpstreamError:
    status = e.http_status or 502
    logger.warning(
        f"Stripe {operation} failed: {e.user_message or e}",
        extra={"provider": PROVIDER, "status_code": status, "stripe_code": e.code},
    )
    return UpstreamError(
        e.user_message or str(e),
        status_code=status,
        provider=PROVIDER,
        upstream=e.json_body,
    )


class StripeGateway:
    """Async Stripe calls used by the billing reconciler."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = settings.STRIPE_SECRET_KEY if api_key is None else api_key
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET if webhook_secret is None else webhook_secret

    def _require_key(self):
        if not self.api_key:
            raise ConfigurationError("Stripe is not configured (STRIPE_SECRET_KEY is empty)")

    async def retrieve_subscription(self, subscription_id: str) -> dict:
        self._require_key()
        try:
            subscription = await stripe.Subscription.retrieve_async(subscription_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise _upstream(e, "subscription retrieve")
        return _plain(subscription)

    async def update_subscription(self, subscription_id: str, **params) -> dict:
        self._require_key()
        try:
            subscription = await stripe.Subscription.modify_async(subscription_id, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise _upstream(e, "subscription update")
        return _plain(subscription)

    async def cancel_subscription(self, subscription_id: str, prorate: bool = False, invoice_now: bool = False) -> dict:
        self._require_key()
        params = {}
        if prorate:
            params["prorate"] = True
        if invoice_now:
            params["invoice_now"] = True
        try:
            subscription = await stripe.Subscription.cancel_async(subscription_id, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise _upstream(e, "subscription cancel")
        return _plain(subscription)

    async def list_subscriptions(self, customer_id: str, status: str = "all") -> list[dict]:
        self._require_key()
        try:
            result = await stripe.Subscription.list_async(
                customer=customer_id, status=status, limit=10, api_key=self.api_key,
            )
        except stripe.StripeError as e:
            raise _upstream(e, "subscription list")
        return _plain(result).get("data", [])

    async def create_customer(self, email: Optional[str], metadata: dict) -> dict:
        self._require_key()
        params = {"metadata": metadata}
        if email:
            params["email"] = email
        try:
            customer = await stripe.Customer.create_async(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise _upstream(e, "customer create")
        return _plain(customer)

    async def find_customers_by_email(self, email: str) -> list[dict]:
        self._require_key()
        try:
            result = await stripe.Customer.list_async(email=email, limit=10, api_key=self.api_key)
        except stripe.StripeError as e:
            raise _upstream(e, "customer lookup")
        return _plain(result).get("data", [])

    async def create_checkout_session(self, params: dict) -> dict:
        self._require_key()
        try:
            session = await stripe.checkout.Session.create_async(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise _upstream(e, "checkout session create")
        return _plain(session)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """
        Verify a webhook signature and return the event body as a dict.

        Raises:
            WebhookSignatureError: missing/invalid signature or unparseable body
            ConfigurationError: no webhook secret configured
        """
        if not self.webhook_secret:
            raise ConfigurationError("Stripe webhook secret is not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Webhook signature verification failed: {e.user_message or e}")
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid webhook payload: {e}")
        return json.loads(payload)
