"""
Stripe webhook endpoint.

The signature is verified against the raw body before anything is parsed
or written. Handler errors propagate as 5xx so Stripe redelivers the event;
the handlers are idempotent, so redelivery is safe.
"""

from fastapi import APIRouter, Depends, Request

from app.billing.events import parse_event
from app.billing.reconciler import BillingReconciler
from app.dependencies import get_payment_gateway, get_reconciler

router = APIRouter(prefix="/webhook")


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    gateway=Depends(get_payment_gateway),
    reconciler: BillingReconciler = Depends(get_reconciler),
):
    payload = await request.body()
    payload_dict = gateway.construct_event(payload, request.headers.get("stripe-signature"))

    event = parse_event(payload_dict)
    await reconciler.handle(event)
    return {"received": True}
