"""
Stripe subscription routes used by the extension's pricing/account pages.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.billing.reconciler import BillingReconciler
from app.dependencies import get_reconciler

router = APIRouter(prefix="/api/stripe")


class StripeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateCheckoutRequest(StripeRequest):
    price_id: Optional[str] = Field(None, alias="priceId")
    extension_user_id: Optional[str] = Field(None, alias="extensionUserId")
    email: Optional[str] = None
    success_url: Optional[str] = Field(None, alias="successUrl")
    cancel_url: Optional[str] = Field(None, alias="cancelUrl")


class ChangeSubscriptionRequest(StripeRequest):
    extension_user_id: Optional[str] = Field(None, alias="extensionUserId")
    new_price_id: Optional[str] = Field(None, alias="newPriceId")


class CancelSubscriptionRequest(StripeRequest):
    extension_user_id: Optional[str] = Field(None, alias="extensionUserId")
    immediate: bool = False


@router.post("/create-checkout")
async def create_checkout(body: CreateCheckoutRequest, reconciler: BillingReconciler = Depends(get_reconciler)):
    session = await reconciler.create_checkout(
        extension_user_id=body.extension_user_id,
        price_id=body.price_id,
        email=body.email,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    return {"success": True, **session}


@router.post("/change-subscription")
async def change_subscription(body: ChangeSubscriptionRequest, reconciler: BillingReconciler = Depends(get_reconciler)):
    result = await reconciler.change_subscription(body.extension_user_id, body.new_price_id)
    return {"success": True, **result}


@router.post("/cancel-subscription")
async def cancel_subscription(body: CancelSubscriptionRequest, reconciler: BillingReconciler = Depends(get_reconciler)):
    result = await reconciler.cancel_subscription(body.extension_user_id, immediate=body.immediate)
    return {"success": True, **result}


@router.get("/subscription-status/{extension_user_id}")
async def subscription_status(extension_user_id: str, reconciler: BillingReconciler = Depends(get_reconciler)):
    """Subscription state re-read from Stripe; local drift is repaired on the way."""
    status = await reconciler.get_subscription_status(extension_user_id)
    return {"success": True, **status}
