"""
Billing: plan catalog, Stripe gateway, webhook events and the reconciler
that applies Stripe state to local users.
"""
from app.billing.plans import Plan, PlanCatalog
from app.billing.gateway import StripeGateway
from app.billing.events import parse_event
from app.billing.reconciler import BillingReconciler, compute_proration_credit

__all__ = [
    "Plan",
    "PlanCatalog",
    "StripeGateway",
    "parse_event",
    "BillingReconciler",
    "compute_proration_credit",
]
