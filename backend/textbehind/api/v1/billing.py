"""Billing API router.

Checkout and billing-portal sessions, the plan catalogue, and invoice
history. Checkout is refused with SETUP_REQUIRED until billing is fully
configured.
"""

import logging

from fastapi import APIRouter, Request

from textbehind.api.deps import Billing, CurrentAccount, CurrentIdentityId, DbSession, Identity
from textbehind.core.config import settings
from textbehind.core.errors import (
    BillingSyncError,
    NotFoundError,
    SetupRequiredError,
    ValidationError,
)
from textbehind.core.rate_limiting import limiter
from textbehind.providers.errors import ProviderError
from textbehind.repositories.user_repository import UserRepository
from textbehind.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    InvoiceListResponse,
    InvoiceResponse,
    PlanResponse,
    PlansResponse,
    PortalResponse,
)
from textbehind.services.entitlements import pricing_plans

logger = logging.getLogger(__name__)

router = APIRouter()


def _app_url(path: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}{path}"


async def _caller_email(
    identity_id: str, db: DbSession, identity: Identity
) -> str | None:
    """Caller's email from the account mirror, else the identity provider."""
    account = await UserRepository.get_by_identity_id(db, identity_id)
    if account is not None and account.email:
        return account.email
    try:
        return (await identity.get_user(identity_id)).email
    except ProviderError:
        logger.warning("Email lookup failed for %s", identity_id, exc_info=True)
        return None


# =============================================================================
# GET /plans
# =============================================================================


@router.get("/plans")
async def list_plans() -> PlansResponse:
    """Return the purchasable plans."""
    plans = pricing_plans()
    return PlansResponse(
        monthly=PlanResponse(
            price_id=plans["monthly"].price_id,
            name=plans["monthly"].name,
            price=plans["monthly"].price,
            interval=plans["monthly"].interval,
        ),
        yearly=PlanResponse(
            price_id=plans["yearly"].price_id,
            name=plans["yearly"].name,
            price=plans["yearly"].price,
            interval=plans["yearly"].interval,
        ),
    )


# =============================================================================
# POST /checkout-session
# =============================================================================


@router.post("/checkout-session")
@limiter.limit(settings.rate_limit_billing)
async def create_checkout_session(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: CheckoutRequest,
    identity_id: CurrentIdentityId,
    db: DbSession,
    billing: Billing,
    identity: Identity,
) -> CheckoutResponse:
    """Start a hosted subscription checkout for the chosen plan."""
    if not settings.billing_configured:
        raise SetupRequiredError()

    email = await _caller_email(identity_id, db, identity)
    if not email:
        raise ValidationError("User email not found")

    plan = pricing_plans()[body.plan_type]
    try:
        session = await billing.create_checkout_session(
            price_id=plan.price_id,
            identity_id=identity_id,
            customer_email=email,
            success_url=_app_url("/dashboard/success?session_id={CHECKOUT_SESSION_ID}"),
            cancel_url=_app_url("/dashboard?canceled=true"),
        )
    except ProviderError as e:
        raise BillingSyncError("Failed to create checkout session", str(e)) from e

    return CheckoutResponse(
        session_id=session.id,
        url=session.url,
        plan_type=plan.plan_type,
        plan_name=plan.name,
        price=plan.price,
    )


# =============================================================================
# POST /portal
# =============================================================================


@router.post("/portal")
@limiter.limit(settings.rate_limit_billing)
async def create_portal_session(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    identity_id: CurrentIdentityId,
    db: DbSession,
    billing: Billing,
    identity: Identity,
) -> PortalResponse:
    """Open the billing portal for the caller's customer record."""
    account = await UserRepository.get_by_identity_id(db, identity_id)
    customer_id = account.billing_customer_id if account is not None else None

    try:
        if customer_id is None:
            email = await _caller_email(identity_id, db, identity)
            if not email:
                raise ValidationError("User email not found")
            customer = await billing.find_customer_by_email(email)
            if customer is None:
                raise NotFoundError(
                    "Subscription", message="No active subscription found"
                )
            customer_id = customer.id

        url = await billing.create_portal_session(
            customer_id=customer_id,
            return_url=_app_url("/dashboard/billing"),
        )
    except ProviderError as e:
        raise BillingSyncError("Failed to create billing portal session", str(e)) from e

    return PortalResponse(url=url)


# =============================================================================
# GET /invoices
# =============================================================================


@router.get("/invoices")
async def list_invoices(account: CurrentAccount, billing: Billing) -> InvoiceListResponse:
    """Return the caller's billing history (empty when never billed)."""
    if not account.billing_customer_id:
        return InvoiceListResponse(invoices=[])
    try:
        invoices = await billing.list_invoices(account.billing_customer_id)
    except ProviderError as e:
        raise BillingSyncError("Failed to load billing history", str(e)) from e
    return InvoiceListResponse(
        invoices=[InvoiceResponse.model_validate(invoice) for invoice in invoices]
    )
