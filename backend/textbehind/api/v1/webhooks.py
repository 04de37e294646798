"""Webhooks API router.

Inbound events from the billing provider (Stripe) and the identity
provider (Clerk). Signatures are verified against the raw body before
anything is parsed. Once verified, a delivery is always acknowledged;
the provider's own retries recover lost events.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import ValidationError as PydanticValidationError

from textbehind.api.deps import Billing, DbSession, Identity, SessionFactory
from textbehind.core.config import settings
from textbehind.core.errors import ValidationError, WebhookSignatureError
from textbehind.providers.errors import NotConfiguredError, SignatureVerificationError
from textbehind.providers.identity.clerk_adapter import profile_from_clerk_user
from textbehind.schemas.events import (
    UserDeletedEvent,
    UserUpsertedEvent,
    parse_billing_event,
    parse_identity_event,
)
from textbehind.schemas.webhooks import BillingWebhookAck, IdentityWebhookAck
from textbehind.services.profile_sync import sync_profile_in_background
from textbehind.services.subscription_reconciler import SubscriptionReconciler

logger = logging.getLogger(__name__)

router = APIRouter()

_SVIX_HEADERS = ("svix-id", "svix-timestamp", "svix-signature")


# =============================================================================
# POST /stripe
# =============================================================================


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: DbSession,
    billing: Billing,
) -> BillingWebhookAck:
    """Reconcile one billing provider event.

    Raises:
        ValidationError: 400 if the signature header is missing or the
            payload is not an event.
        WebhookSignatureError: 400 if the signature does not verify.
    """
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise ValidationError("Missing stripe-signature header")

    payload = await request.body()
    try:
        billing.verify_webhook(payload, signature)
    except (SignatureVerificationError, NotConfiguredError) as e:
        logger.warning("Billing webhook rejected: %s", e)
        raise WebhookSignatureError() from e

    try:
        event = parse_billing_event(payload)
    except PydanticValidationError as e:
        raise ValidationError("Malformed webhook payload") from e

    try:
        await SubscriptionReconciler(db, billing).handle_event(event)
    except Exception:
        logger.exception("Failed to handle billing event %s (%s)", event.id, event.type)
        await db.rollback()

    return BillingWebhookAck()


# =============================================================================
# POST /clerk
# =============================================================================


@router.post("/clerk", response_model=None)
async def clerk_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    identity: Identity,
    session_factory: SessionFactory,
) -> IdentityWebhookAck | dict[str, str]:
    """Mirror identity provider profile changes onto the account.

    The profile write runs as a background task after the response is
    sent, in its own session.
    """
    if not settings.clerk_webhook_secret.get_secret_value():
        return {"message": "Webhooks not configured"}

    missing = [name for name in _SVIX_HEADERS if not request.headers.get(name)]
    if missing:
        raise ValidationError(
            "Missing webhook signature headers",
            details=[{"header": name} for name in missing],
        )

    payload = await request.body()
    try:
        body = identity.verify_webhook(payload, request.headers)
    except (SignatureVerificationError, NotConfiguredError) as e:
        raise WebhookSignatureError() from e

    try:
        event = parse_identity_event(body)
    except PydanticValidationError as e:
        raise ValidationError("Malformed webhook payload") from e

    if isinstance(event, UserUpsertedEvent):
        if not event.data.get("id"):
            raise ValidationError("Identity event has no user id")
        profile = profile_from_clerk_user(event.data)
        background_tasks.add_task(sync_profile_in_background, session_factory, profile)
    elif isinstance(event, UserDeletedEvent):
        logger.info("Identity %s deleted upstream; account kept", event.data.get("id"))
    else:
        logger.info("Ignoring identity event %s", event.type)

    return IdentityWebhookAck()
