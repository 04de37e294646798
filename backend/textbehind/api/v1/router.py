"""API v1 router aggregator.

All v1 endpoint routers are included here under /api/v1.
"""

from fastapi import APIRouter

from textbehind.api.v1 import billing, subscriptions, usage, users, webhooks

router = APIRouter()

# =============================================================================
# Usage Gate
# =============================================================================

router.include_router(usage.router, prefix="/usage", tags=["usage"])

# =============================================================================
# Subscriptions & Billing
# =============================================================================

router.include_router(
    subscriptions.router, prefix="/subscriptions", tags=["subscriptions"]
)
router.include_router(billing.router, prefix="/billing", tags=["billing"])

# =============================================================================
# Provider Webhooks (signature-verified, no session auth)
# =============================================================================

router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# =============================================================================
# Account
# =============================================================================

router.include_router(users.router, prefix="/users", tags=["users"])
