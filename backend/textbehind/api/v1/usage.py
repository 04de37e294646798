"""Usage API router.

Quota check and metered increment. Both run the boundary security check
before the gate; a quota denial is a normal outcome rendered in the body
(check) or as a 403 with usage context (increment).
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from textbehind.api.deps import CurrentIdentityId, DbSession, require_request_security
from textbehind.core.config import settings
from textbehind.core.rate_limiting import limiter
from textbehind.core.responses import ErrorDetail, ErrorResponse
from textbehind.schemas.usage import (
    UsageCheckResponse,
    UsageIncrementResponse,
    UsageInfo,
    UsageStatusResponse,
)
from textbehind.services.usage_gate import UsageDecision, UsageGate

router = APIRouter(dependencies=[Depends(require_request_security)])


def _usage_info(decision: UsageDecision) -> UsageInfo:
    return UsageInfo(
        current_usage=decision.current_usage,
        limit=decision.limit,
        remaining=decision.remaining,
        subscription_tier=decision.tier,
        is_premium=decision.is_premium,
    )


# =============================================================================
# /check
# =============================================================================


@router.post("/check", response_model_exclude_none=True)
async def check_usage(
    identity_id: CurrentIdentityId,
    db: DbSession,
) -> UsageCheckResponse:
    """Evaluate whether the caller may perform one more metered action.

    Does not consume usage. A reached limit is reported with 200 and
    ``canCreate: false``.
    """
    decision = await UsageGate(db).check(identity_id)
    if not decision.allowed:
        return UsageCheckResponse(
            can_create=False,
            usage_info=_usage_info(decision),
            error=decision.reason,
            current_usage=decision.current_usage,
            limit=decision.limit,
            subscription_tier=decision.tier,
        )
    return UsageCheckResponse(can_create=True, usage_info=_usage_info(decision))


@router.get("/check")
async def get_usage_status(
    identity_id: CurrentIdentityId,
    db: DbSession,
) -> UsageStatusResponse:
    """Return the caller's quota snapshot."""
    decision = await UsageGate(db).check(identity_id)
    return UsageStatusResponse(
        usage_info=_usage_info(decision),
        can_create=decision.allowed,
    )


# =============================================================================
# /increment
# =============================================================================


@router.post("/increment", response_model=UsageIncrementResponse)
@limiter.limit(settings.rate_limit_usage)
async def increment_usage(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    identity_id: CurrentIdentityId,
    db: DbSession,
) -> UsageIncrementResponse | JSONResponse:
    """Record one metered action if the caller is within quota.

    Check then atomic increment; remaining is computed from the
    post-increment count. Denials return 403 with usage context and
    leave the count unchanged.
    """
    decision = await UsageGate(db).check_and_increment(identity_id)
    if not decision.allowed:
        return JSONResponse(
            status_code=403,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="USAGE_LIMIT_EXCEEDED",
                    message=decision.reason or "Usage limit exceeded",
                    details=[
                        {
                            "usage_count": decision.current_usage,
                            "remaining": decision.remaining,
                            "limit": decision.limit,
                            "subscription_tier": decision.tier,
                        }
                    ],
                )
            ).model_dump(),
        )
    return UsageIncrementResponse(
        success=True,
        usage_count=decision.current_usage,
        remaining=decision.remaining,
        limit=decision.limit,
    )
