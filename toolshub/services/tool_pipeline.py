"""
Tool Call Pipeline (Request Orchestrator)
=========================================

PURPOSE:
    Wraps every POST /api/tools/{tool_id} call:

        credential -> (sandbox quota | profile) -> rate limit -> body
        -> [billed: balance -> monthly cap -> deduct -> auto-recharge]
        -> tool -> envelope

    Any failed step raises ToolsHubError and nothing after it runs. The
    body is validated before billing, so a malformed request is never
    charged. Unexpected exceptions (store errors, timeouts) become
    INTERNAL_ERROR here: the call is denied and never assumed to have
    succeeded.

BILLING POLICY:
    is_paid (balance > 0) picks the rate tier. Every key-backed call is
    billed, so a zero balance is refused with INSUFFICIENT_BALANCE. With
    TOOLSHUB_FREE_TIER_ENABLED=true, key holders without balance get the
    free tier (daily quota) unbilled instead. The sandbox key is never
    billed and only counts against its own daily allowance.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import JSONResponse

from toolshub.auth.api_key_auth import Identity, resolve_credential, touch_api_key
from toolshub.config import settings
from toolshub.core.async_utils import run_sync
from toolshub.core.errors import ToolsHubError
from toolshub.core.errors.middleware import format_validation_errors
from toolshub.core.structured_logging import bind_caller
from toolshub.models.billing import BillingProfile
from toolshub.models.responses import RateLimitMeta, success_response
from toolshub.pricing import FREE_TIER, tier_for
from toolshub.services.auto_recharge import auto_recharge_service
from toolshub.services.ledger_service import ledger_service
from toolshub.services.profile_service import get_profile, is_paid
from toolshub.services.rate_limiter import RateLimitResult, get_rate_limiter
from toolshub.tools import ToolDefinition

logger = logging.getLogger(__name__)

# All sandbox callers share one daily allowance
SANDBOX_QUOTA_KEY = "sandbox"


@dataclass(frozen=True)
class BillingOutcome:
    balance: int
    cost: Decimal
    recharged: bool = False


async def run_tool_call(
    tool: ToolDefinition,
    authorization: Optional[str],
    payload: Any,
) -> JSONResponse:
    """Authorize, rate-limit, bill and run *tool* for one request."""
    try:
        return await _run(tool, authorization, payload)
    except ToolsHubError:
        raise
    except TimeoutError:
        logger.error("Tool call timed out waiting on an external call: tool=%s", tool.tool_id)
        raise ToolsHubError(
            "INTERNAL_ERROR",
            "A dependent service did not respond in time. The call was not completed.",
            context={"tool_id": tool.tool_id},
        )
    except Exception as exc:
        logger.exception("Tool call failed: tool=%s", tool.tool_id)
        raise ToolsHubError(
            "INTERNAL_ERROR",
            f"Failed to run {tool.name}",
            context={"tool_id": tool.tool_id, "exception": type(exc).__name__},
        )


async def _run(tool: ToolDefinition, authorization: Optional[str], payload: Any) -> JSONResponse:
    identity = await resolve_credential(authorization)
    if identity is None:
        raise ToolsHubError("UNAUTHORIZED", "Invalid or missing API key")
    bind_caller(identity.key_id, identity.user_id)

    if identity.is_sandbox:
        return await _run_sandbox(tool, payload)

    profile = await run_sync(get_profile, identity.user_id, timeout=settings.store_timeout_s)
    if profile is None:
        raise ToolsHubError("UNAUTHORIZED", "User profile not found")

    paid = is_paid(profile)
    rate = await get_rate_limiter().check_rate_limits(identity.key_id, paid)
    _raise_if_limited(rate)

    body = validate_body(tool, payload)

    billed = paid or not settings.free_tier_enabled
    if billed:
        outcome = await _bill(profile, tool)
        remaining = outcome.balance
        balance = outcome.balance
        cost = float(outcome.cost)
    else:
        remaining = rate.remaining_daily or 0
        balance = profile.balance_cents
        cost = 0.0

    await _touch_key(identity)

    data = tool.handler(body)
    logger.info(
        "Tool call completed: tool=%s user=%s billed=%s cost=%s balance=%d",
        tool.tool_id, identity.user_id, billed, cost, balance,
    )
    return success_response(
        data,
        RateLimitMeta(
            remaining=remaining,
            balance=balance,
            cost_this_call=cost,
            requests_per_second=tier_for(paid).requests_per_second,
        ),
    )


async def _run_sandbox(tool: ToolDefinition, payload: Any) -> JSONResponse:
    rate = await get_rate_limiter().check_daily_quota(
        SANDBOX_QUOTA_KEY, settings.sandbox_daily_limit
    )
    _raise_if_limited(rate)

    body = validate_body(tool, payload)
    data = tool.handler(body)
    return success_response(
        data,
        RateLimitMeta(
            remaining=rate.remaining_daily or 0,
            balance=0,
            cost_this_call=0,
            requests_per_second=FREE_TIER.requests_per_second,
        ),
    )


def _raise_if_limited(rate: RateLimitResult) -> None:
    if not rate.allowed:
        raise ToolsHubError(
            "RATE_LIMIT_EXCEEDED",
            rate.message or "Rate limit exceeded",
            details={"limit": rate.error_type},
        )


def validate_body(tool: ToolDefinition, payload: Any):
    """Parse *payload* into the tool's request model. Raises VALIDATION_ERROR."""
    if not isinstance(payload, dict):
        raise ToolsHubError("VALIDATION_ERROR", "Request body must be a JSON object")
    try:
        return tool.request_model.model_validate(payload)
    except ValidationError as exc:
        details = format_validation_errors(exc.errors())
        first = details[0] if details else None
        message = f"Invalid {first['field']}: {first['message']}" if first and first["field"] else "Invalid request body"
        raise ToolsHubError("VALIDATION_ERROR", message, details=details)


async def _bill(profile: BillingProfile, tool: ToolDefinition) -> BillingOutcome:
    """Balance check, monthly cap, deduction, then best-effort auto-recharge."""
    check = ledger_service.check_balance(profile, tool.tool_id)
    if not check.allowed:
        raise ToolsHubError(
            "INSUFFICIENT_BALANCE",
            check.error,
            context={"reason": check.reason, "user_id": profile.user_id},
        )

    monthly = ledger_service.check_monthly_limit(profile, check.cents_deducted)
    if not monthly.allowed:
        raise ToolsHubError(
            "INSUFFICIENT_BALANCE",
            monthly.error,
            context={"reason": "monthly_limit", "user_id": profile.user_id},
        )

    deduction = await ledger_service.deduct_credits(
        profile, check.cents_deducted, check.remaining_fractional, tool.tool_id
    )
    if not deduction.success:
        raise ToolsHubError(
            deduction.code or "INTERNAL_ERROR",
            deduction.error,
            context={"reason": "deduction_refused", "user_id": profile.user_id},
        )

    balance = deduction.new_balance
    recharge = await auto_recharge_service.handle_auto_recharge(profile, balance)
    if recharge.triggered and recharge.new_balance is not None:
        balance = recharge.new_balance

    return BillingOutcome(balance=balance, cost=check.tool_cost, recharged=recharge.triggered)


async def _touch_key(identity: Identity) -> None:
    try:
        await run_sync(touch_api_key, identity.key_id, timeout=settings.store_timeout_s)
    except (SQLAlchemyError, TimeoutError) as exc:
        logger.warning("Could not record API key use: key=%s error=%s", identity.key_id, exc)
