"""
Pricing & Limits
================

PURPOSE:
    Static per-call tool costs, rate tiers and plan spending ceilings.
    Everything here is read from configuration at import time and never
    mutated at runtime.

COSTS:
    Per-call costs are fractional cents. Whole cents are deducted from the
    balance; the sub-cent remainder is carried on the billing profile until
    it adds up to a whole cent.

CONFIGURATION (env vars with TOOLSHUB_ prefix):
    TOOLSHUB_TOOL_COSTS                 JSON map of overrides, e.g. {"word-counter": 0.5}
    TOOLSHUB_FREE_REQUESTS_PER_SECOND   (default 1)
    TOOLSHUB_FREE_DAILY_LIMIT           (default 100)
    TOOLSHUB_PAID_REQUESTS_PER_SECOND   (default 10)
    TOOLSHUB_MONTHLY_CAP_FREE_CENTS     (default 5000)
    TOOLSHUB_MONTHLY_CAP_PRO_CENTS      (default 100000)
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from types import MappingProxyType
from typing import Mapping, Optional

from toolshub.config import settings
from toolshub.models.billing import FRACTION_SCALE, PLAN_PRO

DEFAULT_TOOL_COSTS = {
    "word-counter": 1.0,
    "case-converter": 0.2,
    "hex-rgba-converter": 0.2,
    "json-formatter": 0.1,
    "base64-converter": 0.1,
    "url-encoder": 0.1,
    "slug-generator": 0.1,
    "password-generator": 0.1,
}

# Unknown tool ids are billed like the cheapest text tool
FALLBACK_TOOL_ID = "case-converter"


def _build_cost_table() -> Mapping[str, Decimal]:
    merged = {**DEFAULT_TOOL_COSTS, **settings.tool_costs}
    return MappingProxyType({tool_id: Decimal(str(cost)) for tool_id, cost in merged.items()})


TOOL_COSTS: Mapping[str, Decimal] = _build_cost_table()


def get_tool_cost(tool_id: str) -> Decimal:
    """Cost of one call in fractional cents."""
    cost = TOOL_COSTS.get(tool_id)
    if cost is None:
        cost = TOOL_COSTS[FALLBACK_TOOL_ID]
    return cost


def cents_to_units(cents: Decimal) -> int:
    """Fractional cents to 1/10,000-cent units, truncating anything finer."""
    return int((cents * FRACTION_SCALE).to_integral_value(rounding=ROUND_FLOOR))


def format_cents(cents) -> str:
    """``1`` -> ``$0.0100`` (four decimals so sub-cent costs stay visible)."""
    return f"${Decimal(cents) / 100:.4f}"


# ---------------------------------------------------------------------------
# Rate tiers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RateTier:
    name: str
    requests_per_second: int
    daily_limit: Optional[int]


FREE_TIER = RateTier(
    name="free",
    requests_per_second=settings.free_requests_per_second,
    daily_limit=settings.free_daily_limit,
)
PAID_TIER = RateTier(
    name="paid",
    requests_per_second=settings.paid_requests_per_second,
    daily_limit=None,
)


def tier_for(is_paid: bool) -> RateTier:
    return PAID_TIER if is_paid else FREE_TIER


# ---------------------------------------------------------------------------
# Plan ceilings
# ---------------------------------------------------------------------------

def plan_monthly_cap(plan: str) -> int:
    """Monthly spend ceiling for *plan* in cents. Unknown plans get the free ceiling."""
    if plan == PLAN_PRO:
        return settings.monthly_cap_pro_cents
    return settings.monthly_cap_free_cents
