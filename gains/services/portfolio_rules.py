"""Post-processing rules applied to every recommendation set before projection."""

import logging
import math
from typing import Dict, List, Tuple

from ..models import Action, PortfolioHolding, RecommendationItem, UserProfile

logger = logging.getLogger(__name__)

SYNTHETIC_HOLD_CONFIDENCE = 50.0
SYNTHETIC_HOLD_RETURN = 0.05

HOLDING_TYPE_SECTORS: Dict[str, str] = {
    "crypto": "Cryptocurrency",
    "etf": "ETF",
    "stock": "Equity",
    "other": "Other",
}


def _floor_cents(value: float) -> float:
    return math.floor(value * 100 + 1e-6) / 100


def allocated_total(items: List[RecommendationItem]) -> float:
    return sum(item.amount for item in items if item.allocates_capital)


def collapse_holding_rows(
    items: List[RecommendationItem], profile: UserProfile, warnings: List[str]
) -> List[RecommendationItem]:
    """
    Keep a single sell/hold row per existing holding.

    The first sell or hold row for a held symbol wins; later duplicates are
    dropped. Sells are capped at the holding's value. Sells of symbols the
    user does not own are dropped. Buy rows always pass through.
    """
    held = {h.symbol: h for h in profile.existingPortfolio}
    seen: set = set()
    result: List[RecommendationItem] = []

    for item in items:
        if item.action == Action.BUY:
            result.append(item)
            continue

        holding = held.get(item.symbol)
        if holding is None:
            if item.action == Action.SELL:
                warnings.append(f"Dropped sell for {item.symbol}: not in existing portfolio")
                continue
            result.append(item)
            continue

        if item.symbol in seen:
            warnings.append(f"Dropped duplicate {item.action.value} row for {item.symbol}")
            continue
        seen.add(item.symbol)

        if item.action == Action.SELL and item.amount > holding.amount:
            warnings.append(
                f"Capped sell of {item.symbol} at holding value ${holding.amount:,.2f} (was ${item.amount:,.2f})"
            )
            item.amount = holding.amount
        result.append(item)
    return result


def _uncovered_holdings(items: List[RecommendationItem], profile: UserProfile) -> List[PortfolioHolding]:
    covered = {item.symbol for item in items if item.action in (Action.SELL, Action.HOLD)}
    return [h for h in profile.existingPortfolio if h.symbol not in covered]


def enforce_capital(
    items: List[RecommendationItem], profile: UserProfile, warnings: List[str]
) -> List[RecommendationItem]:
    """
    Scale buy/hold amounts down so they fit the investable budget.

    The budget is new capital plus existing holdings. Holdings the model
    left out will be re-added as synthetic holds at full value, so that
    amount is reserved before scaling. Amounts are floored to cents with the
    remainder given to the largest row, so the total fits exactly. Rows that
    scale to zero are dropped.
    """
    budget = profile.total_capital
    reserved = sum(h.amount for h in _uncovered_holdings(items, profile))
    available = max(budget - reserved, 0.0)
    allocated = allocated_total(items)

    if allocated <= available + 1e-9:
        return items

    factor = available / allocated if allocated > 0 else 0.0
    logger.info(
        "Scaling buy/hold amounts by %.4f (allocated $%.2f, available $%.2f, reserved $%.2f)",
        factor,
        allocated,
        available,
        reserved,
    )
    warnings.append(
        f"Scaled buy/hold amounts from ${allocated:,.2f} to fit ${available:,.2f} of available capital"
    )

    result: List[RecommendationItem] = []
    for item in items:
        if item.allocates_capital:
            item.amount = _floor_cents(item.amount * factor)
            if item.amount <= 0:
                warnings.append(f"Dropped {item.symbol}: amount scaled to zero")
                continue
        result.append(item)

    # Flooring leaves a few cents unallocated; the largest row takes them
    scaled = [item for item in result if item.allocates_capital]
    if scaled:
        leftover_cents = int(round(_floor_cents(available) * 100)) - int(round(allocated_total(scaled) * 100))
        if leftover_cents > 0:
            largest = max(scaled, key=lambda i: i.amount)
            largest.amount = round(largest.amount + leftover_cents / 100, 2)
    return result


def ensure_holdings_coverage(
    items: List[RecommendationItem], profile: UserProfile, warnings: List[str]
) -> List[RecommendationItem]:
    """Append a synthetic hold for every existing holding with no sell/hold row."""
    result = list(items)
    for holding in _uncovered_holdings(items, profile):
        warnings.append(f"Added hold for existing holding {holding.symbol} omitted from recommendations")
        result.append(
            RecommendationItem(
                symbol=holding.symbol,
                name=holding.symbol,
                action=Action.HOLD,
                amount=holding.amount,
                confidence=SYNTHETIC_HOLD_CONFIDENCE,
                reasoning="Existing position kept; no change was recommended for this holding.",
                sector=HOLDING_TYPE_SECTORS.get(holding.type, "Other"),
                expected_annual_return=SYNTHETIC_HOLD_RETURN,
                strength="moderate",
                synthetic=True,
            )
        )
    return result


def finalize_recommendations(
    items: List[RecommendationItem], profile: UserProfile
) -> Tuple[List[RecommendationItem], List[str]]:
    """
    Apply holding de-duplication, capital enforcement and coverage in order.

    Returns:
        (final items, human-readable repair notes)
    """
    warnings: List[str] = []
    items = collapse_holding_rows(list(items), profile, warnings)
    items = enforce_capital(items, profile, warnings)
    items = ensure_holdings_coverage(items, profile, warnings)
    for note in warnings:
        logger.info("Recommendation repair: %s", note)
    return items, warnings
