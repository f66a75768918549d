"""Deterministic five-year portfolio projection."""

import math
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from ..models import MonthlyPoint, PortfolioProjection, RecommendationItem, UserProfile

PROJECTION_MONTHS = 60
MAX_BLENDED_RETURN = 0.18
LOW_RISK_VOLATILITY = 0.15
HIGH_RISK_VOLATILITY = 0.25

# (month of the dip, depth) - each recovers linearly over DRAWDOWN_RECOVERY_MONTHS
DRAWDOWNS = ((18, 0.08), (42, 0.06))
DRAWDOWN_RECOVERY_MONTHS = 6

DEFAULT_SECTOR_RETURN = 0.08
DEFAULT_SECTOR_VOLATILITY = 0.15

SECTOR_RETURNS: Dict[str, float] = {
    "technology": 0.12,
    "healthcare": 0.10,
    "financials": 0.09,
    "energy": 0.11,
    "utilities": 0.06,
    "consumer": 0.08,
    "etf": 0.08,
    "bonds": 0.04,
    "international": 0.07,
    "cryptocurrency": 0.15,
}

SECTOR_VOLATILITY: Dict[str, float] = {
    "technology": 0.25,
    "healthcare": 0.18,
    "financials": 0.20,
    "energy": 0.30,
    "utilities": 0.12,
    "consumer": 0.16,
    "etf": 0.15,
    "bonds": 0.08,
    "international": 0.18,
    "cryptocurrency": 0.40,
}


def sector_expected_return(sector: Optional[str]) -> float:
    return SECTOR_RETURNS.get((sector or "").strip().lower(), DEFAULT_SECTOR_RETURN)


def sector_volatility(sector: Optional[str]) -> float:
    return SECTOR_VOLATILITY.get((sector or "").strip().lower(), DEFAULT_SECTOR_VOLATILITY)


def drawdown_factor(month: int) -> float:
    """Multiplier < 1 during the scripted dips, 1 elsewhere."""
    factor = 1.0
    for dip_month, depth in DRAWDOWNS:
        elapsed = month - dip_month
        if 0 <= elapsed <= DRAWDOWN_RECOVERY_MONTHS:
            factor *= 1 - depth * (1 - elapsed / DRAWDOWN_RECOVERY_MONTHS)
    return factor


def seasonal_factor(month: int) -> float:
    return 1 + 0.03 * math.sin(2 * math.pi * month / 12) + 0.015 * math.sin(2 * math.pi * month / 36)


def projected_value(total: float, annual_return: float, month: int) -> float:
    growth = (1 + annual_return) ** (month / 12)
    return total * growth * seasonal_factor(month) * drawdown_factor(month)


def _empty_projection() -> PortfolioProjection:
    return PortfolioProjection(
        total_investment=0.0,
        monthly_projections=[MonthlyPoint(month=m, value=0.0) for m in range(1, PROJECTION_MONTHS + 1)],
        one_year=0.0,
        three_year=0.0,
        five_year=0.0,
        expected_annual_return=0.0,
        risk_level="low",
        diversification_score=0,
        sector_breakdown={},
    )


def calculate_projections(
    recommendations: Sequence[RecommendationItem],
    profile: Optional[UserProfile] = None,
) -> PortfolioProjection:
    """
    Project the value of the buy and hold positions over 60 months.

    Pure function: identical input always gives identical output. Sell rows
    are ignored since they release capital rather than allocate it.

    Args:
        recommendations: Finalized recommendation items
        profile: Reserved for profile-dependent adjustments; unused for now

    Returns:
        PortfolioProjection (all zeros when nothing allocates capital)
    """
    allocating = [r for r in recommendations if r.allocates_capital and r.amount > 0]
    total = sum(r.amount for r in allocating)
    if total <= 0:
        return _empty_projection()

    weighted_return = 0.0
    weighted_volatility = 0.0
    sector_weights: Dict[str, float] = defaultdict(float)
    for rec in allocating:
        weight = rec.amount / total
        expected = rec.expected_annual_return or sector_expected_return(rec.sector)
        volatility = rec.volatility or sector_volatility(rec.sector)
        weighted_return += expected * weight
        weighted_volatility += volatility * weight
        sector_weights[rec.sector or "Other"] += weight * 100

    blended = min(weighted_return, MAX_BLENDED_RETURN)

    monthly: List[MonthlyPoint] = [
        MonthlyPoint(month=m, value=round(projected_value(total, blended, m), 2))
        for m in range(1, PROJECTION_MONTHS + 1)
    ]

    if weighted_volatility < LOW_RISK_VOLATILITY:
        risk_level = "low"
    elif weighted_volatility > HIGH_RISK_VOLATILITY:
        risk_level = "high"
    else:
        risk_level = "medium"

    max_sector = max(sector_weights.values())
    diversification = min(100.0, len(sector_weights) * 20 + (100 - max_sector))

    return PortfolioProjection(
        total_investment=round(total, 2),
        monthly_projections=monthly,
        one_year=monthly[11].value,
        three_year=monthly[35].value,
        five_year=monthly[59].value,
        expected_annual_return=round(blended, 4),
        risk_level=risk_level,
        diversification_score=int(round(diversification)),
        sector_breakdown={sector: int(round(pct)) for sector, pct in sector_weights.items()},
    )
