"""Deterministic recommendation builder used when no AI backend can answer."""

import logging
from typing import Dict, List, NamedTuple

from ..models import Action, RecommendationItem, RecommendationResult, UserProfile
from .portfolio_rules import finalize_recommendations
from .projections import calculate_projections

logger = logging.getLogger(__name__)


class Allocation(NamedTuple):
    symbol: str
    name: str
    weight: float
    sector: str
    expected_return: float
    volatility: float
    reasoning: str


TIER_ALLOCATIONS: Dict[str, List[Allocation]] = {
    "conservative": [
        Allocation("BND", "Vanguard Total Bond Market ETF", 0.35, "Bonds", 0.04, 0.06,
                   "Core investment-grade bond exposure for capital preservation."),
        Allocation("VTI", "Vanguard Total Stock Market ETF", 0.30, "ETF", 0.08, 0.15,
                   "Broad US equity market at minimal cost."),
        Allocation("TIP", "iShares TIPS Bond ETF", 0.15, "Bonds", 0.04, 0.07,
                   "Inflation-protected Treasuries to defend purchasing power."),
        Allocation("SCHD", "Schwab US Dividend Equity ETF", 0.10, "ETF", 0.07, 0.13,
                   "Quality dividend payers for steady income."),
        Allocation("JNJ", "Johnson & Johnson", 0.10, "Healthcare", 0.06, 0.14,
                   "Defensive healthcare leader with a long dividend record."),
    ],
    "moderate": [
        Allocation("VTI", "Vanguard Total Stock Market ETF", 0.30, "ETF", 0.08, 0.15,
                   "Broad US equity market as the portfolio core."),
        Allocation("QQQ", "Invesco QQQ Trust", 0.15, "Technology", 0.11, 0.22,
                   "Growth tilt through large-cap technology."),
        Allocation("BND", "Vanguard Total Bond Market ETF", 0.20, "Bonds", 0.04, 0.06,
                   "Bond ballast to dampen equity drawdowns."),
        Allocation("VXUS", "Vanguard Total International Stock ETF", 0.15, "International", 0.07, 0.17,
                   "International diversification outside the US market."),
        Allocation("XLV", "Health Care Select Sector SPDR", 0.10, "Healthcare", 0.09, 0.16,
                   "Defensive growth from the healthcare sector."),
        Allocation("SCHD", "Schwab US Dividend Equity ETF", 0.10, "ETF", 0.07, 0.13,
                   "Dividend income and value exposure."),
    ],
    "aggressive": [
        Allocation("QQQ", "Invesco QQQ Trust", 0.30, "Technology", 0.12, 0.22,
                   "Concentrated exposure to large-cap technology growth."),
        Allocation("VGT", "Vanguard Information Technology ETF", 0.20, "Technology", 0.12, 0.24,
                   "Pure-play technology sector exposure."),
        Allocation("NVDA", "NVIDIA Corporation", 0.15, "Technology", 0.15, 0.40,
                   "High-conviction AI infrastructure leader."),
        Allocation("VWO", "Vanguard FTSE Emerging Markets ETF", 0.10, "International", 0.08, 0.20,
                   "Emerging market growth potential."),
        Allocation("BTC", "Bitcoin", 0.10, "Cryptocurrency", 0.15, 0.60,
                   "Small speculative allocation to digital assets."),
        Allocation("VTI", "Vanguard Total Stock Market ETF", 0.15, "ETF", 0.08, 0.15,
                   "Broad market anchor for the growth portfolio."),
    ],
}

TIER_NARRATIVES: Dict[str, Dict[str, str]] = {
    "conservative": {
        "reasoning": "Capital preservation first: a bond-heavy mix with broad market equity and dividend payers.",
        "risk": "Low risk. Most of the portfolio sits in bonds and diversified index funds.",
    },
    "moderate": {
        "reasoning": "A balanced mix of broad equity, growth, international and bond exposure.",
        "risk": "Moderate risk. Equity drawdowns are partly offset by the bond allocation.",
    },
    "aggressive": {
        "reasoning": "Growth-focused allocation concentrated in technology with emerging market and crypto exposure.",
        "risk": "High risk. Expect large swings, including a speculative crypto position.",
    },
}

MARKET_OUTLOOK = (
    "Generated without live AI analysis. The allocation follows long-term diversification "
    "principles rather than current market conditions."
)


def split_capital(capital: float, allocations: List[Allocation]) -> List[float]:
    """
    Split capital by weight in whole cents so the parts add up exactly.

    Rounding leftovers go to the first (largest) allocation.
    """
    total_cents = int(round(capital * 100))
    cents = [int(total_cents * a.weight) for a in allocations]
    if cents:
        cents[0] += total_cents - sum(cents)
    return [c / 100 for c in cents]


class RuleBasedBuilder:
    """
    Builds a recommendation set from fixed per-tier allocations.

    Never touches the network and always succeeds. Existing holdings are
    kept as holds by the shared coverage rule.
    """

    source = "rule_based"

    def build_items(self, profile: UserProfile) -> List[RecommendationItem]:
        tier = profile.risk_tier
        allocations = TIER_ALLOCATIONS[tier]
        items: List[RecommendationItem] = []
        if profile.capitalAvailable <= 0:
            return items

        for allocation, amount in zip(allocations, split_capital(profile.capitalAvailable, allocations)):
            if amount <= 0:
                continue
            items.append(
                RecommendationItem(
                    symbol=allocation.symbol,
                    name=allocation.name,
                    action=Action.BUY,
                    amount=amount,
                    confidence=70.0,
                    reasoning=allocation.reasoning,
                    sector=allocation.sector,
                    expected_annual_return=allocation.expected_return,
                    strength="moderate",
                    volatility=allocation.volatility,
                )
            )
        return items

    def build(self, profile: UserProfile, note: str = "") -> RecommendationResult:
        tier = profile.risk_tier
        logger.info("Building rule-based %s portfolio for $%.2f", tier, profile.capitalAvailable)
        items, warnings = finalize_recommendations(self.build_items(profile), profile)
        if note:
            warnings.insert(0, note)

        narrative = TIER_NARRATIVES[tier]
        return RecommendationResult(
            recommendations=items,
            portfolio_projections=calculate_projections(items, profile),
            reasoning=narrative["reasoning"],
            risk_assessment=narrative["risk"],
            market_outlook=MARKET_OUTLOOK,
            source=self.source,
            warnings=warnings,
        )
