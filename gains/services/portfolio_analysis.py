"""Plain-text analysis of the user's existing holdings for the AI prompt."""

from collections import defaultdict
from typing import Dict, List

from ..models import UserProfile

CONCENTRATION_WARNING_PCT = 40.0


def analyze_existing_portfolio(profile: UserProfile) -> str:
    """
    Summarize current holdings: totals, weights, concentration and type mix.

    Returns:
        Multi-line text block; a short note when the user holds nothing
    """
    holdings = profile.existingPortfolio
    if not holdings:
        return (
            "EXISTING PORTFOLIO: none. The user is starting fresh; "
            f"all ${profile.capitalAvailable:,.2f} of available capital is new money."
        )

    total_value = profile.holdings_value
    lines = [
        "EXISTING PORTFOLIO:",
        f"- Holdings value: ${total_value:,.2f} across {len(holdings)} position(s)",
        f"- New capital available: ${profile.capitalAvailable:,.2f}",
        f"- Total investable (cash + holdings): ${profile.total_capital:,.2f}",
        "POSITIONS:",
    ]

    warnings: List[str] = []
    by_type: Dict[str, float] = defaultdict(float)
    for holding in sorted(holdings, key=lambda h: h.amount, reverse=True):
        share = holding.amount / total_value * 100 if total_value else 0.0
        lines.append(f"- {holding.symbol} ({holding.type}): ${holding.amount:,.2f} ({share:.1f}% of holdings)")
        by_type[holding.type] += holding.amount
        if share > CONCENTRATION_WARNING_PCT:
            warnings.append(f"{holding.symbol} is {share:.1f}% of holdings (above {CONCENTRATION_WARNING_PCT:.0f}%)")

    lines.append("ASSET TYPE MIX:")
    for kind, amount in sorted(by_type.items(), key=lambda item: item[1], reverse=True):
        lines.append(f"- {kind}: {amount / total_value * 100:.1f}%")

    if warnings:
        lines.append("CONCENTRATION WARNINGS:")
        lines.extend(f"- {w}" for w in warnings)

    lines.append("REBALANCING GUIDANCE:")
    if warnings:
        lines.append("- Consider trimming concentrated positions and directing new capital elsewhere.")
    if len(by_type) == 1:
        lines.append("- Holdings sit in a single asset type; add exposure to other types for balance.")
    lines.append("- Every existing holding must be addressed with either a hold or a sell recommendation.")
    return "\n".join(lines)
