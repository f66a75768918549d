"""Prompt text for the recommendation request."""

from typing import Dict, List, Optional

from ..models import UserProfile

SYSTEM_PROMPT = (
    "You are a professional investment advisor with expertise in portfolio management, "
    "risk assessment and market analysis. Respond with ONLY a valid JSON object: no "
    "Markdown, no code fences, no text before or after the JSON."
)

RESPONSE_SCHEMA = """{
  "recommendations": [
    {
      "symbol": "AAPL",
      "name": "Apple Inc.",
      "type": "buy|sell|hold",
      "amount": 5000,
      "strength": "weak|moderate|strong",
      "confidence": 85,
      "reasoning": "Why this position fits the profile",
      "sector": "Technology",
      "expectedAnnualReturn": 0.12,
      "volatility": 0.18,
      "targetPrice": 185.50,
      "stopLoss": 160.00
    }
  ],
  "reasoning": "Overall portfolio strategy",
  "riskAssessment": "Risk analysis for this profile",
  "marketOutlook": "Current market outlook and implications"
}"""

DIVERSIFICATION_RULES = {
    "aggressive": "Provide 3-5 NEW buy recommendations focused on growth.",
    "moderate": "Provide 4-6 NEW buy recommendations across sectors and asset types.",
    "conservative": "Provide 4-6 NEW buy recommendations weighted toward bonds and broad index funds.",
}


def _holdings_line(profile: UserProfile) -> str:
    if not profile.existingPortfolio:
        return "None"
    return ", ".join(f"{h.symbol} ({h.type}): ${h.amount:,.2f}" for h in profile.existingPortfolio)


def _news_block(news: Optional[List[Dict[str, str]]]) -> str:
    if not news:
        return "No recent headlines available."
    lines = []
    for item in news[:8]:
        source = item.get("source") or ""
        lines.append(f"- {item.get('title', '')}" + (f" ({source})" if source else ""))
    return "\n".join(lines)


def build_user_prompt(
    profile: UserProfile,
    market_context: str,
    portfolio_analysis: str,
    news: Optional[List[Dict[str, str]]] = None,
) -> str:
    capital = f"${profile.capitalAvailable:,.2f}"
    sectors = ", ".join(profile.sectors) or "Any"
    return f"""Analyze this investor profile and recommend a portfolio.

USER PROFILE:
- Risk tolerance: {profile.riskTolerance}/10 ({profile.risk_tier})
- Time horizon: {profile.timeHorizon}
- Growth type: {profile.growthType}
- Sectors of interest: {sectors}
- Ethical investing priority: {profile.ethicalInvesting}/10
- Available capital for NEW investments: {capital}
- Existing portfolio: {_holdings_line(profile)}

{portfolio_analysis}

{market_context}

RECENT NEWS:
{_news_block(news)}

ALLOCATION RULES:
1. Every existing holding must appear exactly once as "hold" (amount = current value) or "sell" (amount = portion to sell).
2. Total of NEW "buy" amounts must not exceed {capital}.
3. No single new investment may exceed 40% of available capital.
4. {DIVERSIFICATION_RULES[profile.risk_tier]}
5. Amounts are plain dollar numbers. expectedAnnualReturn and volatility are decimal fractions (0.08 means 8%).
6. expectedAnnualReturn must be realistic, between 0.02 and 0.25.
7. confidence is an integer from 0 to 100.

Return ONLY valid JSON matching this structure:
{RESPONSE_SCHEMA}
"""
