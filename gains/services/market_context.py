"""Live market digest that feeds the recommendation prompt."""

import asyncio
import logging
from typing import Dict, List, Sequence, Tuple

from ..models import Quote, UserProfile, normalize_symbol
from ..providers.router import QuoteRouter

logger = logging.getLogger(__name__)

INDEX_SYMBOLS: List[Tuple[str, str]] = [
    ("SPY", "S&P 500"),
    ("QQQ", "Nasdaq 100"),
    ("DIA", "Dow Jones"),
    ("IWM", "Russell 2000"),
    ("VIX", "Volatility Index"),
]

SECTOR_ETFS: List[Tuple[str, str]] = [
    ("XLK", "Technology"),
    ("XLV", "Healthcare"),
    ("XLF", "Financials"),
    ("XLE", "Energy"),
    ("XLY", "Consumer Discretionary"),
    ("XLP", "Consumer Staples"),
    ("XLI", "Industrials"),
    ("XLU", "Utilities"),
    ("XLRE", "Real Estate"),
    ("XLB", "Materials"),
    ("XLC", "Communication Services"),
]

CRYPTO_SYMBOLS: List[Tuple[str, str]] = [
    ("BTC", "Bitcoin"),
    ("ETH", "Ethereum"),
]

# Representative names per questionnaire sector id
SECTOR_STOCKS: Dict[str, List[str]] = {
    "technology": ["AAPL", "MSFT", "NVDA"],
    "healthcare": ["JNJ", "UNH", "PFE"],
    "financials": ["JPM", "V", "BAC"],
    "consumer-discretionary": ["AMZN", "TSLA", "NKE"],
    "consumer-staples": ["KO", "WMT", "PEP"],
    "energy": ["XOM", "CVX", "NEE"],
    "industrials": ["CAT", "HON", "UNP"],
    "utilities": ["DUK", "NEE", "SO"],
    "real-estate": ["O", "PLD", "SPG"],
    "materials": ["LIN", "DOW", "DD"],
    "telecommunications": ["VZ", "T", "TMUS"],
}

MAX_SECTOR_PICKS = 3
VIX_RISK_OFF = 25.0
VIX_COMPLACENT = 15.0
BROAD_MOVE_PCT = 1.0
CRYPTO_MOMENTUM_PCT = 5.0


def sector_symbols_for(sectors: Sequence[str], exclude: Sequence[str] = ()) -> List[str]:
    """
    Pick up to three representative stocks for the preferred sectors.

    Takes the first name of every sector, then the second, and so on, so
    that several preferred sectors each get represented.
    """
    excluded = set(exclude)
    picks: List[str] = []
    lists = [SECTOR_STOCKS[s] for s in sectors if s in SECTOR_STOCKS]
    depth = max((len(lst) for lst in lists), default=0)
    for i in range(depth):
        for lst in lists:
            if i < len(lst) and lst[i] not in excluded and lst[i] not in picks:
                picks.append(lst[i])
            if len(picks) >= MAX_SECTOR_PICKS:
                return picks
    return picks


def _format_line(symbol: str, label: str, quote: Quote) -> str:
    if symbol == "VIX":
        return f"- {symbol} ({label}): {quote.price:.2f} ({quote.change_percent:+.2f}%)"
    return f"- {symbol} ({label}): ${quote.price:,.2f} ({quote.change_percent:+.2f}%)"


def derive_sentiment(quotes: Dict[str, Quote]) -> Tuple[List[str], Dict[str, bool]]:
    """
    Threshold rules over the fetched quotes.

    Returns:
        (human-readable sentiment lines, flags used to pick guidance)
    """
    lines: List[str] = []
    flags = {"risk_off": False, "risk_on": False, "bullish": False, "bearish": False}

    vix = quotes.get("VIX")
    if vix is not None:
        if vix.price > VIX_RISK_OFF:
            lines.append(f"Elevated volatility (VIX {vix.price:.1f} > {VIX_RISK_OFF:.0f}): risk-off environment")
            flags["risk_off"] = True
        elif vix.price < VIX_COMPLACENT:
            lines.append(f"Low volatility (VIX {vix.price:.1f} < {VIX_COMPLACENT:.0f}): risk-on, watch for complacency")
            flags["risk_on"] = True
        else:
            lines.append(f"Moderate volatility (VIX {vix.price:.1f})")

    spy = quotes.get("SPY")
    if spy is not None:
        if spy.change_percent >= BROAD_MOVE_PCT:
            lines.append(f"Broad market rallying (S&P 500 {spy.change_percent:+.2f}%)")
            flags["bullish"] = True
        elif spy.change_percent <= -BROAD_MOVE_PCT:
            lines.append(f"Broad market selling off (S&P 500 {spy.change_percent:+.2f}%)")
            flags["bearish"] = True
        else:
            lines.append(f"Broad market steady (S&P 500 {spy.change_percent:+.2f}%)")

    sector_moves = [(label, quotes[sym].change_percent) for sym, label in SECTOR_ETFS if sym in quotes]
    if len(sector_moves) >= 2:
        leader = max(sector_moves, key=lambda item: item[1])
        laggard = min(sector_moves, key=lambda item: item[1])
        lines.append(f"Leading sector: {leader[0]} ({leader[1]:+.2f}%)")
        lines.append(f"Lagging sector: {laggard[0]} ({laggard[1]:+.2f}%)")

    btc = quotes.get("BTC")
    if btc is not None and btc.source != "static_fallback":
        if btc.change_percent >= CRYPTO_MOMENTUM_PCT:
            lines.append(f"Strong crypto momentum (Bitcoin {btc.change_percent:+.2f}%)")
        elif btc.change_percent <= -CRYPTO_MOMENTUM_PCT:
            lines.append(f"Crypto selloff (Bitcoin {btc.change_percent:+.2f}%)")

    return lines, flags


def build_guidance(flags: Dict[str, bool], has_data: bool) -> List[str]:
    if not has_data:
        return [
            "Real-time market data is unavailable; base recommendations on long-term fundamentals and diversification.",
            "Do not quote specific current prices.",
        ]

    guidance = ["Use the live prices above when sizing positions and setting target prices."]
    if flags.get("risk_off"):
        guidance.append("Favor quality, dividend payers and bonds for new capital; keep single positions moderate.")
    if flags.get("risk_on"):
        guidance.append("Conditions support growth exposure, but keep a defensive sleeve for a volatility spike.")
    if flags.get("bullish"):
        guidance.append("Momentum is positive; avoid chasing extended names and stage entries.")
    if flags.get("bearish"):
        guidance.append("Consider staggered purchases (dollar-cost averaging) into weakness.")
    guidance.append("Weigh sector momentum against the user's stated sector preferences.")
    return guidance


class MarketContextAssembler:
    """
    Builds the text digest of live market state for the AI prompt.

    All quote lookups are issued concurrently and awaited with settle-all
    semantics: a failed or missing quote is left out of the digest and never
    aborts the assembly.
    """

    def __init__(self, router: QuoteRouter):
        self.router = router

    def symbols_for(self, profile: UserProfile) -> List[Tuple[str, str, str]]:
        """Ordered (section, symbol, label) triples to fetch for a profile."""
        entries: List[Tuple[str, str, str]] = []
        entries += [("indices", s, label) for s, label in INDEX_SYMBOLS]
        entries += [("sectors", s, label) for s, label in SECTOR_ETFS]
        entries += [("crypto", s, label) for s, label in CRYPTO_SYMBOLS]

        fixed = [symbol for _, symbol, _ in entries]
        for symbol in sector_symbols_for(profile.sectors, exclude=fixed):
            entries.append(("picks", symbol, symbol))

        for holding in profile.existingPortfolio:
            symbol = normalize_symbol(holding.symbol)
            entries.append(("holdings", symbol, holding.type))
        return entries

    async def fetch_quotes(self, symbols: Sequence[str]) -> Dict[str, Quote]:
        unique = list(dict.fromkeys(symbols))
        results = await asyncio.gather(
            *(self.router.get_stock_data(symbol) for symbol in unique),
            return_exceptions=True,
        )
        quotes: Dict[str, Quote] = {}
        for symbol, result in zip(unique, results):
            if isinstance(result, Quote):
                quotes[symbol] = result
            elif isinstance(result, BaseException):
                logger.warning("Quote fetch for %s raised: %s", symbol, result)
        logger.info("Market context: %d/%d quotes available", len(quotes), len(unique))
        return quotes

    async def assemble(self, profile: UserProfile) -> str:
        entries = self.symbols_for(profile)
        quotes = await self.fetch_quotes([symbol for _, symbol, _ in entries])
        return self.render(entries, quotes)

    def render(self, entries: List[Tuple[str, str, str]], quotes: Dict[str, Quote]) -> str:
        titles = {
            "indices": "MARKET INDICES",
            "sectors": "SECTOR PERFORMANCE",
            "crypto": "CRYPTO",
            "picks": "PREFERRED SECTOR NAMES",
            "holdings": "EXISTING HOLDINGS (LIVE)",
        }
        lines = ["=== LIVE MARKET DATA ==="]
        for section, title in titles.items():
            section_lines = [
                _format_line(symbol, label, quotes[symbol])
                for sec, symbol, label in entries
                if sec == section and symbol in quotes
            ]
            if section_lines:
                lines.append(f"{title}:")
                lines.extend(section_lines)

        sentiment, flags = derive_sentiment(quotes)
        if sentiment:
            lines.append("MARKET SENTIMENT:")
            lines.extend(f"- {line}" for line in sentiment)

        lines.append("GUIDANCE:")
        lines.extend(f"- {line}" for line in build_guidance(flags, has_data=bool(quotes)))
        return "\n".join(lines)

