"""Parse and repair AI recommendation output.

The pipeline is explicit and ordered:

1. strip Markdown code fences
2. extract the outermost JSON object
3. decode JSON
4. coerce each item (numeric strings, percents, action names)
5. drop invalid items, clamp the survivors
6. fail when nothing survives
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import RecommendationParseError
from ..models import Action, RecommendationItem, normalize_symbol
from ..services.projections import sector_expected_return

logger = logging.getLogger(__name__)

MIN_RETURN = 0.02
MAX_RETURN = 0.25
STRENGTHS = ("weak", "moderate", "strong")
NARRATIVE_KEYS = ("reasoning", "riskAssessment", "marketOutlook")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*|```")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_NUMBER_RE = re.compile(r"^[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?$")


@dataclass
class ParseResult:
    recommendations: List[RecommendationItem]
    narrative: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def extract_json_object(text: str) -> str:
    """Return the span from the first '{' to the last '}'."""
    match = _OBJECT_RE.search(text)
    if not match:
        raise RecommendationParseError("no JSON object found in response")
    return match.group(0)


def coerce_number(value: Any) -> Optional[float]:
    """
    Turn 5000, "5000", "$5,000" or "12%" into a float.

    Returns:
        float, or None when the value is missing, not numeric or not finite
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None
    cleaned = value.strip().replace("$", "").replace(",", "").replace("%", "").strip()
    if not _NUMBER_RE.match(cleaned):
        return None
    number = float(cleaned)
    return number if math.isfinite(number) else None


def coerce_rate(value: Any) -> Optional[float]:
    """
    Like coerce_number, but for fractions: "12%" and 12 both become 0.12.
    """
    number = coerce_number(value)
    if number is None:
        return None
    if (isinstance(value, str) and "%" in value) or number > 1:
        return number / 100
    return number


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def parse_item(raw: Any, index: int, warnings: List[str]) -> Optional[RecommendationItem]:
    """Coerce one raw recommendation; None (with a warning) when it must be dropped."""
    if not isinstance(raw, dict):
        warnings.append(f"Dropped item #{index}: not an object")
        return None

    symbol = normalize_symbol(str(raw.get("symbol") or ""))
    if not symbol:
        warnings.append(f"Dropped item #{index}: missing symbol")
        return None

    action_name = str(raw.get("type") or raw.get("action") or "").strip().lower()
    try:
        action = Action(action_name)
    except ValueError:
        warnings.append(f"Dropped {symbol}: unknown action {action_name!r}")
        return None

    amount = coerce_number(raw.get("amount"))
    if amount is None or amount <= 0:
        warnings.append(f"Dropped {symbol}: non-positive or missing amount")
        return None

    sector = str(raw.get("sector") or "Other").strip() or "Other"
    expected = coerce_rate(raw.get("expectedAnnualReturn"))
    if expected is None:
        expected = sector_expected_return(sector)
        warnings.append(f"{symbol}: missing expected return, using {sector} default {expected:.2f}")
    elif expected <= 0:
        warnings.append(f"Dropped {symbol}: non-positive expected return")
        return None
    clamped = _clamp(expected, MIN_RETURN, MAX_RETURN)
    if clamped != expected:
        warnings.append(f"{symbol}: expected return {expected:.4f} clamped to {clamped:.2f}")

    confidence = coerce_number(raw.get("confidence"))
    confidence = 50.0 if confidence is None else _clamp(confidence, 0.0, 100.0)

    strength = str(raw.get("strength") or "moderate").strip().lower()
    if strength not in STRENGTHS:
        strength = "moderate"

    volatility = coerce_rate(raw.get("volatility"))
    target_price = coerce_number(raw.get("targetPrice"))
    stop_loss = coerce_number(raw.get("stopLoss"))

    return RecommendationItem(
        symbol=symbol,
        name=str(raw.get("name") or symbol).strip(),
        action=action,
        amount=round(amount, 2),
        confidence=confidence,
        reasoning=str(raw.get("reasoning") or "").strip(),
        sector=sector,
        expected_annual_return=clamped,
        strength=strength,
        volatility=volatility if volatility and volatility > 0 else None,
        target_price=target_price if target_price and target_price > 0 else None,
        stop_loss=stop_loss if stop_loss and stop_loss > 0 else None,
    )


def parse_recommendations(text: str) -> ParseResult:
    """
    Run the full parse-and-repair pipeline over raw model output.

    Raises:
        RecommendationParseError: no JSON object, invalid JSON, or zero
            valid items after repair
    """
    if not text or not text.strip():
        raise RecommendationParseError("empty response")

    body = extract_json_object(strip_code_fences(text))
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise RecommendationParseError(f"invalid JSON: {exc.msg} at position {exc.pos}") from exc

    if not isinstance(payload, dict):
        raise RecommendationParseError("top-level JSON value is not an object")

    raw_items = payload.get("recommendations")
    if not isinstance(raw_items, list):
        raise RecommendationParseError("'recommendations' is missing or not a list")

    warnings: List[str] = []
    items = [item for item in (parse_item(raw, i, warnings) for i, raw in enumerate(raw_items)) if item]
    if not items:
        raise RecommendationParseError(f"no valid recommendations among {len(raw_items)} item(s)")

    narrative = {key: str(payload.get(key) or "").strip() for key in NARRATIVE_KEYS}
    if warnings:
        logger.info("Parsed %d/%d items with %d repair(s)", len(items), len(raw_items), len(warnings))
    return ParseResult(recommendations=items, narrative=narrative, warnings=warnings)
