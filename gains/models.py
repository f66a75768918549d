"""Domain models: quotes, provider specs, recommendations, projections, jobs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper().replace("$", "")


# ============== MARKET DATA ==============

@dataclass
class Quote:
    """Normalized price snapshot for one symbol."""
    symbol: str
    name: str
    price: float
    change: float
    change_percent: float
    volume: int = 0
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    dividend: Optional[float] = None
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
            "marketCap": self.market_cap,
            "peRatio": self.pe_ratio,
            "dividend": self.dividend,
            "source": self.source,
        }


@dataclass(frozen=True)
class ProviderSpec:
    """Static description of a market data provider."""
    name: str
    base_url: str
    max_requests: int
    window_ms: int
    active: bool
    priority: int


# ============== USER PROFILE ==============

class PortfolioHolding(BaseModel):
    symbol: str
    amount: float = Field(gt=0)
    type: Literal["stock", "crypto", "etf", "other"] = "stock"

    @field_validator("symbol")
    @classmethod
    def _clean_symbol(cls, value: str) -> str:
        value = normalize_symbol(value)
        if not value:
            raise ValueError("symbol must not be empty")
        return value


class UserProfile(BaseModel):
    """Questionnaire answers, validated once at the system boundary."""

    id: Optional[str] = None
    email: Optional[str] = None
    isGuest: bool = True
    riskTolerance: int = Field(ge=1, le=10)
    timeHorizon: Literal["short", "medium", "long"] = "medium"
    growthType: Literal["aggressive", "balanced", "conservative"] = "balanced"
    sectors: List[str] = Field(default_factory=list)
    ethicalInvesting: int = Field(default=5, ge=1, le=10)
    capitalAvailable: float = Field(ge=0)
    existingPortfolio: List[PortfolioHolding] = Field(default_factory=list)

    @field_validator("sectors")
    @classmethod
    def _clean_sectors(cls, value: List[str]) -> List[str]:
        return [s.strip().lower() for s in value if s and s.strip()]

    @field_validator("existingPortfolio")
    @classmethod
    def _merge_holdings(cls, value: List[PortfolioHolding]) -> List[PortfolioHolding]:
        """One holding per symbol; rows for the same symbol are summed (first type wins)."""
        merged: Dict[str, PortfolioHolding] = {}
        for holding in value:
            existing = merged.get(holding.symbol)
            if existing is None:
                merged[holding.symbol] = holding.model_copy()
            else:
                existing.amount += holding.amount
        return list(merged.values())

    @property
    def holdings_value(self) -> float:
        return sum(h.amount for h in self.existingPortfolio)

    @property
    def total_capital(self) -> float:
        """Cash plus the value of existing holdings."""
        return self.capitalAvailable + self.holdings_value

    @property
    def risk_tier(self) -> str:
        if self.riskTolerance <= 3:
            return "conservative"
        if self.riskTolerance >= 8:
            return "aggressive"
        return "moderate"


# ============== RECOMMENDATIONS ==============

class Action(str, Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


@dataclass
class RecommendationItem:
    symbol: str
    name: str
    action: Action
    amount: float
    confidence: float
    reasoning: str
    sector: str
    expected_annual_return: float
    strength: str = "moderate"
    volatility: Optional[float] = None
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    synthetic: bool = False

    @property
    def allocates_capital(self) -> bool:
        """Buy and hold rows count against the capital budget; sells do not."""
        return self.action in (Action.BUY, Action.HOLD)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "symbol": self.symbol,
            "name": self.name,
            "type": self.action.value,
            "amount": self.amount,
            "strength": self.strength,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "sector": self.sector,
            "expectedAnnualReturn": self.expected_annual_return,
            "volatility": self.volatility,
            "targetPrice": self.target_price,
            "stopLoss": self.stop_loss,
        }
        if self.synthetic:
            data["synthetic"] = True
        return data


@dataclass
class MonthlyPoint:
    month: int
    value: float


@dataclass
class PortfolioProjection:
    total_investment: float
    monthly_projections: List[MonthlyPoint]
    one_year: float
    three_year: float
    five_year: float
    expected_annual_return: float
    risk_level: str
    diversification_score: int
    sector_breakdown: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalInvestment": self.total_investment,
            "monthlyProjections": [asdict(p) for p in self.monthly_projections],
            "projectedValues": {
                "oneYear": self.one_year,
                "threeYear": self.three_year,
                "fiveYear": self.five_year,
            },
            "expectedAnnualReturn": self.expected_annual_return,
            "riskLevel": self.risk_level,
            "diversificationScore": self.diversification_score,
            "sectorBreakdown": dict(self.sector_breakdown),
        }


@dataclass
class RecommendationResult:
    recommendations: List[RecommendationItem]
    portfolio_projections: PortfolioProjection
    reasoning: str = ""
    risk_assessment: str = ""
    market_outlook: str = ""
    source: str = ""
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendations": [r.to_dict() for r in self.recommendations],
            "portfolioProjections": self.portfolio_projections.to_dict(),
            "reasoning": self.reasoning,
            "riskAssessment": self.risk_assessment,
            "marketOutlook": self.market_outlook,
            "source": self.source,
            "warnings": list(self.warnings),
        }


# ============== JOBS ==============

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Job:
    id: str
    status: JobStatus
    user_profile: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "userProfile": self.user_profile,
            "result": self.result,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=data["id"],
            status=JobStatus(data["status"]),
            user_profile=data.get("userProfile") or {},
            result=data.get("result"),
            error=data.get("error"),
            created_at=datetime.fromisoformat(data["createdAt"]),
            updated_at=datetime.fromisoformat(data["updatedAt"]),
        )
