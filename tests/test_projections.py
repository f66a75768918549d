"""Tests for the deterministic portfolio projection."""

import unittest

from gains.models import Action, RecommendationItem
from gains.services.projections import (
    MAX_BLENDED_RETURN,
    calculate_projections,
    drawdown_factor,
    projected_value,
)


def _rec(symbol, amount, action=Action.BUY, sector="ETF", ret=0.08, vol=None) -> RecommendationItem:
    return RecommendationItem(
        symbol=symbol,
        name=symbol,
        action=action,
        amount=amount,
        confidence=70,
        reasoning="",
        sector=sector,
        expected_annual_return=ret,
        volatility=vol,
    )


class TestProjectionCurve(unittest.TestCase):

    def test_drawdowns_at_months_18_and_42(self):
        self.assertEqual(drawdown_factor(17), 1.0)
        self.assertAlmostEqual(drawdown_factor(18), 0.92)
        self.assertAlmostEqual(drawdown_factor(21), 0.96)
        self.assertEqual(drawdown_factor(25), 1.0)
        self.assertAlmostEqual(drawdown_factor(42), 0.94)
        self.assertEqual(drawdown_factor(60), 1.0)

    def test_dip_is_visible_in_series(self):
        projection = calculate_projections([_rec("VTI", 10_000)])
        values = {p.month: p.value for p in projection.monthly_projections}
        self.assertLess(values[18], values[17])
        self.assertLess(values[42], values[41])

    def test_year_values_are_series_entries(self):
        projection = calculate_projections([_rec("VTI", 10_000, ret=0.10)])
        series = projection.monthly_projections
        self.assertEqual(len(series), 60)
        self.assertEqual([p.month for p in series], list(range(1, 61)))
        self.assertEqual(projection.one_year, series[11].value)
        self.assertEqual(projection.three_year, series[35].value)
        self.assertEqual(projection.five_year, series[59].value)
        self.assertAlmostEqual(projection.five_year, round(projected_value(10_000, 0.10, 60), 2))

    def test_deterministic(self):
        recs = [_rec("VTI", 6_000), _rec("QQQ", 4_000, sector="Technology", ret=0.12)]
        self.assertEqual(calculate_projections(recs), calculate_projections(recs))


class TestProjectionSummary(unittest.TestCase):

    def test_sells_are_ignored(self):
        projection = calculate_projections([_rec("VTI", 5_000), _rec("AAPL", 3_000, action=Action.SELL)])
        self.assertEqual(projection.total_investment, 5_000)
        self.assertEqual(projection.sector_breakdown, {"ETF": 100})

    def test_blended_return_capped(self):
        projection = calculate_projections([_rec("BTC", 1_000, sector="Cryptocurrency", ret=0.25)])
        self.assertEqual(projection.expected_annual_return, MAX_BLENDED_RETURN)

    def test_risk_level_from_weighted_volatility(self):
        low = calculate_projections([_rec("BND", 1_000, sector="Bonds", ret=0.04)])
        high = calculate_projections([_rec("BTC", 1_000, sector="Cryptocurrency", ret=0.15)])
        medium = calculate_projections([_rec("XLF", 1_000, sector="Financials", ret=0.09)])
        self.assertEqual(low.risk_level, "low")
        self.assertEqual(high.risk_level, "high")
        self.assertEqual(medium.risk_level, "medium")

    def test_explicit_volatility_wins_over_sector_default(self):
        projection = calculate_projections([_rec("BND", 1_000, sector="Bonds", ret=0.04, vol=0.5)])
        self.assertEqual(projection.risk_level, "high")

    def test_diversification_and_breakdown(self):
        recs = [
            _rec("VTI", 5_000, sector="ETF"),
            _rec("QQQ", 3_000, sector="Technology"),
            _rec("BND", 2_000, sector="Bonds"),
        ]
        projection = calculate_projections(recs)
        self.assertEqual(projection.sector_breakdown, {"ETF": 50, "Technology": 30, "Bonds": 20})
        # 3 sectors * 20 + (100 - 50)
        self.assertEqual(projection.diversification_score, 100)

        single = calculate_projections([_rec("VTI", 5_000)])
        self.assertEqual(single.diversification_score, 20)

    def test_empty_input_yields_zeros(self):
        projection = calculate_projections([])
        self.assertEqual(projection.total_investment, 0)
        self.assertEqual(projection.five_year, 0)
        self.assertEqual(projection.diversification_score, 0)
        self.assertEqual(projection.sector_breakdown, {})
        self.assertTrue(all(p.value == 0 for p in projection.monthly_projections))

    def test_serialized_shape(self):
        data = calculate_projections([_rec("VTI", 1_000)]).to_dict()
        self.assertEqual(set(data["projectedValues"]), {"oneYear", "threeYear", "fiveYear"})
        self.assertEqual(len(data["monthlyProjections"]), 60)
        self.assertIn("diversificationScore", data)


if __name__ == "__main__":
    unittest.main()
