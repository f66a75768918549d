"""Tests for the recommendation generator and the rule-based builder."""

import asyncio
import json
import unittest
from unittest.mock import AsyncMock, patch

from gains.errors import (
    ERR_AUTH,
    ERR_QUOTA,
    ERR_RATE_LIMITED,
    AIBackendError,
    ConfigurationError,
)
from gains.models import Action, UserProfile
from gains.services import portfolio_rules
from gains.services.recommendations import RecommendationGenerator, exhaustion_message
from gains.services.rule_based import RuleBasedBuilder, split_capital, TIER_ALLOCATIONS

BONDS_AND_BROAD = {"BND", "TIP", "VTI"}


class FakeBackend:
    """Backend double with scripted probe and completion outcomes."""

    def __init__(self, name, completions=(), probe_error=None):
        self.name = name
        self.completions = list(completions)
        self.probe = AsyncMock(side_effect=probe_error)
        self.complete = AsyncMock(side_effect=self._complete)

    async def _complete(self, *args, **kwargs):
        outcome = self.completions.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _ai_response(*items, **narrative):
    body = {"recommendations": list(items), "reasoning": "Strategy", "riskAssessment": "Moderate", "marketOutlook": "Neutral"}
    body.update(narrative)
    return json.dumps(body)


def _buy(symbol, amount, sector="ETF", ret=0.08):
    return {"symbol": symbol, "name": symbol, "type": "buy", "amount": amount, "confidence": 75,
            "reasoning": "fits", "sector": sector, "expectedAnnualReturn": ret}


def _profile(**overrides) -> UserProfile:
    data = {"riskTolerance": 5, "capitalAvailable": 10_000}
    data.update(overrides)
    return UserProfile(**data)


class TestRuleBasedBuilder(unittest.TestCase):

    def test_conservative_profile(self):
        """Risk 2, $10,000, no holdings: bond/broad-market heavy, no crypto, exact sum."""
        result = RuleBasedBuilder().build(_profile(riskTolerance=2))

        items = result.recommendations
        total = sum(i.amount for i in items)
        self.assertAlmostEqual(total, 10_000, places=2)
        core = sum(i.amount for i in items if i.symbol in BONDS_AND_BROAD)
        self.assertGreaterEqual(core / total, 0.75)
        self.assertLessEqual(core / total, 0.80)
        self.assertFalse(any(i.sector == "Cryptocurrency" for i in items))
        self.assertTrue(all(i.action == Action.BUY for i in items))
        self.assertEqual(result.source, "rule_based")
        self.assertEqual(result.portfolio_projections.total_investment, 10_000)

    def test_tiers(self):
        aggressive = RuleBasedBuilder().build(_profile(riskTolerance=9))
        moderate = RuleBasedBuilder().build(_profile(riskTolerance=5))
        self.assertIn("BTC", [i.symbol for i in aggressive.recommendations])
        self.assertIn("VXUS", [i.symbol for i in moderate.recommendations])

    def test_weights_sum_to_one(self):
        for tier, allocations in TIER_ALLOCATIONS.items():
            with self.subTest(tier=tier):
                self.assertAlmostEqual(sum(a.weight for a in allocations), 1.0)

    def test_split_capital_is_exact(self):
        parts = split_capital(333.33, TIER_ALLOCATIONS["moderate"])
        self.assertAlmostEqual(sum(parts), 333.33, places=2)

    def test_existing_holdings_kept(self):
        result = RuleBasedBuilder().build(
            _profile(capitalAvailable=0, existingPortfolio=[{"symbol": "AAPL", "amount": 2000, "type": "stock"}])
        )
        self.assertEqual([(i.symbol, i.action, i.amount) for i in result.recommendations], [("AAPL", Action.HOLD, 2000)])


class TestRecommendationGenerator(unittest.IsolatedAsyncioTestCase):

    def _generator(self, backends, **kwargs):
        kwargs.setdefault("sleep", AsyncMock())
        return RecommendationGenerator(backends, **kwargs)

    async def test_no_backend_raises_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            await self._generator([]).generate(_profile())

    async def test_rule_based_only_mode(self):
        result = await self._generator([], allow_rule_based_only=True).generate(_profile(riskTolerance=2))
        self.assertEqual(result.source, "rule_based")
        self.assertAlmostEqual(sum(i.amount for i in result.recommendations), 10_000, places=2)

    async def test_omitted_holding_gets_synthetic_hold(self):
        """AAPL $5,000 held plus $5,000 cash; AI answers with new buys only."""
        backend = FakeBackend("openai", [_ai_response(_buy("VTI", 3000), _buy("BND", 2000, "Bonds", 0.04))])
        profile = _profile(capitalAvailable=5_000, existingPortfolio=[{"symbol": "AAPL", "amount": 5000, "type": "stock"}])

        result = await self._generator([backend]).generate(profile)

        aapl = [i for i in result.recommendations if i.symbol == "AAPL"]
        self.assertEqual(len(aapl), 1)
        self.assertEqual((aapl[0].action, aapl[0].amount, aapl[0].synthetic), (Action.HOLD, 5000, True))
        self.assertEqual(result.source, "openai")
        self.assertEqual(result.reasoning, "Strategy")
        self.assertEqual(result.portfolio_projections.total_investment, 10_000)

    async def test_falls_through_chain_on_probe_and_parse_failures(self):
        dead = FakeBackend("openai", probe_error=AIBackendError("openai", ERR_AUTH, status_code=401))
        garbled = FakeBackend("grok", ["I am unable to produce JSON today."])
        good = FakeBackend("claude", [_ai_response(_buy("VTI", 10_000))])

        result = await self._generator([dead, garbled, good]).generate(_profile())

        self.assertEqual(result.source, "claude")
        dead.complete.assert_not_awaited()
        self.assertEqual(garbled.complete.await_count, 1)

    async def test_exhaustion_falls_back_to_rule_based(self):
        a = FakeBackend("openai", probe_error=AIBackendError("openai", ERR_QUOTA, status_code=429))
        b = FakeBackend("grok", [AIBackendError("grok", ERR_RATE_LIMITED, status_code=429)])

        result = await self._generator([a, b]).generate(_profile(riskTolerance=2))

        self.assertEqual(result.source, "rule_based")
        self.assertIn("quota", result.warnings[0])
        self.assertIn("rate limit", result.warnings[0])

    async def test_rate_limit_not_retried_in_production(self):
        backend = FakeBackend("openai", [AIBackendError("openai", ERR_RATE_LIMITED), _ai_response(_buy("VTI", 1000))])
        result = await self._generator([backend], is_production=True).generate(_profile())
        self.assertEqual(result.source, "rule_based")
        self.assertEqual(backend.complete.await_count, 1)

    async def test_rate_limit_retried_outside_production(self):
        sleep = AsyncMock()
        backend = FakeBackend("openai", [AIBackendError("openai", ERR_RATE_LIMITED), _ai_response(_buy("VTI", 1000))])

        result = await self._generator([backend], is_production=False, sleep=sleep).generate(_profile())

        self.assertEqual(result.source, "openai")
        self.assertEqual(backend.complete.await_count, 2)
        sleep.assert_awaited_once_with(1.0)

    async def test_probe_deadline(self):
        async def hang(*args, **kwargs):
            await asyncio.sleep(5)

        slow = FakeBackend("openai")
        slow.probe = AsyncMock(side_effect=hang)
        good = FakeBackend("grok", [_ai_response(_buy("VTI", 1000))])

        result = await self._generator([slow, good], probe_timeout=0.05).generate(_profile())

        self.assertEqual(result.source, "grok")

    async def test_context_built_once_with_market_digest(self):
        assembler = AsyncMock()
        assembler.assemble = AsyncMock(return_value="=== LIVE MARKET DATA ===\n- SPY (S&P 500): $500.00 (+0.10%)")
        news = AsyncMock()
        news.fetch_headlines = AsyncMock(side_effect=RuntimeError("news down"))
        first = FakeBackend("openai", ["not json"])
        second = FakeBackend("grok", [_ai_response(_buy("VTI", 1000))])

        await self._generator([first, second], assembler=assembler, news=news).generate(_profile())

        assembler.assemble.assert_awaited_once()
        prompt = second.complete.call_args.args[1]
        self.assertIn("SPY (S&P 500)", prompt)
        self.assertIn("No recent headlines available.", prompt)

    async def test_non_finite_amount_is_dropped_not_fatal(self):
        nan_row = _buy("NANX", float("nan"))
        backend = FakeBackend("openai", [_ai_response(nan_row, _buy("VTI", 5000))])

        result = await self._generator([backend]).generate(_profile())

        self.assertEqual(result.source, "openai")
        self.assertEqual([i.symbol for i in result.recommendations], ["VTI"])

    async def test_arithmetic_failure_moves_to_next_backend(self):
        first = FakeBackend("openai", [_ai_response(_buy("VTI", 1000))])
        second = FakeBackend("grok", [_ai_response(_buy("BND", 1000, "Bonds", 0.04))])
        calls = []

        def finalize(items, profile):
            calls.append(items)
            if len(calls) == 1:
                raise ValueError("cannot convert float NaN to integer")
            return portfolio_rules.finalize_recommendations(items, profile)

        with patch("gains.services.recommendations.finalize_recommendations", side_effect=finalize):
            result = await self._generator([first, second]).generate(_profile())

        self.assertEqual(result.source, "grok")
        self.assertEqual(len(calls), 2)

    async def test_arithmetic_failure_on_last_backend_falls_back_to_rule_based(self):
        backend = FakeBackend("openai", [_ai_response(_buy("VTI", 1000))])

        with patch(
            "gains.services.recommendations.finalize_recommendations",
            side_effect=OverflowError("cannot convert float infinity to integer"),
        ):
            result = await self._generator([backend]).generate(_profile(riskTolerance=2))

        self.assertEqual(result.source, "rule_based")
        self.assertIn("unusable response", result.warnings[0])


class TestExhaustionMessage(unittest.TestCase):

    def test_mentions_causes(self):
        message = exhaustion_message([
            AIBackendError("openai", ERR_AUTH, status_code=401),
            AIBackendError("grok", ERR_QUOTA, status_code=429),
        ])
        self.assertIn("invalid API key", message)
        self.assertIn("quota", message)
        self.assertIn("openai, grok", message)


if __name__ == "__main__":
    unittest.main()
