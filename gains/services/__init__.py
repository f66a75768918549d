"""Recommendation services: market context, rules, projections."""
