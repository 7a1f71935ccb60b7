"""Deterministic trust scoring."""

from .trust_scorer import ScoringEngine, compute_score

__all__ = ["ScoringEngine", "compute_score"]
