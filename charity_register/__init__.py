"""Charity register pipeline.

Populates a relational store of charity records from the registry API and
the bulk register extracts, then computes deterministic trust scores.
"""

__version__ = "1.0.0"
