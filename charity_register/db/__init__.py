"""Charity register store: MySQL client and repositories.

Provides:
- Thread-local pymysql connections and a transaction context manager
- Dataclasses and repository classes for each table
"""

from .client import DatabaseError, check_connection, execute_query, get_connection, get_cursor, transaction
from .repository import (
    Checkpoint,
    CheckpointRepository,
    FilingHistoryRecord,
    FilingHistoryRepository,
    FinancialRecord,
    FinancialRepository,
    Organization,
    OrganizationRepository,
    Score,
    ScoreRepository,
    Trustee,
    TrusteeRepository,
)

__all__ = [
    # Client
    "DatabaseError",
    "check_connection",
    "execute_query",
    "get_connection",
    "get_cursor",
    "transaction",
    # Dataclasses
    "Checkpoint",
    "FilingHistoryRecord",
    "FinancialRecord",
    "Organization",
    "Score",
    "Trustee",
    # Repositories
    "CheckpointRepository",
    "FilingHistoryRepository",
    "FinancialRepository",
    "OrganizationRepository",
    "ScoreRepository",
    "TrusteeRepository",
]
