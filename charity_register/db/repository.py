"""Data access repositories for the charity register store.

One dataclass and one repository per table. Every write is an upsert
(`REPLACE INTO`, last writer wins). Write methods take an optional `cursor`
so several upserts can share one `transaction()`; without it each statement
autocommits.
"""

from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any

from ..constants import CHECKPOINT_ID, REMOVED_STATUSES
from .client import execute


@dataclass
class Organization:
    """Registered organization (a main charity or one of its linked charities)."""

    organisation_number: int
    registered_number: int
    linked_charity_number: int = 0  # 0 = the main charity
    name: str = ""
    company_number: str | None = None
    status: str | None = None
    date_registered: date | None = None
    date_removed: date | None = None
    address: str | None = None
    website: str | None = None
    email: str | None = None
    phone: str | None = None
    activities: str | None = None
    last_updated: datetime | None = None

    @property
    def is_removed(self) -> bool:
        return self.status in REMOVED_STATUSES


@dataclass
class FinancialRecord:
    """One financial year for a registered number."""

    registered_number: int
    financial_year_end: date
    total_income: float | None = None
    total_spending: float | None = None
    charitable_activities_spend: float | None = None
    raising_funds_spend: float | None = None
    other_spend: float | None = None
    reserves: float | None = None
    assets: float | None = None
    employees: int | None = None
    trustees: int | None = None
    last_updated: datetime | None = None


@dataclass
class Trustee:
    """Trustee record."""

    registered_number: int
    name: str
    is_chair: bool = False
    last_updated: datetime | None = None


@dataclass
class FilingHistoryRecord:
    """One annual-return cycle for an organization."""

    organisation_number: int
    ar_cycle_reference: str
    registered_number: int | None = None
    fin_period_start_date: date | None = None
    fin_period_end_date: date | None = None
    reporting_due_date: date | None = None
    date_annual_return_received: date | None = None
    date_accounts_received: date | None = None
    total_gross_income: float | None = None
    total_gross_expenditure: float | None = None
    accounts_qualified: bool | None = None
    suppression_ind: bool | None = None
    suppression_type: str | None = None
    date_of_extract: date | None = None


@dataclass
class Score:
    """Computed trust score (0-100 components)."""

    registered_number: int
    efficiency_score: float
    financial_health_score: float
    transparency_score: float
    governance_score: float
    overall_score: float
    confidence_level: str
    last_calculated: datetime | None = None


@dataclass
class Checkpoint:
    """Crawl resume point (single row)."""

    last_registered_number: int
    updated_at: datetime | None = None


def _from_row(cls, row: dict | None):
    """Build a dataclass from a DictCursor row, ignoring unknown columns."""
    if row is None:
        return None
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in row.items() if k in names})


def _replace(table: str, columns: list[str], record: Any, cursor=None) -> None:
    values = tuple(getattr(record, col) for col in columns)
    placeholders = ", ".join(["%s"] * len(columns))
    sql = f"REPLACE INTO {table} ({', '.join(f'`{c}`' for c in columns)}) VALUES ({placeholders})"
    execute(sql, values, cursor=cursor)


def _removed_filter(column: str = "status") -> tuple[str, tuple]:
    placeholders = ", ".join(["%s"] * len(REMOVED_STATUSES))
    return f"({column} IS NULL OR {column} NOT IN ({placeholders}))", tuple(REMOVED_STATUSES)


class OrganizationRepository:
    """Organizations table operations."""

    COLUMNS = [f.name for f in fields(Organization)]

    def upsert(self, organization: Organization, cursor=None) -> None:
        """Insert or replace an organization row."""
        if organization.last_updated is None:
            organization.last_updated = datetime.now()
        _replace("organizations", self.COLUMNS, organization, cursor)

    def exists(self, registered_number: int) -> bool:
        """Check if any row carries this registered number."""
        result = execute(
            "SELECT 1 FROM organizations WHERE registered_number = %s LIMIT 1",
            (registered_number,),
            fetch="one",
        )
        return result is not None

    def find_organisation_number(self, registered_number: int, linked_charity_number: int = 0) -> int | None:
        """Organisation number already stored for a (registered, linked) pair."""
        row = execute(
            "SELECT organisation_number FROM organizations "
            "WHERE registered_number = %s AND linked_charity_number = %s LIMIT 1",
            (registered_number, linked_charity_number),
            fetch="one",
        )
        return row["organisation_number"] if row else None

    def get_primary(self, registered_number: int, include_removed: bool = False) -> Organization | None:
        """Get the main charity (linked number 0) for a registered number."""
        sql = "SELECT * FROM organizations WHERE registered_number = %s AND linked_charity_number = 0"
        params: tuple = (registered_number,)
        if not include_removed:
            clause, removed = _removed_filter()
            sql += f" AND {clause}"
            params += removed
        return _from_row(Organization, execute(sql + " LIMIT 1", params, fetch="one"))

    def list_unscored(self) -> list[int]:
        """Registered numbers of live main charities that have no score row."""
        clause, removed = _removed_filter("o.status")
        rows = execute(
            f"""
            SELECT o.registered_number
            FROM organizations o
            LEFT JOIN scores s ON s.registered_number = o.registered_number
            WHERE o.linked_charity_number = 0
              AND s.registered_number IS NULL
              AND {clause}
            ORDER BY o.registered_number
            """,
            removed,
            fetch="all",
        )
        return [row["registered_number"] for row in rows or []]


class FinancialRepository:
    """Financials table operations."""

    COLUMNS = [f.name for f in fields(FinancialRecord)]

    def upsert(self, record: FinancialRecord, cursor=None) -> None:
        if record.last_updated is None:
            record.last_updated = datetime.now()
        _replace("financials", self.COLUMNS, record, cursor)

    def get_latest(self, registered_number: int) -> FinancialRecord | None:
        """Most recent financial year for a registered number."""
        row = execute(
            "SELECT * FROM financials WHERE registered_number = %s ORDER BY financial_year_end DESC LIMIT 1",
            (registered_number,),
            fetch="one",
        )
        return _from_row(FinancialRecord, row)


class TrusteeRepository:
    """Trustees table operations."""

    COLUMNS = [f.name for f in fields(Trustee)]

    def upsert(self, trustee: Trustee, cursor=None) -> None:
        if trustee.last_updated is None:
            trustee.last_updated = datetime.now()
        _replace("trustees", self.COLUMNS, trustee, cursor)

    def delete_for(self, registered_number: int, cursor=None) -> None:
        """Remove every trustee row for a registered number."""
        execute("DELETE FROM trustees WHERE registered_number = %s", (registered_number,), cursor=cursor)

    def count(self, registered_number: int) -> int:
        row = execute(
            "SELECT COUNT(*) AS n FROM trustees WHERE registered_number = %s",
            (registered_number,),
            fetch="one",
        )
        return int(row["n"]) if row else 0


class FilingHistoryRepository:
    """Filing history table operations."""

    COLUMNS = [f.name for f in fields(FilingHistoryRecord)]

    def upsert(self, record: FilingHistoryRecord, cursor=None) -> None:
        _replace("filing_history", self.COLUMNS, record, cursor)

    def list_for(self, organisation_number: int) -> list[FilingHistoryRecord]:
        """All filing cycles for an organization, newest due date first."""
        rows = execute(
            "SELECT * FROM filing_history WHERE organisation_number = %s ORDER BY reporting_due_date DESC",
            (organisation_number,),
            fetch="all",
        )
        return [_from_row(FilingHistoryRecord, row) for row in rows or []]


class ScoreRepository:
    """Scores table operations."""

    COLUMNS = [f.name for f in fields(Score)]

    def upsert(self, score: Score, cursor=None) -> None:
        if score.last_calculated is None:
            score.last_calculated = datetime.now()
        _replace("scores", self.COLUMNS, score, cursor)

    def get(self, registered_number: int) -> Score | None:
        row = execute(
            "SELECT * FROM scores WHERE registered_number = %s",
            (registered_number,),
            fetch="one",
        )
        return _from_row(Score, row)


class CheckpointRepository:
    """Crawl checkpoint operations (one row, id = 1)."""

    def load(self) -> Checkpoint | None:
        row = execute(
            "SELECT last_registered_number, updated_at FROM crawl_checkpoints WHERE id = %s",
            (CHECKPOINT_ID,),
            fetch="one",
        )
        return _from_row(Checkpoint, row)

    def save(self, last_registered_number: int) -> None:
        execute(
            """
            INSERT INTO crawl_checkpoints (id, last_registered_number, updated_at)
            VALUES (%s, %s, %s)
            ON DUPLICATE KEY UPDATE
                last_registered_number = VALUES(last_registered_number),
                updated_at = VALUES(updated_at)
            """,
            (CHECKPOINT_ID, last_registered_number, datetime.now()),
        )
