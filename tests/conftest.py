"""Shared fixtures for charity register tests.

Tests never touch a real database or the network: repositories are replaced
by the in-memory fakes below, and HTTP sessions by mocks.
"""

import threading
from contextlib import contextmanager
from datetime import datetime

import pymysql
import pytest

from charity_register.db.repository import Checkpoint, Organization
from charity_register.errors import NotFoundError, TransientError


class FakeTransaction:
    """Stands in for `db.client.transaction`; can be told to fail commits."""

    def __init__(self):
        self.commits = 0
        self.rollbacks = 0
        self.fail_commits = 0

    @contextmanager
    def __call__(self):
        try:
            yield object()
        except BaseException:
            self.rollbacks += 1
            raise
        if self.fail_commits:
            self.fail_commits -= 1
            self.rollbacks += 1
            raise pymysql.err.OperationalError(2013, "Lost connection to MySQL server during query")
        self.commits += 1


class _FakeRepository:
    def __init__(self):
        self.rows = {}
        self.fail_keys = set()
        self._lock = threading.Lock()

    def _put(self, key, record):
        if key in self.fail_keys:
            raise pymysql.err.IntegrityError(1452, f"cannot write {key}")
        with self._lock:
            self.rows[key] = record


class FakeOrganizationRepository(_FakeRepository):
    def __init__(self, scores=None):
        super().__init__()
        self.scores = scores

    def upsert(self, organization, cursor=None):
        with self._lock:
            # REPLACE INTO also drops the row holding the same (registered, linked) pair
            for key, existing in list(self.rows.items()):
                if (existing.registered_number, existing.linked_charity_number) == (
                    organization.registered_number,
                    organization.linked_charity_number,
                ):
                    del self.rows[key]
        self._put(organization.organisation_number, organization)

    def exists(self, registered_number):
        with self._lock:
            return any(o.registered_number == registered_number for o in self.rows.values())

    def find_organisation_number(self, registered_number, linked_charity_number=0):
        with self._lock:
            for org in self.rows.values():
                if (org.registered_number, org.linked_charity_number) == (registered_number, linked_charity_number):
                    return org.organisation_number
        return None

    def get_primary(self, registered_number, include_removed=False):
        with self._lock:
            for org in self.rows.values():
                if org.registered_number == registered_number and org.linked_charity_number == 0:
                    if include_removed or not org.is_removed:
                        return org
        return None

    def list_unscored(self):
        scored = set(self.scores.rows) if self.scores is not None else set()
        with self._lock:
            return sorted(
                o.registered_number
                for o in self.rows.values()
                if o.linked_charity_number == 0 and not o.is_removed and o.registered_number not in scored
            )


class FakeFinancialRepository(_FakeRepository):
    def upsert(self, record, cursor=None):
        self._put((record.registered_number, record.financial_year_end), record)

    def get_latest(self, registered_number):
        with self._lock:
            matching = [r for (n, _), r in self.rows.items() if n == registered_number]
        return max(matching, key=lambda r: r.financial_year_end) if matching else None


class FakeTrusteeRepository(_FakeRepository):
    def upsert(self, trustee, cursor=None):
        self._put((trustee.registered_number, trustee.name), trustee)

    def count(self, registered_number):
        with self._lock:
            return sum(1 for n, _ in self.rows if n == registered_number)

    def delete_for(self, registered_number, cursor=None):
        with self._lock:
            for key in [k for k in self.rows if k[0] == registered_number]:
                del self.rows[key]


class FakeFilingHistoryRepository(_FakeRepository):
    def upsert(self, record, cursor=None):
        self._put((record.organisation_number, record.ar_cycle_reference), record)

    def list_for(self, organisation_number):
        with self._lock:
            return [r for (n, _), r in self.rows.items() if n == organisation_number]


class FakeScoreRepository(_FakeRepository):
    def upsert(self, score, cursor=None):
        self._put(score.registered_number, score)

    def get(self, registered_number):
        return self.rows.get(registered_number)


class FakeCheckpointRepository:
    def __init__(self, initial=None):
        self.saved = []
        self.initial = initial
        self._lock = threading.Lock()

    def load(self):
        last = self.saved[-1] if self.saved else self.initial
        return Checkpoint(last_registered_number=last) if last is not None else None

    def save(self, last_registered_number):
        with self._lock:
            self.saved.append(last_registered_number)


class FakeStore:
    """All fake repositories plus one fake transaction."""

    def __init__(self):
        self.scores = FakeScoreRepository()
        self.organizations = FakeOrganizationRepository(scores=self.scores)
        self.financials = FakeFinancialRepository()
        self.trustees = FakeTrusteeRepository()
        self.filings = FakeFilingHistoryRepository()
        self.checkpoints = FakeCheckpointRepository()
        self.transaction = FakeTransaction()


class FakeRegistryClient:
    """Registry client double keyed by registration number."""

    def __init__(self, payloads=None, missing=(), failing=(), history=None):
        self.payloads = payloads or {}
        self.missing = set(missing)
        self.failing = set(failing)
        self.history = history or {}
        self.calls = []
        self._lock = threading.Lock()

    def fetch_details(self, registered_number, cancel_event=None):
        with self._lock:
            self.calls.append(registered_number)
        if registered_number in self.failing:
            raise TransientError("Server error (503)", status_code=503)
        if registered_number in self.missing or registered_number not in self.payloads:
            raise NotFoundError()
        return self.payloads[registered_number]

    def fetch_financial_history(self, registered_number, cancel_event=None):
        if registered_number not in self.history:
            raise NotFoundError()
        return self.history[registered_number]

    def get_key_stats(self):
        return []


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def now():
    return datetime(2024, 6, 30, 12, 0, 0)


def make_organization(registered_number=1000001, **overrides) -> Organization:
    """Organization with sensible defaults, override any field."""
    defaults = dict(
        organisation_number=registered_number + 5_000_000,
        registered_number=registered_number,
        linked_charity_number=0,
        name="Test Charity",
        status="Registered",
        website="https://example.org",
        last_updated=datetime(2024, 6, 1),
    )
    defaults.update(overrides)
    return Organization(**defaults)


def details_payload(registered_number, **overrides) -> dict:
    """Minimal `allcharitydetailsV2` payload."""
    payload = {
        "organisation_number": registered_number + 5_000_000,
        "reg_charity_number": registered_number,
        "linked_charity_number": 0,
        "charity_name": f"Charity {registered_number}",
        "reg_status": "R",
        "web": "https://example.org",
        "latest_income": 120000.0,
        "latest_expenditure": 100000.0,
        "latest_acc_fin_year_end_date": "2023-03-31T00:00:00",
        "trustee_names": [{"trustee_name": "Alice Smith", "trustee_is_chair": True}, {"trustee_name": "Bob Jones"}],
    }
    payload.update(overrides)
    return payload
