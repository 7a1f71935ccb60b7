"""Tests for the MySQL client helpers and repositories (no live database)."""

from datetime import date, datetime
from unittest.mock import MagicMock, patch

import pymysql
import pytest

from charity_register.db import client
from charity_register.db.repository import (
    CheckpointRepository,
    FinancialRecord,
    FinancialRepository,
    OrganizationRepository,
    Trustee,
    TrusteeRepository,
)

from conftest import make_organization


@pytest.fixture
def conn():
    """Mock connection installed as this thread's connection."""
    connection = MagicMock()
    cursor = MagicMock()
    connection.cursor.return_value.__enter__.return_value = cursor
    connection.cursor.return_value.__exit__.return_value = False
    connection.test_cursor = cursor
    with patch.object(client.pymysql, "connect", return_value=connection) as connect:
        client._thread_local.conn = None
        connection.connect_mock = connect
        yield connection
    client._thread_local.conn = None


# ─── Client ──────────────────────────────────────────────────────────────────


class TestConnection:
    def test_reused_while_alive(self, conn):
        assert client.get_connection() is conn
        assert client.get_connection() is conn
        assert conn.connect_mock.call_count == 1
        conn.ping.assert_called_with(reconnect=False)

    def test_reconnects_when_ping_fails(self, conn):
        client.get_connection()
        conn.ping.side_effect = pymysql.err.OperationalError(2006, "gone away")
        client.get_connection()
        assert conn.connect_mock.call_count == 2
        conn.close.assert_called_once()

    def test_check_connection_false_on_error(self, conn):
        conn.connect_mock.side_effect = pymysql.err.OperationalError(2003, "Can't connect")
        assert client.check_connection() is False

    def test_check_connection_true(self, conn):
        assert client.check_connection() is True
        conn.test_cursor.execute.assert_called_once_with("SELECT 1")


class TestTransaction:
    def test_commits_on_success(self, conn):
        with client.transaction() as cursor:
            cursor.execute("SELECT 1")
        conn.begin.assert_called_once()
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()

    def test_rolls_back_and_reraises(self, conn):
        with pytest.raises(ValueError):
            with client.transaction():
                raise ValueError("bad row")
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_failed_commit_rolls_back(self, conn):
        conn.commit.side_effect = pymysql.err.OperationalError(2013, "Lost connection")
        with pytest.raises(client.DatabaseError):
            with client.transaction():
                pass
        conn.rollback.assert_called_once()

    def test_dead_connection_dropped_after_failed_rollback(self, conn):
        conn.rollback.side_effect = pymysql.err.InterfaceError(0, "")
        with pytest.raises(RuntimeError):
            with client.transaction():
                raise RuntimeError("boom")
        assert client._thread_local.conn is None

    def test_execute_uses_given_cursor(self, conn):
        cursor = MagicMock()
        cursor.fetchone.return_value = {"n": 1}
        assert client.execute("SELECT 1 AS n", fetch="one", cursor=cursor) == {"n": 1}
        conn.connect_mock.assert_not_called()


# ─── Repositories ───────────────────────────────────────────────────────────


@pytest.fixture
def execute():
    with patch("charity_register.db.repository.execute") as mock:
        yield mock


class TestRepositories:
    def test_organization_upsert_is_replace(self, execute):
        cursor = object()
        OrganizationRepository().upsert(make_organization(7), cursor=cursor)

        sql, values = execute.call_args.args
        assert sql.startswith("REPLACE INTO organizations (")
        assert 7 in values
        assert execute.call_args.kwargs["cursor"] is cursor

    def test_upsert_stamps_last_updated(self, execute):
        trustee = Trustee(registered_number=1, name="Alice")
        TrusteeRepository().upsert(trustee)
        assert isinstance(trustee.last_updated, datetime)

    def test_get_primary_excludes_removed_by_default(self, execute):
        execute.return_value = None
        OrganizationRepository().get_primary(5)
        sql, params = execute.call_args.args
        assert "NOT IN" in sql
        assert params[0] == 5
        assert "Removed" in params

        OrganizationRepository().get_primary(5, include_removed=True)
        sql, params = execute.call_args.args
        assert "NOT IN" not in sql
        assert params == (5,)

    def test_rows_ignore_unknown_columns(self, execute):
        execute.return_value = {
            "registered_number": 1,
            "financial_year_end": date(2024, 3, 31),
            "total_income": 10,
            "id": 99,
        }
        record = FinancialRepository().get_latest(1)
        assert record == FinancialRecord(registered_number=1, financial_year_end=date(2024, 3, 31), total_income=10)

    def test_list_unscored(self, execute):
        execute.return_value = [{"registered_number": 3}, {"registered_number": 9}]
        assert OrganizationRepository().list_unscored() == [3, 9]

    def test_trustee_count(self, execute):
        execute.return_value = {"n": 4}
        assert TrusteeRepository().count(1) == 4
        execute.return_value = None
        assert TrusteeRepository().count(1) == 0

    def test_checkpoint_round_trip_shape(self, execute):
        execute.return_value = None
        assert CheckpointRepository().load() is None

        execute.return_value = {"last_registered_number": 1234, "updated_at": datetime(2024, 1, 1)}
        assert CheckpointRepository().load().last_registered_number == 1234

        CheckpointRepository().save(1300)
        sql, params = execute.call_args.args
        assert "ON DUPLICATE KEY UPDATE" in sql
        assert params[:2] == (1, 1300)

    def test_find_organisation_number(self, execute):
        execute.return_value = {"organisation_number": 5001234}
        assert OrganizationRepository().find_organisation_number(1234) == 5001234
        sql, params = execute.call_args.args
        assert "linked_charity_number = %s" in sql
        assert params == (1234, 0)

        execute.return_value = None
        assert OrganizationRepository().find_organisation_number(1234, 2) is None
        assert execute.call_args.args[1] == (1234, 2)

    def test_trustee_delete_for_shares_cursor(self, execute):
        cursor = object()
        TrusteeRepository().delete_for(42, cursor=cursor)
        sql, params = execute.call_args.args
        assert sql.startswith("DELETE FROM trustees WHERE registered_number")
        assert params == (42,)
        assert execute.call_args.kwargs["cursor"] is cursor
