"""Tests for dump record models and date parsing."""

from datetime import date, datetime

import pytest
from pydantic import ValidationError

from charity_register.models import (
    FilingHistoryDumpRecord,
    FinancialDumpRecord,
    OrganizationDumpRecord,
    TrusteeDumpRecord,
    build_address,
    parse_date,
)


class TestParseDate:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2020-03-31T00:00:00", date(2020, 3, 31)),
            ("2020-03-31", date(2020, 3, 31)),
            ("2020-03-31T10:15:00Z", date(2020, 3, 31)),
            ("2020-03-31T10:15:00.123+01:00", date(2020, 3, 31)),
            (datetime(2020, 3, 31, 9), date(2020, 3, 31)),
            (date(2020, 3, 31), date(2020, 3, 31)),
        ],
    )
    def test_accepted_formats(self, value, expected):
        assert parse_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "31/03/2020", "not a date"])
    def test_unparseable_is_none(self, value):
        assert parse_date(value) is None


def test_build_address_skips_blank_parts():
    assert build_address("1 High St", None, " ", "Leeds", "LS1 1AA") == "1 High St, Leeds, LS1 1AA"
    assert build_address(None, "") is None


class TestOrganizationDumpRecord:
    def test_to_organization(self):
        record = OrganizationDumpRecord.model_validate(
            {
                "organisation_number": 4000001,
                "registered_charity_number": 202918,
                "linked_charity_number": None,
                "charity_name": "Oxfam",
                "charity_registration_status": "Registered",
                "date_of_registration": "1965-01-01T00:00:00",
                "charity_contact_address1": "Oxfam House",
                "charity_contact_postcode": "OX4 2JY",
                "charity_contact_web": "www.oxfam.org.uk",
                "unknown_future_column": "ignored",
            }
        )
        org = record.to_organization()
        assert org.registered_number == 202918
        assert org.linked_charity_number == 0
        assert org.date_registered == date(1965, 1, 1)
        assert org.address == "Oxfam House, OX4 2JY"
        assert org.website == "www.oxfam.org.uk"

    def test_summary_financial_requires_all_figures(self):
        base = {"registered_charity_number": 1, "latest_income": 10.0, "latest_expenditure": 8.0}
        assert OrganizationDumpRecord.model_validate(base).to_summary_financial() is None

        record = OrganizationDumpRecord.model_validate({**base, "latest_acc_fin_period_end_date": "2023-03-31"})
        financial = record.to_summary_financial()
        assert financial.financial_year_end == date(2023, 3, 31)
        assert financial.total_income == 10.0
        assert financial.total_spending == 8.0

    def test_wrong_type_fails_validation(self):
        with pytest.raises(ValidationError):
            OrganizationDumpRecord.model_validate({"registered_charity_number": "abc"})


class TestTrusteeDumpRecord:
    def test_null_chair_is_false(self):
        record = TrusteeDumpRecord.model_validate(
            {"registered_charity_number": 5, "trustee_name": " Alice ", "trustee_is_chair": None}
        )
        trustee = record.to_trustee()
        assert trustee.name == "Alice"
        assert trustee.is_chair is False


class TestFinancialDumpRecord:
    def test_to_financial(self):
        record = FinancialDumpRecord.model_validate(
            {
                "registered_charity_number": 5,
                "latest_fin_period_submitted_ind": True,
                "fin_period_end_date": "2023-03-31T00:00:00",
                "income_total_income_and_endowments": 1000,
                "expenditure_total": 900,
                "expenditure_charitable_expenditure": 800,
                "expenditure_governance": 20,
                "count_employees": 3,
            }
        )
        financial = record.to_financial()
        assert financial.total_income == 1000.0
        assert financial.charitable_activities_spend == 800.0
        assert financial.other_spend == 20.0
        assert financial.employees == 3

    def test_no_period_end_gives_none(self):
        assert FinancialDumpRecord.model_validate({"registered_charity_number": 5}).to_financial() is None

    def test_negative_employees_rejected(self):
        with pytest.raises(ValidationError):
            FinancialDumpRecord.model_validate({"registered_charity_number": 5, "count_employees": -1})


class TestFilingHistoryDumpRecord:
    def test_numeric_cycle_reference_becomes_text(self):
        record = FilingHistoryDumpRecord.model_validate(
            {"organisation_number": 9, "ar_cycle_reference": 2023, "reporting_due_date": "2024-01-31"}
        )
        filing = record.to_filing()
        assert filing.ar_cycle_reference == "2023"
        assert filing.reporting_due_date == date(2024, 1, 31)
        assert filing.registered_number is None
        assert filing.suppression_ind is False
