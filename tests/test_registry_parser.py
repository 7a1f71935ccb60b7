"""Tests for registry API payload parsing."""

from datetime import date

import pytest

from charity_register.collectors.registry_parser import (
    merge_financial_history,
    parse_financial,
    parse_organisation_number,
    parse_organization,
    parse_registration_number,
    parse_trustees,
)
from charity_register.errors import IncompleteRecordError

from conftest import details_payload


class TestRegistrationNumber:
    def test_prefers_reg_charity_number(self):
        assert parse_registration_number({"reg_charity_number": 202918, "charity_number": 1}, 5) == 202918

    def test_falls_through_alternate_keys(self):
        assert parse_registration_number({"registered_charity_number": "1089464"}, 5) == 1089464
        assert parse_registration_number({"charity_number": 3333}, 5) == 3333

    def test_falls_back_to_requested(self):
        """No usable key → the number that was asked for."""
        assert parse_registration_number({"reg_charity_number": None}, 5) == 5
        assert parse_registration_number({"reg_charity_number": "n/a"}, 5) == 5

    def test_organisation_number_is_not_a_registration_number(self):
        assert parse_registration_number({"organisation_number": 4000123}, 5) == 5


class TestParseOrganization:
    def test_full_payload(self):
        payload = details_payload(
            1089464,
            charity_co_reg_number="04135427",
            address_line_one="1 High Street",
            address_line_two="",
            address_line_three="Leeds",
            address_post_code="LS1 1AA",
            email="info@example.org",
            phone="0113 000 0000",
            who_what_where="Relief of poverty",
            date_of_registration="2001-09-27T00:00:00",
        )
        org = parse_organization(payload, 1089464)

        assert org.registered_number == 1089464
        assert org.organisation_number == 6089464
        assert org.linked_charity_number == 0
        assert org.name == "Charity 1089464"
        assert org.status == "R"
        assert org.company_number == "04135427"
        assert org.address == "1 High Street, Leeds, LS1 1AA"
        assert org.website == "https://example.org"
        assert org.activities == "Relief of poverty"
        assert org.date_registered == date(2001, 9, 27)
        assert org.last_updated is not None

    def test_alternate_field_names(self):
        payload = {
            "charity_name": "Old Shape",
            "charity_registration_status": "Removed",
            "charity_company_registration_number": 123456,
            "charity_activities": "Grants",
        }
        org = parse_organization(payload, 42, 4000042)
        assert org.registered_number == 42
        assert org.organisation_number == 4000042
        assert org.status == "Removed"
        assert org.is_removed
        assert org.company_number == "123456"
        assert org.activities == "Grants"

    def test_missing_fields_are_none(self):
        org = parse_organization({}, 7, 4000007)
        assert org.name == ""
        assert org.address is None
        assert org.website is None
        assert org.date_removed is None

    def test_payload_organisation_number_wins_over_stored(self):
        org = parse_organization(details_payload(10), 10, 4000010)
        assert org.organisation_number == 5000010

    def test_missing_organisation_number_raises(self):
        """No payload value and nothing stored → error, never the registration number."""
        payload = details_payload(300, organisation_number=None)
        with pytest.raises(IncompleteRecordError):
            parse_organization(payload, 300)
        assert parse_organisation_number(payload) is None

    def test_zero_organisation_number_is_missing(self):
        with pytest.raises(IncompleteRecordError):
            parse_organization(details_payload(300, organisation_number=0), 300)


class TestParseFinancial:
    def test_latest_year(self):
        record = parse_financial(details_payload(10), 10)
        assert record.financial_year_end == date(2023, 3, 31)
        assert record.total_income == 120000.0
        assert record.total_spending == 100000.0
        assert record.charitable_activities_spend is None

    def test_numbers_as_strings(self):
        record = parse_financial(details_payload(10, latest_income="5000.50", latest_expenditure=4000), 10)
        assert record.total_income == 5000.5
        assert record.total_spending == 4000.0

    def test_no_year_end_gives_none(self):
        assert parse_financial(details_payload(10, latest_acc_fin_year_end_date=None), 10) is None

    def test_merge_history_uses_first_entry(self):
        record = parse_financial(details_payload(10), 10)
        history = [
            {"exp_charitable_activities": 85000, "exp_raising_funds": 10000, "exp_governance": 5000},
            {"exp_charitable_activities": 1, "exp_raising_funds": 1, "exp_governance": 1},
        ]
        merged = merge_financial_history(record, history)
        assert merged.charitable_activities_spend == 85000.0
        assert merged.raising_funds_spend == 10000.0
        assert merged.other_spend == 5000.0

    def test_merge_empty_history_is_noop(self):
        record = parse_financial(details_payload(10), 10)
        assert merge_financial_history(record, []) is record
        assert record.charitable_activities_spend is None

    def test_merge_keeps_fields_history_lacks(self):
        record = parse_financial(details_payload(10), 10)
        record.raising_funds_spend = 1234.0
        merge_financial_history(record, [{"exp_charitable_activities": 9}])
        assert record.charitable_activities_spend == 9.0
        assert record.raising_funds_spend == 1234.0

    def test_merge_ignores_zero_figures(self):
        """A zero in the history keeps the figure already on the record."""
        record = parse_financial(details_payload(10), 10)
        record.charitable_activities_spend = 80.0
        merge_financial_history(record, [{"exp_charitable_activities": 0, "exp_raising_funds": 0}])
        assert record.charitable_activities_spend == 80.0
        assert record.raising_funds_spend is None

    def test_merge_ignores_negative_figures(self):
        record = parse_financial(details_payload(10), 10)
        record.other_spend = 50.0
        merge_financial_history(record, [{"exp_governance": -20, "exp_raising_funds": 300}])
        assert record.other_spend == 50.0
        assert record.raising_funds_spend == 300.0


class TestParseTrustees:
    def test_list_of_objects(self):
        trustees = parse_trustees(details_payload(10), 10)
        assert [(t.name, t.is_chair) for t in trustees] == [("Alice Smith", True), ("Bob Jones", False)]
        assert all(t.registered_number == 10 for t in trustees)

    def test_comma_separated_string(self):
        trustees = parse_trustees({"trustee_names": "Alice Smith, Bob Jones ,  Carol King"}, 10)
        assert [t.name for t in trustees] == ["Alice Smith", "Bob Jones", "Carol King"]

    def test_first_separator_present_wins(self):
        """Semicolons split when no comma is present."""
        trustees = parse_trustees({"trustee_names": "Smith, A; Jones, B"}, 10)
        assert [t.name for t in trustees] == ["Smith", "A; Jones", "B"]
        trustees = parse_trustees({"trustee_names": "A Smith; B Jones"}, 10)
        assert [t.name for t in trustees] == ["A Smith", "B Jones"]

    def test_newline_separated(self):
        trustees = parse_trustees({"trustee_names": "A Smith\nB Jones\n"}, 10)
        assert [t.name for t in trustees] == ["A Smith", "B Jones"]

    def test_generic_trustee_entries_dropped(self):
        trustees = parse_trustees({"trustee_names": "Alice Smith, The Trustees, Corporate Trustee Ltd"}, 10)
        assert [t.name for t in trustees] == ["Alice Smith"]

    def test_duplicates_collapse(self):
        trustees = parse_trustees({"trustee_names": "Alice Smith, Alice Smith, Bob Jones"}, 10)
        assert [t.name for t in trustees] == ["Alice Smith", "Bob Jones"]

    def test_missing_or_odd_shapes(self):
        """None, numbers and non-dict list items → no trustees, no error."""
        assert parse_trustees({}, 10) == []
        assert parse_trustees({"trustee_names": 12}, 10) == []
        assert parse_trustees({"trustee_names": ["Alice", {"trustee_name": "  "}]}, 10) == []
