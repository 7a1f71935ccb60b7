"""
Pydantic record models for the register's bulk data-dump files.

One model per dump family. Each element of a dump array is validated into its
model; unknown keys are ignored because the extract schema grows over time.
Each model converts itself into the store dataclass it feeds.
"""

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .db.repository import FilingHistoryRecord, FinancialRecord, Organization, Trustee

DATE_FORMATS = ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d")


def parse_date(value: Any) -> Optional[date]:
    """Parse a register date ("2020-03-31T00:00:00", "2020-03-31" or ISO/RFC3339).

    Returns None for empty or unparseable values.
    """
    if value is None or isinstance(value, date):
        return value.date() if isinstance(value, datetime) else value
    text = str(value).strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def build_address(*parts: Optional[str]) -> Optional[str]:
    """Join the non-empty address lines with ", "."""
    cleaned = [p.strip() for p in parts if p and p.strip()]
    return ", ".join(cleaned) if cleaned else None


class _DumpRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")


class OrganizationDumpRecord(_DumpRecord):
    """`publicextract.charity` element."""

    organisation_number: int = 0
    registered_charity_number: int = 0
    linked_charity_number: int = 0
    charity_name: str = ""
    charity_company_registration_number: Optional[str] = None
    charity_registration_status: Optional[str] = None
    date_of_registration: Optional[date] = None
    date_of_removal: Optional[date] = None
    charity_contact_address1: Optional[str] = None
    charity_contact_address2: Optional[str] = None
    charity_contact_address3: Optional[str] = None
    charity_contact_address4: Optional[str] = None
    charity_contact_address5: Optional[str] = None
    charity_contact_postcode: Optional[str] = None
    charity_contact_phone: Optional[str] = None
    charity_contact_email: Optional[str] = None
    charity_contact_web: Optional[str] = None
    charity_activities: Optional[str] = None
    latest_income: Optional[float] = None
    latest_expenditure: Optional[float] = None
    latest_acc_fin_period_end_date: Optional[date] = None
    date_of_extract: Optional[date] = None

    @field_validator("organisation_number", "registered_charity_number", "linked_charity_number", mode="before")
    @classmethod
    def _ids_not_null(cls, v):
        return 0 if v is None else v

    @field_validator(
        "date_of_registration", "date_of_removal", "latest_acc_fin_period_end_date", "date_of_extract", mode="before"
    )
    @classmethod
    def _parse_dates(cls, v):
        return parse_date(v)

    @field_validator("charity_name", mode="before")
    @classmethod
    def _name_not_null(cls, v):
        return v or ""

    def to_organization(self) -> Organization:
        return Organization(
            organisation_number=self.organisation_number,
            registered_number=self.registered_charity_number,
            linked_charity_number=self.linked_charity_number,
            name=self.charity_name,
            company_number=self.charity_company_registration_number,
            status=self.charity_registration_status,
            date_registered=self.date_of_registration,
            date_removed=self.date_of_removal,
            address=build_address(
                self.charity_contact_address1,
                self.charity_contact_address2,
                self.charity_contact_address3,
                self.charity_contact_address4,
                self.charity_contact_address5,
                self.charity_contact_postcode,
            ),
            website=self.charity_contact_web,
            email=self.charity_contact_email,
            phone=self.charity_contact_phone,
            activities=self.charity_activities,
        )

    def to_summary_financial(self) -> Optional[FinancialRecord]:
        """Latest income/expenditure as a financial row, when the year end is known."""
        if self.latest_income is None or self.latest_expenditure is None or self.latest_acc_fin_period_end_date is None:
            return None
        return FinancialRecord(
            registered_number=self.registered_charity_number,
            financial_year_end=self.latest_acc_fin_period_end_date,
            total_income=self.latest_income,
            total_spending=self.latest_expenditure,
        )


class TrusteeDumpRecord(_DumpRecord):
    """`publicextract.charity_trustee` element."""

    organisation_number: int = 0
    registered_charity_number: int = 0
    linked_charity_number: int = 0
    trustee_id: Optional[int] = None
    trustee_name: Optional[str] = None
    trustee_is_chair: bool = False

    @field_validator("organisation_number", "registered_charity_number", "linked_charity_number", mode="before")
    @classmethod
    def _ids_not_null(cls, v):
        return 0 if v is None else v

    @field_validator("trustee_is_chair", mode="before")
    @classmethod
    def _chair_not_null(cls, v):
        return bool(v)

    def to_trustee(self) -> Trustee:
        return Trustee(
            registered_number=self.registered_charity_number,
            name=(self.trustee_name or "").strip(),
            is_chair=self.trustee_is_chair,
        )


class FinancialDumpRecord(_DumpRecord):
    """`publicextract.charity_annual_return_partb` element."""

    organisation_number: int = 0
    registered_charity_number: int = 0
    latest_fin_period_submitted_ind: bool = False
    fin_period_order_number: Optional[int] = None
    fin_period_start_date: Optional[date] = None
    fin_period_end_date: Optional[date] = None
    ar_received_date: Optional[date] = None
    income_total_income_and_endowments: Optional[float] = None
    expenditure_charitable_expenditure: Optional[float] = None
    expenditure_raising_funds: Optional[float] = None
    expenditure_governance: Optional[float] = None
    expenditure_total: Optional[float] = None
    reserves: Optional[float] = None
    assets_total_assets_and_liabilities: Optional[float] = None
    count_employees: Optional[int] = Field(None, ge=0)

    @field_validator("organisation_number", "registered_charity_number", mode="before")
    @classmethod
    def _ids_not_null(cls, v):
        return 0 if v is None else v

    @field_validator("fin_period_start_date", "fin_period_end_date", "ar_received_date", mode="before")
    @classmethod
    def _parse_dates(cls, v):
        return parse_date(v)

    @field_validator("latest_fin_period_submitted_ind", mode="before")
    @classmethod
    def _flag_not_null(cls, v):
        return bool(v)

    def to_financial(self) -> Optional[FinancialRecord]:
        """Financial row for this period; None without a period end."""
        if self.fin_period_end_date is None:
            return None
        return FinancialRecord(
            registered_number=self.registered_charity_number,
            financial_year_end=self.fin_period_end_date,
            total_income=self.income_total_income_and_endowments,
            total_spending=self.expenditure_total,
            charitable_activities_spend=self.expenditure_charitable_expenditure,
            raising_funds_spend=self.expenditure_raising_funds,
            other_spend=self.expenditure_governance,
            reserves=self.reserves,
            assets=self.assets_total_assets_and_liabilities,
            employees=self.count_employees,
        )


class FilingHistoryDumpRecord(_DumpRecord):
    """`publicextract.charity_annual_return_history` element."""

    organisation_number: int = 0
    registered_charity_number: int = 0
    ar_cycle_reference: Optional[str] = None
    fin_period_start_date: Optional[date] = None
    fin_period_end_date: Optional[date] = None
    reporting_due_date: Optional[date] = None
    date_annual_return_received: Optional[date] = None
    date_accounts_received: Optional[date] = None
    total_gross_income: Optional[float] = None
    total_gross_expenditure: Optional[float] = None
    accounts_qualified: Optional[bool] = None
    suppression_ind: bool = False
    suppression_type: Optional[str] = None
    date_of_extract: Optional[date] = None

    @field_validator("organisation_number", "registered_charity_number", mode="before")
    @classmethod
    def _ids_not_null(cls, v):
        return 0 if v is None else v

    @field_validator(
        "fin_period_start_date",
        "fin_period_end_date",
        "reporting_due_date",
        "date_annual_return_received",
        "date_accounts_received",
        "date_of_extract",
        mode="before",
    )
    @classmethod
    def _parse_dates(cls, v):
        return parse_date(v)

    @field_validator("ar_cycle_reference", mode="before")
    @classmethod
    def _cycle_as_text(cls, v):
        return None if v is None else str(v)

    @field_validator("suppression_ind", mode="before")
    @classmethod
    def _flag_not_null(cls, v):
        return bool(v)

    def to_filing(self) -> FilingHistoryRecord:
        return FilingHistoryRecord(
            organisation_number=self.organisation_number,
            ar_cycle_reference=self.ar_cycle_reference or "",
            registered_number=self.registered_charity_number or None,
            fin_period_start_date=self.fin_period_start_date,
            fin_period_end_date=self.fin_period_end_date,
            reporting_due_date=self.reporting_due_date,
            date_annual_return_received=self.date_annual_return_received,
            date_accounts_received=self.date_accounts_received,
            total_gross_income=self.total_gross_income,
            total_gross_expenditure=self.total_gross_expenditure,
            accounts_qualified=self.accounts_qualified,
            suppression_ind=self.suppression_ind,
            suppression_type=self.suppression_type,
            date_of_extract=self.date_of_extract,
        )
