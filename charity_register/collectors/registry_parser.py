"""
Parsers for registry API payloads.

The details payload is loosely typed: keys come and go between API versions
and numbers arrive as ints, floats or strings. Each accessor below handles
one field's fallbacks so the crawler only ever sees store dataclasses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..db.repository import FinancialRecord, Organization, Trustee
from ..errors import IncompleteRecordError
from ..models import build_address, parse_date

REGISTRATION_NUMBER_KEYS = ("reg_charity_number", "registered_charity_number", "charity_number")
COMPANY_NUMBER_KEYS = ("charity_co_reg_number", "charity_company_registration_number")
STATUS_KEYS = ("reg_status", "charity_registration_status")
ADDRESS_KEYS = (
    "address_line_one",
    "address_line_two",
    "address_line_three",
    "address_line_four",
    "address_line_five",
    "address_post_code",
)
TRUSTEE_SEPARATORS = (",", ";", "|", "\n")


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value)) if float(value).is_integer() else str(value)
    return None


def _first(data: Dict[str, Any], keys, convert) -> Any:
    """First key whose value converts to something non-None."""
    for key in keys:
        converted = convert(data.get(key))
        if converted is not None:
            return converted
    return None


def parse_registration_number(data: Dict[str, Any], requested: int) -> int:
    """Registration number from the payload, else the number that was requested."""
    number = _first(data, REGISTRATION_NUMBER_KEYS, _as_int)
    return number if number else requested


def parse_organisation_number(data: Dict[str, Any]) -> Optional[int]:
    """Organisation number from the payload; None when absent. It is never derived from other ids."""
    return _as_int(data.get("organisation_number")) or None


def parse_linked_number(data: Dict[str, Any]) -> int:
    return _as_int(data.get("linked_charity_number")) or 0


def parse_organization(
    data: Dict[str, Any], requested: int, organisation_number: Optional[int] = None
) -> Organization:
    """
    Build an Organization from an `allcharitydetailsV2` payload.

    The organisation number is the store key. The payload value wins; otherwise
    `organisation_number` (the one already stored for this registration) is used.

    Raises:
        IncompleteRecordError: neither source provides an organisation number
    """
    number = parse_organisation_number(data) or organisation_number
    if not number:
        raise IncompleteRecordError(f"registry record {requested} has no organisation number")
    return Organization(
        organisation_number=number,
        registered_number=parse_registration_number(data, requested),
        linked_charity_number=parse_linked_number(data),
        name=_as_text(data.get("charity_name")) or "",
        company_number=_first(data, COMPANY_NUMBER_KEYS, _as_text),
        status=_first(data, STATUS_KEYS, _as_text),
        date_registered=parse_date(data.get("date_of_registration")),
        date_removed=parse_date(data.get("date_of_removal")),
        address=build_address(*(_as_text(data.get(key)) for key in ADDRESS_KEYS)),
        website=_as_text(data.get("web")),
        email=_as_text(data.get("email")),
        phone=_as_text(data.get("phone")),
        activities=_as_text(data.get("who_what_where")) or _as_text(data.get("charity_activities")),
        last_updated=datetime.now(),
    )


def parse_financial(data: Dict[str, Any], registered_number: int) -> Optional[FinancialRecord]:
    """Latest-year summary figures; None when the payload has no year end."""
    year_end = parse_date(data.get("latest_acc_fin_year_end_date"))
    if year_end is None:
        return None
    return FinancialRecord(
        registered_number=registered_number,
        financial_year_end=year_end,
        total_income=_as_float(data.get("latest_income")),
        total_spending=_as_float(data.get("latest_expenditure")),
        last_updated=datetime.now(),
    )


def merge_financial_history(financial: FinancialRecord, history: List[Dict[str, Any]]) -> FinancialRecord:
    """
    Fill the spending breakdown from the financial history endpoint.

    The first history entry is the most recent year. Governance spend is
    stored as `other_spend`. Only positive figures replace what the record
    already holds.
    """
    if not history:
        return financial
    latest = history[0]
    charitable = _as_float(latest.get("exp_charitable_activities"))
    raising = _as_float(latest.get("exp_raising_funds"))
    governance = _as_float(latest.get("exp_governance"))
    if charitable is not None and charitable > 0:
        financial.charitable_activities_spend = charitable
    if raising is not None and raising > 0:
        financial.raising_funds_spend = raising
    if governance is not None and governance > 0:
        financial.other_spend = governance
    return financial


def _split_trustee_names(text: str) -> List[str]:
    for sep in TRUSTEE_SEPARATORS:
        if sep in text:
            return text.split(sep)
    return [text]


def parse_trustees(data: Dict[str, Any], registered_number: int) -> List[Trustee]:
    """
    Trustees from `trustee_names`.

    Accepts either a delimited string (generic entries mentioning "trustee"
    are dropped) or a list of objects carrying `trustee_name`. Duplicate names
    collapse to one row.
    """
    raw = data.get("trustee_names")
    names: List[str] = []
    chairs: set = set()

    if isinstance(raw, str):
        for name in _split_trustee_names(raw):
            name = name.strip()
            if name and "trustee" not in name.lower():
                names.append(name)
    elif isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                continue
            name = _as_text(item.get("trustee_name"))
            if name:
                names.append(name)
                if item.get("trustee_is_chair") is True:
                    chairs.add(name)

    now = datetime.now()
    seen = set()
    trustees = []
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        trustees.append(Trustee(registered_number=registered_number, name=name, is_chair=name in chairs, last_updated=now))
    return trustees
