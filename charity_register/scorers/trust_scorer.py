"""
Trust Scorer - composite 0-100 score per organization.

4 weighted dimensions:
1. Efficiency (40%) - share of spending on charitable activities
2. Financial health (30%) - months of reserves against spending
3. Transparency (20%) - published contact/financial/trustee data + filing record
4. Governance (10%) - size of the trustee board

Plus a confidence label (high/medium/low) from data completeness and age.

Missing data scores neutral rather than zero wherever absence says nothing
bad about the organization (no spending breakdown, no reserves figure, no
filing history).

All calculations are deterministic: `compute_score` is a pure function of its
arguments, including `now`.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from ..constants import (
    ACCOUNTS_QUALITY_FACTOR,
    ACCOUNTS_QUALITY_WINDOW_YEARS,
    CONSISTENCY_WINDOW_YEARS,
    DEFAULT_PROGRESS_INTERVAL,
    EFFICIENCY_WEIGHT,
    EXCESS_RESERVE_FLOOR,
    EXCESS_RESERVE_MAX_PENALTY,
    EXCESS_RESERVE_PENALTY_PER_YEAR,
    FILING_CONSISTENCY_FACTOR,
    FILING_TIMELINESS_FACTOR,
    FINANCIAL_DATA_POINTS,
    FINANCIAL_HEALTH_WEIGHT,
    GOVERNANCE_FULL_TRUSTEES,
    GOVERNANCE_WEIGHT,
    NEUTRAL_ACCOUNTS_QUALITY_SCORE,
    NEUTRAL_EFFICIENCY_SCORE,
    NEUTRAL_FILING_CONSISTENCY_SCORE,
    NEUTRAL_FILING_TIMELINESS_SCORE,
    NEUTRAL_FINANCIAL_HEALTH_SCORE,
    RESERVE_MONTHS_MAX,
    RESERVE_MONTHS_MIN,
    STALE_DATA_DAYS,
    TIMELINESS_RECENT_FILINGS,
    TRANSPARENCY_WEIGHT,
    TRUSTEES_POINTS,
    WEBSITE_POINTS,
)
from ..db.client import DatabaseError
from ..db.repository import (
    FilingHistoryRecord,
    FilingHistoryRepository,
    FinancialRecord,
    FinancialRepository,
    Organization,
    OrganizationRepository,
    Score,
    ScoreRepository,
    TrusteeRepository,
)
from ..errors import OrganizationNotFoundError, PipelineError

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # 29 February in a non-leap target year
        return day.replace(year=day.year - years, day=28)


def _amount(value: Optional[float]) -> float:
    return float(value) if value is not None else 0.0


# =============================================================================
# Dimension scores
# =============================================================================


def score_efficiency(financial: Optional[FinancialRecord]) -> float:
    """Charitable-activity spend as a percentage of total spending (capped at 100)."""
    if financial is None:
        return 0.0
    spending = _amount(financial.total_spending)
    charitable = _amount(financial.charitable_activities_spend)
    if charitable > 0 and spending > 0:
        return min(100.0, charitable / spending * 100)
    if spending > 0:
        return NEUTRAL_EFFICIENCY_SCORE
    return 0.0


def score_financial_health(financial: Optional[FinancialRecord]) -> float:
    """
    Months of reserves against monthly spending.

    3-12 months scores 100; fewer scales linearly down to 0; more loses 5
    points per extra year, never below 70. Reserves fall back to total assets.
    """
    if financial is None:
        return 0.0
    spending = _amount(financial.total_spending)
    if spending <= 0:
        return 0.0

    reserves = _amount(financial.reserves)
    assets = _amount(financial.assets)
    if reserves <= 0 and assets <= 0:
        return NEUTRAL_FINANCIAL_HEALTH_SCORE
    cushion = reserves if reserves > 0 else assets

    months = cushion / (spending / 12)
    if RESERVE_MONTHS_MIN <= months <= RESERVE_MONTHS_MAX:
        return 100.0
    if months < RESERVE_MONTHS_MIN:
        return months / RESERVE_MONTHS_MIN * 100
    excess_years = (months - RESERVE_MONTHS_MAX) / 12
    penalty = min(EXCESS_RESERVE_MAX_PENALTY, excess_years * EXCESS_RESERVE_PENALTY_PER_YEAR)
    return max(EXCESS_RESERVE_FLOOR, 100.0 - penalty)


def score_filing_timeliness(filings: List[FilingHistoryRecord], now: datetime) -> float:
    """Share of the most recent due filings received on or before their due date."""
    today = now.date()
    due = [f for f in filings if f.reporting_due_date is not None and f.reporting_due_date <= today]
    if not due:
        return NEUTRAL_FILING_TIMELINESS_SCORE

    recent = sorted(due, key=lambda f: f.reporting_due_date, reverse=True)[:TIMELINESS_RECENT_FILINGS]
    on_time = 0
    for filing in recent:
        received = [d for d in (filing.date_annual_return_received, filing.date_accounts_received) if d is not None]
        if any(d <= filing.reporting_due_date for d in received):
            on_time += 1
    return on_time / len(recent) * 100


def score_filing_consistency(filings: List[FilingHistoryRecord], now: datetime) -> float:
    """Share of filings due in the last five years that were received at all."""
    today = now.date()
    window_start = _years_before(today, CONSISTENCY_WINDOW_YEARS)
    expected = [
        f for f in filings if f.reporting_due_date is not None and window_start <= f.reporting_due_date <= today
    ]
    if not expected:
        return NEUTRAL_FILING_CONSISTENCY_SCORE

    received = sum(
        1 for f in expected if f.date_annual_return_received is not None or f.date_accounts_received is not None
    )
    return received / len(expected) * 100


def score_accounts_quality(filings: List[FilingHistoryRecord], now: datetime) -> float:
    """100 minus the percentage of recent accounts that were qualified by the examiner."""
    today = now.date()
    window_start = _years_before(today, ACCOUNTS_QUALITY_WINDOW_YEARS)
    known = [
        f
        for f in filings
        if f.accounts_qualified is not None
        and f.fin_period_end_date is not None
        and window_start <= f.fin_period_end_date <= today
    ]
    if not known:
        return NEUTRAL_ACCOUNTS_QUALITY_SCORE

    qualified = sum(1 for f in known if f.accounts_qualified)
    return 100.0 - qualified / len(known) * 100


def score_transparency(
    has_website: bool,
    has_financial: bool,
    trustee_count: int,
    filings: List[FilingHistoryRecord],
    now: datetime,
) -> float:
    score = 0.0
    if has_website:
        score += WEBSITE_POINTS
    if has_financial:
        score += FINANCIAL_DATA_POINTS
    if trustee_count > 0:
        score += TRUSTEES_POINTS
    score += score_filing_timeliness(filings, now) * FILING_TIMELINESS_FACTOR
    score += score_filing_consistency(filings, now) * FILING_CONSISTENCY_FACTOR
    score += score_accounts_quality(filings, now) * ACCOUNTS_QUALITY_FACTOR
    return score


def score_governance(trustee_count: int) -> float:
    if trustee_count >= GOVERNANCE_FULL_TRUSTEES:
        return 100.0
    if trustee_count > 0:
        return trustee_count / GOVERNANCE_FULL_TRUSTEES * 100
    return 0.0


def confidence_level(
    has_financial: bool,
    has_website: bool,
    trustee_count: int,
    last_updated: Optional[datetime],
    now: datetime,
) -> str:
    """high / medium / low from data completeness, minus one for stale data.

    A missing last-updated timestamp counts as stale.
    """
    completeness = 0
    if has_financial:
        completeness += 1
    if has_website:
        completeness += 1
    if trustee_count > 0:
        completeness += 1
    if last_updated is None or now - last_updated > timedelta(days=STALE_DATA_DAYS):
        completeness -= 1

    if completeness >= 2:
        return CONFIDENCE_HIGH
    if completeness == 1:
        return CONFIDENCE_MEDIUM
    return CONFIDENCE_LOW


def compute_score(
    organization: Organization,
    financial: Optional[FinancialRecord],
    trustee_count: int,
    filings: Optional[List[FilingHistoryRecord]] = None,
    now: Optional[datetime] = None,
) -> Score:
    """
    Score one organization from its stored data.

    Args:
        organization: The main charity row
        financial: Latest financial year, if any
        trustee_count: Number of trustee rows
        filings: Filing history rows (any order)
        now: Reference time for filing windows and staleness

    Returns:
        Score with all components and the weighted overall
    """
    now = now or datetime.now()
    filings = filings or []
    has_website = bool((organization.website or "").strip())
    has_financial = financial is not None

    efficiency = score_efficiency(financial)
    financial_health = score_financial_health(financial)
    transparency = score_transparency(has_website, has_financial, trustee_count, filings, now)
    governance = score_governance(trustee_count)

    overall = (
        efficiency * EFFICIENCY_WEIGHT
        + financial_health * FINANCIAL_HEALTH_WEIGHT
        + transparency * TRANSPARENCY_WEIGHT
        + governance * GOVERNANCE_WEIGHT
    )

    return Score(
        registered_number=organization.registered_number,
        efficiency_score=efficiency,
        financial_health_score=financial_health,
        transparency_score=transparency,
        governance_score=governance,
        overall_score=overall,
        confidence_level=confidence_level(has_financial, has_website, trustee_count, organization.last_updated, now),
        last_calculated=now,
    )


# =============================================================================
# Engine (store-backed)
# =============================================================================


class ScoringEngine:
    """Loads an organization's data from the store and scores it."""

    def __init__(
        self,
        organizations: Optional[OrganizationRepository] = None,
        financials: Optional[FinancialRepository] = None,
        trustees: Optional[TrusteeRepository] = None,
        filings: Optional[FilingHistoryRepository] = None,
        scores: Optional[ScoreRepository] = None,
        logger=None,
    ):
        self.organizations = organizations or OrganizationRepository()
        self.financials = financials or FinancialRepository()
        self.trustees = trustees or TrusteeRepository()
        self.filings = filings or FilingHistoryRepository()
        self.scores = scores or ScoreRepository()
        self.logger = logger or logging.getLogger(__name__)

    def calculate(self, registered_number: int, cache: bool = True, now: Optional[datetime] = None) -> Score:
        """
        Score one registration number.

        Args:
            registered_number: Registration number of the main charity
            cache: Store the result in the scores table
            now: Reference time (default: current time)

        Raises:
            OrganizationNotFoundError: no main charity row exists
        """
        organization = self.organizations.get_primary(registered_number, include_removed=True)
        if organization is None:
            raise OrganizationNotFoundError(registered_number)

        score = compute_score(
            organization,
            self.financials.get_latest(registered_number),
            self.trustees.count(registered_number),
            self.filings.list_for(organization.organisation_number),
            now=now,
        )
        if cache:
            self.scores.upsert(score)
        return score

    def get_cached(self, registered_number: int) -> Optional[Score]:
        """Last stored score for a registration number, if any."""
        return self.scores.get(registered_number)

    def score_all_unscored(self, progress_interval: int = DEFAULT_PROGRESS_INTERVAL, verbose: bool = False) -> dict:
        """
        Score every live main charity that has no score yet.

        Failures are counted and logged; scoring continues.

        Returns:
            {"total": n, "scored": n, "failed": n}
        """
        pending = self.organizations.list_unscored()
        total = len(pending)
        self.logger.info(f"Scoring {total} unscored organizations")

        scored = failed = 0
        for i, registered_number in enumerate(pending, start=1):
            try:
                self.calculate(registered_number)
                scored += 1
            except (DatabaseError, PipelineError) as e:
                failed += 1
                if verbose:
                    self.logger.warning(f"Failed to score {registered_number}: {e}")

            if progress_interval > 0 and i % progress_interval == 0:
                self.logger.info(f"Scoring progress: {i}/{total} ({scored} scored, {failed} failed)")

        self.logger.info(f"Scoring complete: {scored} scored, {failed} failed of {total}")
        return {"total": total, "scored": scored, "failed": failed}
