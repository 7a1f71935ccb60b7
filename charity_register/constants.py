"""
Global constants for the register pipeline.

Centralizes defaults and scoring policy values so they can be tuned in one
place.
"""

# Registry API
REGISTRY_BASE_URL = "https://api.charitycommission.gov.uk/register/api"
REGISTRY_KEY_HEADER = "Ocp-Apim-Subscription-Key"
DEFAULT_USER_AGENT = "CharityRegisterPipeline/1.0 (Charity Transparency Tool)"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_CLIENT_MAX_RETRIES = 3

# Crawl
DEFAULT_RATE_LIMIT = 10  # requests per second
DEFAULT_CONCURRENCY = 5
DEFAULT_CRAWL_MAX_RETRIES = 5
DEFAULT_CHECKPOINT_INTERVAL = 100  # save progress every N dispatched ids
DEFAULT_CRAWL_START = 1
DEFAULT_CRAWL_END = 999999
CHECKPOINT_ID = 1
RATE_LIMITER_HISTORY_SIZE = 100

# Bulk extracts
EXTRACT_URL_TEMPLATE = "https://ccewuksprdoneregsadata1.blob.core.windows.net/data/json/publicextract.{name}.zip"
DOWNLOAD_TIMEOUT_SECONDS = 15 * 60
DOWNLOAD_MAX_RETRIES = 3
DOWNLOAD_RETRY_DELAY_SECONDS = 10
DOWNLOAD_CHUNK_SIZE = 32 * 1024

# Import
DEFAULT_BATCH_SIZE = 1000
DEFAULT_PROGRESS_INTERVAL = 5000

# Status labels that mark an organization as no longer registered
REMOVED_STATUSES = ("Removed", "RM")

# Scoring weights
EFFICIENCY_WEIGHT = 0.4
FINANCIAL_HEALTH_WEIGHT = 0.3
TRANSPARENCY_WEIGHT = 0.2
GOVERNANCE_WEIGHT = 0.1

# Neutral scores used when data is absent (benefit of the doubt)
NEUTRAL_EFFICIENCY_SCORE = 60.0
NEUTRAL_FINANCIAL_HEALTH_SCORE = 50.0
NEUTRAL_FILING_TIMELINESS_SCORE = 50.0
NEUTRAL_FILING_CONSISTENCY_SCORE = 50.0
NEUTRAL_ACCOUNTS_QUALITY_SCORE = 100.0

# Reserve months
RESERVE_MONTHS_MIN = 3
RESERVE_MONTHS_MAX = 12
EXCESS_RESERVE_PENALTY_PER_YEAR = 5
EXCESS_RESERVE_MAX_PENALTY = 30
EXCESS_RESERVE_FLOOR = 70

# Transparency points
WEBSITE_POINTS = 30
FINANCIAL_DATA_POINTS = 20
TRUSTEES_POINTS = 10
FILING_TIMELINESS_FACTOR = 0.25
FILING_CONSISTENCY_FACTOR = 0.10
ACCOUNTS_QUALITY_FACTOR = 0.05

# Filing windows
TIMELINESS_RECENT_FILINGS = 3
CONSISTENCY_WINDOW_YEARS = 5
ACCOUNTS_QUALITY_WINDOW_YEARS = 3

# Governance
GOVERNANCE_FULL_TRUSTEES = 3

# Confidence
STALE_DATA_DAYS = 365
