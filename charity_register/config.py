"""
Central configuration for API credentials and data paths.

Values come from the environment (the driver loads `.env` first):
  - CHARITY_API_KEYS: comma-separated registry API keys
  - CHARITY_API_KEY: single key, used when CHARITY_API_KEYS is unset
  - CHARITY_REGISTRY_BASE_URL (default: public register API)
  - CHARITY_DATA_DIR (default: ~/.charity-register-data/)

Database settings live in `charity_register.db.client`.
"""

import os
from pathlib import Path
from typing import Optional

from .constants import REGISTRY_BASE_URL


def parse_api_keys(raw: Optional[str]) -> list[str]:
    """Split a comma-separated key list, dropping blanks."""
    if not raw:
        return []
    return [key.strip() for key in raw.split(",") if key.strip()]


def get_api_keys(cli_value: Optional[str] = None) -> list[str]:
    """
    Resolve registry API keys.

    Args:
        cli_value: Comma-separated keys from the command line (wins if set)

    Returns:
        List of keys, possibly empty
    """
    keys = parse_api_keys(cli_value) or parse_api_keys(os.environ.get("CHARITY_API_KEYS"))
    if not keys:
        single = os.environ.get("CHARITY_API_KEY", "").strip()
        if single:
            keys = [single]
    return keys


def get_registry_base_url() -> str:
    """Get the registry API base URL."""
    return os.environ.get("CHARITY_REGISTRY_BASE_URL", REGISTRY_BASE_URL).rstrip("/")


def get_data_dir() -> Path:
    """
    Get the local directory holding downloaded extract files.

    Uses CHARITY_DATA_DIR if set, otherwise ~/.charity-register-data/
    """
    env_path = os.environ.get("CHARITY_DATA_DIR")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".charity-register-data"


def get_log_dir() -> Path:
    """Get the log file directory."""
    return get_data_dir() / "logs"
