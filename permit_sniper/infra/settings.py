"""
Environment-driven settings and data paths for permit-sniper.

Directory structure:
data/
 └── sniper-jobs.json          # Job snapshot (no credentials)
logs/                          # Daily log files

Environment Variables:
- SNIPER_DATA_DIR: Override data directory (default: data)
- SNIPER_LOG_DIR: Override log directory (default: logs)
- SNIPER_PRE_WARM_LEAD_SECONDS: Session setup lead before the window (default: 120)
- SNIPER_POLL_INTERVAL_SECONDS: Delay between availability polls (default: 1.5)
- SNIPER_MAX_WATCH_SECONDS: Polling budget after the window opens (default: 300)
- SNIPER_AVAILABILITY_TIMEOUT_SECONDS: Per-request availability timeout (default: 10)
- SNIPER_SESSION_TIMEOUT_SECONDS: Per-step browser timeout (default: 30)
- SNIPER_CANCEL_JOIN_TIMEOUT_SECONDS: Wait for a cancelled worker (default: 5)
- SNIPER_HEADLESS: Run the browser headless (default: true)
- RECGOV_BASE_URL: Reservation site base URL
"""

import logging
import os
from pathlib import Path

from permit_sniper.sniper.config import (
    SniperConfig,
    PRE_WARM_LEAD_SECONDS,
    POLL_INTERVAL_SECONDS,
    MAX_WATCH_SECONDS,
    AVAILABILITY_TIMEOUT_SECONDS,
    SESSION_TIMEOUT_SECONDS,
    CANCEL_JOIN_TIMEOUT_SECONDS,
    RECGOV_BASE_URL,
)

logger = logging.getLogger(__name__)

JOBS_FILE_NAME = "sniper-jobs.json"


# =============================================================================
# Environment Variable Helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Settings] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Settings] Invalid number for {key}: {val}, using default: {default}")
    return default


# =============================================================================
# Paths
# =============================================================================

def get_project_root() -> Path:
    """
    Get the project root directory.

    File is at permit_sniper/infra/settings.py, so project root is 2 levels up.
    """
    return Path(__file__).parent.parent.parent.resolve()


def get_data_root() -> Path:
    """Get the data directory (SNIPER_DATA_DIR or <project>/data)."""
    override = os.getenv("SNIPER_DATA_DIR")
    if override:
        return Path(override).expanduser().resolve()
    return get_project_root() / "data"


def get_jobs_file_path() -> Path:
    """Get the job snapshot file path."""
    return get_data_root() / JOBS_FILE_NAME


def get_logs_dir() -> Path:
    """Get the log directory (SNIPER_LOG_DIR or <project>/logs)."""
    override = os.getenv("SNIPER_LOG_DIR")
    if override:
        return Path(override).expanduser().resolve()
    return get_project_root() / "logs"


# =============================================================================
# Sniper Configuration
# =============================================================================

def get_sniper_config() -> SniperConfig:
    """Build SniperConfig from environment variables."""
    return SniperConfig(
        pre_warm_lead_seconds=_get_env_float(
            "SNIPER_PRE_WARM_LEAD_SECONDS", PRE_WARM_LEAD_SECONDS
        ),
        poll_interval_seconds=_get_env_float(
            "SNIPER_POLL_INTERVAL_SECONDS", POLL_INTERVAL_SECONDS
        ),
        max_watch_seconds=_get_env_float("SNIPER_MAX_WATCH_SECONDS", MAX_WATCH_SECONDS),
        availability_timeout_seconds=_get_env_float(
            "SNIPER_AVAILABILITY_TIMEOUT_SECONDS", AVAILABILITY_TIMEOUT_SECONDS
        ),
        session_timeout_seconds=_get_env_float(
            "SNIPER_SESSION_TIMEOUT_SECONDS", SESSION_TIMEOUT_SECONDS
        ),
        cancel_join_timeout_seconds=_get_env_float(
            "SNIPER_CANCEL_JOIN_TIMEOUT_SECONDS", CANCEL_JOIN_TIMEOUT_SECONDS
        ),
        recgov_base_url=os.getenv("RECGOV_BASE_URL", RECGOV_BASE_URL).rstrip("/"),
        headless=_get_env_bool("SNIPER_HEADLESS", True),
    )


def get_server_port() -> int:
    """Get the HTTP port (PORT, default 8000)."""
    return _get_env_int("PORT", 8000)
