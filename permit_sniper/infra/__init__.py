"""
Infrastructure module - logging and environment settings.
"""

from .logging_config import setup_logging, DailyRotatingFileHandler
from .settings import (
    get_project_root,
    get_data_root,
    get_jobs_file_path,
    get_logs_dir,
    get_sniper_config,
    get_server_port,
)

__all__ = [
    # logging
    "setup_logging",
    "DailyRotatingFileHandler",
    # settings
    "get_project_root",
    "get_data_root",
    "get_jobs_file_path",
    "get_logs_dir",
    "get_sniper_config",
    "get_server_port",
]
