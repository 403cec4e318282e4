"""
Sniper service state management for API integration.

Provides singleton access to the SniperService instance.
Initialized and started during FastAPI lifespan, shut down on exit.

Usage:
    from ._sniper_state import get_sniper_service, init_sniper_service

    # In lifespan:
    init_sniper_service(jobs_file, config)

    # In routers:
    service = get_sniper_service()
"""

from pathlib import Path
from typing import Optional

from permit_sniper.sniper.config import SniperConfig
from permit_sniper.sniper.service import SniperService


# Global sniper service instance
_sniper_service: Optional[SniperService] = None


def init_sniper_service(
    jobs_file: str | Path,
    config: Optional[SniperConfig] = None,
    run_recovery: bool = True,
) -> SniperService:
    """
    Initialize and start the sniper service singleton.

    Called during FastAPI lifespan startup. Idempotent.

    Args:
        jobs_file: Path to the JSON job snapshot
        config: Timing constants
        run_recovery: Whether to reload persisted jobs

    Returns:
        Started SniperService
    """
    global _sniper_service

    if _sniper_service is not None:
        return _sniper_service

    _sniper_service = SniperService.create(jobs_file=jobs_file, config=config)
    _sniper_service.start(run_recovery=run_recovery)
    return _sniper_service


def set_sniper_service(service: Optional[SniperService]) -> None:
    """Install a pre-built service (used by tests and embedding callers)."""
    global _sniper_service
    _sniper_service = service


def get_sniper_service() -> SniperService:
    """
    Get the sniper service singleton.

    Raises:
        RuntimeError: If sniper service not initialized
    """
    if _sniper_service is None:
        raise RuntimeError(
            "Sniper service not initialized. "
            "Ensure init_sniper_service() is called during startup."
        )

    return _sniper_service


def shutdown_sniper_service() -> None:
    """
    Shutdown the sniper service.

    Called during FastAPI lifespan shutdown.
    Drains active jobs and releases every session.
    """
    global _sniper_service

    if _sniper_service is not None:
        if _sniper_service.is_running:
            _sniper_service.shutdown()

        _sniper_service = None
