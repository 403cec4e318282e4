"""
Operator key check for the /sniper routes.

The sniper service usually runs on the operator's own machine, so the key
is off unless API_AUTH_ENABLED=true is set in the environment (or .env).
With it on, every /sniper request must carry X-API-Key equal to API_KEY.
/health stays open so process supervisors can reach it.

Both values are read once at import; reload the module to pick up changes.
"""

import logging
import os
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)

API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false").strip().lower() == "true"
API_KEY = os.getenv("API_KEY", "")

if API_AUTH_ENABLED and not API_KEY:
    logger.warning("API_AUTH_ENABLED is set but API_KEY is empty; every /sniper request will be refused")

sniper_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,
    description="Operator key for /sniper routes (only checked when API_AUTH_ENABLED=true)",
)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(
    api_key: Optional[str] = Security(sniper_key_header),
) -> Optional[str]:
    """
    Router dependency guarding /sniper.

    Returns:
        The accepted key, or None while the check is switched off

    Raises:
        HTTPException: 401 when the header is absent, or does not match a
            configured API_KEY
    """
    if not API_AUTH_ENABLED:
        return None
    if not api_key:
        raise _unauthorized("Missing API key. Provide X-API-Key header.")
    if not API_KEY or api_key != API_KEY:
        raise _unauthorized("Invalid API key")
    return api_key
