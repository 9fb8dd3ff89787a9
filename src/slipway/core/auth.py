"""Bearer API key check for the daemon's /api/v1 routes."""

import logging
import secrets

from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from slipway.core.config import get_settings

logger = logging.getLogger("slipway.auth")

bearer = HTTPBearer(description="Daemon API key (SLIPWAY_API_KEY)")


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials = Security(bearer),
) -> str:
    expected = get_settings().api_key
    if not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        logger.warning("Rejected request with an invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials
