"""
Shared-secret authentication for the trigger endpoints.

The orchestrator sends ``X-Assembler-API-Key``. With no ``ASSEMBLER_API_KEY``
configured every request is accepted, which is how local runs work.
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from app.config import get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Assembler-API-Key"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": API_KEY_HEADER},
    )


async def verify_api_key(
    api_key: Optional[str] = Header(None, alias=API_KEY_HEADER),
) -> None:
    """
    Reject the request with 401 unless it carries the configured key.

    The comparison is constant-time.
    """
    expected = get_settings().assembler_api_key
    if not expected:
        return

    if not api_key:
        logger.warning(f"Rejected trigger without {API_KEY_HEADER}")
        raise _unauthorized("Missing API key")

    if not hmac.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected trigger with a wrong API key")
        raise _unauthorized("Invalid API key")
