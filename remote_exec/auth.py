"""Shared-secret guard for the registry and command endpoints.

Clients send the secret in the ``X-API-Key`` header. The expected value comes
from ``REMOTE_EXEC_API_KEY``; leaving it blank turns the guard off, which is
only sensible while the listener is bound to a loopback address.
"""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from remote_exec.config import settings
from remote_exec.utils.logging import get_logger

log = get_logger(__name__)

API_KEY_HEADER = "X-API-Key"

_api_key_header = APIKeyHeader(
    name=API_KEY_HEADER,
    auto_error=False,
    description="Shared secret configured through REMOTE_EXEC_API_KEY",
)


def api_key_matches(presented: Optional[str], expected: str) -> bool:
    if presented is None:
        return False
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def require_api_key(
    api_key: Optional[str] = Security(_api_key_header),
) -> bool:
    """Reject callers without the configured key.

    Returns True when a key was configured and checked, False when the guard
    is disabled.
    """
    expected = settings.api_key
    if not expected:
        return False
    if not api_key_matches(api_key, expected):
        log.warning("auth.rejected", header_present=api_key is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing or wrong {API_KEY_HEADER} header",
            headers={"WWW-Authenticate": "APIKey"},
        )
    return True
