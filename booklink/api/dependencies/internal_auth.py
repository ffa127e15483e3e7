# booklink/api/dependencies/internal_auth.py
import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from booklink.core.config import get_settings


def _matches(provided: Optional[str], expected: str) -> bool:
    return bool(provided) and hmac.compare_digest(provided, expected)


async def verify_internal_api_key(
    internal_api_key: Optional[str] = Header(
        default=None,
        alias="X-Internal-Api-Key",
        description="Internal API key required for /internal endpoints in non-local environments.",
    ),
) -> None:
    """
    Guards the staff-facing /internal endpoints (issuing and withdrawing links).

    Rules
    -----
    - APP_ENV in ("local", "test"):
        - INTERNAL_API_KEY not set -> no auth enforced.
        - INTERNAL_API_KEY set     -> header must match.
    - Any other APP_ENV:
        - INTERNAL_API_KEY must be set, otherwise 500 (misconfiguration).
        - Header must be present and match, otherwise 401.
    """
    settings = get_settings()
    env = (settings.APP_ENV or "local").lower()
    expected = settings.INTERNAL_API_KEY

    if env in ("local", "test"):
        if not expected:
            return
        if not _matches(internal_api_key, expected):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing internal API key.",
            )
        return

    if not expected:
        # Never expose link issuing on a misconfigured deployment.
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="INTERNAL_API_KEY not configured for this environment.",
        )

    if not _matches(internal_api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing internal API key.",
        )
