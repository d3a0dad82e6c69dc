"""
Access guards for operator endpoints.
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from fleetwatch.app.core.config import settings


async def require_ops_token(x_ops_token: Optional[str] = Header(None)) -> None:
    """
    Allow the request only with the configured ops token.

    Raises:
        HTTPException: 403 if ops endpoints are disabled, 401 on a bad token
    """
    if not settings.ops_api_token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Ops API is disabled"
        )
    if not x_ops_token or not hmac.compare_digest(x_ops_token.encode(), settings.ops_api_token.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid ops token"
        )
