"""
Security
Token encryption at rest and API key authentication for the control API

SECURITY FEATURES:
- OAuth tokens encrypted with Fernet (key derived from ENCRYPTION_KEY)
- API key authentication with timing-safe comparison
"""
import base64
import hmac
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader

from hbsync.core.config import Settings
from hbsync.core.exceptions import TokenError

logger = logging.getLogger(__name__)

api_key_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


# ============================================================================
# TOKEN ENCRYPTION
# ============================================================================

class TokenCipher:
    """
    Symmetric encryption for token columns.

    ENCRYPTION_KEY is 32 raw bytes (64 hex chars); Fernet takes the same
    32 bytes as url-safe base64.
    """

    def __init__(self, hex_key: str):
        self._fernet = Fernet(base64.urlsafe_b64encode(bytes.fromhex(hex_key)))

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCipher":
        return cls(settings.encryption_key)

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str) -> str:
        try:
            return self._fernet.decrypt(value.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            raise TokenError("Stored token could not be decrypted (wrong ENCRYPTION_KEY?)") from e


# ============================================================================
# API KEY AUTHENTICATION
# ============================================================================

async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Depends(api_key_scheme),
) -> bool:
    """
    Verify the X-API-Key header for mutating control routes.

    Uses timing-safe comparison to prevent timing attacks.

    Raises:
        HTTPException if API key is invalid, missing, or not configured
    """
    settings: Settings = request.app.state.container.settings

    if not settings.api_key:
        logger.error("API key authentication attempted but SYNC_API_KEY not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API key authentication not configured"
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required (X-API-Key header)"
        )

    if not hmac.compare_digest(api_key, settings.api_key):
        logger.warning(f"Invalid API key attempt: {api_key[:4]}...")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )

    return True
