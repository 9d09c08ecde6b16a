"""
Token Schemas
The OAuth credential pair held by the Token Manager
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Token(BaseModel):
    """
    Immutable OAuth token.

    The Token Manager swaps whole instances; nothing mutates a token in place.
    expires_at is epoch seconds (None when unknown).
    """
    model_config = ConfigDict(frozen=True)

    owner_id: str
    access_token: str
    refresh_token: str
    expires_at: Optional[float] = None

    def expires_within(self, seconds: float, now: float) -> bool:
        """True when the token is expired or expires in less than `seconds`."""
        if self.expires_at is None:
            return True
        return self.expires_at - now < seconds

    def __repr__(self) -> str:
        return f"Token(owner_id={self.owner_id!r}, expires_at={self.expires_at!r})"

    __str__ = __repr__
