"""
EdgeGuard — Token Claim Schemas
================================

What:  The verified contents of a signed token.
Who:   Produced by TokenVerifier; the subject becomes the request's
       authenticated principal.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Claims(BaseModel):
    """
    Registered claims the pipeline consumes.

    Tokens are issued elsewhere; only `sub` and `exp` are mandatory here.
    """
    subject: str = Field(min_length=1, description="Principal identifier (sub)")
    expires_at: datetime = Field(description="Expiry (exp), timezone-aware UTC")
    issued_at: Optional[datetime] = Field(default=None, description="Issue time (iat)")
    issuer: Optional[str] = Field(default=None, description="Issuer (iss)")
