"""
Authentication Schemas
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from formdesk.schemas.api_keys_schemas import APIKeyRecord


class Principal(BaseModel):
    """Authenticated caller, from either an API key or a JWT"""

    subject: str
    source: Literal["api_key", "jwt"]
    permissions: List[str] = Field(default_factory=list)
    api_key: Optional[APIKeyRecord] = None


class TokenRequest(BaseModel):
    expires_in: str = Field(
        default="1h",
        pattern=r"^\d+[smhdSMHD]$",
        description="Token lifetime such as 30m, 1h or 7d",
    )


class TokenResponse(BaseModel):
    """JWT Token Response"""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(
        default="bearer", description="Token type (always 'bearer')"
    )
    expires_in: int = Field(..., description="Lifetime in seconds")


class TokenVerifyRequest(BaseModel):
    token: str = Field(..., min_length=1)


class TokenVerifyResponse(BaseModel):
    valid: bool
    claims: Optional[Dict[str, Any]] = None
