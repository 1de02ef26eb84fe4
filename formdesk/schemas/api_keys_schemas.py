"""
Pydantic Schemas for Request/Response Validation
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _check_permissions(v: Optional[List[str]]) -> Optional[List[str]]:
    if v is None:
        return v
    for perm in v:
        if not perm.strip():
            raise ValueError("Permissions must be non-empty strings")
    # Order is irrelevant, duplicates are noise
    return list(dict.fromkeys(v))


class APIKeyRecord(BaseModel):
    """Authoritative key record as stored (includes the hash, never the key)"""

    id: str
    key_hash: str
    name: str
    permissions: List[str] = Field(default_factory=list)
    rate_limit_per_hour: int
    is_active: bool
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("permissions", mode="before")
    def default_permissions(cls, v):
        return v if v is not None else []


class APIKeyInfo(BaseModel):
    """Information about an API key (without the hash or the key value)"""

    id: str
    name: str
    permissions: List[str]
    rate_limit_per_hour: int
    is_active: bool
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class APIKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    permissions: List[str] = Field(default_factory=list)
    rate_limit_per_hour: Optional[int] = Field(default=None, gt=0)
    expires_at: Optional[datetime] = None

    @field_validator("permissions")
    def validate_permissions(cls, v):
        return _check_permissions(v)


class APIKeyUpdate(BaseModel):
    """Partial update; only fields explicitly sent are applied"""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    permissions: Optional[List[str]] = None
    is_active: Optional[bool] = None
    rate_limit_per_hour: Optional[int] = Field(default=None, gt=0)
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("permissions")
    def validate_permissions(cls, v):
        return _check_permissions(v)


class APIKeyCreatedResponse(BaseModel):
    api_key: str = Field(..., description="Plaintext key, shown only once")
    key: APIKeyInfo


class APIKeyRegeneratedResponse(BaseModel):
    api_key: str = Field(..., description="New plaintext key, shown only once")
    key_id: str


class AuthenticateResult(BaseModel):
    is_valid: bool
    api_key: Optional[APIKeyRecord] = None
    error_message: Optional[str] = None


class PermissionCheck(BaseModel):
    has_permission: bool
    api_key: Optional[APIKeyRecord] = None
    error_message: Optional[str] = None
