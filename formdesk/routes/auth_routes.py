"""
Authentication Routes - exchange API keys for JWTs
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from formdesk.schemas.auth_schemas import (
    Principal,
    TokenRequest,
    TokenResponse,
    TokenVerifyRequest,
    TokenVerifyResponse,
)
from formdesk.services.security_service import SecurityService, get_security_service
from formdesk.utils.auth import get_principal_from_api_key
from formdesk.utils.exceptions import ValidationError
from formdesk.utils.responses import error_response
from formdesk.utils.security import parse_duration

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/token", response_model=TokenResponse)
async def issue_token(
    request: Optional[TokenRequest] = None,
    principal: Optional[Principal] = Depends(get_principal_from_api_key),
    service: SecurityService = Depends(get_security_service),
):
    """
    Exchange a valid API key (x-api-key header) for a signed JWT

    The token carries the key's id as `sub` and its permissions.
    """
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="An API key is required to issue a token",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    request = request or TokenRequest()
    api_key = principal.api_key

    try:
        lifetime = parse_duration(request.expires_in)
        token = service.issue_token(
            {
                "sub": api_key.id,
                "name": api_key.name,
                "permissions": api_key.permissions,
            },
            expires_in=lifetime,
        )
    except ValidationError as e:
        return error_response(
            status_code=status.HTTP_400_BAD_REQUEST,
            message="Invalid token request",
            error="VALIDATION_ERROR",
            errors={"details": [str(e)]},
        )

    logger.info(f"Token issued for API key {api_key.id}")
    return TokenResponse(
        access_token=token,
        token_type="bearer",
        expires_in=int(lifetime.total_seconds()),
    )


@router.post("/verify", response_model=TokenVerifyResponse)
async def verify_token(
    request: TokenVerifyRequest,
    service: SecurityService = Depends(get_security_service),
):
    """Check a token's signature and expiry"""
    claims = service.verify_token(request.token)
    return TokenVerifyResponse(valid=claims is not None, claims=claims)
