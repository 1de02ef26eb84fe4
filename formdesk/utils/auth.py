"""
Authentication Dependencies for FastAPI
Supports both API keys and JWT bearer tokens
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from formdesk.schemas.auth_schemas import Principal
from formdesk.services.security_service import SecurityService, get_security_service
from formdesk.utils.permissions import grants

logger = logging.getLogger(__name__)


bearer_scheme = HTTPBearer(
    auto_error=False,
    scheme_name="JWT Bearer Token",
    description="Enter a JWT issued by /auth/token",
)

api_key_scheme = APIKeyHeader(
    name="x-api-key",
    auto_error=False,
    scheme_name="API Key",
    description="Enter your API key (format: ck_...)",
)


async def _authenticate_api_key(
    api_key_value: str, service: SecurityService
) -> Principal:
    result = await service.authenticate(api_key_value)

    if not result.is_valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.error_message,
            headers={"WWW-Authenticate": "ApiKey"},
        )

    api_key = result.api_key
    logger.debug(f"Authenticated API key {api_key.id}")
    return Principal(
        subject=api_key.id,
        source="api_key",
        permissions=api_key.permissions,
        api_key=api_key,
    )


async def get_principal_from_api_key(
    api_key_value: Optional[str] = Depends(api_key_scheme),
    service: SecurityService = Depends(get_security_service),
) -> Optional[Principal]:
    """Authenticate the x-api-key header, if present"""
    if not api_key_value:
        return None
    return await _authenticate_api_key(api_key_value, service)


def get_principal_from_jwt(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    service: SecurityService = Depends(get_security_service),
) -> Optional[Principal]:
    """Verify the bearer token, if present"""
    if not credentials:
        return None

    claims = service.verify_token(credentials.credentials)

    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    permissions = claims.get("permissions") or []
    if not isinstance(permissions, list):
        permissions = []

    return Principal(
        subject=str(claims.get("sub") or "anonymous"),
        source="jwt",
        permissions=[str(p) for p in permissions],
    )


async def get_current_principal(
    jwt_principal: Optional[Principal] = Depends(get_principal_from_jwt),
    api_key_value: Optional[str] = Depends(api_key_scheme),
    service: SecurityService = Depends(get_security_service),
) -> Principal:
    """
    Get the caller from either a JWT or an API key

    Supports both authentication methods:
    - JWT Bearer Token (via Authorization header)
    - API Key (via x-api-key header)

    A valid bearer token wins; the API key is then not looked up.
    """
    if jwt_principal:
        return jwt_principal

    if api_key_value:
        return await _authenticate_api_key(api_key_value, service)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Provide either "
        "'Authorization: Bearer <token>' or 'x-api-key: <api_key>' header.",
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_permission(permission: str):
    """
    Dependency to check the caller holds a permission

    API keys are checked through SecurityService.check_permission; tokens
    carry their permissions in the "permissions" claim. "*" grants all.
    """

    def check_permission(
        principal: Principal = Depends(get_current_principal),
        service: SecurityService = Depends(get_security_service),
    ) -> Principal:
        if principal.api_key is not None:
            check = service.check_permission(principal.api_key, permission)
            allowed, message = check.has_permission, check.error_message
        else:
            allowed = grants(principal.permissions, permission)
            message = f"Insufficient permissions. Required: {permission}"
            if not allowed:
                logger.warning(
                    f"Token subject {principal.subject} missing permission "
                    f"'{permission}'"
                )

        if not allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message)

        return principal

    return check_permission
