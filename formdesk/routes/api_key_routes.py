"""
API Key Management Routes
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from formdesk.schemas.api_keys_schemas import (
    APIKeyCreate,
    APIKeyCreatedResponse,
    APIKeyInfo,
    APIKeyRegeneratedResponse,
    APIKeyUpdate,
)
from formdesk.schemas.auth_schemas import Principal
from formdesk.services.security_service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    SecurityService,
    get_security_service,
)
from formdesk.utils.auth import require_permission
from formdesk.utils.exceptions import ValidationError
from formdesk.utils.responses import error_response, success_response

logger = logging.getLogger(__name__)
router = APIRouter()

# Only expires_at may be explicitly cleared with null
_NULLABLE_UPDATE_FIELDS = {"expires_at"}


def _not_found(key_id: str):
    return error_response(
        status_code=status.HTTP_404_NOT_FOUND,
        message=f"API key '{key_id}' not found",
        error="NOT_FOUND",
    )


def _validation_failed(message: str, e: ValidationError):
    return error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        message=message,
        error="VALIDATION_ERROR",
        errors={"details": [str(e)]},
    )


@router.post(
    "/create",
    response_model=APIKeyCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_api_key(
    request: APIKeyCreate,
    principal: Principal = Depends(require_permission("api_keys:create")),
    service: SecurityService = Depends(get_security_service),
):
    """
    Create a new API key

    The plaintext key is returned in this response only. Store it safely;
    it cannot be retrieved again.
    """
    try:
        api_key, record = await service.create_api_key(
            name=request.name,
            permissions=request.permissions,
            created_by=principal.subject,
            rate_limit_per_hour=request.rate_limit_per_hour,
            expires_at=request.expires_at,
        )
    except ValidationError as e:
        logger.warning(f"API key creation rejected for {principal.subject}: {str(e)}")
        return _validation_failed("Invalid API key request", e)

    return APIKeyCreatedResponse(
        api_key=api_key, key=APIKeyInfo.model_validate(record.model_dump())
    )


@router.get("/list")
async def list_api_keys(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    active_only: bool = Query(False),
    principal: Principal = Depends(require_permission("api_keys:read")),
    service: SecurityService = Depends(get_security_service),
):
    """
    List API keys, newest first
    Returns key metadata (NOT the actual keys)
    """
    records = await service.list_api_keys(
        limit=limit, offset=offset, active_only=active_only
    )
    keys = [APIKeyInfo.model_validate(r.model_dump()) for r in records]
    return success_response(
        status_code=status.HTTP_200_OK,
        message="API keys retrieved successfully",
        data={"keys": keys, "count": len(keys), "limit": limit, "offset": offset},
    )


@router.get("/{key_id}", response_model=APIKeyInfo)
async def get_api_key(
    key_id: str,
    principal: Principal = Depends(require_permission("api_keys:read")),
    service: SecurityService = Depends(get_security_service),
):
    record = await service.get_api_key_by_id(key_id)
    if record is None:
        return _not_found(key_id)
    return APIKeyInfo.model_validate(record.model_dump())


@router.patch("/{key_id}", response_model=APIKeyInfo)
async def update_api_key(
    key_id: str,
    request: APIKeyUpdate,
    principal: Principal = Depends(require_permission("api_keys:update")),
    service: SecurityService = Depends(get_security_service),
):
    """
    Partially update an API key
    Only the fields present in the body are changed
    """
    fields = {
        name: value
        for name, value in request.model_dump(exclude_unset=True).items()
        if value is not None or name in _NULLABLE_UPDATE_FIELDS
    }

    try:
        record = await service.update_api_key(key_id, fields)
    except ValidationError as e:
        logger.warning(f"API key update rejected for {key_id}: {str(e)}")
        return _validation_failed("Invalid API key update", e)

    if record is None:
        return _not_found(key_id)

    logger.info(f"API key {key_id} updated by {principal.subject}")
    return APIKeyInfo.model_validate(record.model_dump())


@router.post("/{key_id}/deactivate")
async def deactivate_api_key(
    key_id: str,
    principal: Principal = Depends(require_permission("api_keys:update")),
    service: SecurityService = Depends(get_security_service),
):
    """
    Deactivate an API key
    Once deactivated, the key can no longer authenticate
    """
    if not await service.deactivate_api_key(key_id):
        return _not_found(key_id)

    logger.info(f"API key {key_id} deactivated by {principal.subject}")
    return success_response(
        status_code=status.HTTP_200_OK,
        message="API key deactivated successfully",
        data={"key_id": key_id},
    )


@router.post("/{key_id}/regenerate", response_model=APIKeyRegeneratedResponse)
async def regenerate_api_key(
    key_id: str,
    principal: Principal = Depends(require_permission("api_keys:update")),
    service: SecurityService = Depends(get_security_service),
):
    """
    Issue a new secret for an existing key
    The previous secret stops working immediately
    """
    api_key = await service.regenerate_api_key(key_id)
    if api_key is None:
        return _not_found(key_id)

    logger.info(f"API key {key_id} regenerated by {principal.subject}")
    return APIKeyRegeneratedResponse(api_key=api_key, key_id=key_id)


@router.delete("/{key_id}")
async def delete_api_key(
    key_id: str,
    principal: Principal = Depends(require_permission("api_keys:delete")),
    service: SecurityService = Depends(get_security_service),
):
    if not await service.delete_api_key(key_id):
        return _not_found(key_id)

    logger.info(f"API key {key_id} deleted by {principal.subject}")
    return success_response(
        status_code=status.HTTP_200_OK,
        message="API key deleted successfully",
        data={"key_id": key_id},
    )
