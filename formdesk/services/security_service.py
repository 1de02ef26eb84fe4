"""
Security Service - API key lifecycle, authentication, permissions and JWTs
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Mapping, Optional, Tuple, Union

import jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from formdesk.db.api_keys_repository import (
    UPDATABLE_COLUMNS,
    APIKeyRepository,
    get_api_key_repository,
)
from formdesk.db.session import SessionLocal, transaction
from formdesk.models.api_key_model import DEFAULT_RATE_LIMIT_PER_HOUR
from formdesk.schemas.api_keys_schemas import (
    APIKeyRecord,
    AuthenticateResult,
    PermissionCheck,
)
from formdesk.utils.exceptions import ValidationError
from formdesk.utils.permissions import grants
from formdesk.utils.security import (
    API_KEY_HASH_ROUNDS,
    DEFAULT_TOKEN_EXPIRY,
    JWT_ALGORITHM,
    generate_api_key,
    hash_api_key,
    parse_duration,
    resolve_jwt_secret,
    safe_key_prefix,
    verify_api_key,
)

logger = logging.getLogger(__name__)

INVALID_API_KEY_MESSAGE = "Invalid API key"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500

# Only these columns may be cleared through update_api_key
NULLABLE_FIELDS = frozenset({"expires_at"})

# Claims this service stamps on every token and strips again on verify
_TIMING_CLAIMS = ("iat", "exp")


def _is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= now


def _check_rate_limit(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError("rate_limit_per_hour must be a positive integer")


def _normalize_permissions(value: Any) -> List[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
        raise ValidationError("permissions must be a list of strings")
    for perm in value:
        if not isinstance(perm, str) or not perm.strip():
            raise ValidationError("permissions must be non-empty strings")
    return list(dict.fromkeys(value))


class SecurityService:
    """Service for API key and token operations"""

    def __init__(
        self,
        session_factory: async_sessionmaker = SessionLocal,
        jwt_secret: Optional[str] = None,
        hash_rounds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.jwt_secret = resolve_jwt_secret(jwt_secret)
        self.jwt_algorithm = JWT_ALGORITHM
        self.hash_rounds = hash_rounds or API_KEY_HASH_ROUNDS

    @asynccontextmanager
    async def _unit_of_work(
        self, operation: str
    ) -> AsyncGenerator[APIKeyRepository, None]:
        """One transaction; store failures are logged with timing and re-raised"""
        start = time.perf_counter()
        try:
            async with transaction(self.session_factory) as db:
                yield get_api_key_repository(db)
        except SQLAlchemyError as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.error(f"{operation} failed after {elapsed_ms:.1f}ms: {str(e)}")
            raise

    async def create_api_key(
        self,
        name: str,
        permissions: List[str],
        created_by: str,
        rate_limit_per_hour: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[str, APIKeyRecord]:
        """
        Create a new API key

        Args:
            name: Key label
            permissions: Permission strings, may include "*"
            created_by: Identity of the creating principal
            rate_limit_per_hour: Advisory hourly quota (default 1000)
            expires_at: Optional hard expiry

        Returns:
            Tuple of (plaintext key, stored record). The plaintext is not
            retrievable afterwards.

        Raises:
            ValidationError: If the rate limit is not a positive integer, or
                permissions is not a list of non-empty strings
        """
        if rate_limit_per_hour is None:
            rate_limit_per_hour = DEFAULT_RATE_LIMIT_PER_HOUR
        _check_rate_limit(rate_limit_per_hour)
        permissions = _normalize_permissions(
            permissions if permissions is not None else []
        )

        api_key = generate_api_key()
        key_hash = await asyncio.to_thread(hash_api_key, api_key, self.hash_rounds)

        async with self._unit_of_work("create_api_key") as repo:
            instance = await repo.create(
                key_hash=key_hash,
                name=name,
                permissions=permissions,
                rate_limit_per_hour=rate_limit_per_hour,
                is_active=True,
                last_used_at=None,
                expires_at=expires_at,
                created_by=created_by,
            )
            record = APIKeyRecord.model_validate(instance)

        logger.info(
            f"API key created: {record.id} "
            f"(name={record.name}, created_by={record.created_by})"
        )
        return api_key, record

    async def authenticate(self, candidate_key: str) -> AuthenticateResult:
        """
        Authenticate a plaintext API key

        Scans active keys newest first and checks each stored hash with
        bcrypt's own verify. Wrong keys are a negative result, not an error.
        """
        failure = AuthenticateResult(
            is_valid=False, error_message=INVALID_API_KEY_MESSAGE
        )

        if not isinstance(candidate_key, str) or not candidate_key:
            logger.warning("API key authentication failed: empty key")
            return failure

        async with self._unit_of_work("authenticate") as repo:
            for key in await repo.get_active_keys():
                matched = await asyncio.to_thread(
                    verify_api_key, candidate_key, key.key_hash
                )
                if not matched:
                    continue

                now = datetime.now(timezone.utc)
                record = APIKeyRecord.model_validate(key)

                if _is_expired(record.expires_at, now):
                    logger.warning(
                        f"API key authentication failed: key {record.id} expired"
                    )
                    return failure

                await repo.touch_last_used(record.id, now)
                logger.debug(f"API key authenticated: {record.id} ({record.name})")
                return AuthenticateResult(
                    is_valid=True,
                    api_key=record.model_copy(update={"last_used_at": now}),
                )

        logger.warning(
            f"API key authentication failed: {safe_key_prefix(candidate_key)}"
        )
        return failure

    async def get_api_key_by_id(self, key_id: str) -> Optional[APIKeyRecord]:
        async with self._unit_of_work("get_api_key_by_id") as repo:
            instance = await repo.get_by_id(key_id)
            return APIKeyRecord.model_validate(instance) if instance else None

    async def list_api_keys(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        active_only: bool = False,
    ) -> List[APIKeyRecord]:
        """Keys newest first, paginated"""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset must not be negative")

        async with self._unit_of_work("list_api_keys") as repo:
            instances = await repo.list_keys(
                limit=limit, offset=offset, active_only=active_only
            )
            return [APIKeyRecord.model_validate(i) for i in instances]

    async def update_api_key(
        self, key_id: str, fields: Mapping[str, Any]
    ) -> Optional[APIKeyRecord]:
        """
        Partially update a key

        Only name, permissions, is_active, rate_limit_per_hour and expires_at
        may be changed. updated_at is always refreshed.

        Returns:
            Updated record, or None if the key does not exist

        Raises:
            ValidationError: If no fields, or an unknown field, are supplied,
                or a non-nullable field is set to None
        """
        fields = dict(fields or {})
        if not fields:
            raise ValidationError("No fields to update")

        unknown = sorted(set(fields) - set(UPDATABLE_COLUMNS))
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(unknown)}")

        cleared = sorted(
            field
            for field, value in fields.items()
            if value is None and field not in NULLABLE_FIELDS
        )
        if cleared:
            raise ValidationError(f"Fields cannot be null: {', '.join(cleared)}")

        if "rate_limit_per_hour" in fields:
            _check_rate_limit(fields["rate_limit_per_hour"])
        if "name" in fields and not str(fields["name"]).strip():
            raise ValidationError("name must not be empty")
        if "permissions" in fields:
            fields["permissions"] = _normalize_permissions(fields["permissions"])

        async with self._unit_of_work("update_api_key") as repo:
            instance = await repo.update_fields(key_id, fields)
            if instance is None:
                return None
            record = APIKeyRecord.model_validate(instance)

        logger.info(f"API key updated: {record.id} (fields={sorted(fields)})")
        return record

    async def deactivate_api_key(self, key_id: str) -> bool:
        async with self._unit_of_work("deactivate_api_key") as repo:
            deactivated = await repo.deactivate(key_id)

        if deactivated:
            logger.info(f"API key deactivated: {key_id}")
        return deactivated

    async def delete_api_key(self, key_id: str) -> bool:
        async with self._unit_of_work("delete_api_key") as repo:
            deleted = await repo.delete_by_id(key_id)

        if deleted:
            logger.info(f"API key deleted: {key_id}")
        return deleted

    async def regenerate_api_key(self, key_id: str) -> Optional[str]:
        """
        Replace a key's secret, keeping its id, name and permissions

        Returns:
            New plaintext key, or None if the key does not exist
        """
        api_key = generate_api_key()
        key_hash = await asyncio.to_thread(hash_api_key, api_key, self.hash_rounds)

        async with self._unit_of_work("regenerate_api_key") as repo:
            replaced = await repo.replace_hash(key_id, key_hash)

        if not replaced:
            return None

        logger.info(f"API key regenerated: {key_id}")
        return api_key

    def check_permission(
        self, api_key: APIKeyRecord, permission: str
    ) -> PermissionCheck:
        """Grant if the key holds the permission or the "*" wildcard"""
        if grants(api_key.permissions, permission):
            return PermissionCheck(has_permission=True, api_key=api_key)

        logger.warning(
            f"Permission check failed: key {api_key.id} missing '{permission}' "
            f"(has: {api_key.permissions})"
        )
        return PermissionCheck(
            has_permission=False,
            api_key=api_key,
            error_message=f"Insufficient permissions. Required: {permission}",
        )

    def issue_token(
        self,
        claims: Mapping[str, Any],
        expires_in: Union[str, int, timedelta] = DEFAULT_TOKEN_EXPIRY,
    ) -> str:
        """
        Sign a time-bounded JWT

        Raises:
            ValidationError: If claims is not a mapping or expires_in is invalid
        """
        if not isinstance(claims, Mapping):
            raise ValidationError("Token claims must be a mapping")

        lifetime = parse_duration(expires_in)
        now = datetime.now(timezone.utc)

        payload = dict(claims)
        payload["iat"] = now
        payload["exp"] = now + lifetime

        return jwt.encode(payload, self.jwt_secret, algorithm=self.jwt_algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Decode and verify a JWT; None on any validation failure"""
        if not isinstance(token, str) or not token:
            logger.warning("JWT verification failed: empty token")
            return None

        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.jwt_algorithm],
                options={
                    "require": list(_TIMING_CLAIMS),
                    "verify_aud": False,
                    "verify_sub": False,
                    "verify_jti": False,
                },
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"JWT verification failed: {str(e)}")
            return None

        for claim in _TIMING_CLAIMS:
            payload.pop(claim, None)
        return payload


_security_service: Optional[SecurityService] = None


def get_security_service() -> SecurityService:
    """Process-wide SecurityService (FastAPI dependency)"""
    global _security_service
    if _security_service is None:
        _security_service = SecurityService()
    return _security_service
