import secrets
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..database import as_utc, utcnow
from ..models.api_key import APIKey

logger = logging.getLogger(__name__)

LIVE_PREFIX = "sk_live_"
TEST_PREFIX = "sk_test_"

DEFAULT_SCOPES = [
    "deals:create",
    "deals:read",
    "notes:read",
    "notes:write",
    "notes:send",
]


def hash_api_key(key: str) -> str:
    """Hash an API key using SHA-256."""
    return hashlib.sha256(key.encode()).hexdigest()


def generate_api_key(key_type: str = "live") -> tuple[str, str, str]:
    """Generate a new API key. Returns (key, prefix, hash); show the key once."""
    prefix = LIVE_PREFIX if key_type == "live" else TEST_PREFIX
    key = f"{prefix}{secrets.token_urlsafe(32)}"
    return key, prefix, hash_api_key(key)


def has_scope(scopes: List[str], required_scope: str) -> bool:
    """Check a required scope against a key's scopes.

    Satisfied by the global wildcard ``*``, an exact match, or a resource
    wildcard (``deals:*`` covers ``deals:create``).
    """
    if "*" in scopes:
        return True
    if required_scope in scopes:
        return True
    resource = required_scope.split(":")[0]
    return f"{resource}:*" in scopes


@dataclass
class ApiKeyValidation:
    valid: bool
    api_key: Optional[APIKey] = None
    error: Optional[str] = None


class APIKeyManager:
    """Manages API key creation, validation, revocation and caching."""

    def __init__(self, db: Session, redis_client=None, cache_ttl: int = 3600):
        self.db = db
        self.redis = redis_client
        self.cache_ttl = cache_ttl

    def create_api_key(
        self,
        account_id: str,
        user_id: Optional[str],
        name: str,
        scopes: Optional[List[str]] = None,
        key_type: str = "live",
        expires_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> tuple[str, APIKey]:
        """Create a new API key. Returns the plaintext key (only time it exists) and the record."""
        key, prefix, key_hash = generate_api_key(key_type)

        api_key = APIKey(
            account_id=account_id,
            user_id=user_id,
            key_prefix=prefix,
            key_hash=key_hash,
            name=name,
            scopes=list(scopes) if scopes else list(DEFAULT_SCOPES),
            expires_at=expires_at,
            created_by=created_by or user_id,
        )

        self.db.add(api_key)
        self.db.commit()
        self.db.refresh(api_key)

        return key, api_key

    def validate_api_key(self, key: str, touch: bool = True) -> ApiKeyValidation:
        """Validate an API key and return the record with its account loaded.

        With ``touch=False`` the caller stamps ``last_used_at`` itself, once
        the request is fully authorized.
        """
        if not key:
            return ApiKeyValidation(valid=False, error="API key is required")

        if not key.startswith(LIVE_PREFIX) and not key.startswith(TEST_PREFIX):
            return ApiKeyValidation(valid=False, error="Invalid API key format")

        key_hash = hash_api_key(key)

        try:
            api_key = self._lookup(key_hash)
        except SQLAlchemyError as e:
            logger.error(f"Error validating API key: {e}")
            return ApiKeyValidation(valid=False, error="Internal error validating API key")

        if not api_key:
            return ApiKeyValidation(valid=False, error="Invalid or revoked API key")

        expires_at = as_utc(api_key.expires_at)
        if expires_at and expires_at < utcnow():
            return ApiKeyValidation(valid=False, error="API key has expired")

        if touch:
            self.touch_last_used(api_key)

        return ApiKeyValidation(valid=True, api_key=api_key)

    def _lookup(self, key_hash: str) -> Optional[APIKey]:
        query = self.db.query(APIKey).options(joinedload(APIKey.account))

        # The cache only maps hash -> id; the row is always re-read so
        # revocation and expiry apply immediately.
        cached_id = self._cache_get(key_hash)
        if cached_id:
            api_key = query.filter(APIKey.id == cached_id).first()
            if api_key and api_key.key_hash == key_hash and api_key.revoked_at is None:
                return api_key

        api_key = query.filter(
            APIKey.key_hash == key_hash, APIKey.revoked_at.is_(None)
        ).first()

        if api_key:
            self._cache_set(key_hash, api_key.id)

        return api_key

    def touch_last_used(self, api_key: APIKey):
        """Stamp last_used_at. Best-effort: a failure is logged, never raised."""
        try:
            self.db.query(APIKey).filter(APIKey.id == api_key.id).update(
                {APIKey.last_used_at: utcnow()}, synchronize_session=False
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update last_used_at for key {api_key.id}: {e}")

    def revoke_api_key(self, key_id: str, account_id: str, revoked_by: str) -> bool:
        """Soft delete an API key. Returns False when no active key matched."""
        api_key = (
            self.db.query(APIKey)
            .filter(
                APIKey.id == key_id,
                APIKey.account_id == account_id,
                APIKey.revoked_at.is_(None),
            )
            .first()
        )
        if not api_key:
            return False

        api_key.revoked_at = utcnow()
        api_key.revoked_by = revoked_by
        self.db.commit()

        self._cache_delete(api_key.key_hash)
        return True

    def list_api_keys(self, account_id: str) -> List[APIKey]:
        """List API keys for an account, newest first."""
        return (
            self.db.query(APIKey)
            .filter(APIKey.account_id == account_id)
            .order_by(APIKey.created_at.desc())
            .all()
        )

    # Redis is optional; every cache failure falls back to the database.

    def _cache_get(self, key_hash: str) -> Optional[str]:
        if not self.redis:
            return None
        try:
            return self.redis.get(f"api_key:{key_hash}")
        except Exception as e:
            logger.warning(f"API key cache read failed: {e}")
            return None

    def _cache_set(self, key_hash: str, key_id: str):
        if not self.redis:
            return
        try:
            self.redis.setex(f"api_key:{key_hash}", self.cache_ttl, key_id)
        except Exception as e:
            logger.warning(f"API key cache write failed: {e}")

    def _cache_delete(self, key_hash: str):
        if not self.redis:
            return
        try:
            self.redis.delete(f"api_key:{key_hash}")
        except Exception as e:
            logger.warning(f"API key cache delete failed: {e}")
