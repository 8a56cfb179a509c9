from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db, get_redis
from ..errors import dashboard_error
from ..models import User
from ..schemas import APIKeyInfo, APIKeyRequest, APIKeyResponse
from ..utils.auth import APIKeyManager
from .dependencies import get_current_user, get_settings

router = APIRouter(prefix="/api/api-keys", tags=["Authentication"])


def _key_manager(request: Request, db: Session, settings: Settings) -> APIKeyManager:
    return APIKeyManager(db, get_redis(request), settings.api_key_cache_ttl)


@router.get("")
async def list_api_keys(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """List the account's API keys, newest first. Hashes are never returned."""
    keys = _key_manager(request, db, settings).list_api_keys(user.account_id)
    return {"api_keys": [APIKeyInfo(**key.to_dict()) for key in keys]}


@router.post("")
async def create_api_key(
    body: APIKeyRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Create a new API key. The plaintext key is only returned here."""
    key, record = _key_manager(request, db, settings).create_api_key(
        account_id=user.account_id,
        user_id=None if body.account_scoped else user.id,
        name=body.name,
        scopes=body.scopes,
        key_type=body.type,
        expires_at=body.expires_at,
        created_by=user.id,
    )

    response = APIKeyResponse(key=key, **record.to_dict())
    return JSONResponse(status_code=201, content=jsonable_encoder(response))


@router.delete("/{key_id}")
async def revoke_api_key(
    key_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Revoke an API key. It stops working immediately."""
    revoked = _key_manager(request, db, settings).revoke_api_key(
        key_id, account_id=user.account_id, revoked_by=user.id
    )
    if not revoked:
        raise dashboard_error("API key not found", 404)
    return {"message": "API key revoked successfully"}
