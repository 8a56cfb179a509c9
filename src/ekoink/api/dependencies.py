import logging
import re
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db, get_redis
from ..errors import ApiError, api_error, dashboard_error
from ..models import User
from ..schemas import AccountInfo, ApiContext
from ..services.delivery import NoteSender
from ..services.generation import NoteGenerator
from ..services.style_analysis import StyleAnalyzer
from ..services.tasks import TaskRunner
from ..services.usage import UsageTracker
from ..utils.auth import APIKeyManager, has_scope
from ..utils.logging import bind_request_context

logger = logging.getLogger(__name__)

SEND_SCOPE = "notes:send"

SCOPE_MAP = {
    "POST /api/v1/deals": "deals:create",
    "GET /api/v1/deals": "deals:read",
    "GET /api/v1/deals/:id": "deals:read",
    "PATCH /api/v1/deals/:id": "deals:write",
    "GET /api/v1/notes/:id": "notes:read",
    "PATCH /api/v1/notes/:id": "notes:write",
    "POST /api/v1/notes/:id/approve": "notes:write",
    "POST /api/v1/notes/:id/send": "notes:send",
    "GET /api/v1/account/usage": "account:read",
}

_UUID_SEGMENT = re.compile(r"/[0-9a-f-]{36}", re.IGNORECASE)


def get_required_scope(path: str, method: str) -> str:
    """Scope guarding a versioned route; ``"unknown"`` for unmapped routes."""
    normalized = _UUID_SEGMENT.sub("/:id", path.rstrip("/") or "/")
    return SCOPE_MAP.get(f"{method.upper()} {normalized}", "unknown")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_task_runner(request: Request) -> TaskRunner:
    return request.app.state.tasks


def get_generator(request: Request) -> NoteGenerator:
    return request.app.state.generator


def get_analyzer(request: Request) -> StyleAnalyzer:
    return request.app.state.analyzer


def get_sender(request: Request) -> NoteSender:
    return request.app.state.sender


def require_api_key(required_scope: Optional[str] = None):
    """Build a dependency that authenticates a versioned API request.

    Rejections happen before the route body runs: 401 for a missing, unknown,
    revoked or expired key, 403 when ``required_scope`` is not granted and 429
    when a send would exceed the account's monthly card limit.
    """

    async def verify_api_key(
        request: Request,
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_settings),
    ) -> ApiContext:
        auth_header = request.headers.get("authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            raise ApiError(
                401,
                {
                    "error": "Unauthorized",
                    "message": "Missing or invalid Authorization header. Use: Authorization: Bearer sk_live_xxx",
                },
            )

        presented = auth_header[len("Bearer "):].strip()
        key_manager = APIKeyManager(db, get_redis(request), settings.api_key_cache_ttl)
        validation = key_manager.validate_api_key(presented, touch=False)

        if not validation.valid or validation.api_key is None:
            raise ApiError(
                401,
                {"error": "Unauthorized", "message": validation.error or "Invalid API key"},
            )

        api_key = validation.api_key
        scopes = list(api_key.scopes or [])

        if required_scope and not has_scope(scopes, required_scope):
            raise ApiError(
                403,
                {
                    "error": "Forbidden",
                    "message": f"This API key does not have the required scope: {required_scope}",
                    "available_scopes": scopes,
                },
            )

        if required_scope == SEND_SCOPE:
            limit_check = UsageTracker(db, settings).check_monthly_limit(api_key.account_id)
            if not limit_check.within_limit:
                raise ApiError(
                    429,
                    {
                        "error": "Monthly limit exceeded",
                        "message": (
                            f"You have reached your monthly limit of {limit_check.limit} cards. "
                            f"Current usage: {limit_check.usage}"
                        ),
                        "limit": limit_check.limit,
                        "usage": limit_check.usage,
                    },
                )

        account = api_key.account
        context = ApiContext(
            account_id=api_key.account_id,
            user_id=api_key.user_id,
            scopes=scopes,
            account=AccountInfo(
                company_name=account.company_name,
                billing_type=account.billing_type,
                api_monthly_limit=account.api_monthly_limit,
            ),
        )

        key_manager.touch_last_used(api_key)
        bind_request_context(account_id=api_key.account_id, api_key_id=api_key.id)
        return context

    return verify_api_key


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Parse a JSON object body for routes that validate it by hand."""
    try:
        body = await request.json()
    except ValueError:
        raise api_error("Invalid JSON in request body", 400)
    if not isinstance(body, dict):
        raise api_error("Invalid request body", 400, "Request body must be a JSON object")
    return body


def _session_token(request: Request, cookie_name: str) -> Optional[str]:
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):].strip()
    return request.cookies.get(cookie_name)


async def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """Resolve the dashboard user from the auth provider's session token."""
    token = _session_token(request, settings.auth_cookie_name)
    payload = request.app.state.token_verifier.verify_token(token) if token else None
    if not payload:
        raise dashboard_error("Unauthorized", 401)

    user = db.query(User).filter(User.email == payload["email"]).first()
    if not user:
        logger.warning(f"Session token for unknown user {payload['email']}")
        raise dashboard_error("User not found", 404)

    bind_request_context(account_id=user.account_id, user_id=user.id)
    return user
