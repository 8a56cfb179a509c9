import jwt
import secrets
from datetime import timedelta
from typing import Optional, Dict, Any

from ..config import Settings
from ..database import utcnow


class SessionTokenVerifier:
    """Verifies dashboard session tokens issued by the auth provider.

    The provider signs HS256 access tokens with the project's JWT secret and
    the ``authenticated`` audience; the ``email`` claim identifies the user.
    """

    def __init__(self, settings: Settings):
        self.secret_key = settings.auth_jwt_secret
        self.audience = settings.auth_jwt_audience
        self.algorithm = "HS256"
        self.default_expiry = timedelta(hours=1)

    def create_token(
        self, user_id: str, email: str, expires_in: Optional[timedelta] = None
    ) -> str:
        """Mint a token in the provider's format (local development and tests)."""
        if expires_in is None:
            expires_in = self.default_expiry

        now = utcnow()
        payload = {
            "sub": user_id,
            "email": email,
            "aud": self.audience,
            "role": "authenticated",
            "iat": now,
            "exp": now + expires_in,
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify and decode a session token. Returns None when invalid or expired."""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
            )
        except jwt.ExpiredSignatureError:
            return None  # Token expired
        except jwt.InvalidTokenError:
            return None  # Invalid token

        if not payload.get("email"):
            return None

        return payload
