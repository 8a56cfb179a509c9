"""Handwrite.io API client.

Documentation: https://documentation.handwrite.io/
"""

import logging
import re
import time
from datetime import timedelta
from typing import Any, Dict, Optional

import httpx

from ..config import Settings
from ..database import utcnow

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 320

_STATE_RE = re.compile(r"^[A-Z]{2}$")
_ZIP_RE = re.compile(r"^\d{5}$")


class HandwriteError(Exception):
    """Handwrite.io rejected the request or could not be reached."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details


class HandwriteClient:
    """Sends handwritten cards through Handwrite.io."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = settings.handwriteio_api_key or ""
        self.base_url = settings.handwriteio_base_url.rstrip("/")
        self.test_mode = settings.handwriteio_test_mode
        self.default_handwriting_id = settings.handwriteio_default_handwriting_id
        self.default_card_id = settings.handwriteio_default_card_id
        self._transport = transport

    async def _request(self, method: str, endpoint: str, json: Any = None) -> Any:
        # The key is checked per request so the client can be built without one
        if not self.api_key:
            raise HandwriteError(
                "Handwrite.io API key is required. Please set HANDWRITEIO_API_KEY environment variable."
            )

        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=30.0) as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    headers={"Authorization": self.api_key},
                )
        except httpx.HTTPError as e:
            raise HandwriteError(f"Handwrite.io request failed: {e}", details=repr(e)) from e

        if response.status_code >= 400:
            message = f"Handwrite.io API error: {response.status_code} {response.reason_phrase}"
            try:
                body = response.json()
                message = body.get("message") or body.get("error") or message
            except ValueError:
                body = response.text
            logger.error(
                f"Handwrite.io API error details: status={response.status_code} url={url} body={body}"
            )
            raise HandwriteError(message, details=str(body))

        return response.json()

    async def send_letter(
        self,
        message: str,
        recipient: Dict[str, Any],
        handwriting_id: Optional[str] = None,
        card_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send a handwritten letter.

        ``recipient`` uses Handwrite.io field names: firstName, lastName,
        company, street1, street2, city, state (2 uppercase letters), zip
        (5 digits).
        """
        if len(message) > MAX_MESSAGE_LENGTH:
            raise HandwriteError(
                f"Message must be {MAX_MESSAGE_LENGTH} characters or less "
                f"(currently {len(message)} characters)"
            )
        if not _STATE_RE.match(recipient.get("state") or ""):
            raise HandwriteError("State must be 2-letter capitalized abbreviation (e.g., CA, NY)")
        if not _ZIP_RE.match(recipient.get("zip") or ""):
            raise HandwriteError("Zip code must be 5 digits")

        if self.test_mode:
            logger.info("[TEST MODE] Skipping actual Handwrite.io API call. Returning mock response.")
            now = utcnow()
            return {
                "order_id": f"TEST_{int(time.time() * 1000)}",
                "status": "processing",
                "created_at": now.isoformat(),
                "estimated_delivery": (now + timedelta(days=5)).isoformat(),
                "tracking_number": "TEST_TRACKING_123456789",
            }

        body = {
            "message": message,
            "handwriting": handwriting_id or self.default_handwriting_id,
            "card": card_id or self.default_card_id,
            "recipients": [{k: v for k, v in recipient.items() if v}],
        }
        return await self._request("POST", "/send", json=body)
