from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime


# =============================================================================
# Versioned API Schemas
# =============================================================================


class CustomerAddress(BaseModel):
    """Mailing address of the card recipient."""

    line1: str
    line2: Optional[str] = ""
    city: str
    state: str
    postal_code: str
    country: Optional[str] = "US"
    company: Optional[str] = None


class Customer(BaseModel):
    first_name: str
    last_name: str
    address: CustomerAddress


class DealDetails(BaseModel):
    product_name: Optional[str] = None
    deal_value: Optional[float] = None
    closed_at: Optional[datetime] = None
    personal_detail: Optional[str] = None


class CallDetails(BaseModel):
    mp3_url: Optional[str] = None
    duration_seconds: Optional[int] = None


class CreateDealRequest(BaseModel):
    """POST /api/v1/deals body."""

    rep_id: Optional[str] = Field(None, description="User the deal belongs to")
    customer: Customer
    deal: Optional[DealDetails] = None
    call: Optional[CallDetails] = None
    transcript: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class UpdateDealRequest(BaseModel):
    """PATCH /api/v1/deals/{id} body; only the given fields change."""

    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    customer_address: Optional[Dict[str, Any]] = None
    product_name: Optional[str] = None
    personal_detail: Optional[str] = None


class UpdateNoteRequest(BaseModel):
    """PATCH /api/v1/notes/{id} body."""

    draft_text: Optional[str] = None
    final_text: Optional[str] = None


# =============================================================================
# Dashboard Schemas
# =============================================================================


class ApproveNoteRequest(BaseModel):
    """Dashboard approval. ``final_text`` is checked by the handler."""

    final_text: Optional[str] = Field(None, description="The text the rep approved")
    feedback_text: Optional[str] = Field(None, description="Optional free-form feedback")


class APIKeyRequest(BaseModel):
    """Request to create new API key."""

    name: str = Field(..., min_length=1, description="Friendly name for the API key")
    scopes: Optional[List[str]] = Field(None, description="Defaults to the standard scope set")
    type: str = Field("live", pattern="^(live|test)$", description="live or test")
    expires_at: Optional[datetime] = None
    account_scoped: bool = Field(
        False, description="Not tied to the creating user; deals fall back to the first rep"
    )


class APIKeyInfo(BaseModel):
    """API key information (without the actual key)."""

    id: str
    account_id: str
    user_id: Optional[str] = None
    key_prefix: str
    name: str
    scopes: List[str]
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None


class APIKeyResponse(APIKeyInfo):
    """API key creation response; the only time the plaintext key is returned."""

    key: str


# =============================================================================
# Request Context
# =============================================================================


class AccountInfo(BaseModel):
    """Account fields needed for billing decisions."""

    company_name: str
    billing_type: str
    api_monthly_limit: int


class ApiContext(BaseModel):
    """Resolved caller of a versioned API request."""

    account_id: str
    user_id: Optional[str] = None
    scopes: List[str]
    account: AccountInfo
