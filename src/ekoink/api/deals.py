"""Versioned deal routes: create deals from CRM events and read them back."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db, utcnow
from ..errors import api_error, api_success
from ..models import Call, Deal, Note, NoteStatus, User
from ..schemas import ApiContext, CreateDealRequest, UpdateDealRequest
from ..services.tasks import GENERATE_NOTE, TaskRunner
from ..services.usage import UsageTracker
from .dependencies import get_settings, get_task_runner, read_json_body, require_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/deals", tags=["Deals"])


def validate_create_deal(data: Dict[str, Any]) -> Optional[str]:
    """Return the first problem with a create-deal body, or None."""
    customer = data.get("customer")
    if not customer:
        return "customer is required"
    if not isinstance(customer, dict):
        return "customer must be an object"
    if not customer.get("first_name") or not customer.get("last_name"):
        return "customer.first_name and customer.last_name are required"

    address = customer.get("address")
    if not address:
        return "customer.address is required"
    if not isinstance(address, dict) or not all(
        address.get(field) for field in ("line1", "city", "state", "postal_code")
    ):
        return "customer.address must include line1, city, state, and postal_code"

    call = data.get("call") or {}
    if not (isinstance(call, dict) and call.get("mp3_url")) and not data.get("transcript"):
        return "Either call.mp3_url or transcript is required"
    return None


def _resolve_rep(db: Session, context: ApiContext, rep_id: Optional[str]) -> str:
    if rep_id:
        user = db.get(User, rep_id)
        if not user or user.account_id != context.account_id:
            raise api_error(
                "Invalid rep_id: user not found or does not belong to your account", 400
            )
        return user.id

    if context.user_id:
        return context.user_id

    # Account-wide keys attribute deals to the account's first rep
    first_user = (
        db.query(User)
        .filter(User.account_id == context.account_id)
        .order_by(User.created_at)
        .first()
    )
    if not first_user:
        raise api_error("No users found in account", 400)
    return first_user.id


def _note_summary(note: Note) -> Dict[str, Any]:
    return {
        "id": note.id,
        "status": note.status,
        "draft_text": note.draft_text,
        "created_at": note.created_at.isoformat() if note.created_at else None,
        "sent_at": note.sent_at.isoformat() if note.sent_at else None,
    }


def _get_account_deal(db: Session, deal_id: str, account_id: str) -> Deal:
    deal = (
        db.query(Deal)
        .filter(Deal.id == deal_id, Deal.account_id == account_id)
        .first()
    )
    if not deal:
        raise api_error("Deal not found", 404)
    return deal


@router.post("")
async def create_deal(
    request: Request,
    background_tasks: BackgroundTasks,
    context: ApiContext = Depends(require_api_key("deals:create")),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    tasks: TaskRunner = Depends(get_task_runner),
):
    """Create a deal, its call record and a pending note, then generate the note."""
    # Every call counts toward the invoice, including rejected bodies
    UsageTracker(db, settings).track_api_usage(context.account_id, api_calls=1)

    data = await read_json_body(request)
    problem = validate_create_deal(data)
    if problem:
        raise api_error("Invalid request body", 400, problem)
    try:
        body = CreateDealRequest.model_validate(data)
    except ValidationError as e:
        raise api_error(
            "Invalid request body",
            400,
            [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
        )

    user_id = _resolve_rep(db, context, body.rep_id)
    address = body.customer.address
    details = body.deal
    now = utcnow()

    deal = Deal(
        account_id=context.account_id,
        user_id=user_id,
        customer_first_name=body.customer.first_name,
        customer_last_name=body.customer.last_name,
        customer_address={
            "line1": address.line1,
            "line2": address.line2 or "",
            "city": address.city,
            "state": address.state,
            "postal_code": address.postal_code,
            "country": address.country or "US",
            **({"company": address.company} if address.company else {}),
        },
        product_name=details.product_name if details else None,
        deal_value=details.deal_value if details else None,
        closed_at=(details.closed_at if details and details.closed_at else now),
        personal_detail=details.personal_detail if details else None,
    )
    db.add(deal)
    db.flush()

    call = Call(
        deal_id=deal.id,
        mp3_url=body.call.mp3_url if body.call else None,
        duration_seconds=body.call.duration_seconds if body.call else None,
        transcript=body.transcript or None,
        transcript_status="complete" if body.transcript else "pending",
        transcribed_at=now if body.transcript else None,
    )
    db.add(call)
    db.flush()

    note = Note(
        deal_id=deal.id,
        user_id=user_id,
        call_id=call.id,
        draft_text="",
        status=NoteStatus.PENDING,
        requires_approval=True,
    )
    db.add(note)
    db.commit()

    task = tasks.enqueue(db, GENERATE_NOTE, {"note_id": note.id})
    tasks.schedule(background_tasks, task.id)
    logger.info(f"Deal {deal.id} created via API; note {note.id} queued for generation")

    return api_success(
        {
            "deal_id": deal.id,
            "note_id": note.id,
            "call_id": call.id,
            "status": "processing",
            "message": "Deal created successfully. Note is being generated.",
        },
        201,
    )


@router.get("")
async def list_deals(
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    status: Optional[str] = Query(None, description="Filter by note status"),
    context: ApiContext = Depends(require_api_key("deals:read")),
    db: Session = Depends(get_db),
):
    """List the account's deals, newest first, with their notes."""
    limit = min(limit, 100)

    # Only deals that have a note, matching the status filter when given
    with_notes = select(Note.deal_id)
    if status:
        with_notes = with_notes.where(Note.status == status)

    deals = (
        db.query(Deal)
        .filter(Deal.account_id == context.account_id, Deal.id.in_(with_notes))
        .order_by(Deal.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    results = []
    for deal in deals:
        item = deal.to_dict()
        item["notes"] = [
            _note_summary(note)
            for note in deal.notes
            if not status or note.status == status
        ]
        results.append(item)

    return api_success(
        {"deals": results, "limit": limit, "offset": offset, "count": len(results)}
    )


@router.get("/{deal_id}")
async def get_deal(
    deal_id: str,
    context: ApiContext = Depends(require_api_key("deals:read")),
    db: Session = Depends(get_db),
):
    """Get a deal with its calls and notes."""
    deal = _get_account_deal(db, deal_id, context.account_id)

    item = deal.to_dict()
    item["calls"] = [call.to_dict() for call in deal.calls]
    item["notes"] = [note.to_dict() for note in deal.notes]
    return api_success({"deal": item})


@router.patch("/{deal_id}")
async def update_deal(
    deal_id: str,
    request: Request,
    context: ApiContext = Depends(require_api_key("deals:write")),
    db: Session = Depends(get_db),
):
    """Correct customer details before the note is mailed."""
    data = await read_json_body(request)
    try:
        body = UpdateDealRequest.model_validate(data)
    except ValidationError as e:
        raise api_error("Invalid request body", 400, [err["msg"] for err in e.errors()])

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise api_error("Invalid request body", 400, "No updatable fields provided")

    deal = _get_account_deal(db, deal_id, context.account_id)
    for field, value in changes.items():
        setattr(deal, field, value)
    db.commit()
    db.refresh(deal)

    return api_success({"deal": deal.to_dict(), "message": "Deal updated successfully"})
