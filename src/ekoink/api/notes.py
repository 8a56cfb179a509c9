"""Versioned note routes: read, edit, approve and send notes."""

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db, utcnow
from ..errors import api_error, api_success
from ..models import Deal, Note, NoteStatus
from ..providers.handwrite import HandwriteError
from ..schemas import ApiContext, UpdateNoteRequest
from ..services.delivery import NoteNotSendable, NoteSender
from .dependencies import get_sender, get_settings, read_json_body, require_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notes", tags=["Notes"])


def get_account_note(db: Session, note_id: str, account_id: str) -> Note:
    """Load a note whose deal belongs to ``account_id``; 404 otherwise."""
    note = (
        db.query(Note)
        .join(Deal, Note.deal_id == Deal.id)
        .filter(Note.id == note_id, Deal.account_id == account_id)
        .first()
    )
    if not note:
        raise api_error("Note not found", 404)
    return note


@router.get("/{note_id}")
async def get_note(
    note_id: str,
    context: ApiContext = Depends(require_api_key("notes:read")),
    db: Session = Depends(get_db),
):
    """Get a note with its customer."""
    note = get_account_note(db, note_id, context.account_id)

    data = note.to_dict()
    for internal in ("feedback_given", "feedback_changes", "handwriteio_status"):
        data.pop(internal)
    data["customer"] = {
        "first_name": note.deal.customer_first_name,
        "last_name": note.deal.customer_last_name,
    }
    return api_success({"note": data})


@router.patch("/{note_id}")
async def update_note(
    note_id: str,
    request: Request,
    context: ApiContext = Depends(require_api_key("notes:write")),
    db: Session = Depends(get_db),
):
    """Update note text before it is sent."""
    data = await read_json_body(request)
    try:
        body = UpdateNoteRequest.model_validate(data)
    except ValidationError as e:
        raise api_error("Invalid request body", 400, [err["msg"] for err in e.errors()])
    if not body.draft_text and not body.final_text:
        raise api_error("Invalid request body", 400, "Either draft_text or final_text is required")

    note = get_account_note(db, note_id, context.account_id)
    if note.status in (NoteStatus.SENT, NoteStatus.DELIVERED):
        raise api_error("Cannot edit a note that has already been sent", 400)

    if body.draft_text:
        note.draft_text = body.draft_text
    if body.final_text:
        note.final_text = body.final_text
    db.commit()
    db.refresh(note)

    return api_success({"note": note.to_dict(), "message": "Note updated successfully"})


@router.post("/{note_id}/approve")
async def approve_note(
    note_id: str,
    context: ApiContext = Depends(require_api_key("notes:write")),
    db: Session = Depends(get_db),
):
    """Approve a note as-is. API approvals do not feed the voice profile."""
    note = get_account_note(db, note_id, context.account_id)
    if note.status in (NoteStatus.APPROVED, NoteStatus.SENT, NoteStatus.DELIVERED):
        raise api_error("Note has already been approved or sent", 400)

    note.status = NoteStatus.APPROVED
    note.approved_at = utcnow()
    note.requires_approval = False
    db.commit()
    db.refresh(note)

    return api_success(
        {
            "note": note.to_dict(),
            "message": "Note approved successfully. Use POST /api/v1/notes/:id/send to send it.",
        }
    )


@router.post("/{note_id}/send")
async def send_note(
    note_id: str,
    context: ApiContext = Depends(require_api_key("notes:send")),
    db: Session = Depends(get_db),
    sender: NoteSender = Depends(get_sender),
    settings: Settings = Depends(get_settings),
):
    """Mail an approved note. This is the billable action."""
    note = get_account_note(db, note_id, context.account_id)

    try:
        result = await sender.send(db, note, user_id=context.user_id, via_api=True)
    except NoteNotSendable as e:
        message = str(e)
        if message == "Note must be approved before sending":
            message += ". Use POST /api/v1/notes/:id/approve first."
        raise api_error(message, 400)
    except HandwriteError as e:
        logger.error(f"Handwrite.io API error for note {note_id}: {e} ({e.details})")
        raise api_error(f"Failed to send note: {e}", 500, e.details or str(e))

    if not result.recorded:
        return api_success(
            {
                "warning": "Note was sent but database update failed",
                "order_id": result.order_id,
                "tracking_number": result.tracking_number,
            },
            207,
        )

    return api_success(
        {
            "order_id": result.order_id,
            "status": result.status,
            "tracking_number": result.tracking_number,
            "estimated_delivery": result.estimated_delivery,
            "message": (
                "Note sent successfully. You will be billed "
                f"${settings.price_per_card_cents / 100:.2f} on your next monthly invoice."
            ),
        }
    )
