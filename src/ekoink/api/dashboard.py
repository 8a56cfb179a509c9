"""Dashboard routes for signed-in reps: approve, regenerate and send notes."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..errors import dashboard_error
from ..models import Note, User
from ..providers.clients import LLMUnavailableError
from ..providers.handwrite import HandwriteError
from ..schemas import ApproveNoteRequest
from ..services.approval import ApprovalService, NoteAlreadyApproved, WriteConflictError
from ..services.delivery import NoteNotSendable, NoteSender
from ..services.generation import GenerationError, NoteGenerator
from ..services.style_analysis import InsufficientNotesError, StyleAnalyzer
from ..services.tasks import TaskRunner
from .dependencies import (
    get_analyzer,
    get_current_user,
    get_generator,
    get_sender,
    get_settings,
    get_task_runner,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Dashboard"])


def get_user_note(db: Session, note_id: str, user: User) -> Note:
    note = db.query(Note).filter(Note.id == note_id, Note.user_id == user.id).first()
    if not note:
        raise dashboard_error("Note not found", 404)
    return note


@router.post("/notes/{note_id}/approve")
async def approve_note(
    note_id: str,
    body: ApproveNoteRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    tasks: TaskRunner = Depends(get_task_runner),
):
    """Approve a note and learn from the rep's edits.

    Style analysis and auto-send are queued and run after the response; the
    response only says whether they were triggered.
    """
    if not body.final_text:
        raise dashboard_error("final_text is required", 400)

    note = get_user_note(db, note_id, user)

    try:
        result = ApprovalService(db, settings, tasks).approve(
            user, note, body.final_text, feedback_text=body.feedback_text
        )
    except NoteAlreadyApproved as e:
        raise dashboard_error(str(e), 400)
    except (SQLAlchemyError, WriteConflictError) as e:
        db.rollback()
        logger.error(f"Error approving note {note_id}: {e}")
        raise dashboard_error("Failed to approve note", 500)

    for task_id in result.scheduled_task_ids:
        tasks.schedule(background_tasks, task_id)

    logger.info(
        f"Note {note_id} approved by {user.id} "
        f"(count={result.notes_sent_count}, threshold_reached={result.reached_learning_threshold})"
    )
    return result.to_response()


@router.post("/notes/{note_id}/generate")
async def generate_note(
    note_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    generator: NoteGenerator = Depends(get_generator),
):
    """Regenerate the draft for one of the rep's notes."""
    note = get_user_note(db, note_id, user)

    try:
        text = await generator.generate(db, note)
    except (GenerationError, LLMUnavailableError) as e:
        logger.error(f"Note generation failed for {note_id}: {e}")
        raise dashboard_error(str(e) or "Failed to generate note", 500)

    return {
        "success": True,
        "note": text,
        "character_count": len(text),
        "used_learned_style": bool(user.learning_complete and user.tone_preferences),
    }


@router.post("/notes/{note_id}/send")
async def send_note(
    note_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    sender: NoteSender = Depends(get_sender),
):
    """Mail one of the rep's approved notes."""
    note = get_user_note(db, note_id, user)

    try:
        result = await sender.send(db, note, user_id=user.id)
    except NoteNotSendable as e:
        raise dashboard_error(str(e), 400)
    except HandwriteError as e:
        logger.error(f"Handwrite.io API error for note {note_id}: {e} ({e.details})")
        return JSONResponse(
            status_code=500,
            content={"error": f"Failed to send note: {e}", "details": e.details or str(e)},
        )

    if not result.recorded:
        return JSONResponse(
            status_code=207,
            content={
                "warning": "Note was sent but database update failed",
                "order_id": result.order_id,
            },
        )

    return {
        "success": True,
        "order_id": result.order_id,
        "status": result.status,
        "tracking_number": result.tracking_number,
        "estimated_delivery": result.estimated_delivery,
    }


@router.post("/learning/analyze-style")
async def analyze_style(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    analyzer: StyleAnalyzer = Depends(get_analyzer),
):
    """Run the deep style analysis for the signed-in rep."""
    threshold = settings.learning_threshold
    if (user.notes_sent_count or 0) < threshold:
        raise dashboard_error(
            f"Need {threshold} notes for analysis. Current count: {user.notes_sent_count or 0}",
            400,
        )

    if user.learning_complete and user.tone_preferences:
        return {"message": "Style already analyzed", "tone_preferences": user.tone_preferences}

    try:
        profile = await analyzer.analyze(db, user)
    except InsufficientNotesError as e:
        logger.error(f"Style analysis for {user.id} found too few notes: {e}")
        raise dashboard_error("Could not fetch enough notes for analysis", 500)

    return {
        "success": True,
        "message": "Style profile created successfully",
        "tone_preferences": profile,
        "notes_analyzed": profile.get("notes_analyzed"),
    }
