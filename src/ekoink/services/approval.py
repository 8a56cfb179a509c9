"""
Dashboard note approval.

The approval itself and the voice-profile update are separate writes: the
profile fold may fail (it is logged) without undoing the approval. Profile
and counter writes are compare-and-set, so concurrent approvals for one rep
retry instead of overwriting each other.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import utcnow
from ..models import Event, Note, NoteStatus, User
from ..utils.logging import get_logger
from .learning import compute_edit_delta, fold_into_profile
from .style_analysis import analyzable_notes
from .tasks import ANALYZE_STYLE, SEND_NOTE, TaskRunner

logger = get_logger(__name__)

WRITE_ATTEMPTS = 3

APPROVED_STATES = (NoteStatus.APPROVED, NoteStatus.SENT, NoteStatus.DELIVERED)


class WriteConflictError(Exception):
    """A compare-and-set write kept losing to concurrent writers."""


class NoteAlreadyApproved(Exception):
    """The note was approved or mailed before; approving it again is refused."""


@dataclass
class ApprovalResult:
    note: Note
    notes_sent_count: int
    learning_complete: bool
    reached_learning_threshold: bool
    style_analysis: Optional[Dict[str, Any]] = None
    auto_send: Optional[Dict[str, Any]] = None
    profile_updated: bool = False
    scheduled_task_ids: List[str] = field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "note": self.note.to_dict(),
            "notes_sent_count": self.notes_sent_count,
            "learning_complete": self.learning_complete,
            "reached_learning_threshold": self.reached_learning_threshold,
            "style_analysis": self.style_analysis,
            "auto_send": self.auto_send,
        }


def update_profile(db: Session, user_id: str, delta: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Fold ``delta`` into the user's live profile with a versioned write."""
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        current = (
            db.query(User.tone_preferences, User.profile_version)
            .filter(User.id == user_id)
            .one()
        )
        profile = fold_into_profile(current.tone_preferences, delta, now)

        result = db.execute(
            update(User)
            .where(User.id == user_id, User.profile_version == current.profile_version)
            .values(tone_preferences=profile, profile_version=current.profile_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            db.commit()
            return profile

        db.rollback()
        logger.warning("profile_write_conflict", user_id=user_id, attempt=attempt)

    raise WriteConflictError(f"Could not update voice profile for user {user_id}")


def increment_sent_count(db: Session, user_id: str) -> int:
    """Atomically add one approved note to the user's counter; returns the new value."""
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        current = db.query(User.notes_sent_count).filter(User.id == user_id).scalar() or 0

        result = db.execute(
            update(User)
            .where(User.id == user_id, User.notes_sent_count == current)
            .values(notes_sent_count=current + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            db.commit()
            return current + 1

        db.rollback()
        logger.warning("counter_write_conflict", user_id=user_id, attempt=attempt)

    raise WriteConflictError(f"Could not increment approved-note count for user {user_id}")


class ApprovalService:
    def __init__(self, db: Session, settings: Settings, tasks: TaskRunner):
        self.db = db
        self.threshold = settings.learning_threshold
        self.tasks = tasks

    def _analysis_missed(self, user_id: str, count: int, learning_complete: bool) -> bool:
        """Past the threshold without a learned style: the analysis that should
        have run at the threshold failed closed or never ran.

        Re-queued only once enough notes are stored for it to succeed and no
        earlier analysis for the rep is still pending.
        """
        if learning_complete or count <= self.threshold:
            return False
        if analyzable_notes(self.db, user_id).count() < self.threshold:
            return False
        return not self.tasks.has_open(self.db, ANALYZE_STYLE, user_id)

    def approve(
        self,
        user: User,
        note: Note,
        final_text: str,
        feedback_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ApprovalResult:
        now = now or utcnow()
        db = self.db

        if note.status in APPROVED_STATES:
            raise NoteAlreadyApproved("Note has already been approved or sent")

        # Read before anything is written: the approval that crosses the
        # threshold never auto-sends.
        was_learning_complete = bool(user.learning_complete)

        original = note.draft_text or ""
        was_edited = original != final_text

        try:
            delta = compute_edit_delta(original, final_text, now)
            if feedback_text:
                delta["feedback_text"] = feedback_text
        except Exception as e:
            delta = None
            logger.error("edit_delta_failed", note_id=note.id, error=str(e))

        note.final_text = final_text
        note.status = NoteStatus.APPROVED
        note.approved_at = now
        note.requires_approval = False
        note.feedback_given = was_edited
        note.feedback_changes = delta
        db.commit()

        profile_updated = False
        if delta is not None:
            try:
                update_profile(db, user.id, delta, now)
                profile_updated = True
            except Exception as e:
                db.rollback()
                logger.error(
                    "profile_update_failed", user_id=user.id, note_id=note.id, error=str(e)
                )

        new_count = increment_sent_count(db, user.id)
        reached_threshold = new_count == self.threshold

        db.add(
            Event(
                account_id=user.account_id,
                user_id=user.id,
                event_type="note.approved",
                resource_type="note",
                resource_id=note.id,
                payload={
                    "notes_sent_count": new_count,
                    "reached_learning_threshold": reached_threshold,
                    "was_edited": was_edited,
                },
            )
        )
        db.commit()

        result = ApprovalResult(
            note=note,
            notes_sent_count=new_count,
            learning_complete=was_learning_complete,
            reached_learning_threshold=reached_threshold,
            profile_updated=profile_updated,
        )

        if reached_threshold or self._analysis_missed(user.id, new_count, was_learning_complete):
            logger.info("learning_threshold_reached", user_id=user.id, count=new_count)
            task = self.tasks.enqueue(db, ANALYZE_STYLE, {"user_id": user.id})
            result.scheduled_task_ids.append(task.id)
            result.style_analysis = {
                "triggered": True,
                "message": "Style analysis will be processed in the background",
                "task_id": task.id,
            }

        if was_learning_complete and new_count > self.threshold:
            logger.info("auto_send_triggered", user_id=user.id, note_id=note.id)
            task = self.tasks.enqueue(
                db, SEND_NOTE, {"note_id": note.id, "user_id": user.id}
            )
            result.scheduled_task_ids.append(task.id)
            result.auto_send = {
                "triggered": True,
                "message": "Note will be sent automatically",
                "task_id": task.id,
            }

        db.refresh(note)
        db.refresh(user)
        return result
