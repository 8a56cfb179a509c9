"""
One-shot deep style analysis.

Runs once per rep, when the approved-note counter reaches the learning
threshold. A generative model summarises a sample of the rep's approved notes
into a structured voice profile that replaces the incrementally learned one.
"""

import json
import re
from typing import Any, Dict, List

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import utcnow
from ..models import Event, Note, NoteStatus, User
from ..providers.clients import LLMClient
from ..utils.logging import get_logger
from .learning import round_half_up

logger = get_logger(__name__)

SAMPLE_SIZE = 10

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

ANALYSIS_SYSTEM_PROMPT = """You are an expert writing analyst. Analyze the provided thank-you notes to extract the writer's unique style, tone, and preferences.

Your goal is to create a detailed style profile that can be used to generate future notes in the exact same voice.

Focus on:
1. Tone (warm/professional/enthusiastic/casual/formal)
2. Sentence structure (short/long, simple/complex)
3. Common phrases and word choices
4. Level of personal detail included
5. How they open and close notes
6. Average length and density of content

Be specific and actionable. Extract actual phrases and patterns that can be replicated."""

PROFILE_SCHEMA = """{
  "tone_description": "detailed description of writing tone",
  "avg_length": average character count,
  "sentence_structure": "description of sentence patterns",
  "common_phrases": ["array", "of", "frequently used phrases"],
  "opening_style": "how they typically start notes",
  "closing_style": "how they typically end notes",
  "detail_level": "description of how much personal detail they include",
  "formality": "casual|semi-formal|formal",
  "enthusiasm_level": "low|medium|high",
  "best_examples": ["2-3 of their best approved notes to use as examples"],
  "key_characteristics": ["list of defining features of their style"]
}"""


class InsufficientNotesError(Exception):
    """Fewer approved notes than the learning threshold."""

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Need {required} notes for analysis. Current count: {available}"
        )
        self.required = required
        self.available = available


def format_examples(notes: List[Note]) -> str:
    blocks = []
    for index, note in enumerate(notes, start=1):
        was_edited = note.feedback_given or (note.draft_text or "") != note.final_text
        lines = [f"Note {index}:"]
        if was_edited:
            lines.append(f"AI Generated: {note.draft_text or ''}")
        lines.append(f"Final Version: {note.final_text}")
        lines.append("(User edited this note)" if was_edited else "(User approved without edits)")
        blocks.append("\n".join(lines))
    return "\n---\n".join(blocks)


def parse_style_profile(text: str) -> Dict[str, Any]:
    """Pull the first JSON object out of the model's reply.

    Raises ValueError when there is no object or it does not parse.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise ValueError("No JSON object in style analysis response")
    profile = json.loads(match.group(0))
    if not isinstance(profile, dict):
        raise ValueError("Style analysis response is not a JSON object")
    return profile


def fallback_profile(analysis_text: str, sample: List[Note]) -> Dict[str, Any]:
    """Minimal profile used when the model call or its output fails."""
    lengths = [len(note.final_text) for note in sample]
    return {
        "tone_description": (analysis_text or "")[:500],
        "avg_length": round_half_up(sum(lengths) / len(lengths)) if lengths else 0,
        "sentence_structure": "Standard",
        "common_phrases": [],
        "best_examples": [note.final_text for note in sample[:3]],
        "fallback": True,
    }


def analyzable_notes(db: Session, user_id: str):
    """Approved notes with final text that the deep analysis can learn from."""
    return db.query(Note).filter(
        Note.user_id == user_id,
        Note.status.in_([NoteStatus.APPROVED, NoteStatus.SENT, NoteStatus.DELIVERED]),
        Note.approved_at.isnot(None),
        Note.final_text.isnot(None),
        Note.final_text != "",
    )


class StyleAnalyzer:
    def __init__(self, llm: LLMClient, settings: Settings):
        self.llm = llm
        self.threshold = settings.learning_threshold
        self.model = settings.analysis_model

    def _recent_approved_notes(self, db: Session, user_id: str) -> List[Note]:
        """The most recent approved notes with final text, oldest first."""
        notes = (
            analyzable_notes(db, user_id)
            .order_by(Note.approved_at.desc())
            .limit(self.threshold)
            .all()
        )
        return list(reversed(notes))

    async def analyze(self, db: Session, user: User) -> Dict[str, Any]:
        """Build and store the deep profile for ``user``.

        Idempotent: once learning is complete the stored profile is returned
        without reading notes or calling the model.
        """
        if user.learning_complete and user.tone_preferences:
            logger.info("style_analysis_skipped", user_id=user.id, reason="already_complete")
            return user.tone_preferences

        if (user.notes_sent_count or 0) < self.threshold:
            raise InsufficientNotesError(self.threshold, user.notes_sent_count or 0)

        notes = self._recent_approved_notes(db, user.id)
        if len(notes) < self.threshold:
            raise InsufficientNotesError(self.threshold, len(notes))

        sample = notes[:SAMPLE_SIZE]
        logger.info("style_analysis_started", user_id=user.id, notes=len(notes))

        user_message = (
            f"Analyze these {len(notes)} thank-you notes from a sales rep and create a "
            f"comprehensive style profile:\n\n{format_examples(sample)}\n\n"
            f"Provide a detailed JSON response with the following structure:\n{PROFILE_SCHEMA}"
        )

        analysis_text = ""
        try:
            analysis_text = await self.llm.complete(
                ANALYSIS_SYSTEM_PROMPT,
                user_message,
                model=self.model,
                max_tokens=2000,
                temperature=0.3,
            )
            profile = parse_style_profile(analysis_text)
        except Exception as e:
            logger.error(
                "style_analysis_degraded",
                user_id=user.id,
                error=f"{type(e).__name__}: {e}",
            )
            profile = fallback_profile(analysis_text, sample)

        profile["analyzed_at"] = utcnow().isoformat()
        profile["notes_analyzed"] = len(notes)
        profile["analysis_model"] = self.model

        db.execute(
            update(User)
            .where(User.id == user.id)
            .values(
                tone_preferences=profile,
                learning_complete=True,
                profile_version=User.profile_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        db.add(
            Event(
                account_id=user.account_id,
                user_id=user.id,
                event_type="learning.completed",
                resource_type="user",
                resource_id=user.id,
                payload={
                    "notes_analyzed": len(notes),
                    "profile_created": True,
                    "fallback": bool(profile.get("fallback")),
                },
            )
        )
        db.commit()
        db.refresh(user)

        logger.info("style_analysis_completed", user_id=user.id, fallback=bool(profile.get("fallback")))
        return profile

    async def run_task(self, db: Session, payload: Dict[str, Any]):
        user = db.get(User, payload["user_id"])
        if user is None:
            raise LookupError(f"User {payload['user_id']} not found")
        await self.analyze(db, user)
