"""
Note generation: transcript + rep voice -> 270-320 character draft.
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..config import Settings
from ..models import Note, NoteStatus, User
from ..providers.clients import LLMClient
from ..utils.logging import get_logger
from .learning import DEFAULT_AVG_LENGTH, split_sentences

logger = get_logger(__name__)

MIN_NOTE_LENGTH = 270
MAX_NOTE_LENGTH = 320

SYSTEM_RULES = f"""You are a precise note writer for handwritten thank-you cards.

CRITICAL LENGTH REQUIREMENT:
Your note MUST be between {MIN_NOTE_LENGTH}-{MAX_NOTE_LENGTH} characters. This is a HARD technical limit.
If your note exceeds {MAX_NOTE_LENGTH} characters, it will be rejected by the handwriting service.

HARD CONSTRAINTS:
- Count EVERY character including spaces, punctuation, and line breaks
- 2-3 sentences maximum
- No emojis, special formatting, or metadata
- Output ONLY the handwritten note text itself

WRITING RULES:
- Use ONLY specific facts from the transcript
- NEVER invent or assume details
- Pick 1-2 most meaningful details (not everything)
- Keep sentences SHORT and direct

STRUCTURE:
1. Brief greeting with customer's first name
2. Thank them + reference ONE specific detail
3. Optional: ONE personal touch if space allows
4. Sign with sales rep's first name only

IMPORTANT: Aim for {DEFAULT_AVG_LENGTH} characters."""


class GenerationError(Exception):
    """The note cannot be generated (missing transcript, model failure)."""


def _bullets(items, limit: Optional[int] = None) -> str:
    items = list(items or [])[:limit]
    return "\n".join(f'- "{item}"' for item in items)


def voice_section(user: User) -> str:
    """Prompt section describing the rep's voice, empty when nothing is known."""
    style: Dict[str, Any] = user.tone_preferences or {}
    if not style:
        return ""

    if user.learning_complete:
        section = f"""

REP'S LEARNED WRITING STYLE:
Tone: {style.get('tone_description') or 'Warm and genuine'}
Formality: {style.get('formality') or 'Semi-formal'}
Average length: {style.get('avg_length') or DEFAULT_AVG_LENGTH} characters
Opening style: {style.get('opening_style') or 'Friendly greeting with first name'}
Closing style: {style.get('closing_style') or 'Sign with first name only'}

COMMON PHRASES THIS REP USES:
{_bullets(style.get('common_phrases'), 5) or '(No specific phrases learned yet)'}"""
        examples = style.get("best_examples")
    else:
        section = f"""

REP'S PREFERENCES SO FAR:
Target length: {style.get('avg_length') or DEFAULT_AVG_LENGTH} characters"""
        examples = style.get("recent_examples")

    if style.get("preferred_phrases"):
        section += f"\n\nPHRASES THIS REP ADDS:\n{_bullets(style['preferred_phrases'], 5)}"
    if style.get("avoid_phrases"):
        section += f"\n\nPHRASES TO AVOID:\n{_bullets(style['avoid_phrases'])}"
    if examples:
        rendered = "\n\n".join(
            f"Example {i}:\n{example}" for i, example in enumerate(examples[:2], start=1)
        )
        section += f"\n\nEXAMPLES OF THIS REP'S APPROVED NOTES:\n{rendered}"

    return section + "\n\nMatch this rep's style exactly."


def build_user_message(note: Note, transcript: str, rep_name: str) -> str:
    deal = note.deal
    first_name = rep_name.split(" ")[0]
    return (
        "Write a handwritten thank-you note for:\n\n"
        f"CUSTOMER: {deal.customer_first_name} {deal.customer_last_name}\n"
        f"PRODUCT: {deal.product_name or 'Product/service'}\n"
        + (f"PERSONAL DETAIL: {deal.personal_detail}\n" if deal.personal_detail else "")
        + "\nCALL TRANSCRIPT (extract key details from this):\n"
        f"{transcript}\n\n"
        "INSTRUCTIONS:\n"
        "1. Skim the transcript for 1-2 meaningful personal details\n"
        f"2. Write a SHORT thank-you note (TARGET: {DEFAULT_AVG_LENGTH} characters)\n"
        "3. Include: Greeting + Thank you + ONE detail + Sign off\n"
        f"4. Sign with just: {first_name}\n"
        f"5. Make it {MIN_NOTE_LENGTH}-{MAX_NOTE_LENGTH} characters total\n\n"
        "IMPORTANT: Output ONLY the note text.\n\n"
        "Write the note now:"
    )


def truncate_to_sentences(text: str, limit: int = MAX_NOTE_LENGTH) -> str:
    """Keep whole sentences while the result fits in ``limit`` characters."""
    truncated = ""
    for sentence in split_sentences(text):
        candidate = truncated + sentence + "."
        if len(candidate) > limit:
            break
        truncated = candidate + " "
    return truncated.strip()


class NoteGenerator:
    def __init__(self, llm: LLMClient, settings: Settings):
        self.llm = llm
        self.model = settings.generation_model

    async def generate(self, db: Session, note: Note) -> str:
        """Generate and store the draft; marks the note failed on error."""
        try:
            text = await self._generate(db, note)
        except Exception:
            db.rollback()
            note.status = NoteStatus.FAILED
            db.commit()
            raise

        note.draft_text = text
        note.status = NoteStatus.DRAFT
        db.commit()
        logger.info("note_generated", note_id=note.id, characters=len(text))
        return text

    async def _generate(self, db: Session, note: Note) -> str:
        transcript = note.call.transcript if note.call else None
        if not transcript:
            raise GenerationError("No transcript available")

        user = db.get(User, note.user_id)
        rep_name = (user.name if user else None) or "Sales Rep"
        learned = bool(user and user.learning_complete and user.tone_preferences)

        system_prompt = SYSTEM_RULES + (voice_section(user) if user else "")
        user_message = build_user_message(note, transcript, rep_name)

        text = await self.llm.complete(
            system_prompt,
            user_message,
            model=self.model,
            max_tokens=500,
            temperature=0.6 if learned else 0.7,
        )

        if not MIN_NOTE_LENGTH <= len(text) <= MAX_NOTE_LENGTH:
            logger.info("note_length_retry", note_id=note.id, characters=len(text))
            if len(text) < MIN_NOTE_LENGTH:
                adjustment = f"ADD MORE DETAIL - aim for {DEFAULT_AVG_LENGTH} chars"
            else:
                adjustment = "BE MORE CONCISE - aim for 300 chars"
            text = await self.llm.complete(
                system_prompt
                + f"\n\nIMPORTANT: Previous attempt was {len(text)} characters. {adjustment}.",
                user_message,
                model=self.model,
                max_tokens=500,
                temperature=0.5,
            )

        if len(text) > MAX_NOTE_LENGTH:
            text = truncate_to_sentences(text)

        if not text:
            raise GenerationError("Model returned an empty note")
        return text

    async def run_task(self, db: Session, payload: Dict[str, Any]):
        note = db.get(Note, payload["note_id"])
        if note is None:
            raise LookupError(f"Note {payload['note_id']} not found")
        await self.generate(db, note)
