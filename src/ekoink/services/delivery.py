"""Sending approved notes as handwritten cards."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import utcnow
from ..models import Event, Note, NoteStatus
from ..providers.handwrite import MAX_MESSAGE_LENGTH, HandwriteClient
from ..utils.logging import get_logger
from .usage import UsageTracker

logger = get_logger(__name__)


class NoteNotSendable(Exception):
    """The note is not in a state that can be mailed."""


@dataclass
class SendResult:
    order_id: str
    status: Optional[str]
    tracking_number: Optional[str]
    estimated_delivery: Optional[str]
    # False when the card went out but the note row could not be updated
    recorded: bool = True


def recipient_from_deal(deal) -> Dict[str, Any]:
    """Handwrite.io recipient from a deal; accepts both address key styles."""
    address = deal.customer_address or {}
    line1 = address.get("line1") or address.get("street1")
    postal_code = address.get("postal_code") or address.get("zip")

    if not line1 or not address.get("city") or not address.get("state") or not postal_code:
        raise NoteNotSendable("Customer address is incomplete")

    return {
        "firstName": deal.customer_first_name,
        "lastName": deal.customer_last_name,
        "company": address.get("company"),
        "street1": line1,
        "street2": address.get("line2") or address.get("street2"),
        "city": address["city"],
        "state": address["state"],
        "zip": postal_code,
    }


class NoteSender:
    def __init__(self, mail: HandwriteClient, settings: Settings):
        self.mail = mail
        self.settings = settings

    async def send(
        self,
        db: Session,
        note: Note,
        user_id: Optional[str],
        via_api: bool = False,
    ) -> SendResult:
        """Mail an approved note.

        API sends are the billable event and add one card to the account's
        monthly usage. Raises NoteNotSendable for caller errors and
        HandwriteError when the mail service fails.
        """
        if note.status != NoteStatus.APPROVED:
            raise NoteNotSendable("Note must be approved before sending")
        if note.handwriteio_order_id:
            raise NoteNotSendable("Note has already been sent")

        # API approvals approve the draft as-is and leave final_text empty
        message = note.final_text or note.draft_text
        if not message:
            raise NoteNotSendable("Note has no text to send")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise NoteNotSendable(
                f"Message is too long ({len(message)} characters). "
                f"Maximum is {MAX_MESSAGE_LENGTH} characters."
            )

        deal = note.deal
        recipient = recipient_from_deal(deal)

        result = await self.mail.send_letter(message, recipient)
        send_result = SendResult(
            order_id=result.get("order_id"),
            status=result.get("status"),
            tracking_number=result.get("tracking_number"),
            estimated_delivery=result.get("estimated_delivery"),
        )

        if via_api:
            UsageTracker(db, self.settings).track_api_usage(
                deal.account_id, cards_sent=1
            )

        try:
            note.status = NoteStatus.SENT
            note.handwriteio_order_id = send_result.order_id
            note.handwriteio_status = send_result.status
            note.tracking_number = send_result.tracking_number
            note.estimated_delivery = send_result.estimated_delivery
            note.sent_at = utcnow()
            db.add(
                Event(
                    account_id=deal.account_id,
                    user_id=user_id,
                    event_type="note.sent",
                    resource_type="note",
                    resource_id=note.id,
                    payload={
                        "order_id": send_result.order_id,
                        "status": send_result.status,
                        "tracking_number": send_result.tracking_number,
                        "via_api": via_api,
                    },
                )
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            # The card is already in the mail; leave a trail for manual resolution
            logger.error(
                "note_sent_not_recorded",
                note_id=note.id,
                order_id=send_result.order_id,
                error=str(e),
            )
            send_result.recorded = False

        logger.info("note_sent", note_id=note.id, order_id=send_result.order_id, via_api=via_api)
        return send_result

    async def run_task(self, db: Session, payload: Dict[str, Any]):
        note = db.get(Note, payload["note_id"])
        if note is None:
            raise LookupError(f"Note {payload['note_id']} not found")
        await self.send(db, note, user_id=payload.get("user_id"))
