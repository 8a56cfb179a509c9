"""
Tests for mailing approved notes through Handwrite.io.
"""

import json
from types import SimpleNamespace

import httpx
import pytest

from ekoink.models import ApiUsage, Event, Note, NoteStatus
from ekoink.providers.handwrite import HandwriteClient, HandwriteError
from ekoink.services.delivery import NoteNotSendable, NoteSender, recipient_from_deal

APPROVED_TEXT = "Hi Sam, thanks for trusting us with the new roof. Jordan"
RECIPIENT = {
    "firstName": "Sam",
    "lastName": "Lee",
    "company": None,
    "street1": "12 Harbor Way",
    "street2": None,
    "city": "Portland",
    "state": "OR",
    "zip": "97201",
}


def make_deal(address):
    return SimpleNamespace(customer_first_name="Sam", customer_last_name="Lee", customer_address=address)


@pytest.fixture
def sender(mail, settings):
    return NoteSender(mail, settings)


@pytest.fixture
def approved_note(make_note):
    return make_note(final_text=APPROVED_TEXT, status=NoteStatus.APPROVED)


class TestRecipient:
    def test_stored_address_keys(self):
        recipient = recipient_from_deal(
            make_deal({"line1": "12 Harbor Way", "line2": "Unit 4", "city": "Portland", "state": "OR", "postal_code": "97201"})
        )
        assert recipient["street1"] == "12 Harbor Way"
        assert recipient["street2"] == "Unit 4"
        assert recipient["zip"] == "97201"

    def test_mail_service_keys(self):
        recipient = recipient_from_deal(
            make_deal({"street1": "12 Harbor Way", "city": "Portland", "state": "OR", "zip": "97201", "company": "Lee Bakery"})
        )
        assert recipient["street1"] == "12 Harbor Way"
        assert recipient["zip"] == "97201"
        assert recipient["company"] == "Lee Bakery"

    @pytest.mark.parametrize("address", [None, {}, {"line1": "12 Harbor Way", "city": "Portland", "state": "OR"}])
    def test_incomplete_address(self, address):
        with pytest.raises(NoteNotSendable, match="Customer address is incomplete"):
            recipient_from_deal(make_deal(address))


class TestNoteSender:
    @pytest.mark.asyncio
    async def test_api_send_is_billed(self, sender, db, account, user, approved_note):
        result = await sender.send(db, approved_note, user_id=user.id, via_api=True)

        assert result.order_id.startswith("TEST_")
        assert result.status == "processing"
        assert result.recorded is True

        db.expire_all()
        note = db.get(Note, approved_note.id)
        assert note.status == NoteStatus.SENT
        assert note.handwriteio_order_id == result.order_id
        assert note.sent_at is not None

        usage = db.query(ApiUsage).one()
        assert usage.cards_sent == 1
        assert usage.api_calls_count == 1
        assert usage.amount_owed_cents == 1000

        event = db.query(Event).filter(Event.event_type == "note.sent").one()
        assert event.payload["via_api"] is True
        assert event.account_id == account.id

    @pytest.mark.asyncio
    async def test_dashboard_send_is_not_billed(self, sender, db, user, approved_note):
        await sender.send(db, approved_note, user_id=user.id)
        assert db.query(ApiUsage).count() == 0

    @pytest.mark.asyncio
    async def test_falls_back_to_draft_text(self, sender, db, user, make_note, mail, monkeypatch):
        sent = []

        async def capture(message, recipient):
            sent.append(message)
            return {"order_id": "ord_1", "status": "processing"}

        monkeypatch.setattr(mail, "send_letter", capture)
        note = make_note(draft_text="Approved through the API as drafted.", status=NoteStatus.APPROVED)

        await sender.send(db, note, user_id=user.id)

        assert sent == ["Approved through the API as drafted."]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,order_id,message",
        [
            (NoteStatus.DRAFT, None, "Note must be approved before sending"),
            (NoteStatus.PENDING, None, "Note must be approved before sending"),
            (NoteStatus.APPROVED, "ord_existing", "Note has already been sent"),
        ],
    )
    async def test_rejects_unsendable_states(self, sender, db, user, make_note, status, order_id, message):
        note = make_note(final_text=APPROVED_TEXT, status=status)
        note.handwriteio_order_id = order_id
        db.commit()

        with pytest.raises(NoteNotSendable, match=message):
            await sender.send(db, note, user_id=user.id)

    @pytest.mark.asyncio
    async def test_rejects_overlong_message(self, sender, db, user, make_note):
        note = make_note(final_text="x" * 321, status=NoteStatus.APPROVED)

        with pytest.raises(NoteNotSendable, match=r"Message is too long \(321 characters\)"):
            await sender.send(db, note, user_id=user.id)

    @pytest.mark.asyncio
    async def test_mail_failure_leaves_note_approved(self, sender, db, user, make_note):
        note = make_note(
            final_text=APPROVED_TEXT,
            status=NoteStatus.APPROVED,
            address={"line1": "1 Main St", "city": "Portland", "state": "Oregon", "postal_code": "97201"},
        )

        with pytest.raises(HandwriteError, match="State must be 2-letter"):
            await sender.send(db, note, user_id=user.id, via_api=True)

        db.expire_all()
        assert db.get(Note, note.id).status == NoteStatus.APPROVED
        assert db.query(ApiUsage).count() == 0


class TestHandwriteClient:
    def _client(self, settings, handler):
        settings.handwriteio_test_mode = False
        return HandwriteClient(settings, transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_posts_letter(self, settings):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"order_id": "ord_42", "status": "queued"})

        result = await self._client(settings, handler).send_letter("Thanks Sam!", RECIPIENT)

        assert result["order_id"] == "ord_42"
        request = requests[0]
        assert str(request.url) == "https://api.handwrite.io/v1/send"
        assert request.headers["Authorization"] == "hw_test_key"
        body = json.loads(request.content)
        assert body["message"] == "Thanks Sam!"
        assert body["handwriting"] == "default"
        # Empty recipient fields are not sent
        assert body["recipients"] == [
            {"firstName": "Sam", "lastName": "Lee", "street1": "12 Harbor Way", "city": "Portland", "state": "OR", "zip": "97201"}
        ]

    @pytest.mark.asyncio
    async def test_error_response(self, settings):
        def handler(request):
            return httpx.Response(422, json={"message": "Invalid card id"})

        with pytest.raises(HandwriteError, match="Invalid card id") as exc_info:
            await self._client(settings, handler).send_letter("Thanks Sam!", RECIPIENT)
        assert "Invalid card id" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_network_failure(self, settings):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(HandwriteError, match="Handwrite.io request failed"):
            await self._client(settings, handler).send_letter("Thanks Sam!", RECIPIENT)

    @pytest.mark.asyncio
    async def test_requires_api_key(self, settings):
        settings.handwriteio_api_key = None

        with pytest.raises(HandwriteError, match="HANDWRITEIO_API_KEY"):
            await self._client(settings, lambda request: httpx.Response(200)).send_letter("Hi", RECIPIENT)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides,message",
        [({"state": "or"}, "State must be"), ({"zip": "9720"}, "Zip code must be 5 digits")],
    )
    async def test_validates_recipient(self, mail, overrides, message):
        with pytest.raises(HandwriteError, match=message):
            await mail.send_letter("Thanks Sam!", {**RECIPIENT, **overrides})
