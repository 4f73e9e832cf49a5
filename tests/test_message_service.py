"""Tests for sending, listing, read receipts and history export."""
from datetime import timedelta

import pytest

from timechat.core.exceptions import ExpiredError, ForbiddenError, NotFoundError, ValidationError
from timechat.schemas.message import AttachmentMessageInput, MessageType, TextMessageInput
from timechat.services.chat_service import create_room, get_chat
from timechat.services.message_service import (
    export_history,
    list_messages,
    mark_read,
    post_system_message,
    send_message,
)
from timechat.utils.time_utils import utcnow

pytestmark = pytest.mark.anyio


def _attachment(mime_type, file_name="clip.bin", caption=None):
    return AttachmentMessageInput(
        content=caption,
        blob_ref=f"/uploads/abc123-{file_name}",
        mime_type=mime_type,
        file_name=file_name,
        size=2048,
    )


class TestSendMessage:
    async def test_text_message_becomes_latest(self, db, make_user):
        user = await make_user()
        chat = await create_room(db, user.id, "Team")

        message = await send_message(db, chat.id, user.id, TextMessageInput(content="  hello  "))

        assert message.content == "hello"
        assert message.message_type == MessageType.TEXT
        assert message.reader_ids == [user.id]
        assert not message.has_attachment
        assert (await get_chat(db, chat.id)).latest_message_id == message.id

    async def test_blank_text_is_rejected(self, db, make_user):
        user = await make_user()
        chat = await create_room(db, user.id, "Team")
        with pytest.raises(ValidationError):
            await send_message(db, chat.id, user.id, TextMessageInput(content="   "))

    @pytest.mark.parametrize(
        "mime_type, kind",
        [
            ("image/png", MessageType.IMAGE),
            ("video/mp4", MessageType.VIDEO),
            ("audio/webm", MessageType.AUDIO),
            ("application/pdf", MessageType.FILE),
        ],
    )
    async def test_attachment_kind_follows_mime_type(self, db, make_user, mime_type, kind):
        user = await make_user()
        chat = await create_room(db, user.id, "Team")

        message = await send_message(db, chat.id, user.id, _attachment(mime_type, "report.pdf"))

        assert message.message_type == kind
        assert message.content == "📎 report.pdf"
        assert message.has_attachment
        assert message.file_size == 2048

    async def test_attachment_caption_wins(self, db, make_user):
        user = await make_user()
        chat = await create_room(db, user.id, "Team")
        message = await send_message(db, chat.id, user.id, _attachment("image/jpeg", caption="look"))
        assert message.content == "look"

    async def test_non_member_is_forbidden(self, db, make_users):
        u1, u2 = await make_users(2)
        chat = await create_room(db, u1.id, "Team")
        with pytest.raises(ForbiddenError):
            await send_message(db, chat.id, u2.id, TextMessageInput(content="hi"))

    async def test_unknown_room(self, db, make_user):
        user = await make_user()
        with pytest.raises(NotFoundError):
            await send_message(db, "missing", user.id, TextMessageInput(content="hi"))

    async def test_expired_room(self, db, make_user):
        user = await make_user()
        chat = await create_room(db, user.id, "Old", ttl=timedelta(hours=1))
        with pytest.raises(ExpiredError):
            await send_message(
                db, chat.id, user.id, TextMessageInput(content="hi"), now=utcnow() + timedelta(hours=2)
            )

    async def test_system_message(self, db, make_user):
        user = await make_user()
        chat = await create_room(db, user.id, "Team")
        notice = await post_system_message(db, chat.id, user.id, "User 1 joined the chat")
        assert notice.message_type == MessageType.SYSTEM
        assert (await get_chat(db, chat.id)).latest_message_id == notice.id


class TestReading:
    async def test_list_is_oldest_first_and_member_only(self, db, make_users):
        u1, u2 = await make_users(2)
        chat = await create_room(db, u1.id, "Team")
        start = utcnow()
        for i in range(3):
            await send_message(db, chat.id, u1.id, TextMessageInput(content=f"m{i}"), now=start + timedelta(seconds=i))

        messages = await list_messages(db, chat.id, u1.id)
        assert [m.content for m in messages] == ["m0", "m1", "m2"]

        with pytest.raises(ForbiddenError):
            await list_messages(db, chat.id, u2.id)

    async def test_mark_read_counts_only_new_reads(self, db, make_users):
        u1, u2 = await make_users(2)
        chat = await create_room(db, u1.id, "Team", [u2.id])
        await send_message(db, chat.id, u1.id, TextMessageInput(content="one"))
        await send_message(db, chat.id, u2.id, TextMessageInput(content="two"))

        assert await mark_read(db, chat.id, u2.id) == 1
        assert await mark_read(db, chat.id, u2.id) == 0
        assert await mark_read(db, chat.id, u1.id) == 1

    async def test_export_history(self, db, make_users):
        u1, u2 = await make_users(2)
        chat = await create_room(db, u1.id, "Team", [u2.id])
        await send_message(db, chat.id, u1.id, TextMessageInput(content="hi"))
        await send_message(db, chat.id, u2.id, _attachment("image/png", "cat.png"))

        export = await export_history(db, chat.id, u2.id)

        assert export["chat_name"] == "Team"
        assert export["exported_by"] == u2.name
        assert export["participants"] == [u1.name, u2.name]
        assert export["message_count"] == 2
        first, second = export["messages"]
        assert (first["sender"], first["content"], first["has_attachment"]) == (u1.name, "hi", False)
        assert second["attachment_name"] == "cat.png"
        assert second["message_type"] == "image"
