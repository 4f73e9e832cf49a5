"""Tests for invite token generation."""
from datetime import timedelta

import pytest

from timechat.config import settings
from timechat.core.exceptions import CodeSpaceExhaustedError
from timechat.models import InviteCode
from timechat.services import code_generator
from timechat.services.chat_service import create_room
from timechat.services.code_generator import generate_code, generate_unique_code, is_code_unique
from timechat.utils.time_utils import utcnow

pytestmark = pytest.mark.anyio


def test_generate_code_uses_alphabet_and_default_length():
    for _ in range(200):
        code = generate_code()
        assert len(code) == 6
        assert set(code) <= set(settings.invite_code_alphabet)


def test_generate_code_respects_requested_length():
    assert len(generate_code(10)) == 10


async def _store_code(db, chat_id, creator_id, code, is_active=True):
    invite_code = InviteCode(
        code=code,
        chat_id=chat_id,
        created_by=creator_id,
        expires_at=utcnow() + timedelta(hours=1),
        is_active=is_active,
    )
    db.add(invite_code)
    await db.commit()
    return invite_code


class TestUniqueness:
    async def test_only_active_codes_block_a_token(self, db, make_user):
        user = await make_user()
        chat = await create_room(db, user.id, "Team")
        await _store_code(db, chat.id, user.id, "AAAAAA", is_active=False)
        assert await is_code_unique(db, "AAAAAA")

        await _store_code(db, chat.id, user.id, "BBBBBB")
        assert not await is_code_unique(db, "BBBBBB")

    async def test_retries_past_a_collision(self, db, make_user, monkeypatch):
        user = await make_user()
        chat = await create_room(db, user.id, "Team")
        await _store_code(db, chat.id, user.id, "TAKEN1")

        draws = iter(["TAKEN1", "TAKEN1", "FRESH1"])
        monkeypatch.setattr(code_generator, "generate_code", lambda length=None: next(draws))
        assert await generate_unique_code(db) == "FRESH1"

    async def test_gives_up_after_retry_cap(self, db, make_user, monkeypatch):
        user = await make_user()
        chat = await create_room(db, user.id, "Team")
        await _store_code(db, chat.id, user.id, "TAKEN1")

        calls = []

        def always_taken(length=None):
            calls.append(1)
            return "TAKEN1"

        monkeypatch.setattr(code_generator, "generate_code", always_taken)
        with pytest.raises(CodeSpaceExhaustedError):
            await generate_unique_code(db)
        assert len(calls) == settings.invite_code_max_attempts
