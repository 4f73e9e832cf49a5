"""Tests for account registration, login and search."""
import pytest

from timechat.core.exceptions import AuthenticationError, ConflictError, ValidationError
from timechat.core.security import decode_access_token
from timechat.services.user_service import (
    authenticate_user,
    get_user_by_id,
    logout_user,
    register_user,
    search_users,
    update_profile,
)

pytestmark = pytest.mark.anyio


class TestRegistration:
    async def test_register_then_login(self, db):
        user, token = await register_user(db, " Ada ", "Ada@Example.com", "secret1")

        assert user.name == "Ada"
        assert user.email == "ada@example.com"
        assert user.password_hash != "secret1"
        assert decode_access_token(token) == user.id

        logged_in, _ = await authenticate_user(db, "ada@example.com", "secret1")
        assert logged_in.id == user.id
        assert logged_in.is_online

    async def test_duplicate_email(self, db):
        await register_user(db, "Ada", "ada@example.com", "secret1")
        with pytest.raises(ConflictError):
            await register_user(db, "Other Ada", "ADA@example.com", "secret2")

    @pytest.mark.parametrize(
        "name, email, password",
        [
            ("", "a@example.com", "secret1"),
            ("x" * 51, "a@example.com", "secret1"),
            ("Ada", "", "secret1"),
            ("Ada", "a@example.com", "short"),
        ],
    )
    async def test_invalid_input(self, db, name, email, password):
        with pytest.raises(ValidationError):
            await register_user(db, name, email, password)

    async def test_wrong_password_and_unknown_email(self, db):
        await register_user(db, "Ada", "ada@example.com", "secret1")
        with pytest.raises(AuthenticationError):
            await authenticate_user(db, "ada@example.com", "wrong-one")
        with pytest.raises(AuthenticationError):
            await authenticate_user(db, "nobody@example.com", "secret1")


class TestProfile:
    async def test_logout_marks_offline(self, db):
        user, _ = await register_user(db, "Ada", "ada@example.com", "secret1")
        await authenticate_user(db, "ada@example.com", "secret1")

        await logout_user(db, user)

        assert (await get_user_by_id(db, user.id)).is_online is False

    async def test_update_profile(self, db, make_user):
        user = await make_user()
        user = await update_profile(db, user, name="  Grace ", pic="https://example.com/g.png")
        assert user.name == "Grace"
        assert user.pic == "https://example.com/g.png"

        with pytest.raises(ValidationError):
            await update_profile(db, user, name=" ")


class TestSearch:
    async def test_matches_name_or_email_and_skips_self(self, db, make_user):
        me = await make_user(name="Ada Lovelace", email="ada@example.com")
        grace = await make_user(name="Grace Hopper", email="grace@navy.example")
        await make_user(name="Alan Turing", email="alan@example.com")

        assert [u.id for u in await search_users(db, me.id, "HOPPER")] == [grace.id]
        assert [u.id for u in await search_users(db, me.id, "navy")] == [grace.id]
        assert me.id not in [u.id for u in await search_users(db, me.id, "example")]
        assert await search_users(db, me.id, "   ") == []
