import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from besty.core.errors import InvalidToken, Unauthenticated, ValidationError
from besty.services.auth_service import AuthService
from besty.services.mailer import LoggingMailer
from besty.services.session_store import MemorySessionStore


class BrokenMailer(LoggingMailer):
    async def send_magic_link(self, email, token):
        raise ConnectionError("smtp unreachable")


class Clock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def sessions():
    return MemorySessionStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def auth(storage, sessions, mailer, clock):
    return AuthService(storage, sessions, mailer, clock=clock)


async def test_login_twice_reuses_the_user(auth, storage, mailer):
    first = await auth.login("a@b.com")
    second = await auth.login("A@b.com ")

    assert first.user.id == second.user.id
    assert len(storage._users) == 1
    assert first.token != second.token
    assert len(first.token) == 64
    assert [email for email, _ in mailer.sent] == ["a@b.com", "a@b.com"]


async def test_concurrent_first_logins_share_one_user(sql_storage, sessions, mailer, clock):
    auth = AuthService(sql_storage, sessions, mailer, clock=clock)

    first, second = await asyncio.gather(auth.login("a@b.com"), auth.login("a@b.com"))

    assert first.user.id == second.user.id
    assert (await sql_storage.get_user_by_email("a@b.com")).id == first.user.id
    assert len(mailer.sent) == 2


async def test_login_waits_for_verification_by_default(auth):
    outcome = await auth.login("a@b.com")
    assert outcome.session_id is None


async def test_login_without_verification_starts_a_session(storage, sessions, mailer):
    auth = AuthService(storage, sessions, mailer, require_token_verification=False)
    outcome = await auth.login("a@b.com")

    assert outcome.session_id is not None
    assert (await auth.current_user(outcome.session_id)).id == outcome.user.id


@pytest.mark.parametrize("email", [None, "", "not-an-email", "a@", "@b.com"])
async def test_login_rejects_invalid_email(auth, email):
    with pytest.raises(ValidationError):
        await auth.login(email)


async def test_mailer_failure_does_not_fail_login(storage, sessions):
    auth = AuthService(storage, sessions, BrokenMailer("http://localhost"))
    outcome = await auth.login("a@b.com")
    assert outcome.user.email == "a@b.com"


async def test_verify_succeeds_at_most_once(auth):
    login = await auth.login("a@b.com")

    verified = await auth.verify(login.token)
    assert verified.user.email_verified is True
    assert (await auth.current_user(verified.session_id)).id == login.user.id

    with pytest.raises(InvalidToken):
        await auth.verify(login.token)


async def test_verify_rejects_expired_token(auth, clock):
    login = await auth.login("a@b.com")
    clock.now += timedelta(minutes=31)
    with pytest.raises(InvalidToken):
        await auth.verify(login.token)


async def test_verify_rejects_unknown_token(auth):
    with pytest.raises(InvalidToken):
        await auth.verify("0" * 64)
    with pytest.raises(ValidationError):
        await auth.verify("")


async def test_current_user_requires_a_live_session(auth):
    with pytest.raises(Unauthenticated):
        await auth.current_user(None)
    with pytest.raises(Unauthenticated):
        await auth.current_user("made-up")


async def test_logout_destroys_the_session(auth):
    login = await auth.login("a@b.com")
    verified = await auth.verify(login.token)

    await auth.logout(verified.session_id)
    await auth.logout(verified.session_id)

    with pytest.raises(Unauthenticated):
        await auth.current_user(verified.session_id)


async def test_session_for_deleted_user_is_discarded(auth, storage, sessions):
    session_id = await sessions.create(12345)
    with pytest.raises(Unauthenticated):
        await auth.current_user(session_id)
    assert await sessions.get(session_id) is None
