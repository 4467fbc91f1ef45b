import pytest

from conftest import ADMIN_CODE
from database import read_connection
from errors import AuthenticationError, ValidationError
from user import Role


def _count(ctx, table):
    with read_connection(ctx.settings.db_file) as conn:
        return conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"]


def test_register_creates_profile_with_role(ctx, member):
    assert member.role == Role.USER
    assert member.created_at == "2024-03-01T09:00:00.000Z"
    stored = ctx.profiles.get(member.id)
    assert stored.name == "Grace Hopper"
    assert stored.email == "grace@example.com"


def test_register_validates_form(ctx):
    with pytest.raises(ValidationError) as exc:
        ctx.auth.register("G", "not-an-email", "123")
    assert set(exc.value.errors) == {"name", "email", "password"}
    assert _count(ctx, "identities") == 0


def test_duplicate_email_is_refused(ctx, member):
    with pytest.raises(AuthenticationError, match="already in use"):
        ctx.auth.register("Another Grace", "GRACE@example.com", "secret2")
    assert _count(ctx, "users") == 1


def test_admin_registration_with_wrong_code_creates_nothing(ctx):
    with pytest.raises(AuthenticationError, match="admin code you entered is incorrect"):
        ctx.auth.register("Ada", "ada@example.com", "secret1", role=Role.ADMIN, admin_code="guess")
    assert _count(ctx, "identities") == 0
    assert _count(ctx, "users") == 0


def test_admin_registration_with_code(ctx):
    user = ctx.auth.register("Ada", "ada@example.com", "secret1", role=Role.ADMIN, admin_code=ADMIN_CODE)
    assert user.is_admin


def test_profile_write_failure_removes_credential(ctx, monkeypatch):
    def boom(user):
        raise RuntimeError("profile store down")

    monkeypatch.setattr(ctx.profiles, "create", boom)
    with pytest.raises(RuntimeError):
        ctx.auth.register("Grace", "grace@example.com", "secret1")
    assert _count(ctx, "identities") == 0


def test_login_returns_session_and_home_route(ctx, member):
    result = ctx.auth.login("grace@example.com", "secret1")
    assert result.user.id == member.id
    assert result.home_route == "/user/dashboard"
    assert ctx.current_actor(result.session.token).id == member.id


def test_login_with_wrong_password(ctx, member):
    with pytest.raises(AuthenticationError, match="Invalid email or password"):
        ctx.auth.login("grace@example.com", "wrong-one")


def test_login_with_mismatched_role_discards_session(ctx, member):
    with pytest.raises(AuthenticationError, match="not registered as a admin"):
        ctx.auth.login("grace@example.com", "secret1", role=Role.ADMIN, admin_code=ADMIN_CODE)
    assert _count(ctx, "sessions") == 0


def test_admin_login_needs_code(ctx, admin):
    with pytest.raises(AuthenticationError, match="admin code"):
        ctx.auth.login("ada@example.com", "secret1", role=Role.ADMIN)
    result = ctx.auth.login("ada@example.com", "secret1", role=Role.ADMIN, admin_code=ADMIN_CODE)
    assert result.home_route == "/admin/dashboard"


def test_login_without_profile(ctx):
    ctx.identity.register("ghost@example.com", "secret1")
    with pytest.raises(AuthenticationError, match="User data not found"):
        ctx.auth.login("ghost@example.com", "secret1")
    assert _count(ctx, "sessions") == 0


def test_logout_ends_session(ctx, member):
    token = ctx.auth.login("grace@example.com", "secret1").session.token
    assert ctx.auth.logout(token)
    assert ctx.current_actor(token) is None
    assert not ctx.auth.logout(token)
    assert not ctx.auth.logout(None)


def test_session_change_listeners(ctx, member):
    seen = []
    unsubscribe = ctx.identity.on_session_change(seen.append)
    token = ctx.auth.login("grace@example.com", "secret1").session.token
    ctx.auth.logout(token)
    unsubscribe()
    ctx.auth.login("grace@example.com", "secret1")
    assert seen == [member.id, None]
