import pytest

from access_control import LOGIN_ROUTE, UNAUTHORIZED_ROUTE, AccessPolicy
from book_request import BookRequest
from errors import AuthenticationError, AuthorizationError
from user import Role, User

member = User("u1", "Mary", "mary@example.com", Role.USER)
other = User("u2", "Olga", "olga@example.com", Role.USER)
admin = User("a1", "Ada", "ada@example.com", Role.ADMIN)


def test_verify_admin_code():
    policy = AccessPolicy("s3cret")
    assert policy.verify_admin_code("s3cret")
    assert not policy.verify_admin_code("S3CRET")
    assert not policy.verify_admin_code("")
    assert not policy.verify_admin_code(None)


@pytest.mark.parametrize("secret", [None, ""])
def test_no_configured_secret_rejects_everything(secret):
    policy = AccessPolicy(secret)
    assert not policy.verify_admin_code("")
    assert not policy.verify_admin_code("anything")


@pytest.mark.parametrize(
    "actor, role, allowed, redirect",
    [
        (None, Role.USER, False, LOGIN_ROUTE),
        (None, Role.ADMIN, False, LOGIN_ROUTE),
        (member, Role.ADMIN, False, UNAUTHORIZED_ROUTE),
        (admin, Role.USER, False, UNAUTHORIZED_ROUTE),
        (member, Role.USER, True, None),
        (admin, Role.ADMIN, True, None),
    ],
)
def test_guard_route(actor, role, allowed, redirect):
    decision = AccessPolicy.guard_route(actor, role)
    assert decision.allowed is allowed
    assert decision.redirect == redirect


def test_require_role():
    assert AccessPolicy.require_role(admin, Role.ADMIN) is admin
    with pytest.raises(AuthenticationError) as exc:
        AccessPolicy.require_role(None, Role.ADMIN)
    assert exc.value.redirect == LOGIN_ROUTE
    with pytest.raises(AuthorizationError) as exc:
        AccessPolicy.require_role(member, Role.ADMIN)
    assert exc.value.redirect == UNAUTHORIZED_ROUTE


def test_can_view_request():
    request = BookRequest("b1", "T", member.id, member.name, "d", "d", id="r1")
    assert AccessPolicy.can_view_request(member, request)
    assert AccessPolicy.can_view_request(admin, request)
    assert not AccessPolicy.can_view_request(other, request)
    assert not AccessPolicy.can_view_request(None, request)
