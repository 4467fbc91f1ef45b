"""Access control policy.

Two independent checks live here:

* the admin enrollment gate, a shared-secret comparison against
  ``ADMIN_SECRET_CODE``;
* role checks, used both to decide where a route sends the caller and, inside
  the lending workflow, to refuse mutations from the wrong actor.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from book_request import BookRequest
from errors import AuthenticationError, AuthorizationError
from user import Role, User

logger = logging.getLogger(__name__)

LOGIN_ROUTE = "/login"
UNAUTHORIZED_ROUTE = "/unauthorized"


@dataclass
class RouteDecision:
    allowed: bool
    redirect: Optional[str] = None

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "redirect": self.redirect}


class AccessPolicy:

    def __init__(self, admin_secret_code: Optional[str]) -> None:
        self._admin_secret = admin_secret_code or ""

    def verify_admin_code(self, candidate: Optional[str]) -> bool:
        """Compare a presented code with the configured secret.

        No secret configured means no code is ever valid.
        """
        if not self._admin_secret or candidate is None:
            logger.warning("Admin code check failed: no code presented or no secret configured")
            return False
        valid = hmac.compare_digest(candidate.encode("utf-8"), self._admin_secret.encode("utf-8"))
        if not valid:
            logger.warning("Admin code check failed: incorrect code")
        return valid

    @staticmethod
    def guard_route(actor: Optional[User], required_role: str) -> RouteDecision:
        """Where a route meant for ``required_role`` sends this actor."""
        if actor is None:
            return RouteDecision(allowed=False, redirect=LOGIN_ROUTE)
        if actor.role != required_role:
            return RouteDecision(allowed=False, redirect=UNAUTHORIZED_ROUTE)
        return RouteDecision(allowed=True)

    @staticmethod
    def require_role(actor: Optional[User], required_role: str) -> User:
        """Raise unless ``actor`` is signed in with ``required_role``."""
        if actor is None:
            raise AuthenticationError("Please log in to continue.")
        if actor.role != required_role:
            raise AuthorizationError(f"This action requires the {required_role} role.")
        return actor

    @staticmethod
    def require_authenticated(actor: Optional[User]) -> User:
        if actor is None:
            raise AuthenticationError("Please log in to continue.")
        return actor

    @staticmethod
    def can_view_request(actor: Optional[User], request: BookRequest) -> bool:
        if actor is None:
            return False
        return actor.role == Role.ADMIN or actor.id == request.user_id
