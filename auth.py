"""Registration and login flows.

An admin registration or login must present the admin enrollment code, and
the code is checked before the identity gateway or the profile store is
touched.  A login whose requested role differs from the stored profile is
refused and its session discarded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from access_control import AccessPolicy
from book_request import to_iso, utcnow
from errors import AuthenticationError
from identity import IdentityGateway, Session
from stores import ProfileStore
from user import Role, User
from validators import AccountFormValidator

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    session: Session
    user: User

    @property
    def home_route(self) -> str:
        return self.user.home_route


class AuthService:

    def __init__(self, identity: IdentityGateway, profiles: ProfileStore, policy: AccessPolicy,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.identity = identity
        self.profiles = profiles
        self.policy = policy
        self.clock = clock

    def _check_admin_code(self, role: str, admin_code: Optional[str]) -> None:
        if role == Role.ADMIN and not self.policy.verify_admin_code(admin_code):
            raise AuthenticationError("The admin code you entered is incorrect.")

    def register(self, name: str, email: str, password: str, role: str = Role.USER,
                 admin_code: Optional[str] = None) -> User:
        AccountFormValidator.validate_registration(name, email, password, role)
        self._check_admin_code(role, admin_code)

        uid = self.identity.register(email, password)
        user = User(id=uid, name=name, email=email, role=role, created_at=to_iso(self.clock()))
        try:
            self.profiles.create(user)
        except Exception:
            # Undo the credential so the email can register again
            logger.error(f"Profile write failed for {uid}; removing the credential")
            self.identity.delete(uid)
            raise
        logger.info(f"Registered {user.role} {user.id}")
        return user

    def login(self, email: str, password: str, role: str = Role.USER,
              admin_code: Optional[str] = None) -> LoginResult:
        AccountFormValidator.validate_login(email, password, role)
        self._check_admin_code(role, admin_code)

        session = self.identity.sign_in(email, password)
        user = self.profiles.get(session.uid)
        if user is None:
            self.identity.sign_out(session.token)
            raise AuthenticationError("User data not found")
        if user.role != role:
            self.identity.sign_out(session.token)
            raise AuthenticationError(f"You are not registered as a {role}.")
        logger.info(f"Login: {user.role} {user.id}")
        return LoginResult(session=session, user=user)

    def logout(self, token: Optional[str]) -> bool:
        if not token:
            return False
        return self.identity.sign_out(token)

    def current_actor(self, token: Optional[str]) -> Optional[User]:
        uid = self.identity.resolve(token)
        if uid is None:
            return None
        return self.profiles.get(uid)
