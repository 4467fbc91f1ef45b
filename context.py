"""Service context built once at startup and handed to the HTTP layer and the CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Union

from access_control import AccessPolicy
from auth import AuthService
from book_request import utcnow
from config import Settings
from database import initialize_database
from errors import ConfigurationError
from identity import IdentityGateway
from image_upload import ImageUploadService
from lending import LendingWorkflow
from library import Library
from stores import ProfileStore, RequestStore
from user import User

logger = logging.getLogger(__name__)


@dataclass
class NotReady:
    """Required settings are missing; nothing data-dependent can run."""

    missing: List[str] = field(default_factory=list)
    ready: bool = False

    def require_ready(self) -> "AppContext":
        raise ConfigurationError(self.missing)


@dataclass
class AppContext:
    settings: Settings
    library: Library
    profiles: ProfileStore
    requests: RequestStore
    identity: IdentityGateway
    policy: AccessPolicy
    workflow: LendingWorkflow
    auth: AuthService
    uploads: ImageUploadService
    ready: bool = True

    def require_ready(self) -> "AppContext":
        return self

    def current_actor(self, token: Optional[str]) -> Optional[User]:
        return self.auth.current_actor(token)


Context = Union[AppContext, NotReady]


def build_context(settings: Settings, clock: Callable[[], datetime] = utcnow,
                  uploads: Optional[ImageUploadService] = None) -> Context:
    missing = settings.missing_settings()
    if missing:
        logger.warning(f"Portal not configured, missing: {', '.join(missing)}")
        return NotReady(missing=missing)

    db_file = settings.db_file
    initialize_database(db_file)

    policy = AccessPolicy(settings.admin_secret_code)
    library = Library(db_file, clock=clock)
    profiles = ProfileStore(db_file)
    requests = RequestStore(db_file)
    identity = IdentityGateway(db_file, settings.secret_key, iterations=settings.password_hash_iterations)
    return AppContext(
        settings=settings,
        library=library,
        profiles=profiles,
        requests=requests,
        identity=identity,
        policy=policy,
        workflow=LendingWorkflow(library, requests, profiles, policy,
                                 loan_period_days=settings.loan_period_days, clock=clock),
        auth=AuthService(identity, profiles, policy, clock=clock),
        uploads=uploads or ImageUploadService(settings),
    )
