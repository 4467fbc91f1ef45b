"""Lending workflow: the status transitions of books and borrow requests.

========================  ===================  ================  ==================
Action                    Request must be      Request becomes   Book becomes
========================  ===================  ================  ==================
create_request            (book available)     pending           unavailable
approve                   pending              approved          unavailable
reject                    pending              rejected          available
mark_returned             approved             returned          available
soft_delete_book          -                    -                 deleted
toggle_availability       -                    -                 available <-> unavailable
========================  ===================  ================  ==================

Every action runs its reads and writes in a single store transaction, and
each write is conditional on the status it expects, so concurrent sessions
acting on the same book or request cannot both succeed.  Role checks are made
here as well as at the HTTP layer.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from access_control import AccessPolicy
from book import Book, BookStatus
from book_request import BookRequest, RequestStatus, due_date_from, to_iso, utcnow
from database import read_connection, transaction
from errors import (
    AuthenticationError,
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from library import Library
from stores import ProfileStore, RequestStore, group_by_status
from user import Role, User

logger = logging.getLogger(__name__)

DEFAULT_LOAN_PERIOD_DAYS = 15

# A book a request points at goes back to 'available' only from these states;
# a soft-deleted book stays deleted.
_RELEASABLE = (BookStatus.AVAILABLE, BookStatus.UNAVAILABLE)


class LendingWorkflow:

    def __init__(self, library: Library, requests: RequestStore, profiles: ProfileStore,
                 policy: AccessPolicy, loan_period_days: int = DEFAULT_LOAN_PERIOD_DAYS,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.library = library
        self.requests = requests
        self.profiles = profiles
        self.policy = policy
        self.loan_period_days = loan_period_days
        self.clock = clock

    @property
    def db_file(self) -> str:
        return self.library.db_file

    # ------------------------- Member actions ------------------------- #
    def create_request(self, actor: Optional[User], book_id: str) -> BookRequest:
        """Open a pending request for an available book and take the book off the shelf."""
        self.policy.require_role(actor, Role.USER)
        now = self.clock()

        with transaction(self.db_file) as conn:
            profile = self.profiles.get(actor.id, conn=conn)
            if profile is None:
                raise AuthenticationError("User data not found")
            book = self.library.get_book(book_id, conn=conn)
            if not self.library.set_status(conn, book.id, BookStatus.UNAVAILABLE,
                                           only_from=(BookStatus.AVAILABLE,)):
                raise InvalidTransitionError(f"'{book.title}' is not available for request.")
            request = self.requests.add(conn, BookRequest(
                book_id=book.id,
                book_title=book.title,
                user_id=profile.id,
                user_name=profile.name,
                request_date=to_iso(now),
                due_date=to_iso(due_date_from(now, self.loan_period_days)),
                status=RequestStatus.PENDING,
            ))

        logger.info(f"Request {request.id} created by {profile.id} for book {book.id}")
        return request

    # ------------------------- Admin actions ------------------------- #
    def approve(self, actor: Optional[User], request_id: str) -> BookRequest:
        """pending -> approved; the due date restarts from now."""
        self.policy.require_role(actor, Role.ADMIN)
        due_date = to_iso(due_date_from(self.clock(), self.loan_period_days))

        with transaction(self.db_file) as conn:
            request = self._transition(conn, request_id, RequestStatus.PENDING, RequestStatus.APPROVED,
                                       due_date=due_date)
            self.library.set_status(conn, request.book_id, BookStatus.UNAVAILABLE, only_from=_RELEASABLE)

        logger.info(f"Request {request_id} approved by {actor.id}, due {due_date}")
        return request

    def reject(self, actor: Optional[User], request_id: str) -> BookRequest:
        """pending -> rejected; the book goes back on the shelf."""
        self.policy.require_role(actor, Role.ADMIN)

        with transaction(self.db_file) as conn:
            request = self._transition(conn, request_id, RequestStatus.PENDING, RequestStatus.REJECTED)
            self.library.set_status(conn, request.book_id, BookStatus.AVAILABLE, only_from=_RELEASABLE)

        logger.info(f"Request {request_id} rejected by {actor.id}")
        return request

    def mark_returned(self, actor: Optional[User], request_id: str) -> BookRequest:
        """approved -> returned; the book goes back on the shelf."""
        self.policy.require_role(actor, Role.ADMIN)

        with transaction(self.db_file) as conn:
            request = self._transition(conn, request_id, RequestStatus.APPROVED, RequestStatus.RETURNED)
            self.library.set_status(conn, request.book_id, BookStatus.AVAILABLE, only_from=_RELEASABLE)

        logger.info(f"Request {request_id} marked returned by {actor.id}")
        return request

    def soft_delete_book(self, actor: Optional[User], book_id: str) -> Book:
        """Mark a book deleted. Deleting an already deleted book changes nothing."""
        self.policy.require_role(actor, Role.ADMIN)

        with transaction(self.db_file) as conn:
            book = self.library.find_book(book_id, include_deleted=True, conn=conn)
            if book is None:
                raise NotFoundError("The requested book could not be found.", redirect="/admin/books")
            if not book.is_deleted:
                self.library.set_status(conn, book.id, BookStatus.DELETED)
                book.status = BookStatus.DELETED
                logger.info(f"Book {book_id} soft-deleted by {actor.id}")
        return book

    def toggle_availability(self, actor: Optional[User], book_id: str) -> Book:
        """Admin override: flip available <-> unavailable regardless of open requests."""
        self.policy.require_role(actor, Role.ADMIN)

        with transaction(self.db_file) as conn:
            book = self.library.get_book(book_id, conn=conn)
            new_status = BookStatus.UNAVAILABLE if book.is_available else BookStatus.AVAILABLE
            self.library.set_status(conn, book.id, new_status, only_from=(book.status,))
            book.status = new_status

        logger.info(f"Book {book_id} is now {new_status} (set by {actor.id})")
        return book

    def _transition(self, conn, request_id: str, from_status: str, to_status: str,
                    due_date: Optional[str] = None) -> BookRequest:
        request = self.requests.get(request_id, conn=conn)
        if request.status != from_status or not self.requests.update_status(
            conn, request_id, to_status, only_from=from_status, due_date=due_date
        ):
            logger.warning(
                f"Refused {from_status} -> {to_status} on request {request_id}: it is {request.status}"
            )
            raise InvalidTransitionError(
                f"Only {from_status} requests can become {to_status}; this one is {request.status}."
            )
        request.status = to_status
        if due_date is not None:
            request.due_date = due_date
        return request

    # ------------------------- Views ------------------------- #
    def get_request(self, actor: Optional[User], request_id: str) -> BookRequest:
        self.policy.require_authenticated(actor)
        request = self.requests.get(request_id)
        if not self.policy.can_view_request(actor, request):
            raise AuthorizationError("You can only view your own requests.")
        return request

    def list_user_requests(self, actor: Optional[User]) -> Dict[str, List[BookRequest]]:
        self.policy.require_authenticated(actor)
        return group_by_status(self.requests.list_by_user(actor.id))

    def list_all_requests(self, actor: Optional[User], status: Optional[str] = None) -> Dict[str, List[BookRequest]]:
        self.policy.require_role(actor, Role.ADMIN)
        if status is not None and status not in RequestStatus.ALL:
            raise ValidationError({"status": f"Unknown request status: {status}"})
        return group_by_status(self.requests.list_all(status))

    def statistics(self, actor: Optional[User]) -> Dict[str, Any]:
        self.policy.require_role(actor, Role.ADMIN)
        now = self.clock()
        stats = self.library.get_statistics()
        stats["requests"] = self.requests.count_by_status()
        stats["overdue_requests"] = sum(
            1 for r in self.requests.list_all(RequestStatus.APPROVED) if r.is_overdue(now)
        )
        return stats

    def find_inconsistencies(self) -> List[Book]:
        """Books marked available that still have an open request."""
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                "SELECT DISTINCT b.id FROM books b JOIN book_requests r ON r.book_id = b.id "
                "WHERE b.status = ? AND r.status IN (?, ?)",
                (BookStatus.AVAILABLE, *RequestStatus.OPEN),
            ).fetchall()
        return [self.library.get_book(row["id"]) for row in rows]
