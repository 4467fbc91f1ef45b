from __future__ import annotations

from datetime import datetime, timedelta, timezone


class RequestStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"

    ALL = (PENDING, APPROVED, REJECTED, RETURNED)
    OPEN = (PENDING, APPROVED)
    TERMINAL = (REJECTED, RETURNED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """UTC timestamp with milliseconds and a trailing Z, as stored on every record."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def due_date_from(moment: datetime, loan_period_days: int = 15) -> datetime:
    return moment + timedelta(days=loan_period_days)


class BookRequest:
    """A member's request to borrow one book, with the book title and user name copied in."""

    def __init__(self, book_id: str, book_title: str, user_id: str, user_name: str,
                 request_date: str, due_date: str, status: str = RequestStatus.PENDING,
                 id: str | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.book_title = book_title
        self.user_id = user_id
        self.user_name = user_name
        self.request_date = request_date
        self.due_date = due_date
        self.status = status

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.book_title} for {self.user_name} ({self.status})"

    @property
    def is_open(self) -> bool:
        return self.status in RequestStatus.OPEN

    @property
    def is_terminal(self) -> bool:
        return self.status in RequestStatus.TERMINAL

    def is_overdue(self, now: datetime | None = None) -> bool:
        """True when an approved loan is past its due date."""
        if self.status != RequestStatus.APPROVED or not self.due_date:
            return False
        return parse_iso(self.due_date) < (now or utcnow())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bookId": self.book_id,
            "bookTitle": self.book_title,
            "userId": self.user_id,
            "userName": self.user_name,
            "requestDate": self.request_date,
            "dueDate": self.due_date,
            "status": self.status,
        }

    @staticmethod
    def from_dict(data: dict) -> "BookRequest":
        return BookRequest(
            id=data.get("id"),
            book_id=data["bookId"],
            book_title=data.get("bookTitle") or "",
            user_id=data["userId"],
            user_name=data.get("userName") or "",
            request_date=data["requestDate"],
            due_date=data["dueDate"],
            status=data.get("status") or RequestStatus.PENDING,
        )
