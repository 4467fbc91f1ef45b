"""Profile and request stores.

Both are thin wrappers over the document store tables.  Methods that take a
``conn`` run inside the caller's transaction; the rest open their own
connection.
"""

import sqlite3
from typing import Dict, List, Optional

from book_request import BookRequest, RequestStatus
from database import new_id, read_connection, transaction
from errors import NotFoundError
from user import User

_REQUEST_COLUMNS = "id, book_id, book_title, user_id, user_name, request_date, due_date, status"


def _row_to_request(row: sqlite3.Row) -> BookRequest:
    return BookRequest(
        id=row["id"],
        book_id=row["book_id"],
        book_title=row["book_title"],
        user_id=row["user_id"],
        user_name=row["user_name"],
        request_date=row["request_date"],
        due_date=row["due_date"],
        status=row["status"],
    )


class ProfileStore:
    """Per-user profile records (name, email, role), keyed by identity uid."""

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file

    def create(self, user: User) -> User:
        with transaction(self.db_file) as conn:
            conn.execute(
                "INSERT INTO users (id, name, email, role, created_at) VALUES (?, ?, ?, ?, ?)",
                (user.id, user.name, user.email, user.role, user.created_at),
            )
        return user

    def get(self, user_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[User]:
        query = "SELECT id, name, email, role, created_at FROM users WHERE id = ?"
        if conn is not None:
            row = conn.execute(query, (user_id,)).fetchone()
        else:
            with read_connection(self.db_file) as own:
                row = own.execute(query, (user_id,)).fetchone()
        if row is None:
            return None
        return User(id=row["id"], name=row["name"], email=row["email"], role=row["role"],
                    created_at=row["created_at"])

    def list_all(self) -> List[User]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute("SELECT id, name, email, role, created_at FROM users ORDER BY name").fetchall()
        return [User(id=r["id"], name=r["name"], email=r["email"], role=r["role"], created_at=r["created_at"])
                for r in rows]


class RequestStore:
    """Borrow-request records."""

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file

    def add(self, conn: sqlite3.Connection, request: BookRequest) -> BookRequest:
        request.id = request.id or new_id()
        conn.execute(
            f"INSERT INTO book_requests ({_REQUEST_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (request.id, request.book_id, request.book_title, request.user_id, request.user_name,
             request.request_date, request.due_date, request.status),
        )
        return request

    def find(self, request_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[BookRequest]:
        query = f"SELECT {_REQUEST_COLUMNS} FROM book_requests WHERE id = ?"
        if conn is not None:
            row = conn.execute(query, (request_id,)).fetchone()
        else:
            with read_connection(self.db_file) as own:
                row = own.execute(query, (request_id,)).fetchone()
        return _row_to_request(row) if row else None

    def get(self, request_id: str, conn: Optional[sqlite3.Connection] = None) -> BookRequest:
        request = self.find(request_id, conn=conn)
        if request is None:
            raise NotFoundError("The requested book request could not be found.", redirect="/admin/dashboard")
        return request

    def update_status(self, conn: sqlite3.Connection, request_id: str, status: str, *,
                      only_from: str, due_date: Optional[str] = None) -> bool:
        """Conditional status write: changes the row only if it is still in ``only_from``."""
        if due_date is not None:
            cursor = conn.execute(
                "UPDATE book_requests SET status = ?, due_date = ? WHERE id = ? AND status = ?",
                (status, due_date, request_id, only_from),
            )
        else:
            cursor = conn.execute(
                "UPDATE book_requests SET status = ? WHERE id = ? AND status = ?",
                (status, request_id, only_from),
            )
        return cursor.rowcount > 0

    def list_all(self, status: Optional[str] = None) -> List[BookRequest]:
        with read_connection(self.db_file) as conn:
            if status:
                rows = conn.execute(
                    f"SELECT {_REQUEST_COLUMNS} FROM book_requests WHERE status = ? ORDER BY request_date DESC",
                    (status,),
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {_REQUEST_COLUMNS} FROM book_requests ORDER BY request_date DESC"
                ).fetchall()
        return [_row_to_request(r) for r in rows]

    def list_by_user(self, user_id: str) -> List[BookRequest]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                f"SELECT {_REQUEST_COLUMNS} FROM book_requests WHERE user_id = ? ORDER BY request_date DESC",
                (user_id,),
            ).fetchall()
        return [_row_to_request(r) for r in rows]

    def list_open_for_book(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> List[BookRequest]:
        query = (
            f"SELECT {_REQUEST_COLUMNS} FROM book_requests "
            f"WHERE book_id = ? AND status IN (?, ?) ORDER BY request_date"
        )
        params = (book_id, *RequestStatus.OPEN)
        if conn is not None:
            rows = conn.execute(query, params).fetchall()
        else:
            with read_connection(self.db_file) as own:
                rows = own.execute(query, params).fetchall()
        return [_row_to_request(r) for r in rows]

    def count_by_status(self) -> Dict[str, int]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS n FROM book_requests GROUP BY status").fetchall()
        counts = {status: 0 for status in RequestStatus.ALL}
        counts.update({row["status"]: row["n"] for row in rows})
        return counts


def group_by_status(requests: List[BookRequest]) -> Dict[str, List[BookRequest]]:
    """Split requests into the four dashboard columns, keeping their order."""
    grouped: Dict[str, List[BookRequest]] = {status: [] for status in RequestStatus.ALL}
    for request in requests:
        grouped.setdefault(request.status, []).append(request)
    return grouped
