import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from book import Book, BookStatus
from book_request import to_iso, utcnow
from database import new_id, read_connection, transaction
from errors import NotFoundError
from validators import BookFormValidator

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "id, title, author, category, description, status, cover_url, created_at, updated_at"


def _row_to_book(row: sqlite3.Row) -> Book:
    return Book(
        id=row["id"],
        title=row["title"],
        author=row["author"],
        category=row["category"],
        description=row["description"],
        status=row["status"],
        cover_url=row["cover_url"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class Library:
    """Catalog store: the collection of book records.

    Books are never physically removed; a soft-deleted book keeps its row with
    status ``deleted`` and drops out of every listing.
    """

    def __init__(self, db_file: str, clock: Callable[[], datetime] = utcnow) -> None:
        self.db_file = db_file
        self.clock = clock

    @contextmanager
    def _reading(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        # Reuse the caller's transaction when one is passed in
        if conn is not None:
            yield conn
            return
        with read_connection(self.db_file) as own:
            yield own

    # ------------------------- Core operations ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Validate and store a new book. Returns it with id and createdAt filled in."""
        BookFormValidator.validate({
            "title": book.title,
            "author": book.author,
            "category": book.category,
            "description": book.description,
            "status": book.status,
        })
        book.id = new_id()
        book.created_at = to_iso(self.clock())
        with transaction(self.db_file) as conn:
            conn.execute(
                f"INSERT INTO books ({_BOOK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (book.id, book.title, book.author, book.category, book.description,
                 book.status, book.cover_url, book.created_at, book.updated_at),
            )
        logger.info(f"Book added: {book.id} '{book.title}'")
        return book

    def find_book(self, book_id: str, *, include_deleted: bool = False,
                  conn: Optional[sqlite3.Connection] = None) -> Optional[Book]:
        with self._reading(conn) as c:
            row = c.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            return None
        book = _row_to_book(row)
        if book.is_deleted and not include_deleted:
            return None
        return book

    def get_book(self, book_id: str, *, include_deleted: bool = False,
                 conn: Optional[sqlite3.Connection] = None) -> Book:
        book = self.find_book(book_id, include_deleted=include_deleted, conn=conn)
        if book is None:
            raise NotFoundError("The requested book could not be found.", redirect="/books")
        return book

    def update_book(self, book_id: str, *, title: Optional[str] = None, author: Optional[str] = None,
                    category: Optional[str] = None, description: Optional[str] = None,
                    status: Optional[str] = None, cover_url: Optional[str] = None) -> Book:
        """Edit any field of a non-deleted book. Fields left as None keep their value."""
        changes = {
            "title": title,
            "author": author,
            "category": category,
            "description": description,
            "status": status,
        }
        BookFormValidator.validate(changes, partial=True)

        with transaction(self.db_file) as conn:
            book = self.get_book(book_id, conn=conn)
            book.title = title.strip() if title is not None else book.title
            book.author = author.strip() if author is not None else book.author
            book.category = category.strip() if category is not None else book.category
            book.description = description.strip() if description is not None else book.description
            book.status = status if status is not None else book.status
            book.cover_url = cover_url if cover_url is not None else book.cover_url
            book.updated_at = to_iso(self.clock())
            conn.execute(
                "UPDATE books SET title = ?, author = ?, category = ?, description = ?, status = ?, "
                "cover_url = ?, updated_at = ? WHERE id = ?",
                (book.title, book.author, book.category, book.description, book.status,
                 book.cover_url, book.updated_at, book.id),
            )
        logger.info(f"Book updated: {book.id}")
        return book

    def set_status(self, conn: sqlite3.Connection, book_id: str, status: str,
                   *, only_from: Optional[tuple] = None) -> bool:
        """Write a book's status inside the caller's transaction.

        With ``only_from`` the write is conditional on the current status being
        one of those values. Returns whether a row changed.
        """
        if only_from:
            placeholders = ", ".join("?" for _ in only_from)
            cursor = conn.execute(
                f"UPDATE books SET status = ? WHERE id = ? AND status IN ({placeholders})",
                (status, book_id, *only_from),
            )
        else:
            cursor = conn.execute("UPDATE books SET status = ? WHERE id = ?", (status, book_id))
        return cursor.rowcount > 0

    def list_books(self) -> List[Book]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books WHERE status != ? ORDER BY title COLLATE NOCASE",
                (BookStatus.DELETED,),
            ).fetchall()
        return [_row_to_book(r) for r in rows]

    def search_books(self, query: str) -> List[Book]:
        """Case-insensitive match on title, author or category; deleted books excluded."""
        term = (query or "").strip().lower()
        if not term:
            return self.list_books()
        # Matching is done here rather than with LIKE so non-ASCII text folds case too
        return [
            b for b in self.list_books()
            if term in b.title.lower() or term in b.author.lower() or term in b.category.lower()
        ]

    def get_statistics(self) -> Dict[str, Any]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute("SELECT status, COUNT(*) AS n FROM books GROUP BY status").fetchall()
        counts = {row["status"]: row["n"] for row in rows}
        available = counts.get(BookStatus.AVAILABLE, 0)
        unavailable = counts.get(BookStatus.UNAVAILABLE, 0)
        return {
            "total_books": available + unavailable,
            "available_books": available,
            "unavailable_books": unavailable,
        }
