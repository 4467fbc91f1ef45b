import logging
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Iterator

from errors import ExternalServiceError

logger = logging.getLogger(__name__)

# Seconds a writer waits for another writer's lock before failing
BUSY_TIMEOUT = 10.0


def new_id() -> str:
    return uuid.uuid4().hex


def get_db_connection(db_file: str) -> sqlite3.Connection:
    """Open a connection to the document store.

    Autocommit mode: transactions are opened explicitly by ``transaction()``.
    """
    conn = sqlite3.connect(db_file, timeout=BUSY_TIMEOUT, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


@contextmanager
def transaction(db_file: str) -> Iterator[sqlite3.Connection]:
    """Run the enclosed writes as one atomic unit.

    BEGIN IMMEDIATE takes the write lock up front, so two transactions that
    read-then-write the same record are serialised instead of interleaved.
    Any exception rolls the whole unit back; sqlite errors surface as
    ExternalServiceError.
    """
    try:
        conn = get_db_connection(db_file)
    except sqlite3.Error as e:
        raise ExternalServiceError(f"Document store unavailable: {e}") from e
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        _rollback(conn)
        logger.error(f"Store transaction failed: {e}")
        raise ExternalServiceError(f"Document store error: {e}") from e
    except BaseException:
        _rollback(conn)
        raise
    finally:
        conn.close()


@contextmanager
def read_connection(db_file: str) -> Iterator[sqlite3.Connection]:
    try:
        conn = get_db_connection(db_file)
    except sqlite3.Error as e:
        raise ExternalServiceError(f"Document store unavailable: {e}") from e
    try:
        yield conn
    except sqlite3.Error as e:
        logger.error(f"Store read failed: {e}")
        raise ExternalServiceError(f"Document store error: {e}") from e
    finally:
        conn.close()


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


def create_tables(db_file: str) -> None:
    """Create the collections if they do not exist yet."""
    with transaction(db_file) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                category TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                status TEXT NOT NULL DEFAULT 'available'
                    CHECK(status IN ('available', 'unavailable', 'deleted')),
                cover_url TEXT,
                created_at TEXT,
                updated_at TEXT
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL,
                role TEXT NOT NULL CHECK(role IN ('user', 'admin')),
                created_at TEXT
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS book_requests (
                id TEXT PRIMARY KEY,
                book_id TEXT NOT NULL,
                book_title TEXT NOT NULL,
                user_id TEXT NOT NULL,
                user_name TEXT NOT NULL,
                request_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK(status IN ('pending', 'approved', 'rejected', 'returned'))
            )
        """)

        # Identity gateway: credentials and sessions
        conn.execute("""
            CREATE TABLE IF NOT EXISTS identities (
                uid TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                salt TEXT NOT NULL,
                created_at TEXT
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                uid TEXT NOT NULL,
                created_at TEXT,
                FOREIGN KEY (uid) REFERENCES identities(uid) ON DELETE CASCADE
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_status ON books(status)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_book_requests_book_id ON book_requests(book_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_book_requests_user_id ON book_requests(user_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_book_requests_status ON book_requests(status)")


def initialize_database(db_file: str) -> None:
    """Prepare the store at ``db_file`` for use."""
    create_tables(db_file)
    logger.info(f"Document store ready at {db_file}")
