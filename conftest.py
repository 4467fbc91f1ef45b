from datetime import datetime, timedelta, timezone

import pytest

from book import Book
from config import Settings
from context import build_context
from user import Role

ADMIN_CODE = "letmein-admin"
START = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Elle ilerletilen saat; vade testleri için."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def db_file(tmp_path, request):
    # Her test için benzersiz bir veritabanı dosyası oluştur
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def env(monkeypatch, db_file):
    monkeypatch.setenv("LIBRARY_DB_FILE", db_file)
    monkeypatch.setenv("SECRET_KEY", "test-pepper")
    monkeypatch.setenv("ADMIN_SECRET_CODE", ADMIN_CODE)
    monkeypatch.setenv("PASSWORD_HASH_ITERATIONS", "1000")
    monkeypatch.setenv("IMAGEKIT_PRIVATE_KEY", "private_test")
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")
    return monkeypatch


@pytest.fixture
def settings(env):
    return Settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ctx(settings, clock):
    return build_context(settings, clock=clock)


@pytest.fixture
def make_user(ctx):
    def _make(name="Grace Hopper", email="grace@example.com", password="secret1", role=Role.USER):
        code = ADMIN_CODE if role == Role.ADMIN else None
        return ctx.auth.register(name, email, password, role=role, admin_code=code)
    return _make


@pytest.fixture
def member(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(name="Ada Admin", email="ada@example.com", role=Role.ADMIN)


@pytest.fixture
def book(ctx):
    return ctx.library.add_book(Book(
        title="Mere Christianity",
        author="C. S. Lewis",
        category="Theology",
        description="A classic defence of the Christian faith.",
    ))
