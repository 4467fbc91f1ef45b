import httpx
import pytest
from fastapi.testclient import TestClient

from api import create_app
from book_request import RequestStatus
from config import Settings
from conftest import ADMIN_CODE
from image_upload import ImageUploadService

BOOK = {
    "title": "The Pilgrim's Progress",
    "author": "John Bunyan",
    "category": "Christian Living",
    "description": "An allegory of the Christian journey.",
}


def _upload_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"url": "https://ik.imagekit.io/demo/pilgrim.png"})


@pytest.fixture
def client(settings, ctx):
    uploads = ImageUploadService(settings, transport=httpx.MockTransport(_upload_handler))
    app = create_app(settings, context=ctx, uploads=uploads)
    with TestClient(app) as test_client:
        yield test_client


def _login(client, email, password="secret1", role="user", admin_code=None):
    response = client.post("/auth/login", json={
        "email": email, "password": password, "role": role, "adminCode": admin_code,
    })
    assert response.status_code == 200, response.text
    return {"X-Session-Token": response.json()["token"]}


@pytest.fixture
def member_headers(client, member):
    return _login(client, "grace@example.com")


@pytest.fixture
def admin_headers(client, admin):
    return _login(client, "ada@example.com", role="admin", admin_code=ADMIN_CODE)


@pytest.fixture
def book_id(client, admin_headers):
    response = client.post("/books", json=BOOK, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()["id"]


# ------------------------- health / configuration ------------------------- #
def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["ready"] is True


def test_not_configured_portal(env):
    env.delenv("LIBRARY_DB_FILE")
    with TestClient(create_app(Settings())) as client:
        health = client.get("/health").json()
        assert health["ready"] is False
        assert health["missing"] == ["LIBRARY_DB_FILE"]

        response = client.get("/books")
        assert response.status_code == 503
        assert response.json()["code"] == "not_configured"
        assert response.json()["missing"] == ["LIBRARY_DB_FILE"]

        assert client.post("/api/verify-admin-code", json={"adminCode": ADMIN_CODE}).json() == {"valid": True}


# ------------------------- external interfaces ------------------------- #
def test_verify_admin_code(client):
    assert client.post("/api/verify-admin-code", json={"adminCode": ADMIN_CODE}).json() == {"valid": True}
    assert client.post("/api/verify-admin-code", json={"adminCode": "nope"}).json() == {"valid": False}
    assert client.post("/api/verify-admin-code", json={}).json() == {"valid": False}


def test_upload_image(client):
    response = client.post(
        "/api/upload",
        files={"file": ("pilgrim.png", b"\x89PNG-bytes", "image/png")},
        data={"fileName": "pilgrim.png"},
    )
    assert response.status_code == 200
    assert response.json() == {"url": "https://ik.imagekit.io/demo/pilgrim.png"}


def test_upload_missing_fields(client):
    response = client.post("/api/upload", data={"fileName": "pilgrim.png"})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing file or fileName"}

    response = client.post("/api/upload", files={"file": ("pilgrim.png", b"bytes", "image/png")})
    assert response.status_code == 400


def test_upload_upstream_failure(settings, ctx):
    failing = ImageUploadService(settings, transport=httpx.MockTransport(lambda r: httpx.Response(502)))
    with TestClient(create_app(settings, context=ctx, uploads=failing)) as client:
        response = client.post(
            "/api/upload",
            files={"file": ("pilgrim.png", b"bytes", "image/png")},
            data={"fileName": "pilgrim.png"},
        )
    assert response.status_code == 500
    assert response.json() == {"error": "Image upload failed"}


# ------------------------- auth ------------------------- #
def test_register_login_me_logout(client):
    response = client.post("/auth/register", json={
        "name": "Lydia", "email": "lydia@example.com", "password": "purple1",
    })
    assert response.status_code == 201
    assert response.json()["role"] == "user"

    login = client.post("/auth/login", json={"email": "lydia@example.com", "password": "purple1"}).json()
    assert login["redirect"] == "/user/dashboard"
    headers = {"X-Session-Token": login["token"]}

    assert client.get("/auth/me", headers=headers).json()["email"] == "lydia@example.com"
    assert client.post("/auth/logout", headers=headers).status_code == 204
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_register_admin_with_wrong_code(client):
    response = client.post("/auth/register", json={
        "name": "Mallory", "email": "mallory@example.com", "password": "secret1",
        "role": "admin", "adminCode": "guess",
    })
    assert response.status_code == 401
    assert response.json()["detail"] == "The admin code you entered is incorrect."


def test_register_validation_errors(client):
    response = client.post("/auth/register", json={"name": "L", "email": "bad", "password": "1"})
    assert response.status_code == 400
    assert set(response.json()["errors"]) == {"name", "email", "password"}


def test_login_bad_password(client, member):
    response = client.post("/auth/login", json={"email": "grace@example.com", "password": "wrong-1"})
    assert response.status_code == 401
    assert response.json()["redirect"] == "/login"


def test_guard(client, member_headers):
    assert client.get("/guard", params={"role": "user"}, headers=member_headers).json() == {
        "allowed": True, "redirect": None,
    }
    assert client.get("/guard", params={"role": "admin"}, headers=member_headers).json() == {
        "allowed": False, "redirect": "/unauthorized",
    }
    assert client.get("/guard", params={"role": "user"}).json()["redirect"] == "/login"


# ------------------------- catalog ------------------------- #
def test_catalog_listing_and_search(client, book_id):
    books = client.get("/books").json()
    assert [b["id"] for b in books] == [book_id]
    assert books[0]["status"] == "available"
    assert client.get("/books", params={"q": "bunyan"}).json()[0]["title"] == BOOK["title"]
    assert client.get("/books", params={"q": "nothing"}).json() == []
    assert client.get(f"/books/{book_id}").json()["author"] == "John Bunyan"
    assert client.get("/books/missing").status_code == 404
    assert "Theology" in client.get("/categories").json()


def test_add_book_requires_admin(client, member_headers):
    assert client.post("/books", json=BOOK).status_code == 401
    assert client.post("/books", json=BOOK, headers=member_headers).status_code == 403


def test_add_book_validation(client, admin_headers):
    response = client.post("/books", json={"title": "X"}, headers=admin_headers)
    assert response.status_code == 400
    assert "description" in response.json()["errors"]


def test_edit_toggle_and_delete(client, admin_headers, book_id):
    response = client.put(f"/books/{book_id}", json={"coverUrl": "https://ik.imagekit.io/demo/p.png"},
                          headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["coverUrl"] == "https://ik.imagekit.io/demo/p.png"

    assert client.post(f"/books/{book_id}/toggle-status", headers=admin_headers).json()["status"] == "unavailable"
    assert client.delete(f"/books/{book_id}", headers=admin_headers).json()["status"] == "deleted"
    assert client.delete(f"/books/{book_id}", headers=admin_headers).status_code == 200
    assert client.get("/books").json() == []


# ------------------------- lending ------------------------- #
def test_lending_cycle(client, member_headers, admin_headers, book_id):
    response = client.post(f"/books/{book_id}/request", headers=member_headers)
    assert response.status_code == 201
    request = response.json()
    assert request["status"] == "pending"
    assert client.get(f"/books/{book_id}").json()["status"] == "unavailable"

    again = client.post(f"/books/{book_id}/request", headers=member_headers)
    assert again.status_code == 409

    mine = client.get("/requests/mine", headers=member_headers).json()
    assert mine["counts"][RequestStatus.PENDING] == 1

    assert client.post(f"/requests/{request['id']}/approve", headers=member_headers).status_code == 403
    approved = client.post(f"/requests/{request['id']}/approve", headers=admin_headers).json()
    assert approved["status"] == "approved"
    assert approved["overdue"] is False

    assert client.post(f"/requests/{request['id']}/reject", headers=admin_headers).status_code == 409

    returned = client.post(f"/requests/{request['id']}/return", headers=admin_headers).json()
    assert returned["status"] == "returned"
    assert client.get(f"/books/{book_id}").json()["status"] == "available"

    stats = client.get("/stats", headers=admin_headers).json()
    assert stats["requests"]["returned"] == 1
    assert stats["available_books"] == 1


def test_admin_request_listing(client, member_headers, admin_headers, book_id):
    request = client.post(f"/books/{book_id}/request", headers=member_headers).json()
    client.post(f"/requests/{request['id']}/reject", headers=admin_headers)

    listing = client.get("/requests", params={"status": "rejected"}, headers=admin_headers).json()
    assert [r["id"] for r in listing["rejected"]] == [request["id"]]
    assert listing["counts"]["pending"] == 0
    assert client.get("/requests", params={"status": "lost"}, headers=admin_headers).status_code == 400
    assert client.get("/requests", headers=member_headers).status_code == 403

    assert client.get(f"/requests/{request['id']}", headers=member_headers).json()["status"] == "rejected"


def test_repeated_action_while_in_flight(client, ctx, member_headers, book_id):
    app = client.app
    token = member_headers["X-Session-Token"]
    with app.state.inflight.hold(token, "request", book_id):
        response = client.post(f"/books/{book_id}/request", headers=member_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "action_in_progress"
    assert client.get(f"/books/{book_id}").json()["status"] == "available"
