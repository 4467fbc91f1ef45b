import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, Security, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from access_control import AccessPolicy
from book import CATEGORIES, Book, BookStatus
from book_request import BookRequest, RequestStatus
from config import Settings
from context import AppContext, build_context
from errors import (
    ActionInProgressError,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    PortalError,
    ValidationError,
)
from image_upload import ImageUploadService
from user import Role, User

logger = logging.getLogger(__name__)

# Hata türü -> HTTP durum kodu
_STATUS_CODES = {
    ConfigurationError: 503,
    AuthenticationError: 401,
    AuthorizationError: 403,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    ActionInProgressError: 409,
    ValidationError: 400,
    ExternalServiceError: 502,
}


def _status_for(exc: PortalError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_CODES:
            return _STATUS_CODES[cls]
    return 400


# --- Yeniden giriş koruması ---
class InflightActions:
    """Aynı oturumdan aynı işlemin, ilki bitmeden ikinci kez başlatılmasını engeller."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: set = set()

    @contextmanager
    def hold(self, session: Optional[str], action: str, target: str):
        key = (session, action, target)
        with self._lock:
            if key in self._held:
                raise ActionInProgressError("This action is already in progress.")
            self._held.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._held.discard(key)


# --- Modeller ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    category: str
    description: str
    status: str
    coverUrl: str | None = None
    createdAt: str | None = None
    updatedAt: str | None = None


class BookCreateModel(BaseModel):
    title: str | None = None
    author: str | None = None
    category: str | None = None
    description: str | None = None
    status: str = Field(default=BookStatus.AVAILABLE, description="available | unavailable")
    coverUrl: str | None = Field(default=None, description="/api/upload tarafından döndürülen URL")


class BookUpdateModel(BaseModel):
    title: str | None = None
    author: str | None = None
    category: str | None = None
    description: str | None = None
    status: str | None = None
    coverUrl: str | None = None


class RequestModel(BaseModel):
    id: str
    bookId: str
    bookTitle: str
    userId: str
    userName: str
    requestDate: str
    dueDate: str
    status: str
    overdue: bool = False


class GroupedRequestsModel(BaseModel):
    pending: List[RequestModel]
    approved: List[RequestModel]
    rejected: List[RequestModel]
    returned: List[RequestModel]
    counts: Dict[str, int]


class UserModel(BaseModel):
    id: str
    name: str
    email: str
    role: str
    createdAt: str | None = None


class RegisterModel(BaseModel):
    name: str | None = None
    email: str | None = None
    password: str | None = None
    role: str = Role.USER
    adminCode: str | None = None


class LoginModel(BaseModel):
    email: str | None = None
    password: str | None = None
    role: str = Role.USER
    adminCode: str | None = None


class LoginResponse(BaseModel):
    token: str
    user: UserModel
    redirect: str


class AdminCodeModel(BaseModel):
    adminCode: str | None = None


class AdminCodeResponse(BaseModel):
    valid: bool


class StatsModel(BaseModel):
    total_books: int
    available_books: int
    unavailable_books: int
    requests: Dict[str, int]
    overdue_requests: int


# --- Yardımcı Fonksiyonlar ---
def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


def _request_model(request: BookRequest, now: datetime) -> RequestModel:
    return RequestModel(**request.to_dict(), overdue=request.is_overdue(now))


def _grouped_model(grouped: Dict[str, List[BookRequest]], now: datetime) -> GroupedRequestsModel:
    columns = {status: [_request_model(r, now) for r in grouped.get(status, [])]
               for status in RequestStatus.ALL}
    return GroupedRequestsModel(**columns, counts={s: len(items) for s, items in columns.items()})


def _user_model(user: User) -> UserModel:
    return UserModel(**user.to_dict())


# --- Güvenlik ---
session_header = APIKeyHeader(name="X-Session-Token", auto_error=False)


def get_context(request: Request) -> AppContext:
    """Yapılandırılmamışsa ConfigurationError (503) yükselt."""
    return request.app.state.context.require_ready()


def get_session_token(token: Optional[str] = Security(session_header)) -> Optional[str]:
    return token


def get_actor(ctx: AppContext = Depends(get_context),
              token: Optional[str] = Depends(get_session_token)) -> Optional[User]:
    return ctx.current_actor(token)


def require_role(role: str):
    """Belirli bir role sahip oturum açmış kullanıcıyı gerektiren bağımlılık."""
    def dependency(actor: Optional[User] = Depends(get_actor)) -> User:
        return AccessPolicy.require_role(actor, role)
    return dependency


def require_authenticated(actor: Optional[User] = Depends(get_actor)) -> User:
    return AccessPolicy.require_authenticated(actor)


def create_app(settings: Optional[Settings] = None, context=None,
               uploads: Optional[ImageUploadService] = None) -> FastAPI:
    """Uygulamayı verilen ayarlarla (veya hazır bir bağlamla) oluştur."""
    settings = settings or Settings()
    uploads = uploads or ImageUploadService(settings)
    if context is None:
        context = build_context(settings, uploads=uploads)

    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)

    app = FastAPI(title=settings.app_name, version=settings.app_version)
    app.state.settings = settings
    app.state.context = context
    app.state.policy = AccessPolicy(settings.admin_secret_code)
    app.state.uploads = uploads
    app.state.inflight = InflightActions()

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Hata işleyicileri ---
    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        status_code = _status_for(exc)
        body = {"detail": exc.message, "code": exc.code}
        if exc.redirect:
            body["redirect"] = exc.redirect
        if isinstance(exc, ValidationError):
            body["errors"] = exc.errors
        if isinstance(exc, ConfigurationError):
            body["missing"] = exc.missing
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content=body)

    # --- Sağlık Kontrolü ---
    @app.get("/health")
    def health():
        """Hazırlık bayrağını ve eksik ayarları döndüren hafif sağlık uç noktası."""
        ctx = app.state.context
        return {
            "status": "healthy",
            "ready": ctx.ready,
            "missing": [] if ctx.ready else ctx.missing,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # --- Harici arayüzler ---
    @app.post("/api/verify-admin-code", response_model=AdminCodeResponse)
    def verify_admin_code(payload: AdminCodeModel):
        """Yönetici kayıt kodunu sunucudaki gizli kodla karşılaştır."""
        return AdminCodeResponse(valid=app.state.policy.verify_admin_code(payload.adminCode))

    @app.post("/api/upload")
    async def upload_image(file: Optional[UploadFile] = File(None), fileName: Optional[str] = Form(None)):
        """Kapak görselini görsel sunucusuna yükle ve kalıcı URL'yi döndür."""
        if file is None or not fileName:
            return JSONResponse(status_code=400, content={"error": "Missing file or fileName"})
        data = await file.read()
        try:
            url = await app.state.uploads.upload(data, fileName)
        except ValidationError as e:
            return JSONResponse(status_code=400, content={"error": e.message, "errors": e.errors})
        except ExternalServiceError as e:
            logger.error(f"Image upload failed: {e.message}")
            return JSONResponse(status_code=500, content={"error": "Image upload failed"})
        return {"url": url}

    # --- Kimlik doğrulama ---
    @app.post("/auth/register", response_model=UserModel, status_code=201)
    def register(payload: RegisterModel, ctx: AppContext = Depends(get_context)):
        """Yeni kullanıcı kaydı. Yönetici rolü için önce yönetici kodu doğrulanır."""
        user = ctx.auth.register(payload.name, payload.email, payload.password,
                                 role=payload.role, admin_code=payload.adminCode)
        return _user_model(user)

    @app.post("/auth/login", response_model=LoginResponse)
    def login(payload: LoginModel, ctx: AppContext = Depends(get_context)):
        result = ctx.auth.login(payload.email, payload.password, role=payload.role,
                                admin_code=payload.adminCode)
        return LoginResponse(token=result.session.token, user=_user_model(result.user),
                             redirect=result.home_route)

    @app.post("/auth/logout", status_code=204)
    def logout(ctx: AppContext = Depends(get_context), token: Optional[str] = Depends(get_session_token),
               actor: User = Depends(require_authenticated)):
        ctx.auth.logout(token)

    @app.get("/auth/me", response_model=UserModel)
    def me(actor: User = Depends(require_authenticated)):
        return _user_model(actor)

    @app.get("/guard")
    def guard(role: str = Query(..., description="user | admin"), actor: Optional[User] = Depends(get_actor)):
        """Belirli bir role ayrılmış sayfaya bu kullanıcının girip giremeyeceğini söyle."""
        return AccessPolicy.guard_route(actor, role).to_dict()

    # --- Katalog ---
    @app.get("/categories", response_model=List[str])
    def get_categories():
        return CATEGORIES

    @app.get("/books", response_model=List[BookModel])
    def get_books(q: Optional[str] = Query(None, description="Başlık, yazar veya kategoride ara"),
                  ctx: AppContext = Depends(get_context)):
        """Silinmemiş tüm kitapları listele."""
        books = ctx.library.search_books(q) if q else ctx.library.list_books()
        return [_book_model(b) for b in books]

    @app.get("/books/{book_id}", response_model=BookModel)
    def get_book(book_id: str, ctx: AppContext = Depends(get_context)):
        return _book_model(ctx.library.get_book(book_id))

    @app.post("/books", response_model=BookModel, status_code=201)
    def add_book(payload: BookCreateModel, ctx: AppContext = Depends(get_context),
                 actor: User = Depends(require_role(Role.ADMIN))):
        book = Book(
            title=payload.title or "",
            author=payload.author or "",
            category=payload.category or "",
            description=payload.description or "",
            status=payload.status,
            cover_url=payload.coverUrl,
        )
        return _book_model(ctx.library.add_book(book))

    @app.put("/books/{book_id}", response_model=BookModel)
    def update_book(book_id: str, payload: BookUpdateModel, ctx: AppContext = Depends(get_context),
                    actor: User = Depends(require_role(Role.ADMIN))):
        book = ctx.library.update_book(
            book_id,
            title=payload.title,
            author=payload.author,
            category=payload.category,
            description=payload.description,
            status=payload.status,
            cover_url=payload.coverUrl,
        )
        return _book_model(book)

    @app.post("/books/{book_id}/toggle-status", response_model=BookModel)
    def toggle_book_status(book_id: str, ctx: AppContext = Depends(get_context),
                           token: Optional[str] = Depends(get_session_token),
                           actor: User = Depends(require_role(Role.ADMIN))):
        with app.state.inflight.hold(token, "toggle", book_id):
            return _book_model(ctx.workflow.toggle_availability(actor, book_id))

    @app.delete("/books/{book_id}", response_model=BookModel)
    def delete_book(book_id: str, ctx: AppContext = Depends(get_context),
                    token: Optional[str] = Depends(get_session_token),
                    actor: User = Depends(require_role(Role.ADMIN))):
        """Kitabı yumuşak sil: durum 'deleted' olur, kayıt korunur."""
        with app.state.inflight.hold(token, "delete", book_id):
            return _book_model(ctx.workflow.soft_delete_book(actor, book_id))

    # --- Ödünç istekleri ---
    @app.post("/books/{book_id}/request", response_model=RequestModel, status_code=201)
    def request_book(book_id: str, ctx: AppContext = Depends(get_context),
                     token: Optional[str] = Depends(get_session_token),
                     actor: User = Depends(require_role(Role.USER))):
        with app.state.inflight.hold(token, "request", book_id):
            return _request_model(ctx.workflow.create_request(actor, book_id), ctx.workflow.clock())

    @app.get("/requests/mine", response_model=GroupedRequestsModel)
    def my_requests(ctx: AppContext = Depends(get_context), actor: User = Depends(require_role(Role.USER))):
        return _grouped_model(ctx.workflow.list_user_requests(actor), ctx.workflow.clock())

    @app.get("/requests", response_model=GroupedRequestsModel)
    def all_requests(status: Optional[str] = Query(None, description="pending|approved|rejected|returned"),
                     ctx: AppContext = Depends(get_context), actor: User = Depends(require_role(Role.ADMIN))):
        return _grouped_model(ctx.workflow.list_all_requests(actor, status), ctx.workflow.clock())

    @app.get("/requests/{request_id}", response_model=RequestModel)
    def get_request(request_id: str, ctx: AppContext = Depends(get_context),
                    actor: User = Depends(require_authenticated)):
        return _request_model(ctx.workflow.get_request(actor, request_id), ctx.workflow.clock())

    @app.post("/requests/{request_id}/approve", response_model=RequestModel)
    def approve_request(request_id: str, ctx: AppContext = Depends(get_context),
                        token: Optional[str] = Depends(get_session_token),
                        actor: User = Depends(require_role(Role.ADMIN))):
        with app.state.inflight.hold(token, "approve", request_id):
            return _request_model(ctx.workflow.approve(actor, request_id), ctx.workflow.clock())

    @app.post("/requests/{request_id}/reject", response_model=RequestModel)
    def reject_request(request_id: str, ctx: AppContext = Depends(get_context),
                       token: Optional[str] = Depends(get_session_token),
                       actor: User = Depends(require_role(Role.ADMIN))):
        with app.state.inflight.hold(token, "reject", request_id):
            return _request_model(ctx.workflow.reject(actor, request_id), ctx.workflow.clock())

    @app.post("/requests/{request_id}/return", response_model=RequestModel)
    def return_request(request_id: str, ctx: AppContext = Depends(get_context),
                       token: Optional[str] = Depends(get_session_token),
                       actor: User = Depends(require_role(Role.ADMIN))):
        with app.state.inflight.hold(token, "return", request_id):
            return _request_model(ctx.workflow.mark_returned(actor, request_id), ctx.workflow.clock())

    @app.get("/stats", response_model=StatsModel)
    def get_stats(ctx: AppContext = Depends(get_context), actor: User = Depends(require_role(Role.ADMIN))):
        """Yönetici paneli için kitap ve istek sayıları."""
        return StatsModel(**ctx.workflow.statistics(actor))

    return app


app = create_app()
