import os
import subprocess
import sys
import webbrowser
from typing import Optional

import typer

from book_request import RequestStatus, utcnow
from config import Settings
from context import AppContext, build_context
from stores import group_by_status
from ui_helpers import (
    print_list_result,
    print_request_groups,
    print_stats_result,
    print_status,
    set_output_mode,
)

APP_NAME = "Ödünç Kitap Portalı CLI"


# Test ortamını algıla
def _is_test_env() -> bool:
    return ("PYTEST_CURRENT_TEST" in os.environ) or (os.environ.get("LIB_CLI_TEST_MODE") == "1")


def _context() -> AppContext:
    """Ortamdan bağlamı kur; yapılandırma eksikse çık."""
    ctx = build_context(Settings())
    if not ctx.ready:
        print("Not configured. Missing: " + ", ".join(ctx.missing))
        raise typer.Exit(code=1)
    return ctx


# --- Typer CLI Uygulaması ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Çıktı formatı: plain | json | rich (varsayılan: plain)",
    )
):
    """CLI için genel seçenekler (ör. çıktı modu)."""
    if output:
        set_output_mode(output)


@app.command("status")
def cli_status():
    """Portalın yapılandırılıp yapılandırılmadığını ve eksik ayarları göster."""
    missing = Settings().missing_settings()
    print_status(not missing, missing)
    if missing:
        raise typer.Exit(code=1)


@app.command("list")
def cli_list():
    """Silinmemiş tüm kitapları listele."""
    print_list_result(_context().library.list_books())


@app.command("search")
def cli_search(query: str = typer.Argument(..., help="Başlık, yazar veya kategori")):
    """Başlık, yazar veya kategoride ara."""
    books = _context().library.search_books(query)
    if not books:
        print("No books match your search.")
        return
    print_list_result(books)


@app.command("requests")
def cli_requests(
    status: Optional[str] = typer.Option(None, "--status", "-s",
                                         help="pending | approved | rejected | returned"),
):
    """Ödünç isteklerini duruma göre gruplanmış olarak göster."""
    if status is not None and status not in RequestStatus.ALL:
        print(f"Unknown status: {status}. Use one of: {', '.join(RequestStatus.ALL)}")
        raise typer.Exit(code=2)
    ctx = _context()
    print_request_groups(group_by_status(ctx.requests.list_all(status)))


@app.command("stats")
def cli_stats():
    """Kitap ve istek istatistiklerini göster."""
    ctx = _context()
    now = utcnow()
    stats = ctx.library.get_statistics()
    stats["requests"] = ctx.requests.count_by_status()
    stats["overdue_requests"] = sum(
        1 for r in ctx.requests.list_all(RequestStatus.APPROVED) if r.is_overdue(now)
    )
    print_stats_result(stats)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Dinlenecek adres"),
    port: Optional[int] = typer.Option(None, "--port", help="Dinlenecek port"),
    reload: bool = typer.Option(False, "--reload", help="Kod değişince yeniden başlat"),
):
    """Uvicorn kullanarak HTTP arayüzünü başlat."""
    settings = Settings()
    host = host or settings.api_host
    port = int(port or settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting web UI on {url}")
    if not _is_test_env():
        webbrowser.open(url)
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    result = subprocess.run(args)
    if result.returncode:
        raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()
