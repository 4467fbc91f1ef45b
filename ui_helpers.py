import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from book_request import RequestStatus

# Environment variable to control CLI output mode
# İzin verilen değerler: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    # Geçersiz değerler yoksayılır; mevcut varsayılan korunur
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_list_result(books: List[Any]) -> None:
    """Kitap listesini mevcut çıktı moduna göre yazdır.
    - plain: 'Title by Author [status]' satırları, veya 'No books in library.'
    - json: to_dict() ile JSON dizisi
    - rich: Rich tablosu
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Category", style="white")
        table.add_column("Status", style="green")
        for b in books:
            table.add_row(b.id or "", b.title, b.author, b.category, b.status)
        _console.print(table)
    else:
        for b in books:
            print(f"{b.title} by {b.author} [{b.status}]")


def print_request_groups(grouped: Dict[str, List[Any]]) -> None:
    """İstekleri duruma göre gruplanmış olarak yazdır."""
    mode = get_output_mode()

    if not any(grouped.values()):
        print("No requests.")
        return

    if mode == "json":
        payload = {
            status: [dict(r.to_dict(), overdue=r.is_overdue()) for r in items]
            for status, items in grouped.items()
        }
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        for status in RequestStatus.ALL:
            items = grouped.get(status, [])
            if not items:
                continue
            table = Table(title=f"{status.title()} ({len(items)})", header_style="bold cyan")
            table.add_column("Book", style="white")
            table.add_column("Member", style="white")
            table.add_column("Requested", style="dim")
            table.add_column("Due", style="white")
            for r in items:
                due = f"[bold red]{r.due_date} (overdue)[/]" if r.is_overdue() else r.due_date
                table.add_row(r.book_title, r.user_name, r.request_date, due)
            _console.print(table)
    else:
        for status in RequestStatus.ALL:
            items = grouped.get(status, [])
            if not items:
                continue
            print(f"{status.title()} ({len(items)}):")
            for r in items:
                flag = " OVERDUE" if r.is_overdue() else ""
                print(f"  {r.book_title} - {r.user_name} - due {r.due_date}{flag}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Statistikleri mevcut çıktı moduna göre yazdır.
    - plain: her metrik için bir satır
    - json: JSON nesnesi
    - rich: Ana metriklerle Panel
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    requests = stats.get("requests", {})

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = (
            f"[bold]Total Books:[/] {stats.get('total_books', 0)}\n"
            f"[bold]Available:[/] {stats.get('available_books', 0)}\n"
            f"[bold]Unavailable:[/] {stats.get('unavailable_books', 0)}\n"
            f"[bold]Pending Requests:[/] {requests.get(RequestStatus.PENDING, 0)}\n"
            f"[bold]Overdue:[/] {stats.get('overdue_requests', 0)}"
        )
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        print(f"Total Books: {stats.get('total_books', 0)}")
        print(f"Available Books: {stats.get('available_books', 0)}")
        print(f"Unavailable Books: {stats.get('unavailable_books', 0)}")
        for status in RequestStatus.ALL:
            print(f"{status.title()} Requests: {requests.get(status, 0)}")
        print(f"Overdue Requests: {stats.get('overdue_requests', 0)}")


def print_status(ready: bool, missing: List[str]) -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps({"ready": ready, "missing": missing}))
    elif mode == "rich":
        if ready:
            _console.print(Panel.fit("[green]Portal is configured.[/]", title="Status", border_style="green"))
        else:
            _console.print(Panel.fit("[red]Missing settings:[/] " + ", ".join(missing),
                                     title="Status", border_style="red"))
    elif ready:
        print("Ready")
    else:
        print("Not configured. Missing: " + ", ".join(missing))
