import subprocess
import sys
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from library_api.config import settings
from library_api.errors import LibraryError
from library_api.library import Library

APP_NAME = "Library CLI"

app = typer.Typer(help=f"{APP_NAME}: manage the library database and run the API server.")
console = Console()


def _open_library(database_url: Optional[str]) -> Library:
    return Library(db_url=database_url)


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, help="Interface to bind"),
    port: int = typer.Option(settings.api_port, help="Port to listen on"),
    reload: bool = typer.Option(False, help="Restart on code changes"),
):
    """Start the HTTP API with uvicorn."""
    console.print(f"[bold green]Starting API on http://{host}:{port}[/]")
    cmd = [sys.executable, "-m", "uvicorn", "library_api.api:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    try:
        subprocess.run(cmd, check=False)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] could not launch uvicorn. Make sure it is installed.")
        raise typer.Exit(code=1)


@app.command("init-db")
def init_db(database_url: Optional[str] = typer.Option(None, "--database-url", help="Overrides DATABASE_URL")):
    """Create the database file and its tables."""
    library = _open_library(database_url)
    path = library.db.path
    library.close()
    console.print(f"Database ready: {path}")


@app.command("list")
def list_books(
    genre: Optional[str] = typer.Option(None, help="Only books of this genre"),
    limit: int = typer.Option(settings.default_page_size, help="Books per page"),
    page: int = typer.Option(1, help="Page number"),
    database_url: Optional[str] = typer.Option(None, "--database-url", help="Overrides DATABASE_URL"),
):
    """Show one page of books."""
    library = _open_library(database_url)
    try:
        query = {"limit": limit, "page": page}
        if genre:
            query["filter"] = genre
        books, pagination = library.list_books(query)
    except LibraryError as e:
        console.print(f"[bold red]Error:[/] {e.message}")
        raise typer.Exit(code=1)
    finally:
        library.close()

    if not books:
        console.print("No books in library.")
        return
    table = Table(title="Books", box=box.SIMPLE_HEAVY)
    for column in ("Title", "Author", "Genre", "ISBN", "Copies", "Available"):
        table.add_column(column)
    for b in books:
        table.add_row(b.title, b.author, b.genre.value, b.isbn, str(b.copies),
                      "yes" if b.available else "no")
    console.print(table)
    console.print(f"Page {pagination['currentPage']}/{pagination['totalPages']} "
                  f"({pagination['totalBooks']} books)")


@app.command()
def summary(database_url: Optional[str] = typer.Option(None, "--database-url", help="Overrides DATABASE_URL")):
    """Show the total quantity borrowed per book."""
    library = _open_library(database_url)
    try:
        rows = library.borrow_summary()
    finally:
        library.close()

    if not rows:
        console.print("No borrowed books.")
        return
    table = Table(title="Borrowed books summary", box=box.SIMPLE_HEAVY)
    table.add_column("Title")
    table.add_column("ISBN")
    table.add_column("Total quantity", justify="right")
    for row in rows:
        table.add_row(row["bookTitle"], row["isbn"], str(row["totalQuantityBorrowed"]))
    console.print(table)


if __name__ == "__main__":
    app()
