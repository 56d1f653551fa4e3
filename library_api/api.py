import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from library_api.config import settings
from library_api.database import Database, is_object_id
from library_api.errors import LibraryError, ValidationError
from library_api.library import Library
from library_api.schemas import BookCreate, BookUpdate, BorrowCreate, format_validation_errors

logger = logging.getLogger(__name__)


# --- Dependencies ---
def get_library(request: Request) -> Library:
    return request.app.state.library


def valid_book_id(bookId: str) -> str:
    """Reject malformed identifiers with 400 before they reach the database."""
    if not is_object_id(bookId):
        raise ValidationError.for_field("bookId", "Invalid book ID", "invalid_string", bookId)
    return bookId.lower()


def _envelope(message: str, data: Any, **extra: Any) -> Dict[str, Any]:
    return {"success": True, "message": message, "data": data, **extra}


# --- Exception handlers ---
async def library_error_handler(request: Request, exc: LibraryError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = exc.body if isinstance(exc.body, dict) else dict(request.query_params)
    error = ValidationError(format_validation_errors(exc.errors(), body))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = "Route not found"
    else:
        message = str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": message},
                        headers=getattr(exc, "headers", None))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if not isinstance(status, int):
        status = 500
    return JSONResponse(status_code=status,
                        content={"success": False, "message": str(exc) or "Internal Server Error"})


def create_app(database_url: Optional[str] = None) -> FastAPI:
    """Build the application; the database is opened on startup and closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = Database(database_url).open()
        app.state.library = Library(database)
        try:
            yield
        finally:
            database.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LibraryError, library_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/", response_class=PlainTextResponse)
    def index():
        return "Welcome to Library Management API with FastAPI & SQLite"

    @app.get("/health")
    def health(library: Library = Depends(get_library)):
        """Lightweight health endpoint with a quick database ping."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "db": library.db.ping(),
        }

    # --- Books ---
    @app.post("/api/books", status_code=201)
    def create_book(payload: BookCreate, library: Library = Depends(get_library)):
        book = library.create_book(payload)
        return _envelope("Book created successfully", book.to_dict())

    @app.get("/api/books")
    def list_books(request: Request, library: Library = Depends(get_library)):
        """Books filtered by genre, sorted by any field and paginated."""
        books, pagination = library.list_books(dict(request.query_params))
        return _envelope("Books retrieved successfully", [b.to_dict() for b in books],
                         pagination=pagination)

    @app.get("/api/books/{bookId}")
    def get_book(book_id: str = Depends(valid_book_id), library: Library = Depends(get_library)):
        return _envelope("Book retrieved successfully", library.get_book(book_id).to_dict())

    @app.put("/api/books/{bookId}")
    def update_book(payload: BookUpdate, book_id: str = Depends(valid_book_id),
                    library: Library = Depends(get_library)):
        book = library.update_book(book_id, payload)
        return _envelope("Book updated successfully", book.to_dict())

    @app.delete("/api/books/{bookId}")
    def delete_book(book_id: str = Depends(valid_book_id), library: Library = Depends(get_library)):
        book = library.delete_book(book_id)
        return _envelope("Book deleted successfully", book.to_dict())

    # --- Borrowing ---
    @app.post("/api/borrow", status_code=201)
    def borrow_book(payload: BorrowCreate, library: Library = Depends(get_library)):
        borrow = library.borrow_book(payload.book, payload.quantity, payload.dueDate)
        return _envelope("Book borrowed successfully", borrow.to_dict())

    @app.get("/api/borrow")
    def borrow_summary(library: Library = Depends(get_library)):
        return _envelope("Borrowed books summary retrieved successfully", library.borrow_summary())

    return app


app = create_app()
