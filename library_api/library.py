import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from library_api.book import Book, DECREMENT_COPIES_SQL, SORT_COLUMNS
from library_api.borrow import Borrow
from library_api.config import settings
from library_api.database import Database, new_object_id, utcnow_iso
from library_api.errors import BusinessRuleError, NotFoundError, StoreError, ValidationError
from library_api.schemas import BookCreate, BookQuery, BookUpdate, BorrowCreate, format_validation_errors

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_BOOK_COLUMNS = "id, title, author, genre, isbn, description, copies, available, created_at, updated_at"


def _validate(model: Type[M], data: Union[M, Mapping[str, Any]]) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise ValidationError(format_validation_errors(exc.errors(), dict(data))) from exc


def _iso_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Library:
    """Manages the book collection, the borrow workflow and the borrow report."""

    def __init__(self, database: Optional[Database] = None, db_url: Optional[str] = None) -> None:
        self._owns_db = database is None
        self.db = database or Database(db_url)
        if not self.db.is_open:
            self.db.open()

    def close(self) -> None:
        if self._owns_db:
            self.db.close()

    @contextmanager
    def _store_errors(self, message: str) -> Iterator[None]:
        """Re-raise database failures as StoreError carrying the raw error text."""
        try:
            yield
        except sqlite3.Error as exc:
            logger.error(f"{message}: {exc}")
            raise StoreError(message, str(exc)) from exc

    @staticmethod
    def _fetch_book(conn: sqlite3.Connection, book_id: str) -> Book:
        row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        if row is None:
            raise NotFoundError("Book not found")
        return Book.from_row(row)

    # ------------------------- Books ------------------------- #
    def create_book(self, data: Union[BookCreate, Mapping[str, Any]]) -> Book:
        payload = _validate(BookCreate, data)
        now = utcnow_iso()
        book = Book(id=new_object_id(), created_at=now, updated_at=now, **payload.model_dump())
        row = book.to_row()
        with self._store_errors("Error creating book"), self.db.transaction() as conn:
            conn.execute(
                f"INSERT INTO books ({_BOOK_COLUMNS}) VALUES "
                "(:id, :title, :author, :genre, :isbn, :description, :copies, :available, :created_at, :updated_at)",
                row,
            )
        logger.info(f"Book created: {book.id} ({book.isbn}) copies={book.copies}")
        return book

    def get_book(self, book_id: str) -> Book:
        with self._store_errors("Error retrieving book"), self.db.connection() as conn:
            return self._fetch_book(conn, book_id)

    def list_books(self, query: Union[BookQuery, Mapping[str, Any], None] = None) -> Tuple[List[Book], Dict[str, Any]]:
        """Filter, sort and paginate the collection.

        Returns the page of books plus pagination metadata computed from the
        number of books matching the filter.
        """
        q = _validate(BookQuery, query or {})
        where, params = "", []
        if q.filter is not None:
            where, params = "WHERE genre = ?", [q.filter.value]

        order = "ORDER BY "
        if q.sortBy:
            order += f"{SORT_COLUMNS[q.sortBy]} {'DESC' if q.sort == 'desc' else 'ASC'}, "
        order += "created_at ASC, rowid ASC"

        with self._store_errors("Error fetching books"), self.db.connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM books {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books {where} {order} LIMIT ? OFFSET ?",
                params + [q.limit, (q.page - 1) * q.limit],
            ).fetchall()

        total_pages = (total + q.limit - 1) // q.limit
        pagination = {
            "currentPage": q.page,
            "totalPages": total_pages,
            "totalBooks": total,
            "limit": q.limit,
            "hasNextPage": q.page < total_pages,
            "hasPrevPage": q.page > 1,
        }
        return [Book.from_row(r) for r in rows], pagination

    def update_book(self, book_id: str, data: Union[BookUpdate, Mapping[str, Any]]) -> Book:
        changes = _validate(BookUpdate, data).changes()
        with self._store_errors("Error updating book"), self.db.transaction() as conn:
            book = self._fetch_book(conn, book_id)
            for field in ("title", "author", "genre", "isbn", "description"):
                if field in changes:
                    setattr(book, field, changes[field])
            if "copies" in changes:
                book.update_copies_and_availability(changes["copies"])
            book.updated_at = utcnow_iso()
            conn.execute(
                "UPDATE books SET title = :title, author = :author, genre = :genre, isbn = :isbn, "
                "description = :description, copies = :copies, available = :available, "
                "updated_at = :updated_at WHERE id = :id",
                book.to_row(),
            )
        logger.info(f"Book updated: {book_id} fields={sorted(changes)}")
        return book

    def delete_book(self, book_id: str) -> Book:
        """Delete a book and then every borrow record that references it, as one transaction."""
        with self._store_errors("Error deleting book"), self.db.transaction() as conn:
            book = self._fetch_book(conn, book_id)
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            removed = conn.execute("DELETE FROM borrows WHERE book_id = ?", (book_id,)).rowcount
        logger.info(f"Book deleted: {book_id} (removed {removed} borrow records)")
        return book

    # ------------------------- Borrowing ------------------------- #
    def borrow_book(self, book_id: str, quantity: int, due_date: Union[datetime, str]) -> Borrow:
        """Lend ``quantity`` copies of a book.

        The stock check and the decrement are a single conditional update, and
        the decrement and the borrow record commit together or not at all.
        """
        req = _validate(BorrowCreate, {"book": book_id, "quantity": quantity, "dueDate": due_date})
        now = utcnow_iso()
        borrow = Borrow(id=new_object_id(), book_id=req.book, quantity=req.quantity,
                        due_date=_iso_utc(req.dueDate), created_at=now, updated_at=now)

        with self._store_errors("Error borrowing book"), self.db.transaction() as conn:
            self._fetch_book(conn, req.book)
            cur = conn.execute(DECREMENT_COPIES_SQL, {"id": req.book, "quantity": req.quantity, "now": now})
            if cur.rowcount == 0:
                logger.warning(f"Borrow rejected: book {req.book} has fewer than {req.quantity} copies")
                raise BusinessRuleError("Not enough copies available")
            conn.execute(
                "INSERT INTO borrows (id, book_id, quantity, due_date, created_at, updated_at) "
                "VALUES (:id, :book_id, :quantity, :due_date, :created_at, :updated_at)",
                borrow.to_row(),
            )
        logger.info(f"Book borrowed: {req.book} quantity={req.quantity} due={borrow.due_date}")
        return borrow

    def list_borrows(self, book_id: Optional[str] = None) -> List[Borrow]:
        sql = "SELECT id, book_id, quantity, due_date, created_at, updated_at FROM borrows"
        params: List[Any] = []
        if book_id is not None:
            sql += " WHERE book_id = ?"
            params.append(book_id)
        with self._store_errors("Error fetching borrow records"), self.db.connection() as conn:
            rows = conn.execute(sql + " ORDER BY created_at, rowid", params).fetchall()
        return [Borrow.from_row(r) for r in rows]

    def borrow_summary(self) -> List[Dict[str, Any]]:
        """Total quantity borrowed per book; books never borrowed are left out."""
        with self._store_errors("Error retrieving borrowed books summary"), self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT b.title AS title, b.isbn AS isbn, SUM(br.quantity) AS total
                FROM borrows br
                JOIN books b ON b.id = br.book_id
                GROUP BY br.book_id
                ORDER BY total DESC, b.title ASC
                """
            ).fetchall()
        return [
            {"bookTitle": r["title"], "isbn": r["isbn"], "totalQuantityBorrowed": r["total"]}
            for r in rows
        ]
