from __future__ import annotations

from enum import Enum
from typing import Any, Dict

from library_api.errors import ValidationError, validator_error


class Genre(str, Enum):
    FICTION = "FICTION"
    NON_FICTION = "NON_FICTION"
    SCIENCE = "SCIENCE"
    HISTORY = "HISTORY"
    BIOGRAPHY = "BIOGRAPHY"
    FANTASY = "FANTASY"

    @classmethod
    def parse(cls, raw: Any) -> "Genre":
        """Case-insensitive lookup; raises ValueError for anything outside the closed set."""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, str):
            try:
                return cls(raw.strip().upper())
            except ValueError:
                pass
        raise ValueError(f"Genre must be one of: {', '.join(g.value for g in cls)}")


# Largest value an SQLite INTEGER column can hold
MAX_COPIES = 2**63 - 1

# JSON field name -> column name. Anything a client can sort by.
SORT_COLUMNS: Dict[str, str] = {
    "title": "title",
    "author": "author",
    "genre": "genre",
    "isbn": "isbn",
    "description": "description",
    "copies": "copies",
    "available": "available",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

# Store-level counterpart of Book.update_copies_and_availability for the
# borrow path: the stock check, the decrement and the availability flag
# are one statement, so concurrent borrows cannot oversell. SQLite evaluates
# every SET expression against the row as it was before the update.
DECREMENT_COPIES_SQL = """
    UPDATE books
    SET copies = copies - :quantity,
        available = (copies - :quantity) > 0,
        updated_at = :now
    WHERE id = :id AND copies >= :quantity
"""


class Book:
    """A title held by the library and how many physical copies of it are on the shelf.

    ``available`` is derived from ``copies`` and both are read-only: the only
    way to change them is ``update_copies_and_availability``.
    """

    def __init__(self, title: str, author: str, genre: Genre | str, isbn: str,
                 description: str = "", copies: int = 0, id: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.genre = Genre.parse(genre)
        self.isbn = isbn.strip()
        self.description = description or ""
        self.created_at = created_at
        self.updated_at = updated_at
        self._copies = 0
        self._available = False
        self.update_copies_and_availability(copies)

    @property
    def copies(self) -> int:
        return self._copies

    @property
    def available(self) -> bool:
        return self._available

    def update_copies_and_availability(self, copies: Any) -> None:
        """Set the copy count and recompute ``available``.

        Raises ValidationError, leaving the book untouched, unless ``copies``
        is a non-negative integer.
        """
        if isinstance(copies, bool) or not isinstance(copies, int):
            raise ValidationError({"copies": validator_error(
                "copies", "Copies must be an integer", "invalid_type", copies)})
        if copies < 0:
            raise ValidationError({"copies": validator_error(
                "copies", "Copies must be a positive number", "too_small", copies, min=0)})
        if copies > MAX_COPIES:
            raise ValidationError({"copies": validator_error(
                "copies", "Copies is too large", "too_big", copies, max=MAX_COPIES)})
        self._copies = copies
        self._available = copies > 0

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "title": self.title,
            "author": self.author,
            "genre": self.genre.value,
            "isbn": self.isbn,
            "description": self.description,
            "copies": self.copies,
            "available": self.available,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "genre": self.genre.value,
            "isbn": self.isbn,
            "description": self.description,
            "copies": self.copies,
            "available": int(self.available),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row: Any) -> "Book":
        data = dict(row)
        # available is not read back: the constructor derives it from copies
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            genre=data["genre"],
            isbn=data["isbn"],
            description=data.get("description") or "",
            copies=data["copies"],
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
