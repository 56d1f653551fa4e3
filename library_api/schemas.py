"""Request models.

Every request body, query string and path parameter is validated here before
the library service runs; failures become a ``ValidationError`` with one
entry per offending field.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from library_api.book import Genre, MAX_COPIES
from library_api.config import settings
from library_api.database import is_object_id
from library_api.errors import validator_error

_LOCATIONS = ("body", "query", "path", "header")


class BookCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    genre: Genre
    isbn: str = Field(..., min_length=1)
    description: str = ""
    copies: int = Field(..., ge=0, le=MAX_COPIES)

    @field_validator("genre", mode="before")
    @classmethod
    def _parse_genre(cls, value: Any) -> Genre:
        return Genre.parse(value)


class BookUpdate(BaseModel):
    """Partial update: only the fields present in the body are applied."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    genre: Optional[Genre] = None
    isbn: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    copies: Optional[int] = Field(None, ge=0, le=MAX_COPIES)

    @field_validator("genre", mode="before")
    @classmethod
    def _parse_genre(cls, value: Any) -> Optional[Genre]:
        return None if value is None else Genre.parse(value)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class BorrowCreate(BaseModel):
    book: str
    quantity: int = Field(..., ge=1, le=MAX_COPIES)
    dueDate: datetime

    @field_validator("book")
    @classmethod
    def _check_book_id(cls, value: str) -> str:
        if not is_object_id(value):
            raise ValueError("Invalid book ID")
        return value.lower()

    @field_validator("dueDate")
    @classmethod
    def _check_due_date(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        if value <= datetime.now(timezone.utc):
            raise ValueError("Due date must be in the future")
        return value


class BookQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filter: Optional[Genre] = None
    sortBy: Optional[Literal["title", "author", "genre", "isbn", "description", "copies",
                             "available", "createdAt", "updatedAt"]] = None
    sort: Literal["asc", "desc"] = "asc"
    limit: int = Field(default_factory=lambda: settings.default_page_size, ge=1, le=settings.max_page_size)
    page: int = Field(1, ge=1)

    @field_validator("filter", mode="before")
    @classmethod
    def _parse_filter(cls, value: Any) -> Optional[Genre]:
        return None if value in (None, "") else Genre.parse(value)

    @field_validator("sort", mode="before")
    @classmethod
    def _lower_sort(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("page")
    @classmethod
    def _check_offset(cls, value: int, info: ValidationInfo) -> int:
        limit = info.data.get("limit", settings.default_page_size)
        if (value - 1) * limit > MAX_COPIES:
            raise ValueError("Page is out of range")
        return value


def format_validation_errors(errors: Iterable[Dict[str, Any]], source: Any = None) -> Dict[str, Dict[str, Any]]:
    """Turn pydantic error dicts into ``{field: {message, kind, value, ...}}``.

    Only the first problem reported for a field is kept.
    """
    formatted: Dict[str, Dict[str, Any]] = {}
    for err in errors:
        loc = [part for part in err.get("loc", ()) if part not in _LOCATIONS]
        # a malformed JSON body is located by character offset, not by field
        field = loc[0] if loc and isinstance(loc[0], str) else "body"
        if field in formatted:
            continue
        kind = err.get("type", "value_error")
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        value = source.get(field) if isinstance(source, dict) else None
        ctx = err.get("ctx") or {}
        props: Dict[str, Any] = {}
        for key, prop in (("ge", "min"), ("gt", "min"), ("le", "max"), ("min_length", "minLength")):
            if key in ctx:
                props[prop] = ctx[key]
        if "expected" in ctx:
            props["enum"] = str(ctx["expected"])
        formatted[field] = validator_error(field, message, kind, value, **props)
    return formatted
