from __future__ import annotations

from typing import Any, Dict


class LibraryError(Exception):
    """Base class for errors that map onto an HTTP error envelope."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationError(LibraryError):
    """Malformed, missing or out-of-range request fields.

    ``errors`` maps each offending field to
    ``{message, name, properties, kind, path, value}``.
    """

    status_code = 400

    def __init__(self, errors: Dict[str, Dict[str, Any]], message: str | None = None) -> None:
        if message is None:
            message = ", ".join(e["message"] for e in errors.values()) or "Validation failed"
        super().__init__(message)
        self.errors = errors

    @classmethod
    def for_field(cls, field: str, message: str, kind: str, value: Any) -> "ValidationError":
        return cls({field: validator_error(field, message, kind, value)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "error": {"name": "ValidationError", "errors": self.errors},
        }


class NotFoundError(LibraryError):
    status_code = 404


class BusinessRuleError(LibraryError):
    """A well-formed request that the current state of the library forbids."""

    status_code = 400


class StoreError(LibraryError):
    """The underlying database failed (connectivity, constraint violation)."""

    status_code = 500

    def __init__(self, message: str, detail: str = "") -> None:
        super().__init__(message)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "error": self.detail}


def validator_error(field: str, message: str, kind: str, value: Any, **properties: Any) -> Dict[str, Any]:
    """Build one entry of a ``ValidationError.errors`` map."""
    props: Dict[str, Any] = {"message": message, "type": kind}
    props.update(properties)
    return {
        "message": message,
        "name": "ValidatorError",
        "properties": props,
        "kind": kind,
        "path": field,
        "value": value,
    }
