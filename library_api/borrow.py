from __future__ import annotations

from typing import Any, Dict


class Borrow:
    """A quantity of one book lent out until ``due_date``. Never updated in place."""

    def __init__(self, book_id: str, quantity: int, due_date: str, id: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.quantity = quantity
        self.due_date = due_date
        self.created_at = created_at
        self.updated_at = updated_at

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Borrow {self.id} book={self.book_id} quantity={self.quantity}>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "book": self.book_id,
            "quantity": self.quantity,
            "dueDate": self.due_date,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "quantity": self.quantity,
            "due_date": self.due_date,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row: Any) -> "Borrow":
        data = dict(row)
        return Borrow(
            id=data["id"],
            book_id=data["book_id"],
            quantity=data["quantity"],
            due_date=data["due_date"],
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
