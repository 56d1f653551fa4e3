import threading
from datetime import datetime, timedelta, timezone

import pytest

from library_api.errors import BusinessRuleError, NotFoundError, StoreError, ValidationError


def test_borrow_decrements_copies(lib, make_book, due_date):
    book = make_book(copies=5)
    borrow = lib.borrow_book(book.id, 2, due_date)

    assert borrow.book_id == book.id
    assert borrow.quantity == 2
    assert borrow.due_date.endswith("Z")
    stored = lib.get_book(book.id)
    assert (stored.copies, stored.available) == (3, True)


def test_borrow_last_copies_marks_unavailable(lib, make_book, due_date):
    book = make_book(copies=3)
    lib.borrow_book(book.id, 3, due_date)
    stored = lib.get_book(book.id)
    assert (stored.copies, stored.available) == (0, False)


def test_restock_after_borrowing_out(lib, make_book, due_date):
    book = make_book(copies=1)
    lib.borrow_book(book.id, 1, due_date)
    assert lib.get_book(book.id).available is False
    assert lib.update_book(book.id, {"copies": 2}).available is True


def test_borrow_more_than_available_is_rejected(lib, make_book, due_date):
    book = make_book(copies=2)
    with pytest.raises(BusinessRuleError, match="Not enough copies"):
        lib.borrow_book(book.id, 3, due_date)
    assert lib.get_book(book.id).copies == 2
    assert lib.list_borrows(book.id) == []


def test_borrow_from_empty_shelf(lib, make_book, due_date):
    book = make_book(copies=0)
    with pytest.raises(BusinessRuleError):
        lib.borrow_book(book.id, 1, due_date)


def test_borrow_missing_book(lib, due_date):
    with pytest.raises(NotFoundError):
        lib.borrow_book("0" * 24, 1, due_date)


@pytest.mark.parametrize("book_id, quantity, days, field", [
    ("not-an-id", 1, 7, "book"),
    (None, 0, 7, "quantity"),
    (None, -3, 7, "quantity"),
    (None, 1, -1, "dueDate"),
])
def test_borrow_validation(lib, make_book, book_id, quantity, days, field):
    book = make_book(copies=5)
    due = datetime.now(timezone.utc) + timedelta(days=days)
    with pytest.raises(ValidationError) as exc:
        lib.borrow_book(book_id or book.id, quantity, due)
    assert field in exc.value.errors
    assert lib.get_book(book.id).copies == 5


def test_failed_insert_rolls_back_decrement(lib, make_book, due_date):
    book = make_book(copies=5)
    with lib.db.connection() as conn:
        conn.execute(
            "CREATE TRIGGER reject_borrows BEFORE INSERT ON borrows "
            "BEGIN SELECT RAISE(ABORT, 'borrows are read-only'); END"
        )

    with pytest.raises(StoreError) as exc:
        lib.borrow_book(book.id, 2, due_date)

    assert "read-only" in exc.value.detail
    stored = lib.get_book(book.id)
    assert (stored.copies, stored.available) == (5, True)


def test_concurrent_borrows_never_oversell(lib, make_book, due_date):
    book = make_book(copies=5)
    start = threading.Barrier(2)
    outcomes = []

    def attempt():
        start.wait()
        try:
            lib.borrow_book(book.id, 3, due_date)
            outcomes.append("ok")
        except BusinessRuleError:
            outcomes.append("rejected")

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes) == ["ok", "rejected"]
    assert lib.get_book(book.id).copies == 2
    assert len(lib.list_borrows(book.id)) == 1


def test_summary_totals_per_book(lib, make_book, due_date):
    book_a = make_book(title="Book A", isbn="111", copies=10)
    book_b = make_book(title="Book B", isbn="222", copies=10)
    make_book(title="Never Borrowed", isbn="333")
    lib.borrow_book(book_a.id, 2, due_date)
    lib.borrow_book(book_a.id, 3, due_date)
    lib.borrow_book(book_b.id, 5, due_date)

    summary = {row["isbn"]: row for row in lib.borrow_summary()}

    assert set(summary) == {"111", "222"}
    assert summary["111"] == {"bookTitle": "Book A", "isbn": "111", "totalQuantityBorrowed": 5}
    assert summary["222"]["totalQuantityBorrowed"] == 5


def test_summary_empty(lib, make_book):
    make_book()
    assert lib.borrow_summary() == []


def test_summary_drops_deleted_books(lib, make_book, due_date):
    book = make_book(copies=4)
    lib.borrow_book(book.id, 4, due_date)
    lib.delete_book(book.id)
    assert lib.borrow_summary() == []
