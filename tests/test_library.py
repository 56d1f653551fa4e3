import pytest

from library_api.errors import NotFoundError, StoreError, ValidationError
from library_api.library import Library


@pytest.mark.parametrize("copies", [0, 1, 7])
def test_create_book_sets_available_from_copies(make_book, copies):
    book = make_book(copies=copies)
    assert book.available == (copies > 0)
    assert len(book.id) == 24


def test_create_ignores_client_supplied_available(lib):
    book = lib.create_book({"title": "Emma", "author": "Jane Austen", "genre": "fiction",
                            "isbn": "9780141439587", "copies": 0, "available": True})
    assert book.available is False
    assert book.genre.value == "FICTION"


def test_create_book_validation(lib):
    with pytest.raises(ValidationError) as exc:
        lib.create_book({"title": "", "author": "A", "genre": "POETRY", "isbn": "1", "copies": -2})
    errors = exc.value.errors
    assert set(errors) == {"title", "genre", "copies"}
    assert errors["copies"]["value"] == -2
    assert errors["copies"]["properties"]["min"] == 0
    assert lib.list_books()[1]["totalBooks"] == 0


def test_duplicate_isbn_is_a_store_error(make_book):
    make_book(isbn="9780000000001")
    with pytest.raises(StoreError) as exc:
        make_book(isbn="9780000000001")
    assert "UNIQUE" in exc.value.detail


def test_persistence(db_url, make_book):
    book = make_book(title="Sapiens")
    other = Library(db_url=db_url)
    try:
        assert other.get_book(book.id).title == "Sapiens"
    finally:
        other.close()


def test_get_book_not_found(lib):
    with pytest.raises(NotFoundError):
        lib.get_book("0" * 24)


def test_update_book_partial(lib, make_book):
    book = make_book(title="Old Title", author="Old Author")
    updated = lib.update_book(book.id, {"title": "New Title"})
    assert updated.title == "New Title"
    assert updated.author == "Old Author"
    assert lib.get_book(book.id).title == "New Title"


def test_update_copies_to_zero_and_back(lib, make_book):
    book = make_book(copies=2)
    assert lib.update_book(book.id, {"copies": 0}).available is False
    assert lib.get_book(book.id).available is False
    assert lib.update_book(book.id, {"copies": 3}).available is True
    stored = lib.get_book(book.id)
    assert (stored.copies, stored.available) == (3, True)


def test_update_negative_copies_leaves_book_unchanged(lib, make_book):
    book = make_book(copies=4)
    with pytest.raises(ValidationError):
        lib.update_book(book.id, {"copies": -1})
    assert lib.get_book(book.id).copies == 4


def test_update_missing_book(lib):
    with pytest.raises(NotFoundError):
        lib.update_book("f" * 24, {"title": "x"})


def test_delete_book_cascades_to_borrows(lib, make_book, due_date):
    book = make_book(copies=10)
    keep = make_book(copies=10)
    for quantity in (1, 2, 3):
        lib.borrow_book(book.id, quantity, due_date)
    lib.borrow_book(keep.id, 1, due_date)
    assert len(lib.list_borrows(book.id)) == 3

    deleted = lib.delete_book(book.id)

    assert deleted.id == book.id
    assert lib.list_borrows(book.id) == []
    assert len(lib.list_borrows(keep.id)) == 1
    with pytest.raises(NotFoundError):
        lib.get_book(book.id)


def test_delete_missing_book(lib):
    with pytest.raises(NotFoundError):
        lib.delete_book("0" * 24)


def test_list_defaults(lib, make_book):
    for _ in range(12):
        make_book()
    books, pagination = lib.list_books()
    assert len(books) == 10
    assert [b.title for b in books[:2]] == ["Book 1", "Book 2"]
    assert pagination == {"currentPage": 1, "totalPages": 2, "totalBooks": 12, "limit": 10,
                          "hasNextPage": True, "hasPrevPage": False}


def test_list_filter_and_paginate(lib, make_book):
    for i in range(8):
        make_book(title=f"Fantasy {i}", genre="FANTASY")
    for _ in range(4):
        make_book(genre="SCIENCE")

    books, pagination = lib.list_books({"filter": "fantasy", "limit": "5", "page": "2"})

    assert [b.title for b in books] == ["Fantasy 5", "Fantasy 6", "Fantasy 7"]
    assert all(b.genre.value == "FANTASY" for b in books)
    assert pagination == {"currentPage": 2, "totalPages": 2, "totalBooks": 8, "limit": 5,
                          "hasNextPage": False, "hasPrevPage": True}


def test_list_sort(lib, make_book):
    for copies in (3, 9, 1):
        make_book(copies=copies)
    desc, _ = lib.list_books({"sortBy": "copies", "sort": "desc"})
    asc, _ = lib.list_books({"sortBy": "copies"})
    assert [b.copies for b in desc] == [9, 3, 1]
    assert [b.copies for b in asc] == [1, 3, 9]


def test_list_page_past_the_end(lib, make_book):
    make_book()
    books, pagination = lib.list_books({"page": 3})
    assert books == []
    assert pagination["totalBooks"] == 1
    assert pagination["hasNextPage"] is False


@pytest.mark.parametrize("query, field", [
    ({"filter": "POETRY"}, "filter"),
    ({"sortBy": "price"}, "sortBy"),
    ({"sort": "sideways"}, "sort"),
    ({"limit": "0"}, "limit"),
    ({"page": "-1"}, "page"),
    ({"limit": "ten"}, "limit"),
    ({"limit": "101"}, "limit"),
    ({"page": str(10**19)}, "page"),
])
def test_list_rejects_bad_query(lib, query, field):
    with pytest.raises(ValidationError) as exc:
        lib.list_books(query)
    assert field in exc.value.errors
