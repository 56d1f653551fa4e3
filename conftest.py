from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from library_api.api import create_app
from library_api.library import Library


@pytest.fixture
def db_url(tmp_path):
    # A unique database file per test
    return f"sqlite:///{tmp_path / 'library.db'}"


@pytest.fixture
def lib(db_url):
    lib = Library(db_url=db_url)
    yield lib
    lib.close()


@pytest.fixture
def client(db_url):
    # Entering the client runs the lifespan, which opens and closes the database
    with TestClient(create_app(db_url)) as test_client:
        yield test_client


@pytest.fixture
def due_date():
    return (datetime.now(timezone.utc) + timedelta(days=14)).isoformat()


@pytest.fixture
def make_book(lib):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "title": f"Book {counter['n']}",
            "author": "Test Author",
            "genre": "FICTION",
            "isbn": f"978000000{counter['n']:04d}",
            "description": "",
            "copies": 5,
        }
        data.update(overrides)
        return lib.create_book(data)

    return _make
