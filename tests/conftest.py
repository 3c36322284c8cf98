import mongomock
import pytest


@pytest.fixture
def mock_db():
    return mongomock.MongoClient().db


@pytest.fixture
def patched_db(mock_db, monkeypatch):
    import database
    import main

    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(main, "db", mock_db)
    return mock_db
