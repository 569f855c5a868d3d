from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import event

from smile_backend.db import configure_database, get_engine
from smile_backend.services import init_db


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'test.sqlite'}"


@pytest.fixture(autouse=True)
def database(db_url: str) -> Iterator[None]:
    """Fresh SQLite file with all tables for every test."""
    configure_database(db_url, echo=False)
    init_db()
    yield
    get_engine().dispose()


@pytest.fixture
def inserts() -> Iterator[list[str]]:
    """Collects every INSERT statement sent to the store."""
    statements: list[str] = []

    def _record(conn, cursor, statement, parameters, context, executemany) -> None:
        if statement.lstrip().upper().startswith("INSERT"):
            statements.append(statement)

    engine = get_engine()
    event.listen(engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine, "before_cursor_execute", _record)
