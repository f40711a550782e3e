"""Tests configurations and fixtures."""

from typing import TYPE_CHECKING

import pytest

from runnbook.runners.db import open_engine

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

if TYPE_CHECKING:
    from sqlalchemy import Engine

pytest_plugins = ['pytester']

USERS_SCHEMA = '''
CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    score DECIMAL
);
'''


@pytest.fixture
def engine(tmp_path: 'Path') -> 'Iterator[Engine]':
    """Provide a SQLite engine backed by a temporary database file.

    The database contains a single `users` table. The engine is
    created through the same code path as the engines of book
    runners, so SAVEPOINT support is enabled.

    Yields:
        SQLAlchemy engine, disposed after the test.
    """
    engine = open_engine(f'sqlite:///{tmp_path / "test.db"}')

    with engine.begin() as connection:
        connection.exec_driver_sql(USERS_SCHEMA)

    yield engine

    engine.dispose()


@pytest.fixture
def dsn(engine: 'Engine') -> str:
    """Connection string of the temporary database."""
    return engine.url.render_as_string(hide_password=False)
