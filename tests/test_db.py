"""Tests for the database runner."""

from datetime import datetime, time, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import TYPE_CHECKING
from uuid import UUID

import pytest

from runnbook.errors import ConfigurationError, RunnerError
from runnbook.runners.db import (
    DBQuery,
    DBRunner,
    Tx,
    TxClient,
    coerce_column,
    column_type_name,
    normalize_dsn,
    open_engine,
    separate_statements,
)

if TYPE_CHECKING:
    from pathlib import Path
    from typing import Any

if TYPE_CHECKING:
    from pytest_mock import MockerFixture
    from sqlalchemy import Engine

CREATE_ITEMS_SCRIPT = '''CREATE TABLE items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  title TEXT NOT NULL
);
INSERT INTO items (title) VALUES ('a;b');'''


@pytest.mark.parametrize('script, expected', (
    pytest.param('SELECT 1', ['SELECT 1'], id='single'),
    pytest.param('SELECT 1 \n', ['SELECT 1 \n'], id='single verbatim'),
    pytest.param('SELECT 1;SELECT 2;', ['SELECT 1;', 'SELECT 2;'], id='two'),
    pytest.param('SELECT 1;\nSELECT 2\n', ['SELECT 1;', 'SELECT 2'], id='trailing fragment'),
    pytest.param('SELECT 1;SELECT 2\\n', ['SELECT 1;', 'SELECT 2'], id='escaped newline'),
    pytest.param('SELECT 1;\n  \n', ['SELECT 1;'], id='blank tail'),
    pytest.param(
        "INSERT INTO t VALUES ('a;b');",
        ["INSERT INTO t VALUES ('a;b');"],
        id='single quoted',
    ),
    pytest.param(
        'SELECT "a;b" FROM t; SELECT 2',
        ['SELECT "a;b" FROM t;', 'SELECT 2'],
        id='double quoted',
    ),
    pytest.param(
        CREATE_ITEMS_SCRIPT,
        [
            'CREATE TABLE items (\n  id INTEGER PRIMARY KEY AUTOINCREMENT,\n  title TEXT NOT NULL\n);',
            "INSERT INTO items (title) VALUES ('a;b');",
        ],
        id='multi-line',
    ),
))
def test_separate_statements(script: str, expected: list[str]) -> None:
    """Split scripts on semicolons outside of quoted literals."""
    assert separate_statements(script) == expected


def test_run_last_statement_wins(engine: 'Engine') -> None:
    """Record the response of the last statement only."""
    runner = DBRunner('db', engine)

    assert runner.run(DBQuery(query='SELECT 1;SELECT 2;')) == {
        'rows': [{'2': 2}],
    }


def test_run_exec_and_query(engine: 'Engine') -> None:
    """Record counters of mutations and rows of queries."""
    runner = DBRunner('db', engine)

    assert runner.run(DBQuery(
        query="INSERT INTO users (name, score) VALUES ('alice', 3.14);",
    )) == {
        'last_insert_id': 1,
        'rows_affected': 1,
    }

    assert runner.run(DBQuery(
        query="INSERT INTO users (name) VALUES ('bob'), ('carol');",
    )) == {
        'last_insert_id': 3,
        'rows_affected': 2,
    }

    assert runner.run(DBQuery(
        query='SELECT id, name, score FROM users ORDER BY id;',
    )) == {
        'rows': [
            {'id': 1, 'name': 'alice', 'score': 3.14},
            {'id': 2, 'name': 'bob', 'score': None},
            {'id': 3, 'name': 'carol', 'score': None},
        ],
    }


def test_run_quoted_semicolon(engine: 'Engine') -> None:
    """Keep semicolons of string literals in one statement."""
    runner = DBRunner('db', engine)

    runner.run(DBQuery(query=CREATE_ITEMS_SCRIPT))

    assert runner.run(DBQuery(query='SELECT title FROM items')) == {
        'rows': [{'title': 'a;b'}],
    }


def test_run_rollback(engine: 'Engine') -> None:
    """Roll back every statement of a failing script."""
    runner = DBRunner('db', engine)

    with pytest.raises(RunnerError, match=r'no such table: missing'):
        runner.run(DBQuery(query=(
            "INSERT INTO users (name) VALUES ('alice');"
            'INSERT INTO missing VALUES (1);'
        )))

    assert runner.run(DBQuery(query='SELECT COUNT(*) AS count FROM users;')) == {
        'rows': [{'count': 0}],
    }


def test_run_inside_transaction(engine: 'Engine') -> None:
    """Run scripts inside SAVEPOINTs of a caller-owned transaction.

    The response is the same as with a fresh transaction, while the
    outcome is left to the enclosing transaction.
    """
    script = DBQuery(query="INSERT INTO users (name) VALUES ('alice');")

    with engine.connect() as connection:
        outer = connection.begin()
        runner = DBRunner('db', connection)

        nested = runner.run(script)

        with pytest.raises(RunnerError):
            runner.run(DBQuery(query='INSERT INTO missing VALUES (1);'))

        count = connection.exec_driver_sql('SELECT COUNT(*) FROM users').scalar()
        outer.rollback()

    assert count == 1

    fresh = DBRunner('db', engine).run(script)

    assert nested == fresh == {
        'last_insert_id': 1,
        'rows_affected': 1,
    }


def test_run_closes_mutation_result(engine: 'Engine', mocker: 'MockerFixture') -> None:
    """Close the cursor of a mutation once its counters are read."""
    result = mocker.Mock(lastrowid=4, rowcount=1)
    mocker.patch.object(Tx, 'exec', return_value=result)

    assert DBRunner('db', engine).run(DBQuery(
        query="INSERT INTO users (name) VALUES ('alice') RETURNING id;",
    )) == {
        'last_insert_id': 4,
        'rows_affected': 1,
    }

    result.close.assert_called_once_with()



def test_runner_owns_engine(tmp_path: 'Path') -> None:
    """Create and dispose an engine for a connection string."""
    runner = DBRunner.from_dsn('db', f'sq:///{tmp_path / "alias.db"}')

    assert runner.owned
    assert runner.run(DBQuery(query='SELECT 1 AS one')) == {
        'rows': [{'one': 1}],
    }

    runner.close()


@pytest.mark.parametrize('dsn', (
    pytest.param('nosuchdriver://host/db', id='unknown driver'),
    pytest.param('not a connection string', id='malformed'),
))
def test_open_engine_invalid(dsn: str) -> None:
    """Reject unusable connection strings."""
    with pytest.raises(ConfigurationError, match=r'^invalid dsn'):
        open_engine(dsn)


def test_invalid_client() -> None:
    """Reject clients which are neither engines nor connections."""
    with pytest.raises(ConfigurationError, match=r'^invalid db client'):
        TxClient('sqlite://')  # type: ignore[arg-type]


@pytest.mark.parametrize('dsn, expected', (
    pytest.param(
        'spanner://project/instance/database',
        'spanner+spanner:///projects/project/instances/instance/databases/database',
        id='spanner',
    ),
    pytest.param(
        'sp://project/instance/database?autocommit=true',
        'spanner+spanner:///projects/project/instances/instance/databases/database?autocommit=true',
        id='spanner alias with query',
    ),
    pytest.param('sqlite:///app.db', 'sqlite:///app.db', id='unchanged'),
))
def test_normalize_dsn(dsn: str, expected: str) -> None:
    """Rewrite connection string shorthands."""
    assert normalize_dsn(dsn) == expected


@pytest.mark.parametrize('value, type_name, expected', (
    pytest.param(b'3.14', 'DECIMAL', 3.14, id='decimal'),
    pytest.param(b'2.5', 'double', 2.5, id='double lowercase'),
    pytest.param(b'{"a":1}', 'JSONB', {'a': 1}, id='jsonb'),
    pytest.param(b'42', 'BIGINT', 42, id='integer'),
    pytest.param(b'42', '', 42, id='unknown'),
    pytest.param(b'alice', 'VARCHAR', 'alice', id='varchar'),
    pytest.param(bytearray(b'text'), 'TEXT', 'text', id='bytearray'),
    pytest.param(b'12:30:00', 'TIME', '12:30:00', id='time bytes'),
    pytest.param(b'2024-01-02 03:04:05', 'DATETIME', datetime(2024, 1, 2, 3, 4, 5), id='datetime'),
    pytest.param(b'2024-01-02', 'DATE', datetime(2024, 1, 2), id='date'),
    pytest.param(b'2024/01/02', 'DATE', datetime(2024, 1, 2), id='date with slashes'),
    pytest.param(b'Jan 2, 2024', 'DATE', datetime(2024, 1, 2), id='date with month name'),
    pytest.param(
        b'2024-01-02 03:04:05 +0000 UTC', 'TIMESTAMP',
        datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        id='timestamp with zone',
    ),
    pytest.param(Decimal('1.50'), 'NUMERIC', 1.5, id='decimal object'),
    pytest.param(time(1, 2, 3), 'TIME', '01:02:03', id='time object'),
    pytest.param(
        UUID('12345678-1234-5678-1234-567812345678'), 'UUID',
        '12345678-1234-5678-1234-567812345678',
        id='uuid',
    ),
    pytest.param(7, 'INTEGER', 7, id='typed'),
    pytest.param(None, 'TEXT', None, id='null'),
))
def test_coerce_column(value: 'Any', type_name: str, expected: 'Any') -> None:
    """Coerce driver values by declared column type."""
    assert coerce_column(value, type_name, 'column') == expected


@pytest.mark.parametrize('value, type_name, message', (
    pytest.param(b'abc', 'INT', r'^invalid column: evaluated column, but got INT\(abc\)$', id='integer'),
    pytest.param(b'[1]', 'JSONB', r'^invalid column: evaluated column, but got JSONB\(\[1\]\)$', id='jsonb'),
    pytest.param(b'soon', 'TIMESTAMP', r'^invalid column: evaluated column, but got TIMESTAMP', id='timestamp'),
    pytest.param(object(), '', r'^invalid column: evaluated column, but got object', id='object'),
    pytest.param(b'\xff', 'TEXT', r"^invalid column: evaluated column, but got TEXT\(b'\\xff'\)$", id='invalid utf-8'),
))
def test_coerce_column_invalid(value: 'Any', type_name: str, message: str) -> None:
    """Fail on values which can not be coerced."""
    with pytest.raises(RunnerError, match=message):
        coerce_column(value, type_name, 'column')


MYSQL = SimpleNamespace(
    constants=SimpleNamespace(
        FIELD_TYPE=SimpleNamespace(DECIMAL=0, LONG=3, JSON=245),
    ),
)


@pytest.mark.parametrize('description, dbapi, expected', (
    pytest.param(('c', 'TEXT'), None, 'TEXT', id='string'),
    pytest.param(('c', SimpleNamespace(name='JSONB')), None, 'JSONB', id='named'),
    pytest.param(('c', 3), MYSQL, 'LONG', id='mysql code'),
    pytest.param(('c', 3), None, '', id='code without driver'),
    pytest.param(('c', None), None, '', id='unknown'),
    pytest.param(('c',), None, '', id='short'),
))
def test_column_type_name(description: tuple, dbapi: 'Any', expected: str) -> None:
    """Resolve type names from cursor descriptions."""
    assert column_type_name(description, dbapi) == expected
