"""Database runner.

Runs a multi-statement SQL script inside a single transaction and
records the response of the last statement. The runner works either
with an engine (every script gets a fresh connection) or with a
caller-owned connection, possibly inside an already open transaction,
in which case every script runs inside a SAVEPOINT.
"""

import logging
from datetime import datetime, time
from decimal import Decimal
from json import loads
from re import compile as regexp
from typing import TYPE_CHECKING, Any
from uuid import UUID

from dateutil.parser import parse as parse_datetime
from pydantic import Field
from sqlalchemy import Connection, Engine, create_engine, event
from sqlalchemy.dialects import registry
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, NoSuchModuleError, SQLAlchemyError

from runnbook.errors import ConfigurationError, RunnerError
from runnbook.models import SchemaModel
from runnbook.values import normalize

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import ModuleType

if TYPE_CHECKING:
    from sqlalchemy import CursorResult, NestedTransaction, RootTransaction

    from runnbook.values import RuntimeValue, Value

logger = logging.getLogger(__name__)

LAST_INSERT_ID_KEY = 'last_insert_id'
ROWS_AFFECTED_KEY = 'rows_affected'
ROWS_KEY = 'rows'

#: Aliases of the bundled SQLite dialect.
SQLITE_ALIASES = ('sq', 'sqlite3')

#: Google Cloud Spanner shorthand, `spanner://<project>/<instance>/<database>`.
_SPANNER_PATTERN = regexp(r'^(?:spanner|sp)://(?P<project>[^/]+)/(?P<instance>[^/]+)/(?P<database>[^/?]+)(?P<query>\?.*)?$')

#: Whitespace and escaped newlines left at the end of block scalars.
_TRAILING_ARTIFACTS = regexp(r'(?:\s|\\n)+$')

#: Zone abbreviation following a numeric offset, like `+0000 UTC`.
_ZONE_SUFFIX = regexp(r'(?<=[+-]\d{4})\s+[A-Z]{2,5}$')

_STATEMENT_TRIM = ' \n'


class DBQuery(SchemaModel):
    """Payload of a database step."""

    query: str = Field(
        title='SQL script',
        description='One or more `;` separated statements run in one transaction.',
        examples=[
            'SELECT * FROM users WHERE id = 1;',
        ],
    )


def separate_statements(script: str) -> list[str]:
    """Split a SQL script into statements.

    A `;` ends a statement unless it is inside a single or double
    quoted literal. Statements keep their terminating `;`.

    Args:
        script: SQL script.

    Returns:
        List of statements. A script without `;` is returned as is.
    """
    if ';' not in script:
        return [script]

    statements = []
    buffer: list[str] = []
    in_single = in_double = False

    for char in script:
        buffer.append(char)
        match char:
            case "'":
                in_single = not in_single
            case '"':
                in_double = not in_double
            case ';' if not in_single and not in_double:
                statements.append(''.join(buffer).strip(_STATEMENT_TRIM))
                buffer = []

    tail = _TRAILING_ARTIFACTS.sub('', ''.join(buffer))
    if in_double and tail.endswith('"'):
        tail = _TRAILING_ARTIFACTS.sub('', tail[:-1])

    if tail := tail.lstrip(_STATEMENT_TRIM):
        statements.append(tail)

    return statements


def _to_datetime(text: str) -> datetime:
    return parse_datetime(_ZONE_SUFFIX.sub('', text.strip()))


def _to_mapping(text: str) -> dict[str, 'Value']:
    value = loads(text)
    if not isinstance(value, dict):
        raise TypeError(f'{value!r} is not a mapping')

    return value


def _column_converter(type_name: str) -> 'Callable[[str], Value]':
    """Choose a converter for a raw column value by driver type name."""
    if 'TEXT' in type_name or 'CHAR' in type_name or type_name == 'TIME':
        return str

    if type_name in ('DECIMAL', 'FLOAT', 'DOUBLE'):
        return float

    if type_name in ('DATE', 'TIMESTAMP', 'DATETIME'):
        return _to_datetime

    if 'JSONB' in type_name:
        return _to_mapping

    return int


def coerce_column(value: 'RuntimeValue', type_name: str, column: str) -> 'Value':
    """Convert a column value returned by a driver into a `Value`.

    Raw byte values are parsed according to the declared column type.
    Values already typed by the driver are normalized.

    Args:
        value: Column value as returned by the driver.
        type_name: Driver type name of the column.
        column: Column name.

    Returns:
        Normalized value.

    Raises:
        RunnerError: If the value can not be converted.
    """
    type_name = type_name.upper()

    if isinstance(value, (bytes, bytearray, memoryview)):
        try:
            text = bytes(value).decode('utf-8')
        except UnicodeDecodeError as base:
            raise RunnerError(
                f'invalid column: evaluated {column}, but got {type_name}({bytes(value)!r})',
            ) from base

        try:
            return _column_converter(type_name)(text)

        except (ValueError, TypeError, OverflowError) as base:
            raise RunnerError(
                f'invalid column: evaluated {column}, but got {type_name}({text})',
            ) from base

    match value:
        case Decimal():
            return float(value)
        case time():
            return value.isoformat()
        case UUID():
            return f'{value}'

    try:
        return normalize(value)

    except TypeError as base:
        raise RunnerError(
            f'invalid column: evaluated {column}, but got {type(value).__name__}({value!r})',
        ) from base


def column_type_name(description: 'Sequence[Any]', dbapi: 'ModuleType | None' = None) -> str:
    """Extract the driver type name from a DB-API cursor description item.

    Args:
        description: Item of `cursor.description`.
        dbapi: DB-API module of the driver, used to resolve numeric codes.

    Returns:
        Type name, or an empty string if it can not be determined.
    """
    if len(description) < 2:  # noqa: PLR2004
        return ''

    type_code = description[1]

    if isinstance(type_code, str):
        return type_code

    if isinstance(name := getattr(type_code, 'name', None), str):
        return name

    if isinstance(type_code, int) and not isinstance(type_code, bool):
        constants = getattr(dbapi, 'constants', None)
        field_types = getattr(constants, 'FIELD_TYPE', None)
        if field_types is not None:
            for name, code in vars(field_types).items():
                if name.isupper() and code == type_code:
                    return name

    return ''


class Tx:
    """A transaction opened by `TxClient.begin`."""

    def __init__(self, connection: Connection,
                 transaction: 'RootTransaction | NestedTransaction', *,
                 owned: bool = False) -> None:
        """Initialize a transaction handle.

        Args:
            connection: Connection running the transaction.
            transaction: Root transaction or SAVEPOINT.
            owned: Whether the connection is closed with the transaction.
        """
        self.connection = connection
        self.transaction = transaction
        self.owned = owned

    def exec(self, statement: str) -> 'CursorResult[Any]':
        """Run a statement which does not return rows."""
        return self.connection.exec_driver_sql(statement)

    def query(self, statement: str) -> 'CursorResult[Any]':
        """Run a statement returning rows."""
        return self.connection.exec_driver_sql(statement)

    @property
    def dbapi(self) -> 'ModuleType | None':
        """DB-API module of the connection driver."""
        return getattr(self.connection.dialect, 'dbapi', None)

    def commit(self) -> None:
        """Commit the transaction and release an owned connection."""
        try:
            self.transaction.commit()
        finally:
            self._release()

    def rollback(self) -> None:
        """Roll back the transaction and release an owned connection."""
        try:
            self.transaction.rollback()
        finally:
            self._release()

    def _release(self) -> None:
        if self.owned:
            self.connection.close()


class TxClient:
    """Uniform transaction source over an engine or a connection.

    With an engine every transaction runs on a fresh connection.
    With a connection already inside a transaction every transaction
    is a SAVEPOINT, so the enclosing transaction stays in control of
    the final outcome.
    """

    def __init__(self, client: Engine | Connection) -> None:
        """Initialize a transaction source.

        Args:
            client: SQLAlchemy engine or connection.

        Raises:
            ConfigurationError: If the client is not an engine or a connection.
        """
        if not isinstance(client, (Engine, Connection)):
            raise ConfigurationError(f'invalid db client: {client!r}')

        self.client = client

    def begin(self) -> Tx:
        """Open a transaction.

        Returns:
            Transaction handle.
        """
        if isinstance(self.client, Engine):
            connection = self.client.connect()
            try:
                return Tx(connection, connection.begin(), owned=True)
            except SQLAlchemyError:
                connection.close()
                raise

        if self.client.in_transaction():
            return Tx(self.client, self.client.begin_nested())

        return Tx(self.client, self.client.begin())

    def close(self) -> None:
        """Dispose the engine, if any."""
        if isinstance(self.client, Engine):
            self.client.dispose()


def register_drivers() -> None:
    """Register SQLite aliases unless a dialect with the same name exists.

    Safe to call more than once.
    """
    for alias in SQLITE_ALIASES:
        try:
            registry.load(alias)
        except NoSuchModuleError:
            registry.register(alias, 'sqlalchemy.dialects.sqlite.pysqlite', 'SQLiteDialect_pysqlite')


def normalize_dsn(dsn: str) -> str:
    """Rewrite shorthand connection strings into SQLAlchemy URLs.

    Args:
        dsn: Connection string.

    Returns:
        SQLAlchemy URL.
    """
    if match := _SPANNER_PATTERN.match(dsn):
        project, instance, database = match.group('project', 'instance', 'database')
        return (
            f'spanner+spanner:///projects/{project}/instances/{instance}/databases/{database}'
            f'{match.group('query') or ''}'
        )

    return dsn


def _install_sqlite_hooks(engine: Engine) -> None:
    """Let pysqlite emit BEGIN itself so SAVEPOINT works inside transactions."""

    @event.listens_for(engine, 'connect')
    def disable_implicit_transactions(dbapi_connection: Any, _: Any) -> None:  # noqa: ANN401
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def emit_begin(connection: Connection) -> None:
        connection.exec_driver_sql('BEGIN')


def open_engine(dsn: str) -> Engine:
    """Create an engine for a connection string.

    Args:
        dsn: Connection string or SQLAlchemy URL.

    Returns:
        SQLAlchemy engine.

    Raises:
        ConfigurationError: If the connection string is invalid or
            its driver is not installed.
    """
    register_drivers()

    try:
        url = make_url(normalize_dsn(dsn))
        engine = create_engine(url)

    except (ArgumentError, NoSuchModuleError, ImportError) as base:
        raise ConfigurationError(f'invalid dsn {dsn!r}: {base}') from base

    if engine.dialect.name == 'sqlite':
        _install_sqlite_hooks(engine)

    return engine


class DBRunner:
    """Runner executing SQL scripts."""

    def __init__(self, name: str, client: Engine | Connection, *,
                 owned: bool = False) -> None:
        """Initialize a database runner.

        Args:
            name: Runner name declared in the book.
            client: Engine or connection.
            owned: Whether the runner disposes the engine on close.
        """
        self.name = name
        self.client = TxClient(client)
        self.owned = owned

    @classmethod
    def from_dsn(cls, name: str, dsn: str) -> 'DBRunner':
        """Create a runner owning an engine for a connection string."""
        return cls(name, open_engine(dsn), owned=True)

    def run(self, query: DBQuery) -> dict[str, 'Value']:
        """Run a script in one transaction.

        Args:
            query: Database step payload.

        Returns:
            Response of the last statement.

        Raises:
            RunnerError: If a statement, the rollback or the commit fails.
        """
        statements = separate_statements(query.query)
        response: dict[str, Value] = {}

        try:
            tx = self.client.begin()
        except SQLAlchemyError as base:
            raise RunnerError(f'can not begin transaction on {self.name}: {base}') from base

        for statement in statements:
            logger.debug('Run statement on %s: %s', self.name, statement)
            try:
                if statement.upper().startswith('SELECT'):
                    response = self._query(tx, statement)
                else:
                    response = self._exec(tx, statement)

            except (SQLAlchemyError, RunnerError) as base:
                try:
                    tx.rollback()
                except SQLAlchemyError as error:
                    raise RunnerError(f'rollback failed on {self.name}: {error}') from base

                if isinstance(base, RunnerError):
                    raise

                raise RunnerError(f'{base.__class__.__name__}: {base}') from base

        try:
            tx.commit()
        except SQLAlchemyError as base:
            raise RunnerError(f'commit failed on {self.name}: {base}') from base

        return response

    def _exec(self, tx: Tx, statement: str) -> dict[str, 'Value']:
        result = tx.exec(statement)

        try:
            return {
                LAST_INSERT_ID_KEY: self._fetch_counter(result, 'lastrowid'),
                ROWS_AFFECTED_KEY: self._fetch_counter(result, 'rowcount'),
            }
        finally:
            result.close()

    def _query(self, tx: Tx, statement: str) -> dict[str, 'Value']:
        result = tx.query(statement)

        description = ()
        if result.cursor is not None:
            description = result.cursor.description or ()

        columns = list(result.keys())
        types = [column_type_name(item, tx.dbapi) for item in description]
        types += [''] * (len(columns) - len(types))

        rows = [
            {
                column: coerce_column(value, type_name, column)
                for column, type_name, value in zip(columns, types, row, strict=True)
            }
            for row in result.fetchall()
        ]

        return {ROWS_KEY: rows}

    def _fetch_counter(self, result: 'CursorResult[Any]', attribute: str) -> int:
        try:
            value = getattr(result, attribute)

        except SQLAlchemyError as base:
            logger.debug('Can not fetch %s on %s: %s', attribute, self.name, base)
            return 0

        if not isinstance(value, int) or value < 0:
            return 0

        return value

    def close(self) -> None:
        """Release resources owned by the runner."""
        if self.owned:
            self.client.close()
