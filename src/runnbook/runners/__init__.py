"""Runners and step action variants.

A step has at most one primary action. Which runner performs it is
resolved once, when the step is built, and stored as a tagged variant:

- `HTTPAction`: request sent by a named HTTP runner;
- `DBAction`: SQL script run by a named database runner;
- `ExecAction`: shell command;
- `IncludeAction`: another book run as a child scenario.

The payload kept in an action is the raw one; it is expanded against
the store right before the action runs.
"""

from typing import TYPE_CHECKING, Any, Literal

from pydantic import Field, ValidationError

from runnbook.errors import ConfigurationError, ErrorContext
from runnbook.models import SchemaModel

from .db import DBQuery, DBRunner
from .exec import ExecCommand, ExecRunner
from .http import HTTPRequest, HTTPRunner, HTTPRunnerConfig
from .include import IncludeConfig, IncludeRunner

if TYPE_CHECKING:
    from runnbook.settings import Settings

#: URL schemes served by the HTTP runner.
HTTP_SCHEMES = ('http://', 'https://')


class DBRunnerConfig(SchemaModel):
    """Mapping form of a database runner declaration."""

    dsn: str = Field(
        title='Connection string',
        description='SQLAlchemy URL or one of the supported shorthands.',
        examples=['sqlite:///app.db', 'sq:///app.db', 'spanner://project/instance/database'],
    )


class HTTPAction(SchemaModel):
    """Request sent by an HTTP runner."""

    kind: Literal['http'] = 'http'
    runner: HTTPRunner
    payload: dict[str, Any]


class DBAction(SchemaModel):
    """Script run by a database runner."""

    kind: Literal['db'] = 'db'
    runner: DBRunner
    payload: dict[str, Any]


class ExecAction(SchemaModel):
    """Shell command."""

    kind: Literal['exec'] = 'exec'
    payload: dict[str, Any]


class IncludeAction(SchemaModel):
    """Included book."""

    kind: Literal['include'] = 'include'
    payload: str | dict[str, Any]


type Action = HTTPAction | DBAction | ExecAction | IncludeAction

type Runner = HTTPRunner | DBRunner


def build_runner(name: str, definition: Any,  # noqa: ANN401
                 settings: 'Settings') -> Runner:
    """Build a runner from its book declaration.

    Strings starting with `http://` or `https://` and mappings with
    an `endpoint` declare HTTP runners. Other strings and mappings
    with a `dsn` declare database runners.

    Args:
        name: Runner name.
        definition: Connection string, URL or runner mapping.
        settings: Runtime settings.

    Returns:
        Runner instance.

    Raises:
        ConfigurationError: If the declaration is invalid.
    """
    if isinstance(definition, str):
        if definition.startswith(HTTP_SCHEMES):
            definition = {'endpoint': definition}
        else:
            definition = {'dsn': definition}

    if not isinstance(definition, dict):
        raise ConfigurationError(
            f"invalid runner '{name}'",
            context=ErrorContext(element={name: definition}),
        )

    try:
        if 'endpoint' in definition:
            config = HTTPRunnerConfig.model_validate(definition)
            return HTTPRunner(
                name,
                config.endpoint,
                timeout=config.timeout or settings.http_timeout,
            )

        db_config = DBRunnerConfig.model_validate(definition)

    except ValidationError as base:
        raise ConfigurationError.from_pydantic_error(
            base,
            data=definition,
        ) from base

    return DBRunner.from_dsn(name, db_config.dsn)


__all__ = (
    'Action',
    'DBAction',
    'DBQuery',
    'DBRunner',
    'ExecAction',
    'ExecCommand',
    'ExecRunner',
    'HTTPAction',
    'HTTPRequest',
    'HTTPRunner',
    'IncludeAction',
    'IncludeConfig',
    'IncludeRunner',
    'Runner',
    'build_runner',
)
