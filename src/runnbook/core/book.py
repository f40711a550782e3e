"""Book model and YAML loader.

A book is a single YAML document describing one scenario: runners,
seed variables, an optional guard and an ordered list of steps.
Steps are declared either as a sequence (positional) or as a mapping
from step name to payload (named).
"""

from datetime import timedelta
from pathlib import Path
from re import compile as regexp
from typing import TYPE_CHECKING, Any

from pydantic import Field, ValidationError, field_validator
from pydantic.json_schema import SkipJsonSchema
from yaml import SafeLoader, load
from yaml.error import MarkedYAMLError

from runnbook.errors import ConfigurationError, ErrorContext
from runnbook.models import SchemaModel
from runnbook.names import RunnerName, StepName

if TYPE_CHECKING:
    from io import TextIOBase

#: Duration declared as a number with a unit suffix, e.g. `30s` or `1.5M`.
_DURATION_PATTERN = regexp(r'^(?P<value>\d+(\.\d+)?)(?P<unit>[YmwdHhMSs])$')

#: Seconds per duration unit.
_DURATION_UNITS = {
    'Y': 31_556_952,
    'm': 2_629_746,
    'w': 604_800,
    'd': 86_400,
    'H': 3_600,
    'h': 3_600,
    'M': 60,
    'S': 1,
    's': 1,
}


class StepDefinition(SchemaModel):
    """Raw step declaration as written in a book."""

    key: StepName | None = Field(
        default=None,
        title='Step name',
        description='Name of the step, set only for books declaring steps as a mapping.',
    )

    payload: dict[str, Any] = Field(
        title='Step payload',
        description=(
            'Mapping with exactly one primary runner key and optional '
            '`test`, `dump` and `bind` side runner keys.'
        ),
    )


class Book(SchemaModel):
    """A single scenario definition."""

    desc: str = Field(
        default='Unknown',
        title='Description',
        description='Human-readable description used in step names and reports.',
    )

    runners: dict[RunnerName, str | dict[str, Any]] = Field(
        default_factory=dict,
        title='Runners',
        description='Runner name to a connection string, an URL or a runner mapping.',
        examples=[
            {'db': 'sqlite:///app.db', 'req': 'https://api.example.com'},
        ],
    )

    variables: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias='vars',
        title='Variables',
        description='Seed variables available to expressions as `vars`.',
    )

    steps: tuple[StepDefinition, ...] = Field(
        default=(),
        title='Steps',
        description='Ordered steps, either a sequence or a mapping of named steps.',
    )

    condition: str | None = Field(
        default=None,
        validation_alias='if',
        title='Guard',
        description='Expression; the scenario is skipped unless it evaluates to true.',
    )

    interval: float | None = Field(
        default=None,
        ge=0.0,
        title='Interval',
        description='Delay in seconds, or a duration like `30s`, before every step except the first.',
    )

    fail_fast: bool | None = Field(
        default=None,
        validation_alias='failFast',
        title='Fail fast',
        description='Abort a batch of books when this book fails.',
    )

    debug: bool | None = Field(
        default=None,
        title='Debug',
        description='Log step progress at INFO level.',
    )

    path: SkipJsonSchema[Path | None] = Field(
        default=None,
        exclude=True,
        title='Book path',
        description='Path of the loaded book file, set by the loader.',
    )

    @field_validator('steps', mode='before')
    @classmethod
    def normalize_steps(cls, value: Any) -> Any:  # noqa: ANN401
        """Turn a sequence or a mapping of steps into step definitions."""
        if isinstance(value, dict):
            return [
                {'key': key, 'payload': payload}
                for key, payload in value.items()
            ]

        if isinstance(value, (list, tuple)):
            return [
                item if isinstance(item, StepDefinition) else {'payload': item}
                for item in value
            ]

        return value

    @field_validator('interval', mode='before')
    @classmethod
    def parse_interval(cls, value: Any) -> Any:  # noqa: ANN401
        """Accept durations with unit suffixes and timedelta values."""
        if isinstance(value, timedelta):
            return value.total_seconds()

        if isinstance(value, str) and (match := _DURATION_PATTERN.match(value.strip())):
            return float(match.group('value')) * _DURATION_UNITS[match.group('unit')]

        return value

    @property
    def named(self) -> bool:
        """Whether every step of the book is named."""
        return bool(self.steps) and all(step.key for step in self.steps)

    @property
    def root(self) -> Path:
        """Directory used to resolve relative paths of the book."""
        if self.path is None:
            return Path.cwd()

        return self.path.parent


def parse_book(content: 'TextIOBase | str', path: Path | None = None) -> Book:
    """Parse and validate a book.

    Args:
        content: YAML content as a string or file-like object.
        path: Path of the book file, if any.

    Returns:
        Validated book.

    Raises:
        ConfigurationError: If the content is not valid YAML or does
            not describe a valid book.
    """
    filename = f'{path}' if path else None

    try:
        data = load(content, Loader=SafeLoader)  # noqa: S506

    except MarkedYAMLError as base:
        raise ConfigurationError.from_yaml_error(base) from base

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigurationError(
            'Book must be a mapping',
            context=ErrorContext(filename=filename, element=data),
        )

    try:
        book = Book.model_validate(data)

    except ValidationError as base:
        raise ConfigurationError.from_pydantic_error(
            base,
            data=data,
            filename=filename,
        ) from base

    return book.model_copy(update={'path': path})


def load_book(path: Path | str) -> Book:
    """Load a book from a file.

    Args:
        path: Path to the YAML book.

    Returns:
        Validated book.

    Raises:
        ConfigurationError: If the file can not be read or parsed.
    """
    path = Path(path)

    try:
        with path.open('rt', encoding='utf-8') as content:
            return parse_book(content, path)

    except OSError as base:
        raise ConfigurationError(
            f'Can not read book: {base.strerror}',
            context=ErrorContext(filename=f'{path}'),
        ) from base
