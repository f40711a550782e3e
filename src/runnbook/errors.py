"""Core exception hierarchy.

Errors carry an optional `ErrorContext` describing where they happened:
the book file and position, the failing step, the store view and the
failing element (a payload, an expression or an expanded document).
`str()` of an error renders the message followed by this context:

    test failed on 'Users'.steps[1]: (steps[1].rows | length == 1) is not true
        in "books/users.yml"
        on 'Users'.steps[1]
            store:
              vars:
                id: 1
            ---
            steps[1].rows | length == 1
"""

from datetime import timedelta
from os import linesep
from typing import TYPE_CHECKING, Any, TypedDict

from yaml import safe_dump
from yaml.error import MarkedYAMLError

from runnbook.values import SCALARS

if TYPE_CHECKING:
    from typing import Self

if TYPE_CHECKING:
    from pydantic import ValidationError

#: Indentation of the location lines; snippets are indented twice as much.
FORMAT_INDENT = 4
#: Book name used when the failing book was not loaded from a file.
FORMAT_FILENAME = '<unicode string>'
#: Stand-in for values which can not be printed as YAML.
FORMAT_REPLACER = '<runtime object>'

SNIPPET_SEPARATOR = '---'


class ErrorContext(TypedDict, total=False):
    """Where and on what an error happened. Every key is optional."""

    filename: str | None
    line_num: int | None
    column_num: int | None

    #: Display name of the step, like `'desc'.steps[0]`.
    step_name: str | None

    #: Underlying parser or validation error.
    error: Exception | None

    #: Store view the failing expression was evaluated against.
    context: dict[str, Any] | None
    #: Payload, expression or expanded document that failed.
    element: Any


def _printable(value: Any) -> Any:  # noqa: ANN401
    """Replace values YAML can not represent safely."""
    match value:
        case timedelta():
            return f'{value}'
        case dict():
            return {f'{key}': _printable(item) for key, item in value.items()}
        case list() | tuple() | set():
            return [_printable(item) for item in value]

    if value is None or isinstance(value, SCALARS):
        return value

    return FORMAT_REPLACER


def _render_yaml(value: Any) -> str:  # noqa: ANN401
    return safe_dump(
        _printable(value),
        indent=2,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    ).removesuffix(f'...{linesep}')


class ErrorFormatter:
    """Renders error messages followed by their context."""

    @classmethod
    def format(cls, message: str, context: ErrorContext | None = None) -> str:
        """Render a message with its location and snippet.

        Args:
            message: Error message.
            context: Error context, if any.

        Returns:
            The message alone without context, otherwise the message
            followed by indented location and snippet lines.
        """
        if not context:
            return message

        indent = ' ' * FORMAT_INDENT
        lines = [
            message,
            *(f'{indent}{line}' for line in cls.location_lines(context)),
            *(f'{indent * 2}{line}' for line in cls.snippet_lines(context)),
        ]

        return f'{linesep.join(lines)}{linesep}'

    @staticmethod
    def location_lines(context: ErrorContext) -> list[str]:
        """Lines naming the book position and the failing step."""
        location = f'in "{context.get('filename') or FORMAT_FILENAME}"'

        if (line_num := context.get('line_num')) is not None:
            location += f', line {line_num + 1}'
            if (column_num := context.get('column_num')) is not None:
                location += f', column {column_num + 1}'

        lines = [location]
        if step_name := context.get('step_name'):
            lines.append(f'on {step_name}')

        return lines

    @staticmethod
    def snippet_lines(context: ErrorContext) -> list[str]:
        """Lines showing the failing source fragment or element.

        YAML parser errors show the marked source line. Other errors
        show the store view, if any, and the failing element. String
        elements (expressions and expanded documents) are shown as is.
        """
        error = context.get('error')
        if isinstance(error, MarkedYAMLError) and error.problem_mark is not None:
            snippet = error.problem_mark.get_snippet(indent=0) or ''
            return [line for line in snippet.splitlines() if line.strip()]

        if (element := context.get('element')) is None:
            return []

        parts = []
        if store := context.get('context'):
            parts.append(_render_yaml({'store': store}))
        parts.append(element if isinstance(element, str) else _render_yaml(element))

        return [
            line
            for part in parts
            for line in (*part.splitlines(), SNIPPET_SEPARATOR)
            if line.strip()
        ][:-1]


def _find_element(data: Any, loc: 'tuple[int | str, ...]') -> Any:  # noqa: ANN401
    """Find the innermost raw element addressed by a validation error location.

    Location parts missing in the data are skipped and the walk stops at
    the first scalar, since the raw data has not been normalized yet.

    Returns:
        The element wrapped into its parent, like `{key: value}` or
        `[value]`, or None if no part of the location was found.
    """
    parent: Any = None
    key: int | str | None = None
    found = data

    for part in loc:
        match found:
            case dict() if part in found:
                parent, key, found = found, part, found[part]
            case list() | tuple() if isinstance(part, int) and 0 <= part < len(found):
                parent, key, found = found, part, found[part]
            case dict() | list() | tuple():
                continue
            case _:
                break

    if isinstance(parent, dict):
        return {key: found}

    if parent is not None:
        return [found]

    return None


class RunnError(Exception, ErrorFormatter):
    """Base exception for all runnbook errors."""

    def __init__(self, message: str, *,
                 context: ErrorContext | None = None) -> None:
        """Initialize an error.

        Args:
            message: Human-readable error description.
            context: Error context containing optional runtime values.
        """
        self.message = message
        self.context = context

        super().__init__(message)

    def __str__(self) -> str:
        return self.format(self.message, self.context)


class ConfigurationError(RunnError):
    """Error raised when a book, a runner or a step is misconfigured.

    Configuration errors are detected before any I/O is performed.
    """

    @classmethod
    def from_yaml_error(cls, error: MarkedYAMLError) -> 'Self':
        """Wrap a YAML parser error, keeping the marked position."""
        mark = error.problem_mark or error.context_mark

        message = 'Invalid YAML'
        if error.problem:
            message += f': {error.problem}'

        return cls(message, context=ErrorContext(
            filename=mark.name if mark else None,
            line_num=mark.line if mark else None,
            column_num=mark.column if mark else None,
            error=error,
        ))

    @classmethod
    def from_pydantic_error(cls, error: 'ValidationError', *,
                            data: Any = None,  # noqa: ANN401
                            filename: str | None = None) -> 'Self':
        """Wrap a validation error of raw book data.

        The message is the one of the first validation issue which can
        be found in the data; the failing fragment becomes the snippet.

        Args:
            error: ValidationError raised by Pydantic.
            data: Validated raw data.
            filename: Name of the book file.

        Returns:
            Configuration error.
        """
        context = ErrorContext(filename=filename, error=error, element=data)

        if not data or not isinstance(data, dict):
            return cls('Type validation error', context=context)

        for details in error.errors(include_url=False, include_input=False):
            message = next(
                (line.strip() for line in details['msg'].splitlines() if line.strip()),
                None,
            )
            element = _find_element(data, details['loc'])
            if message and element is not None:
                return cls(message, context=ErrorContext({**context, 'element': element}))

        return cls('Validation error', context=context)


class ExpansionError(RunnError):
    """Error raised when a `{{ expr }}` placeholder can not be resolved.

    Raised for expression evaluation failures, undefined names and
    results of unsupported types.
    """


class RunnerError(RunnError):
    """Error raised when a runner fails to perform its I/O."""


class ExpectationError(RunnerError):
    """Error raised when a `test` expression does not hold."""


class StepError(RunnError):
    """Error raised when a step of a scenario fails.

    Wraps the underlying error with the display name of the failing step.
    """

    def __init__(self, message: str, *, step_name: str,
                 context: ErrorContext | None = None) -> None:
        """Initialize a step error.

        Args:
            message: Human-readable error description.
            step_name: Display name of the failing step.
            context: Error context containing optional runtime values.
        """
        self.step_name = step_name

        super().__init__(message, context=context)
