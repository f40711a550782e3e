"""Expansion of `{{ expr }}` placeholders in step payloads.

A payload is dumped to a YAML document, every placeholder is replaced
with the textual form of its evaluated expression, and the document is
loaded back. Going through the text allows placeholders inside mapping
keys and multi-line scalars, and lets a placeholder that spans a whole
scalar produce a value of a different type than the surrounding literal.

Expressions use the Jinja2 expression syntax and are evaluated in a
sandboxed environment against a flattened view of the store.
"""

from collections.abc import Mapping
from json import dumps
from re import compile as regexp
from typing import TYPE_CHECKING, Any

from jinja2 import StrictUndefined, TemplateError, Undefined
from jinja2.sandbox import SandboxedEnvironment
from yaml import SafeDumper, YAMLError, dump, safe_load

from runnbook.errors import ErrorContext, ExpansionError
from runnbook.names import STRING_HELPER_KEY

if TYPE_CHECKING:
    from re import Match

if TYPE_CHECKING:
    from yaml import Node

    from runnbook.values import RuntimeValue, Value

#: Opening delimiter of a placeholder.
PLACEHOLDER_START = '{{'

#: Expression text, never crossing a closing delimiter.
_EXPRESSION = r'(?:(?!}}).)+?'

#: A placeholder spanning a whole double-quoted scalar, or
#: a placeholder embedded into a longer double-quoted scalar.
_PLACEHOLDER_PATTERN = regexp(
    rf'(?<!\\)"{{{{\s*(?P<whole>{_EXPRESSION})\s*}}}}"'
    rf'|{{{{\s*(?P<inner>{_EXPRESSION})\s*}}}}',
)

#: Strings which YAML would load back as numbers.
_NUMBER_PATTERN = regexp(r'^[+-]?\d+(?:\.\d+)?$')


class StoreEnvironment(SandboxedEnvironment):
    """Sandboxed environment resolving dotted names as mapping keys first.

    Stored values come from JSON documents and SQL rows, so a key like
    `items` or `get` must win over the method of the same name.
    """

    def getattr(self, obj: Any, attribute: str) -> Any:  # noqa: ANN401
        if isinstance(obj, Mapping):
            try:
                return obj[attribute]
            except (TypeError, LookupError):
                pass

        return super().getattr(obj, attribute)


_environment = StoreEnvironment(undefined=StrictUndefined)


class ExpansionDumper(SafeDumper):
    """YAML dumper placing every templated string into a double-quoted scalar."""


def _represent_str(dumper: ExpansionDumper, data: str) -> 'Node':
    style = '"' if PLACEHOLDER_START in data else None
    return dumper.represent_scalar('tag:yaml.org,2002:str', data, style=style)


ExpansionDumper.add_representer(str, _represent_str)


def _as_string(value: Any) -> str:  # noqa: ANN401
    return f'{value}'


def evaluate(expression: str, store: 'Mapping[str, Value]') -> 'RuntimeValue':
    """Evaluate an expression against a store view.

    Args:
        expression: Expression in the Jinja2 expression syntax.
        store: Flattened store view, as built by `Store.to_map`.

    Returns:
        Result of the expression.

    Raises:
        ExpansionError: If the expression can not be compiled or
            evaluated, or references an undefined name.
    """
    error_context = ErrorContext(
        context=dict(store),
        element=expression,
    )

    try:
        compiled = _environment.compile_expression(expression, undefined_to_none=False)
        result = compiled(**store, **{STRING_HELPER_KEY: _as_string})

    except TemplateError as base:
        raise ExpansionError(
            f'can not evaluate ({expression}): {base.message}',
            context=error_context,
        ) from base

    except Exception as base:
        raise ExpansionError(
            f'can not evaluate ({expression}): {base!r}',
            context=error_context,
        ) from base

    if isinstance(result, Undefined):
        raise ExpansionError(
            f'can not evaluate ({expression}): undefined value',
            context=error_context,
        )

    return result


def _render(result: 'RuntimeValue', *, whole: bool) -> str | None:
    """Render an expression result as YAML text.

    Args:
        result: Result of the expression.
        whole: Whether the placeholder spans a whole scalar.

    Returns:
        YAML text to insert, or None if the result type is unsupported.
    """
    if isinstance(result, bool) or not isinstance(result, (str, int)):
        return None

    if isinstance(result, int):
        return f'{result}'

    if not whole:
        return dumps(result, ensure_ascii=False)[1:-1]

    if not result or _NUMBER_PATTERN.match(result):
        return f"'{result}'"

    if '\n' in result or '\r' in result:
        return dumps(result, ensure_ascii=False)

    return result


def expand(value: 'Value', store: 'Mapping[str, Value]') -> 'Value':
    """Resolve every placeholder in a value.

    Args:
        value: Step payload, possibly containing `{{ expr }}` placeholders
            in mapping keys and string values.
        store: Flattened store view, as built by `Store.to_map`.

    Returns:
        The value with all placeholders resolved. A value without
        placeholders is returned unchanged.

    Raises:
        ExpansionError: If an expression fails or yields a value
            which can not be inserted into the document.
    """
    document = dump(
        value,
        Dumper=ExpansionDumper,
        width=float('inf'),
        allow_unicode=True,
        sort_keys=False,
    )

    if PLACEHOLDER_START not in document:
        return value

    def replace(match: 'Match[str]') -> str:
        whole = match.group('whole') is not None
        expression = safe_load(f'"{match.group('whole' if whole else 'inner')}"')

        try:
            result = evaluate(expression, store)
        except ExpansionError as base:
            raise ExpansionError(
                base.message,
                context=ErrorContext(context=dict(store), element=document),
            ) from base

        rendered = _render(result, whole=whole)
        if rendered is None:
            raise ExpansionError(
                f'invalid format: {result!r} is not a string or an integer',
                context=ErrorContext(element=document),
            )

        return rendered

    try:
        expanded = _PLACEHOLDER_PATTERN.sub(replace, document)
        return safe_load(expanded)

    except ExpansionError:
        raise

    except YAMLError as base:
        raise ExpansionError(
            'expanded document is not valid YAML',
            context=ErrorContext(element=document),
        ) from base
