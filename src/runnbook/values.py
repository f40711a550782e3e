"""Core type definitions for scenario values.

This module defines the closed value model shared by step payloads,
the scenario store and database rows: null, booleans, numbers, strings,
date and time scalars, sequences and string-keyed mappings.

It also provides a helper for recursively normalizing arbitrary runtime
objects (results of runners, YAML loaders, expressions) into strict values.
"""

from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta
from typing import Any

from yaml import YAMLError, safe_load

#: Scalars represent atomic values that can be consumed directly
#: by expressions, runners and reports.
type Scalar = date | datetime | timedelta | str | int | float | bool

#: A value is a JSON/YAML compatible tree of scalars,
#: sequences and string-keyed mappings.
type Value = Scalar | Sequence['Value'] | Mapping[str, 'Value'] | None

#: A value in runtime represents any Python object received from
#: drivers, HTTP clients, subprocesses or YAML loaders prior to
#: normalization into a strict `Value`.
type RuntimeValue = Any

MAPPINGS = (dict,)
SCALARS = (date, datetime, timedelta, str, int, float, bool)
SEQUENCES = (list, tuple, set)


def _normalize_key(value: RuntimeValue) -> str:
    """Validate a mapping key.

    Args:
        value: Candidate mapping key.

    Returns:
        The validated key as a string.

    Raises:
        TypeError: If the provided key is not a string.
    """
    if not isinstance(value, str):
        raise TypeError(f'Can not use {value!r} as mapping key')

    return value


def normalize(value: RuntimeValue) -> Value:
    """Recursively normalize a runtime value into a `Value`.

    Mappings are copied into plain dictionaries and every sequence
    (including tuples and sets) becomes a list.

    Args:
        value: Runtime value to normalize.

    Returns:
        A fully normalized value.

    Raises:
        TypeError: If the value or one of its items has an unsupported type.
    """
    if value is None:
        return None

    if isinstance(value, SCALARS):
        return value

    if isinstance(value, MAPPINGS):
        return {
            _normalize_key(key): normalize(item)
            for key, item in value.items()
        }

    if isinstance(value, SEQUENCES):
        return [
            normalize(item)
            for item in value
        ]

    raise TypeError(f'{value!r} has unsupported type')


def parse_assignments(items: 'Iterable[str]') -> dict[str, Value]:
    """Parse `KEY=VALUE` assignments into variables.

    Values are parsed as YAML scalars, so `id=1` binds an integer
    and `id='1'` binds a string. Values which are not valid YAML are
    kept as strings.

    Args:
        items: Assignments in the `KEY=VALUE` form.

    Returns:
        Mapping of variables.

    Raises:
        ValueError: If an item is not in the `KEY=VALUE` form.
    """
    variables: dict[str, Value] = {}

    for item in items:
        key, sep, raw = item.partition('=')
        if not sep or not key:
            raise ValueError(f'{item!r} is not in KEY=VALUE form')
        try:
            variables[key] = normalize(safe_load(raw)) if raw else ''
        except (YAMLError, TypeError):
            variables[key] = raw

    return variables
