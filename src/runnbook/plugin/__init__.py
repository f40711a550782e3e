"""Pytest plugin collecting books as test items.

YAML files matching the pattern `test_*.yml` or `test_*.yaml` are
collected as books, one pytest item per book. A failing step fails
the item, a book skipped by its guard is reported as skipped.
"""

from re import match
from typing import TYPE_CHECKING

import pytest

from runnbook.values import parse_assignments

from .collector import BookFile

if TYPE_CHECKING:
    from pathlib import Path

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.config.argparsing import Parser
    from _pytest.nodes import Node


def pytest_addoption(parser: 'Parser') -> None:
    """Register pytest command-line options for runnbook.

    Args:
        parser: Pytest argument parser.
    """
    parser.addoption(
        '--runn-var',
        action='append',
        dest='runn_vars',
        default=[],
        metavar='KEY=VALUE',
        help=(
            'Override a seed variable of every collected book. '
            'Values are parsed as YAML scalars; may be repeated.'
        ),
    )


def pytest_configure(config: 'Config') -> None:
    """Parse book variables once per session.

    The parsed variables are attached to the pytest configuration
    object as `config.runn_variables`.

    Args:
        config: Pytest configuration object.

    Raises:
        pytest.UsageError: If a variable is not in the `KEY=VALUE` form.
    """
    try:
        variables = parse_assignments(config.getoption('runn_vars', default=[]) or [])
    except ValueError as base:
        raise pytest.UsageError(f'--runn-var: {base}') from base

    config.runn_variables = variables  # type: ignore[attr-defined]


def pytest_collect_file(parent: 'Node', file_path: 'Path') -> BookFile | None:
    """Collect YAML books.

    Args:
        parent: Parent pytest collection node.
        file_path: Path to the file being considered.

    Returns:
        A `BookFile` collector if the file matches the book pattern, otherwise ``None``.
    """
    if match(r'^test_.+\.ya?ml$', file_path.name):
        return BookFile.from_parent(
            parent,
            path=file_path,
        )

    return None
