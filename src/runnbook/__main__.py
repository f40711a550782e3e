"""Command-line interface for running books.

Books are selected by glob patterns and run one after another; the exit
status is non-zero when any book fails.
"""

import logging
from json import dumps
from typing import TYPE_CHECKING

from click import BadParameter, ClickException, UsageError, argument, echo, group, option

from runnbook.core.book import Book
from runnbook.core.operator import Operators
from runnbook.errors import RunnError
from runnbook.settings import Settings
from runnbook.values import parse_assignments

if TYPE_CHECKING:
    from click import Context, Parameter

    from runnbook.values import Value

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def parse_variables(ctx: 'Context',  # noqa: ARG001
                    param: 'Parameter',  # noqa: ARG001
                    value: tuple[str, ...]) -> dict[str, 'Value']:
    """Parse `--var KEY=VALUE` options into variables."""
    try:
        return parse_assignments(value)
    except ValueError as base:
        raise BadParameter(f'{base}') from base


@group(help='Run declarative scenario books.')
def cli() -> None:
    """Root CLI group for runnbook tools."""
    return None


@cli.command(
    name='run',
    help='Run books matching PATTERN and print a summary of the results.',
)
@option(
    '--fail-fast',
    is_flag=True,
    default=False,
    help='Stop on the first failing book.',
)
@option(
    '--debug',
    is_flag=True,
    default=False,
    help='Print step progress and debug logs.',
)
@option(
    '--json', 'as_json',
    is_flag=True,
    default=False,
    help='Print the results as JSON.',
)
@option(
    '--var', 'variables',
    multiple=True,
    metavar='KEY=VALUE',
    callback=parse_variables,
    help='Override a seed variable of every book.',
)
@argument(
    'patterns',
    nargs=-1,
    required=True,
)
def run(fail_fast: bool, debug: bool, as_json: bool,
        variables: dict[str, 'Value'], patterns: tuple[str, ...]) -> None:
    """Run books.

    Args:
        fail_fast: Whether to stop on the first failing book.
        debug: Whether to print step progress.
        as_json: Whether to print results as JSON.
        variables: Variables overriding seed variables.
        patterns: Glob patterns of book files.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format=LOG_FORMAT,
    )

    overrides = {}
    if fail_fast:
        overrides['fail_fast'] = True
    if debug:
        overrides['debug'] = True

    try:
        operators = Operators.load(
            *patterns,
            variables=variables,
            settings=Settings(**overrides),
        )
        if not operators.operators:
            raise UsageError(f'no books found: {' '.join(patterns)}')

        result = operators.run_n()

    except RunnError as error:
        raise ClickException(f'{error}') from error

    if as_json:
        result.out_json()
    else:
        result.out(verbose=debug)

    if result.has_failure():
        raise SystemExit(1)


@cli.command(
    name='check',
    help='Validate books matching PATTERN without running them.',
)
@argument(
    'patterns',
    nargs=-1,
    required=True,
)
def check(patterns: tuple[str, ...]) -> None:
    """Load and build books without running them.

    Args:
        patterns: Glob patterns of book files.
    """
    try:
        operators = Operators.load(*patterns)

    except RunnError as error:
        raise ClickException(f'{error}') from error

    for operator in operators.operators:
        echo(f'{operator.book.path}: {len(operator.steps)} steps')
        operator.close()


@cli.command(
    name='schema',
    help='Print the book JSON Schema to standard output.',
)
def print_schema() -> None:
    """Generate and print the JSON Schema of books."""
    echo(dumps(Book.model_json_schema(), ensure_ascii=False, indent=4))


if __name__ == '__main__':
    cli()
