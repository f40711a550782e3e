"""Built-in `test` side runner."""

from typing import TYPE_CHECKING

from runnbook.core.expand import evaluate
from runnbook.errors import ErrorContext, ExpectationError

if TYPE_CHECKING:
    from collections.abc import Mapping

if TYPE_CHECKING:
    from runnbook.values import Value


def run_test(expression: str, store: 'Mapping[str, Value]') -> None:
    """Assert that an expression holds.

    Only the boolean `true` passes; truthy values such as non-empty
    strings or non-zero numbers do not.

    Args:
        expression: Expression to evaluate.
        store: Flattened store view.

    Raises:
        ExpectationError: If the expression does not evaluate to `true`.
        ExpansionError: If the expression can not be evaluated.
    """
    if evaluate(expression, store) is not True:
        raise ExpectationError(
            f'({expression}) is not true',
            context=ErrorContext(context=dict(store), element=expression),
        )
