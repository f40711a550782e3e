"""Built-in `dump` side runner."""

from json import dumps
from typing import TYPE_CHECKING

from click import echo

from runnbook.core.expand import evaluate

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import TextIO

if TYPE_CHECKING:
    from runnbook.values import Value


def run_dump(expression: str, store: 'Mapping[str, Value]',
             out: 'TextIO | None' = None) -> None:
    """Evaluate an expression and print the result.

    Strings are written verbatim; other values as indented JSON.

    Args:
        expression: Expression to evaluate.
        store: Flattened store view.
        out: Output stream, standard output by default.
    """
    value = evaluate(expression, store)

    if isinstance(value, str):
        echo(value, file=out)
    else:
        echo(dumps(value, indent=2, ensure_ascii=False, default=str), file=out)
