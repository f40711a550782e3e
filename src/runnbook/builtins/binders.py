"""Built-in `bind` side runner."""

from typing import TYPE_CHECKING

from runnbook.core.expand import evaluate
from runnbook.values import normalize

if TYPE_CHECKING:
    from collections.abc import Mapping

    from runnbook.core.store import Store


def run_bind(bindings: 'Mapping[str, str]', store: 'Store') -> None:
    """Evaluate expressions and bind results to top-level names.

    Every expression is evaluated against the store as it was before
    the first binding of the step.

    Args:
        bindings: Name to expression mapping.
        store: Store of the running scenario.

    Raises:
        ConfigurationError: If a name is reserved.
        ExpansionError: If an expression can not be evaluated.
    """
    view = store.to_map()
    values = {
        name: evaluate(expression, view)
        for name, expression in bindings.items()
    }

    for name, value in values.items():
        store.bind(name, normalize(value))
