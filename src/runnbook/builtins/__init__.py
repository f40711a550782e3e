"""Built-in side runners.

Side runners run after the primary action of a step, in a fixed order:
`test` asserts an expression, `dump` prints an expression and `bind`
stores expressions under top-level names.
"""

from .binders import run_bind
from .checkers import run_test
from .dumpers import run_dump

__all__ = (
    'run_bind',
    'run_dump',
    'run_test',
)
