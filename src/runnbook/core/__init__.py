"""Scenario runtime: books, store and placeholder expansion.

The operator lives in `runnbook.core.operator`; it depends on runners
and side runners which in turn rely on the modules exported here.
"""

from .book import Book, StepDefinition, load_book, parse_book
from .expand import evaluate, expand
from .store import Store

__all__ = (
    'Book',
    'StepDefinition',
    'Store',
    'evaluate',
    'expand',
    'load_book',
    'parse_book',
)
