"""Pytest item running a single book."""

from typing import TYPE_CHECKING

import pytest

from runnbook.core.operator import Operator
from runnbook.errors import RunnError

if TYPE_CHECKING:
    from typing import Any

if TYPE_CHECKING:
    from _pytest._code.code import ExceptionInfo, TerminalRepr

    from runnbook.core.book import Book


class BookItem(pytest.Item):
    """Pytest item executing a book with an operator."""

    __test__ = False

    def __init__(self, *, book: 'Book', **kwargs: 'Any') -> None:
        """Initialize a pytest item backed by a book.

        Args:
            book: Loaded book.
            **kwargs: Keyword pytest.Item arguments.
        """
        super().__init__(**kwargs)

        self.book = book

    def runtest(self) -> None:
        """Run the book.

        Raises:
            StepError: If a step of the book fails.
        """
        operator = Operator(
            self.book,
            variables=getattr(self.config, 'runn_variables', None),
        )
        try:
            operator.run()
        finally:
            operator.close()

        if operator.skipped:
            pytest.skip(f"'{self.book.desc}' is skipped")

    def repr_failure(self, excinfo: 'ExceptionInfo[BaseException]',
                     style: 'Any' = None) -> 'str | TerminalRepr':
        """Render book errors without the Python traceback."""
        if isinstance(excinfo.value, RunnError):
            return f'{excinfo.value}'

        return super().repr_failure(excinfo, style=style)

    def reportinfo(self) -> tuple['Any', int | None, str]:
        """Location of the item in reports."""
        return self.path, 0, f'book: {self.book.desc}'
