"""Pytest file collector for books."""

from typing import TYPE_CHECKING

import pytest

from runnbook.core.book import load_book

from .item import BookItem

if TYPE_CHECKING:
    from collections.abc import Iterable


class BookFile(pytest.File):
    """Pytest file collector for a single book.

    The book is loaded and validated at collection time, so a malformed
    book is reported as a collection error.
    """

    __test__ = False

    def collect(self) -> 'Iterable[BookItem]':
        """Collect the book as a single test item.

        Returns:
            Iterable with one `BookItem`.

        Raises:
            ConfigurationError: If the book can not be loaded.
        """
        book = load_book(self.path)

        yield BookItem.from_parent(
            self,
            name=self.path.stem,
            book=book,
        )
