"""Include runner.

Runs another book as a child scenario and records its store. The
included book sees `included` set to true in its guard, and its seed
variables can be overridden by the including step.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import Field, ValidationError

from runnbook.core.book import load_book
from runnbook.errors import ConfigurationError, ErrorContext
from runnbook.models import SchemaModel
from runnbook.names import STORE_STEPS_KEY, STORE_VARS_KEY

if TYPE_CHECKING:
    from runnbook.core.operator import Operator
    from runnbook.values import Value

logger = logging.getLogger(__name__)


class IncludeConfig(SchemaModel):
    """Payload of an include step."""

    path: str = Field(
        title='Book path',
        description='Path of the included book, relative to the including book.',
        examples=['common/login.yml'],
    )

    variables: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias='vars',
        title='Variables',
        description='Variables overriding the seed variables of the included book.',
    )

    @classmethod
    def from_payload(cls, payload: 'Value') -> 'IncludeConfig':
        """Build an include configuration from an expanded step payload.

        Args:
            payload: Book path, or a mapping with `path` and `vars`.

        Returns:
            Validated configuration.

        Raises:
            ConfigurationError: If the payload is malformed.
        """
        if isinstance(payload, str):
            payload = {'path': payload}

        if not isinstance(payload, dict):
            raise ConfigurationError(
                'include must be a book path or a mapping',
                context=ErrorContext(element=payload),
            )

        try:
            return cls.model_validate(payload)

        except ValidationError as base:
            raise ConfigurationError.from_pydantic_error(base, data=payload) from base


class IncludeRunner:
    """Runner executing included books on behalf of an operator."""

    def __init__(self, operator: 'Operator') -> None:
        """Initialize an include runner.

        Args:
            operator: Operator running the including book.
        """
        self.operator = operator

    def resolve(self, path: str) -> Path:
        """Resolve a book path against the directory of the including book."""
        resolved = Path(path)
        if not resolved.is_absolute():
            resolved = self.operator.book.root / resolved

        return resolved

    def run(self, config: IncludeConfig) -> dict[str, 'Value']:
        """Run an included book.

        Args:
            config: Include step payload.

        Returns:
            Store of the included book as `{vars, steps}`.
        """
        book = load_book(self.resolve(config.path))
        logger.debug("Include '%s' from %s", book.desc, book.path)

        child = self.operator.include(book, config.variables)
        try:
            child.run()
        finally:
            child.close()

        store = child.store.to_map()
        return {
            STORE_VARS_KEY: store[STORE_VARS_KEY],
            STORE_STEPS_KEY: store[STORE_STEPS_KEY],
        }
