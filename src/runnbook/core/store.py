"""Accumulating store of a scenario run.

The store keeps seed variables, results of executed steps and names
bound by the `bind` side runner. Expressions never see the store
itself, only a flattened deep-copied view built by `Store.to_map`.
"""

from copy import deepcopy
from typing import TYPE_CHECKING

from runnbook.errors import ConfigurationError
from runnbook.names import (
    NAME_PATTERN,
    RESERVED_STORE_KEYS,
    STORE_STEPS_KEY,
    STORE_VARS_KEY,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

if TYPE_CHECKING:
    from runnbook.values import Value


class Store:
    """Variables and step results visible to expressions.

    Steps are recorded either positionally (a list indexed by step
    number) or by name (a mapping keyed by step name). The mode is
    fixed when the store is created.
    """

    def __init__(self, variables: 'Mapping[str, Value] | None' = None, *,
                 named: bool = False) -> None:
        """Initialize an empty store.

        Args:
            variables: Seed variables of the scenario.
            named: Whether step results are recorded by name.
        """
        self.vars: dict[str, Value] = dict(deepcopy(variables or {}))
        self.steps: list[Value] | dict[str, Value] = {} if named else []
        self.bound: dict[str, Value] = {}

    def record(self, value: 'Value', key: str | None = None) -> None:
        """Record a step result.

        Args:
            value: Result of the step.
            key: Step name, required in named mode.

        Raises:
            ConfigurationError: If a named store receives no key.
        """
        if isinstance(self.steps, list):
            self.steps.append(value)
            return

        if not key:
            raise ConfigurationError('step name is required to record a named step')

        self.steps[key] = value

    def bind(self, name: str, value: 'Value') -> None:
        """Bind a value to a top-level name.

        Args:
            name: Name visible to expressions.
            value: Value to bind.

        Raises:
            ConfigurationError: If the name is reserved or malformed.
        """
        if name in RESERVED_STORE_KEYS:
            raise ConfigurationError(f"'{name}' is reserved and can not be bound")

        if not NAME_PATTERN.match(name):
            raise ConfigurationError(f"'{name}' is not a valid name to bind")

        self.bound[name] = value

    def to_map(self) -> dict[str, 'Value']:
        """Build the flattened view used by expressions.

        Returns:
            A deep copy of `{'vars': ..., 'steps': ..., **bound}`.
        """
        return deepcopy({
            STORE_VARS_KEY: self.vars,
            STORE_STEPS_KEY: self.steps,
            **self.bound,
        })

    def __len__(self) -> int:
        """Number of recorded step slots."""
        return len(self.steps)
