"""Scenario operator.

The operator builds runners and steps of a book once, then runs the
steps in order against an accumulating store:

1. the guard (`if`) is evaluated; a result other than `true` skips
   the whole scenario;
2. for every step the primary payload is expanded against the store
   and passed to its runner, and the result is recorded;
3. the `test`, `dump` and `bind` side runners follow, in this order.

The first failure aborts the scenario and is raised as `StepError`
naming the failing step.
"""

import logging
import time
from functools import partial
from glob import glob
from logging import DEBUG, INFO
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import Field, ValidationError

from runnbook.builtins import run_bind, run_dump, run_test
from runnbook.errors import ConfigurationError, ErrorContext, RunnError, StepError
from runnbook.models import SchemaModel
from runnbook.names import (
    BIND_RUNNER_KEY,
    DUMP_RUNNER_KEY,
    EXEC_RUNNER_KEY,
    INCLUDE_RUNNER_KEY,
    INCLUDED_KEY,
    RESERVED_RUNNER_KEYS,
    SIDE_RUNNER_KEYS,
    TEST_RUNNER_KEY,
)
from runnbook.results import RunNResult, RunResult, StepResult
from runnbook.runners import (
    Action,
    DBAction,
    DBQuery,
    DBRunner,
    ExecAction,
    ExecCommand,
    ExecRunner,
    HTTPAction,
    HTTPRequest,
    HTTPRunner,
    IncludeAction,
    IncludeConfig,
    IncludeRunner,
    build_runner,
)
from runnbook.settings import Settings

from .book import load_book
from .expand import evaluate, expand
from .store import Store

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping
    from typing import TextIO

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

    from runnbook.runners import Runner
    from runnbook.values import Value

    from .book import Book

logger = logging.getLogger(__name__)

#: Step kinds used in failure messages.
_ACTION_KINDS = {
    'http': 'http request',
    'db': 'db query',
    'exec': 'exec command',
    'include': 'include',
}


class Step(SchemaModel):
    """A step built from its book declaration."""

    index: int = Field(title='Position of the step in the book')
    key: str | None = Field(default=None, title='Step name')
    name: str = Field(title='Display name')

    action: Action | None = Field(default=None, title='Primary action')

    test: str | None = Field(default=None, title='Expression to assert')
    dump: str | None = Field(default=None, title='Expression to print')
    bind: dict[str, str] | None = Field(default=None, title='Names to bind')

    @property
    def result_key(self) -> str:
        """Key of the step in reports."""
        return self.key or f'{self.index}'


def _parse_payload[T: SchemaModel](model: type[T], payload: 'Value') -> T:
    """Validate an expanded mapping payload against a request model."""
    if not isinstance(payload, dict):
        raise ConfigurationError(
            f'payload must be a mapping, got {payload!r}',
            context=ErrorContext(element=payload),
        )

    try:
        return model.model_validate(payload)

    except ValidationError as base:
        raise ConfigurationError.from_pydantic_error(base, data=payload) from base


class Operator:
    """Runner of a single book."""

    def __init__(self, book: 'Book', *,
                 variables: 'Mapping[str, Value] | None' = None,
                 included: bool = False,
                 settings: Settings | None = None,
                 connections: 'Mapping[str, Engine | Connection] | None' = None,
                 out: 'TextIO | None' = None) -> None:
        """Build runners and steps of a book.

        Args:
            book: Book to run.
            variables: Variables overriding the seed variables of the book.
            included: Whether the book is run by an `include` step.
            settings: Runtime settings, read from the environment by default.
            connections: Engines or caller-owned connections used instead of
                the connection strings of the database runners with the same
                names. A connection inside an open transaction makes every
                script of the book run inside a SAVEPOINT.
            out: Stream for the `dump` side runner, standard output by default.

        Raises:
            ConfigurationError: If a runner or a step is misconfigured.
        """
        self.book = book
        self.settings = settings or Settings()
        self.variables: dict[str, Value] = {**book.variables, **(variables or {})}
        self.included = included
        self.connections = dict(connections or {})
        self.out = out

        self.desc = book.desc
        self.debug = self.settings.debug if book.debug is None else book.debug
        self.interval = self.settings.interval if book.interval is None else book.interval
        self.fail_fast = self.settings.fail_fast if book.fail_fast is None else book.fail_fast
        self.log_level = INFO if self.debug else DEBUG

        keys = [definition.key for definition in book.steps]
        if any(keys) and not all(keys):
            raise ConfigurationError(
                'steps must be either all named or all unnamed',
                context=ErrorContext(filename=self.filename),
            )
        self.named = book.named

        self.runners: dict[str, Runner] = self._build_runners()
        self.exec_runner = ExecRunner(timeout=self.settings.exec_timeout)
        self.include_runner = IncludeRunner(self)

        self.steps: list[Step] = []
        try:
            for definition in book.steps:
                self.append_step(definition.payload, definition.key)
        except ConfigurationError:
            self.close()
            raise

        self.store = Store(self.variables, named=self.named)
        self.skipped = False
        self.result: RunResult | None = None

    @property
    def filename(self) -> str | None:
        """Path of the book file, if any."""
        if self.book.path is None:
            return None

        return f'{self.book.path}'

    def _build_runners(self) -> dict[str, 'Runner']:
        """Build runners declared in the book.

        Raises:
            ConfigurationError: Listing every invalid runner.
        """
        runners: dict[str, Runner] = {}
        errors: list[str] = []

        for name in (*self.book.runners, *self.connections):
            if name in RESERVED_RUNNER_KEYS:
                errors.append(f"runner name '{name}' is reserved for built-in runner")

        for name, client in self.connections.items():
            if name not in RESERVED_RUNNER_KEYS:
                runners[name] = DBRunner(name, client)

        for name, definition in self.book.runners.items():
            if name in RESERVED_RUNNER_KEYS or name in runners:
                continue
            try:
                runners[name] = build_runner(name, definition, self.settings)
            except ConfigurationError as error:
                errors.append(f'runner {name} error: {error.message}')

        if errors:
            for runner in runners.values():
                runner.close()
            raise ConfigurationError(
                '\n'.join(errors),
                context=ErrorContext(filename=self.filename),
            )

        return runners

    def step_name(self, index: int, key: str | None = None) -> str:
        """Display name of a step."""
        if self.named:
            return f"'{self.desc}'.steps.{key}"

        return f"'{self.desc}'.steps[{index}]"

    def append_step(self, payload: 'Mapping[str, Any]', key: str | None = None) -> Step:
        """Validate a step declaration and append it to the scenario.

        Args:
            payload: Step declaration.
            key: Step name, required when steps are named.

        Returns:
            Built step.

        Raises:
            ConfigurationError: If the step is misconfigured.
        """
        index = len(self.steps)
        name = self.step_name(index, key)
        error_context = ErrorContext(
            filename=self.filename,
            step_name=name,
            element=payload,
        )

        if self.named and not key:
            raise ConfigurationError('step name is required when steps are named', context=error_context)

        if not self.named and key:
            raise ConfigurationError('step name is not allowed when steps are unnamed', context=error_context)

        if not isinstance(payload, dict) or not payload:
            raise ConfigurationError('step must specify at least one runner', context=error_context)

        primary = [item for item in payload if item not in SIDE_RUNNER_KEYS]
        if len(primary) > 1:
            raise ConfigurationError(
                'runners that cannot be running at the same time are specified',
                context=error_context,
            )

        test = payload.get(TEST_RUNNER_KEY)
        if test is not None and not isinstance(test, str):
            raise ConfigurationError(f'invalid test condition: {test!r}', context=error_context)

        dump = payload.get(DUMP_RUNNER_KEY)
        if dump is not None and not isinstance(dump, str):
            raise ConfigurationError(f'invalid dump condition: {dump!r}', context=error_context)

        bind = payload.get(BIND_RUNNER_KEY)
        if bind is not None and (
            not isinstance(bind, dict)
            or not all(isinstance(item, str) for item in bind.values())
        ):
            raise ConfigurationError(f'invalid bind condition: {bind!r}', context=error_context)

        action = None
        if primary:
            action = self._build_action(primary[0], payload[primary[0]], error_context)

        step = Step(
            index=index,
            key=key,
            name=name,
            action=action,
            test=test,
            dump=dump,
            bind=bind,
        )
        self.steps.append(step)

        return step

    def _build_action(self, key: str, payload: Any,  # noqa: ANN401
                      error_context: ErrorContext) -> 'Action':
        """Resolve the primary action of a step."""
        if key == INCLUDE_RUNNER_KEY:
            if not isinstance(payload, (str, dict)):
                raise ConfigurationError(f'invalid include path: {payload!r}', context=error_context)
            return IncludeAction(payload=payload)

        if key == EXEC_RUNNER_KEY:
            if not isinstance(payload, dict):
                raise ConfigurationError(f'invalid exec command: {payload!r}', context=error_context)
            return ExecAction(payload=payload)

        match self.runners.get(key):
            case HTTPRunner() as runner:
                if not isinstance(payload, dict):
                    raise ConfigurationError(f'invalid http request: {payload!r}', context=error_context)
                return HTTPAction(runner=runner, payload=payload)

            case DBRunner() as runner:
                if not isinstance(payload, dict):
                    raise ConfigurationError(f'invalid db query: {payload!r}', context=error_context)
                return DBAction(runner=runner, payload=payload)

        raise ConfigurationError(f'can not find client: {key}', context=error_context)

    def include(self, book: 'Book',
                variables: 'Mapping[str, Value] | None' = None) -> 'Operator':
        """Build an operator for a book included by this one."""
        return type(self)(
            book,
            variables=variables,
            included=True,
            settings=self.settings,
            connections=self.connections,
            out=self.out,
        )

    def expand(self, value: 'Value') -> 'Value':
        """Expand placeholders of a value against the current store."""
        return expand(value, self.store.to_map())

    def run_callable[T](self, executor: 'Callable[[], T]', *,
                        kind: str, step: Step) -> T:
        """Execute a part of a step with unified error handling.

        Args:
            executor: Callable performing the actual execution.
            kind: Kind of the executed part, used in the failure message.
            step: Step being executed.

        Returns:
            Result of the callable execution.

        Raises:
            StepError: Wrapping any error raised by the callable.
        """
        try:
            return executor()

        except RunnError as base:
            raise StepError(
                f'{kind} failed on {step.name}: {base.message}',
                step_name=step.name,
                context=ErrorContext({
                    **(base.context or {}),
                    'filename': self.filename,
                    'step_name': step.name,
                }),
            ) from base

        except Exception as base:
            raise StepError(
                f'{kind} failed on {step.name}: {base!r}',
                step_name=step.name,
                context=ErrorContext(filename=self.filename, step_name=step.name),
            ) from base

    def _run_action(self, action: 'Action') -> 'Value':
        """Expand the payload of a primary action and run it."""
        match action:
            case HTTPAction(runner=runner, payload=payload):
                return runner.run(HTTPRequest.from_payload(self.expand(payload)))

            case DBAction(runner=runner, payload=payload):
                return runner.run(_parse_payload(DBQuery, self.expand(payload)))

            case ExecAction(payload=payload):
                return self.exec_runner.run(_parse_payload(ExecCommand, self.expand(payload)))

            case IncludeAction(payload=payload):
                return self.include_runner.run(IncludeConfig.from_payload(self.expand(payload)))

        raise ConfigurationError(f'unknown action: {action!r}')

    def _fill_slot(self, step: Step) -> None:
        """Record a placeholder unless the step already has a result."""
        if len(self.store) < step.index + 1:
            self.store.record(None, step.key)

    def run_step(self, step: Step) -> None:
        """Run a single step.

        Args:
            step: Step to run.

        Raises:
            StepError: If any part of the step fails.
        """
        if step.action is not None:
            kind = _ACTION_KINDS[step.action.kind]
            logger.log(self.log_level, "Run '%s' on %s", step.action.kind, step.name)
            value = self.run_callable(partial(self._run_action, step.action), kind=kind, step=step)
            self.store.record(value, step.key)

        if step.test:
            logger.log(self.log_level, "Run '%s' on %s", TEST_RUNNER_KEY, step.name)
            self.run_callable(
                partial(run_test, step.test, self.store.to_map()),
                kind=TEST_RUNNER_KEY,
                step=step,
            )
            self._fill_slot(step)

        if step.dump:
            logger.log(self.log_level, "Run '%s' on %s", DUMP_RUNNER_KEY, step.name)
            self.run_callable(
                partial(run_dump, step.dump, self.store.to_map(), self.out),
                kind=DUMP_RUNNER_KEY,
                step=step,
            )
            self._fill_slot(step)

        if step.bind:
            logger.log(self.log_level, "Run '%s' on %s", BIND_RUNNER_KEY, step.name)
            self.run_callable(
                partial(run_bind, step.bind, self.store),
                kind=BIND_RUNNER_KEY,
                step=step,
            )
            self._fill_slot(step)

    def check_condition(self) -> bool:
        """Evaluate the guard of the scenario.

        Returns:
            True if the scenario should run.

        Raises:
            ExpansionError: If the guard can not be evaluated.
        """
        if not self.book.condition:
            return True

        store = {**self.store.to_map(), INCLUDED_KEY: self.included}
        return evaluate(self.book.condition, store) is True

    def run(self) -> None:
        """Run the scenario.

        The store is reset before every run. The outcome is available
        as `result` afterwards, also when the run fails.

        Raises:
            StepError: If a step fails.
            ExpansionError: If the guard can not be evaluated.
        """
        self.store = Store(self.variables, named=self.named)
        self.skipped = False
        step_results: list[StepResult] = []

        try:
            if not self.check_condition():
                logger.log(self.log_level, 'Skip %s', self.desc)
                self.skipped = True
                self.result = self._make_result(step_results)
                return

            for step in self.steps:
                if step.index != 0 and self.interval:
                    time.sleep(self.interval)

                try:
                    self.run_step(step)
                except StepError as error:
                    step_results.append(StepResult(key=step.result_key, error=error))
                    raise

                step_results.append(StepResult(key=step.result_key))

        except RunnError as error:
            self.result = self._make_result(step_results, error)
            raise

        self.result = self._make_result(step_results)

    def _make_result(self, step_results: list[StepResult],
                     error: RunnError | None = None) -> RunResult:
        """Build the outcome of a run; steps which did not run are skipped."""
        step_results = [
            *step_results,
            *(
                StepResult(key=step.result_key, skipped=True)
                for step in self.steps[len(step_results):]
            ),
        ]

        return RunResult(
            desc=self.desc,
            path=self.book.path,
            skipped=self.skipped,
            error=error,
            step_results=tuple(step_results),
            store=self.store.to_map(),
        )

    def close(self) -> None:
        """Release resources of the runners."""
        for runner in self.runners.values():
            runner.close()


class Operators:
    """A batch of operators run one after another."""

    def __init__(self, operators: 'Iterable[Operator]') -> None:
        """Initialize a batch.

        Args:
            operators: Operators in the order to run.
        """
        self.operators = list(operators)

    @classmethod
    def load(cls, *patterns: str,
             variables: 'Mapping[str, Value] | None' = None,
             settings: Settings | None = None,
             out: 'TextIO | None' = None) -> 'Operators':
        """Load books matching glob patterns.

        Args:
            *patterns: Glob patterns of book files.
            variables: Variables overriding seed variables of every book.
            settings: Runtime settings.
            out: Stream for the `dump` side runner.

        Returns:
            Batch of operators, sorted by book path.

        Raises:
            ConfigurationError: If a book can not be loaded.
        """
        settings = settings or Settings()
        paths = sorted({
            Path(path).resolve()
            for pattern in patterns
            for path in glob(pattern, recursive=True)  # noqa: PTH207
            if Path(path).is_file()
        })

        operators: list[Operator] = []
        try:
            for path in paths:
                operators.append(
                    Operator(load_book(path), variables=variables, settings=settings, out=out),
                )
        except RunnError:
            for operator in operators:
                operator.close()
            raise

        return cls(operators)

    def run_n(self) -> RunNResult:
        """Run every operator.

        A failing operator with `fail_fast` stops the batch and its error
        is raised; other failures are only collected.

        Returns:
            Results of the batch.

        Raises:
            RunnError: Error of a failing fail-fast operator.
        """
        result = RunNResult(total=len(self.operators))

        try:
            for operator in self.operators:
                try:
                    operator.run()

                except RunnError as error:
                    if operator.result is not None:
                        result.add(operator.result)
                    if operator.fail_fast:
                        raise
                    logger.debug('Failure of %s: %s', operator.desc, error.message)
                    continue

                if operator.result is not None:
                    result.add(operator.result)

        finally:
            for operator in self.operators:
                operator.close()

        return result
