"""Results of scenario runs.

Every operator run produces a `RunResult` with one `StepResult` per
step of the book. A batch run collects them into a `RunNResult`,
which renders a colored summary or a simplified JSON report.
"""

from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING, Any, Literal

from click import echo, style
from pydantic import BaseModel, Field

from runnbook.models import SchemaModel

if TYPE_CHECKING:
    from typing import TextIO

type Outcome = Literal['success', 'failure', 'skipped']

SUCCESS: Outcome = 'success'
FAILURE: Outcome = 'failure'
SKIPPED: Outcome = 'skipped'


def _outcome(error: BaseException | None, skipped: bool) -> Outcome:
    if error is not None:
        return FAILURE

    if skipped:
        return SKIPPED

    return SUCCESS


class StepResult(SchemaModel):
    """Outcome of a single step."""

    key: str
    skipped: bool = False
    error: BaseException | None = None

    @property
    def outcome(self) -> Outcome:
        """Simplified outcome of the step."""
        return _outcome(self.error, self.skipped)


class RunResult(SchemaModel):
    """Outcome of a single scenario."""

    desc: str
    path: Path | None = None
    skipped: bool = False
    error: BaseException | None = None
    step_results: tuple[StepResult, ...] = ()
    store: dict[str, Any] = Field(default_factory=dict)

    @property
    def outcome(self) -> Outcome:
        """Simplified outcome of the scenario."""
        return _outcome(self.error, self.skipped)


class StepResultSimplified(BaseModel):
    """Step entry of the JSON report."""

    key: str
    result: Outcome


class RunResultSimplified(BaseModel):
    """Scenario entry of the JSON report."""

    path: str
    result: Outcome
    steps: list[StepResultSimplified]


class RunNResultSimplified(BaseModel):
    """JSON report of a batch run."""

    total: int
    success: int = 0
    failure: int = 0
    skipped: int = 0
    results: list[RunResultSimplified] = Field(default_factory=list)


class RunNResult:
    """Results of a batch of scenarios.

    `add` may be called from several threads.
    """

    def __init__(self, total: int = 0) -> None:
        """Initialize an empty batch result.

        Args:
            total: Number of scenarios in the batch.
        """
        self.total = total
        self.results: list[RunResult] = []
        self._lock = Lock()

    def add(self, result: RunResult) -> None:
        """Append a scenario result."""
        with self._lock:
            self.results.append(result)

    def has_failure(self) -> bool:
        """Whether any scenario of the batch failed."""
        return any(result.error is not None for result in self.results)

    def simplify(self) -> RunNResultSimplified:
        """Build the JSON report of the batch."""
        report = RunNResultSimplified(total=self.total)

        for result in self.results:
            outcome = result.outcome
            match outcome:
                case 'failure':
                    report.failure += 1
                case 'skipped':
                    report.skipped += 1
                case _:
                    report.success += 1

            report.results.append(RunResultSimplified(
                path=f'{result.path or ''}',
                result=outcome,
                steps=[
                    StepResultSimplified(key=step.key, result=step.outcome)
                    for step in result.step_results
                ],
            ))

        return report

    def out(self, stream: 'TextIO | None' = None, *, verbose: bool = False) -> None:
        """Print a summary of the batch.

        Failures are listed first unless `verbose` is set, since a verbose
        run has already printed them.

        Args:
            stream: Output stream, standard output by default.
            verbose: Whether failures were already reported.
        """
        echo('', file=stream)

        if not verbose and self.has_failure():
            echo('', file=stream)
            failed = (result for result in self.results if result.error is not None)
            for num, result in enumerate(failed, start=1):
                echo(f'{num}) {result.path or result.desc}', file=stream)
                for step in result.step_results:
                    if step.error is None:
                        continue
                    for line in f'Failure/Error: {step.error}'.rstrip('\n').splitlines():
                        echo(f'  {style(line, fg='red')}', file=stream)

        echo('', file=stream)

        report = self.simplify()
        scenarios = 'scenario' if report.total == 1 else 'scenarios'
        failures = 'failure' if report.failure == 1 else 'failures'
        summary = (
            f'{report.total} {scenarios}, '
            f'{report.skipped} skipped, '
            f'{report.failure} {failures}'
        )

        echo(style(summary, fg='red' if self.has_failure() else 'green'), file=stream)

    def out_json(self, stream: 'TextIO | None' = None) -> None:
        """Print the JSON report of the batch."""
        echo(self.simplify().model_dump_json(indent=2), file=stream)
