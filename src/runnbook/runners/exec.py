"""Exec runner.

Runs a shell command and records its output. A non-zero exit code is
part of the result, not an error; books assert on it with `test`.
"""

import logging
import subprocess  # noqa: S404

from pydantic import Field

from runnbook.errors import RunnerError
from runnbook.models import SchemaModel

logger = logging.getLogger(__name__)


class ExecCommand(SchemaModel):
    """Payload of an exec step."""

    command: str = Field(
        title='Command',
        description='Command line run through the shell.',
        examples=['echo hello'],
    )

    stdin: str | None = Field(
        default=None,
        title='Standard input',
    )


class ExecRunner:
    """Runner executing shell commands."""

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize an exec runner.

        Args:
            timeout: Timeout in seconds for a single command.
        """
        self.timeout = timeout

    def run(self, command: ExecCommand) -> dict[str, str | int]:
        """Run a command.

        Args:
            command: Exec step payload.

        Returns:
            Mapping with `stdout`, `stderr` and `exit_code`.

        Raises:
            RunnerError: If the command can not be started or times out.
        """
        logger.debug('Run command: %s', command.command)

        try:
            proc = subprocess.run(  # noqa: S602
                command.command,
                shell=True,
                input=command.stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )

        except subprocess.TimeoutExpired as base:
            raise RunnerError(f'command timed out after {self.timeout}s: {command.command}') from base

        except OSError as base:
            raise RunnerError(f'can not run command: {base}') from base

        return {
            'stdout': proc.stdout or '',
            'stderr': proc.stderr or '',
            'exit_code': proc.returncode,
        }
