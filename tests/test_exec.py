"""Tests for the exec runner."""

import subprocess  # noqa: S404
from typing import TYPE_CHECKING

import pytest

from runnbook.errors import RunnerError
from runnbook.runners.exec import ExecCommand, ExecRunner

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.mark.parametrize('command, expected', (
    pytest.param(
        ExecCommand(command='echo hello'),
        {'stdout': 'hello\n', 'stderr': '', 'exit_code': 0},
        id='stdout',
    ),
    pytest.param(
        ExecCommand(command='cat', stdin='from stdin'),
        {'stdout': 'from stdin', 'stderr': '', 'exit_code': 0},
        id='stdin',
    ),
    pytest.param(
        ExecCommand(command='echo oops >&2; exit 3'),
        {'stdout': '', 'stderr': 'oops\n', 'exit_code': 3},
        id='exit code',
    ),
))
def test_run(command: ExecCommand, expected: dict) -> None:
    """Record output and exit code of commands."""
    assert ExecRunner().run(command) == expected


def test_timeout(mocker: 'MockerFixture') -> None:
    """Fail on commands running longer than the timeout."""
    mocker.patch(
        'runnbook.runners.exec.subprocess.run',
        side_effect=subprocess.TimeoutExpired('sleep 10', 0.1),
    )

    with pytest.raises(RunnerError, match=r'^command timed out after 0.1s: sleep 10'):
        ExecRunner(timeout=0.1).run(ExecCommand(command='sleep 10'))


def test_start_failure(mocker: 'MockerFixture') -> None:
    """Fail on commands which can not be started."""
    mocker.patch('runnbook.runners.exec.subprocess.run', side_effect=OSError('no shell'))

    with pytest.raises(RunnerError, match=r'^can not run command: no shell'):
        ExecRunner().run(ExecCommand(command='true'))
