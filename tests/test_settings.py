"""Tests for runtime settings."""

import os
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from runnbook.settings import Settings

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


def test_defaults(mocker: 'MockerFixture') -> None:
    """Provide defaults without environment variables."""
    mocker.patch.dict(os.environ, clear=True)

    settings = Settings()

    assert not settings.debug
    assert not settings.fail_fast
    assert settings.interval == 0.0
    assert settings.http_timeout == 30.0
    assert settings.exec_timeout is None


def test_environment(mocker: 'MockerFixture') -> None:
    """Read prefixed environment variables."""
    mocker.patch.dict(os.environ, {
        'RUNNBOOK_FAIL_FAST': '1',
        'RUNNBOOK_INTERVAL': '0.5',
        'RUNNBOOK_EXEC_TIMEOUT': '10',
        'FAIL_FAST': '0',
    })

    settings = Settings()

    assert settings.fail_fast
    assert settings.interval == 0.5
    assert settings.exec_timeout == 10.0


@pytest.mark.parametrize('overrides', (
    pytest.param({'interval': -1}, id='negative interval'),
    pytest.param({'http_timeout': 0}, id='zero timeout'),
))
def test_invalid(overrides: dict) -> None:
    """Reject out of range values."""
    with pytest.raises(ValidationError):
        Settings(**overrides)
