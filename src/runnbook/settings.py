"""Runtime settings read from the environment.

Settings provide defaults for every book run by the process. Values
declared in a book always take precedence over these defaults.
"""

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from runnbook.models import SettingsModel


class Settings(SettingsModel):
    """Process-wide defaults for books.

    Every field can be overridden with a `RUNNBOOK_` prefixed
    environment variable, e.g. `RUNNBOOK_FAIL_FAST=1`.
    """

    model_config = SettingsConfigDict(
        env_prefix='RUNNBOOK_',
    )

    debug: bool = Field(
        default=False,
        title='Debug mode',
        description='Log step progress at INFO level instead of DEBUG.',
    )

    interval: float = Field(
        default=0.0,
        ge=0.0,
        title='Step interval',
        description='Delay in seconds before every step except the first.',
    )

    fail_fast: bool = Field(
        default=False,
        title='Fail fast',
        description='Abort a batch of books on the first failing book.',
    )

    http_timeout: float = Field(
        default=30.0,
        gt=0.0,
        title='HTTP timeout',
        description='Timeout in seconds for a single HTTP request.',
    )

    exec_timeout: float | None = Field(
        default=None,
        gt=0.0,
        title='Exec timeout',
        description='Timeout in seconds for a single shell command, unlimited by default.',
    )
