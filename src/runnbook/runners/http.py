"""HTTP runner.

Steps address a runner by name and describe a single request as
`{<path>: {<method>: {headers: ..., body: {<media type>: <value>}}}}`.
"""

import logging
from typing import TYPE_CHECKING, Any, Literal

import requests
from pydantic import Field, ValidationError

from runnbook.errors import ConfigurationError, ErrorContext, RunnerError
from runnbook.models import SchemaModel
from runnbook.values import normalize

if TYPE_CHECKING:
    from runnbook.values import Value

logger = logging.getLogger(__name__)

MEDIA_TYPE_JSON = 'application/json'
MEDIA_TYPE_TEXT = 'text/plain'

#: Timeout in seconds used when neither the runner nor the settings define one.
DEFAULT_TIMEOUT = 30.0

type Method = Literal['get', 'head', 'post', 'put', 'patch', 'delete', 'options']


class HTTPRunnerConfig(SchemaModel):
    """Mapping form of an HTTP runner declaration."""

    endpoint: str = Field(
        pattern=r'^https?://',
        title='Endpoint',
        description='Base URL prepended to every request path.',
        examples=['https://api.example.com'],
    )

    timeout: float | None = Field(
        default=None,
        gt=0.0,
        title='Timeout',
        description='Timeout in seconds for a single request.',
    )


class HTTPRequest(SchemaModel):
    """A single HTTP request of a step."""

    path: str = Field(
        title='Path',
        description='Request path, including the query string.',
    )

    method: Method = Field(
        title='Method',
        description='Lowercase HTTP method.',
    )

    headers: dict[str, str] = Field(
        default_factory=dict,
        title='Headers',
    )

    media_type: Literal['application/json', 'application/x-www-form-urlencoded', 'text/plain'] | None = Field(
        default=None,
        title='Media type',
        description='Media type of the request body.',
    )

    body: Any = Field(
        default=None,
        title='Body',
    )

    @classmethod
    def from_payload(cls, payload: 'Value') -> 'HTTPRequest':
        """Build a request from an expanded step payload.

        Args:
            payload: Step payload of the runner.

        Returns:
            Validated request.

        Raises:
            ConfigurationError: If the payload does not describe
                exactly one request.
        """
        error_context = ErrorContext(element=payload)

        if not isinstance(payload, dict) or len(payload) != 1:
            raise ConfigurationError('http request must have exactly one path', context=error_context)

        (path, methods), = payload.items()
        if not isinstance(methods, dict) or len(methods) != 1:
            raise ConfigurationError('http request must have exactly one method', context=error_context)

        (method, definition), = methods.items()
        if definition is None:
            definition = {}

        if not isinstance(definition, dict):
            raise ConfigurationError('http request must be a mapping', context=error_context)

        media_type = body = None
        if (content := definition.get('body')) is not None:
            if not isinstance(content, dict) or len(content) != 1:
                raise ConfigurationError('http body must have exactly one media type', context=error_context)
            (media_type, body), = content.items()

        try:
            return cls(
                path=path,
                method=f'{method}'.lower(),
                headers=definition.get('headers') or {},
                media_type=media_type,
                body=body,
            )

        except ValidationError as base:
            raise ConfigurationError.from_pydantic_error(base, data=payload) from base


class HTTPRunner:
    """Runner sending HTTP requests to a single endpoint."""

    def __init__(self, name: str, endpoint: str, *,
                 timeout: float | None = None,
                 session: requests.Session | None = None) -> None:
        """Initialize an HTTP runner.

        Args:
            name: Runner name declared in the book.
            endpoint: Base URL.
            timeout: Timeout in seconds for a single request.
            session: Session to send requests with.
        """
        self.name = name
        self.endpoint = endpoint.rstrip('/')
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.session = session or requests.Session()

    def run(self, request: HTTPRequest) -> dict[str, 'Value']:
        """Send a request.

        Args:
            request: Request of the step.

        Returns:
            Mapping with `status`, `headers` and `body` of the response.

        Raises:
            RunnerError: If the request fails or the response can not be decoded.
        """
        url = f'{self.endpoint}/{request.path.lstrip('/')}'
        options: dict[str, Any] = {'headers': request.headers}

        match request.media_type:
            case 'application/json':
                options['json'] = request.body
            case 'application/x-www-form-urlencoded':
                options['data'] = request.body
            case 'text/plain':
                options['data'] = f'{request.body}'.encode()
                options['headers'] = {'Content-Type': MEDIA_TYPE_TEXT, **request.headers}

        logger.debug('Send %s %s on %s', request.method.upper(), url, self.name)

        try:
            response = self.session.request(
                request.method.upper(),
                url,
                timeout=self.timeout,
                **options,
            )

        except requests.Timeout as base:
            raise RunnerError(f'request timed out after {self.timeout}s: {url}') from base

        except requests.RequestException as base:
            raise RunnerError(f'request failed: {base}') from base

        return {
            'status': response.status_code,
            'headers': dict(response.headers),
            'body': self._decode(response),
        }

    @staticmethod
    def _decode(response: requests.Response) -> 'Value':
        content_type = response.headers.get('Content-Type', '')
        if MEDIA_TYPE_JSON not in content_type and not content_type.endswith('+json'):
            return response.text

        try:
            return normalize(response.json())

        except ValueError as base:
            raise RunnerError(f'invalid json response: {base}') from base

    def close(self) -> None:
        """Close the session."""
        self.session.close()
