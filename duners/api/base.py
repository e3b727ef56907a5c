"""
Basic Dune Client Class responsible for refreshing Dune Queries
Framework built on Dune's API Documentation
https://docs.dune.com/api-reference/overview/introduction
"""

from __future__ import annotations

import dataclasses
import logging
from json import JSONDecodeError
from typing import Any, Self

from requests import RequestException, Response, Session
from requests.adapters import HTTPAdapter

from duners.config import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_WAIT,
    DEFAULT_PING_FREQUENCY,
    DEFAULT_REQUEST_TIMEOUT,
    DuneConfig,
)
from duners.models import (
    AuthError,
    ExecutionState,
    ExecutionStatusResponse,
    NotReadyError,
    QueryFailedError,
    RequestError,
    ResultsResponse,
    UpstreamError,
)
from duners.util import get_package_version

# Default maximum number of rows to retrieve per batch of results
MAX_NUM_ROWS_PER_BATCH = 32_000
# Upstream message for a rejected key, sometimes sent with a non 401 status
INVALID_API_KEY_MESSAGE = "invalid API Key"


class BaseDuneClient:
    """
    A Base Client for Dune which sets up default values
    and provides some convenient functions to use in other clients
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        request_timeout: float | None = None,
        client_version: str = "v1",
        performance: str = "medium",
        ping_frequency: float | None = None,
        max_wait: float | None = None,
        config: DuneConfig | None = None,
    ):
        if config is None:
            config = DuneConfig(
                api_key=api_key or "",
                base_url=base_url or DEFAULT_BASE_URL,
                request_timeout=request_timeout or DEFAULT_REQUEST_TIMEOUT,
                client_version=client_version,
                performance=performance,
                ping_frequency=DEFAULT_PING_FREQUENCY if ping_frequency is None else ping_frequency,
                max_wait=DEFAULT_MAX_WAIT if max_wait is None else max_wait,
            )
        self.config = config
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_env(cls, **kwargs: Any) -> Self:
        """
        Constructor allowing user to instantiate a client from environment variable
        without having to import os manually.
        We use `DUNE_API_KEY` as the environment variable that holds the API key.
        Keyword arguments naming a DuneConfig field override the environment,
        all others are passed on to the client.
        """
        config_fields = {fld.name for fld in dataclasses.fields(DuneConfig)}
        overrides = {
            name: kwargs.pop(name) for name in list(kwargs) if name in config_fields
        }
        config = dataclasses.replace(
            DuneConfig.from_env(),
            **{name: value for name, value in overrides.items() if value is not None},
        )
        return cls(config=config, **kwargs)

    @property
    def token(self) -> str:
        """The API key"""
        return self.config.api_key

    @property
    def base_url(self) -> str:
        """Scheme and host of the Dune API"""
        return self.config.base_url

    @property
    def performance(self) -> str:
        """Default performance tier of executions"""
        return self.config.performance

    @property
    def api_version(self) -> str:
        """Returns client version string"""
        return self.config.api_version

    def default_headers(self) -> dict[str, str]:
        """Return default headers containing Dune Api token"""
        client_version = get_package_version("duners") or "0.1.0"
        return {
            "x-dune-api-key": self.token,
            "User-Agent": f"duners/{client_version} (https://pypi.org/project/duners/)",
        }

    ############
    # Utilities:
    ############

    @staticmethod
    def _build_parameters(
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, int]:
        """
        Builds the pagination parameters of a results request.
        This is shared between the sync and async client.
        """
        result: dict[str, int] = {}
        if limit is not None:
            result["limit"] = limit
        if offset is not None:
            result["offset"] = offset
        return result

    def _raise_for_status(self, status: int, response_json: Any, text: str) -> None:
        """
        Converts non success responses into typed errors.
        Dune usually explains the failure in an `error` field of the body.
        """
        if 200 <= status < 300:
            return
        message = text
        if isinstance(response_json, dict) and "error" in response_json:
            message = str(response_json["error"])
        self.logger.error(f"request error {status}: {message}")
        if status in (401, 403) or message == INVALID_API_KEY_MESSAGE:
            raise AuthError(message)
        raise UpstreamError(message, status_code=status)

    def _check_terminal_status(self, status: ExecutionStatusResponse) -> None:
        """Raises for terminal states that will never produce a result set"""
        if status.state in ExecutionState.failure_states():
            self.logger.error(status)
            raise QueryFailedError(status.failure_message())
        if status.state == ExecutionState.PARTIAL:
            self.logger.warning("Partial result set retrieved.")

    def _poll_settings(
        self, ping_frequency: float | None, max_wait: float | None
    ) -> tuple[float, float | None]:
        """Per call polling overrides, falling back to the client config"""
        ping_frequency = self.config.ping_frequency if ping_frequency is None else ping_frequency
        max_wait = self.config.max_wait if max_wait is None else max_wait
        if ping_frequency <= 0:
            raise ValueError(f"ping_frequency must be positive, got {ping_frequency}")
        if max_wait is not None and max_wait < 0:
            raise ValueError(f"max_wait must be non-negative, got {max_wait}")
        return ping_frequency, max_wait

    @staticmethod
    def _poll_deadline_reached(
        started: float, now: float, ping_frequency: float, max_wait: float | None
    ) -> bool:
        """
        True when sleeping another `ping_frequency` would overrun `max_wait`.
        Bounds a poll loop to max_wait / ping_frequency + 1 status checks.
        """
        return max_wait is not None and (now - started) + ping_frequency > max_wait

    def _ensure_ready(self, results: ResultsResponse) -> ResultsResponse:
        """
        Refuses result sets of executions which did not complete.
        Partially completed executions are accepted with a warning.
        """
        if results.state in ExecutionState.failure_states():
            raise QueryFailedError(
                f"execution {results.execution_id} ended in {results.state.value}"
            )
        if not results.state.is_complete():
            raise NotReadyError(
                f"execution {results.execution_id} is {results.state.value}, results not ready"
            )
        if results.state == ExecutionState.PARTIAL:
            self.logger.warning(
                f"execution {results.execution_id} resulted in a partial "
                f"result set (i.e. results too large)."
            )
        return results


class BaseRouter(BaseDuneClient):
    """Extending the Base Client with elementary api routing"""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        # Single attempt per request: failures surface to the caller immediately.
        adapter = HTTPAdapter(max_retries=0)
        self.http = Session()
        self.http.mount("https://", adapter)
        self.http.mount("http://", adapter)

    def _handle_response(self, response: Response) -> Any:
        """Generic response handler utilized by all Dune API routes"""
        try:
            # Some responses can be decoded and converted to DuneErrors
            response_json = response.json()
            self.logger.debug(f"received response {response_json}")
        except JSONDecodeError:
            # Others can't, their text becomes the error message
            self._raise_for_status(response.status_code, None, response.text)
            raise UpstreamError(
                f"undecodable response body: {response.text[:200]!r}",
                status_code=response.status_code,
            ) from None
        self._raise_for_status(response.status_code, response_json, response.text)
        return response_json

    def _route_url(self, route: str | None = None, url: str | None = None) -> str:
        if route is not None:
            return f"{self.base_url}{self.api_version}{route}"
        if url is None:
            raise ValueError("Either route or url must be provided")
        return url

    def _get(
        self,
        route: str | None = None,
        params: Any | None = None,
        url: str | None = None,
    ) -> Any:
        """Generic interface for the GET method of a Dune API request"""
        final_url = self._route_url(route=route, url=url)
        self.logger.debug(f"GET received input url={final_url}")
        try:
            response = self.http.get(
                url=final_url,
                headers=self.default_headers(),
                timeout=self.config.request_timeout,
                params=params,
            )
        except RequestException as err:
            raise RequestError(f"GET {final_url} failed: {err}") from err
        return self._handle_response(response)

    def _post(self, route: str, params: Any | None = None) -> Any:
        """Generic interface for the POST method of a Dune API request"""
        url = self._route_url(route)
        self.logger.debug(f"POST received input url={url}, params={params}")
        try:
            response = self.http.post(
                url=url,
                json=params,
                headers=self.default_headers(),
                timeout=self.config.request_timeout,
            )
        except RequestException as err:
            raise RequestError(f"POST {url} failed: {err}") from err
        return self._handle_response(response)
