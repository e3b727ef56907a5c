"""
Async Dune Client Class responsible for refreshing Dune Queries
Framework built on Dune's API Documentation
https://docs.dune.com/api-reference/overview/introduction
"""

from __future__ import annotations

import asyncio
import ssl
import time
from json import JSONDecodeError
from typing import Any, Self

import certifi
from aiohttp import (
    ClientError,
    ClientResponse,
    ClientSession,
    ClientTimeout,
    ContentTypeError,
    TCPConnector,
)

from duners.api.base import MAX_NUM_ROWS_PER_BATCH, BaseDuneClient
from duners.config import DuneConfig
from duners.models import (
    DuneError,
    ExecutionResponse,
    ExecutionState,
    ExecutionStatusResponse,
    ExecutionTimeoutError,
    RequestError,
    ResultsResponse,
    UpstreamError,
)
from duners.query import QueryBase, as_query
from duners.records import ConverterRegistry, rows_to_records


class AsyncDuneClient(BaseDuneClient):
    """
    An asynchronous interface for Dune API with a few convenience methods
    combining the use of endpoints (e.g. refresh)

    Must be used as an async context manager:
        async with AsyncDuneClient(api_key) as client:
            rows = await client.refresh(query, ResultRow)

    Cancelling the awaiting task (e.g. via asyncio.wait_for) stops the poll loop
    without issuing any further request.
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
        connection_limit: int = 3,
    ):
        """
        api_key - Dune API key
        connection_limit - number of parallel requests to execute.
        For non-pro accounts Dune allows only up to 3 requests but that number can be increased.
        """
        super().__init__(
            api_key,
            base_url,
            request_timeout,
            client_version,
            performance,
            ping_frequency,
            max_wait,
            config,
        )
        self._connection_limit = connection_limit
        self._session: ClientSession | None = None

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        if self._session is not None:
            raise RuntimeError("AsyncDuneClient session already active")
        self._session = self._create_session()

    async def disconnect(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _create_session(self) -> ClientSession:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = TCPConnector(limit=self._connection_limit, ssl=ssl_context)
        return ClientSession(
            connector=connector,
            base_url=self.base_url,
            timeout=ClientTimeout(total=self.config.request_timeout),
        )

    async def _handle_response(self, response: ClientResponse) -> Any:
        try:
            # Some responses can be decoded and converted to DuneErrors
            response_json = await response.json()
            self.logger.debug(f"received response {response_json}")
        except (ContentTypeError, JSONDecodeError):
            # Others can't, their text becomes the error message
            text = await response.text()
            self._raise_for_status(response.status, None, text)
            raise UpstreamError(
                f"undecodable response body: {text[:200]!r}", status_code=response.status
            ) from None
        if not 200 <= response.status < 300:
            self._raise_for_status(response.status, response_json, await response.text())
        return response_json

    def _route_url(self, route: str | None = None, url: str | None = None) -> str:
        if route is not None:
            return f"{self.api_version}{route}"
        if url is None:
            raise ValueError("Either route or url must be provided")
        assert url.startswith(self.base_url)
        return url[len(self.base_url) :]

    async def _get(
        self,
        route: str | None = None,
        params: Any | None = None,
        url: str | None = None,
    ) -> Any:
        return await self._request(method="GET", route=route, url=url, params=params)

    async def _post(self, route: str, params: Any) -> Any:
        return await self._request(method="POST", route=route, json_body=params)

    async def _request(
        self,
        *,
        method: str,
        route: str | None = None,
        url: str | None = None,
        params: Any | None = None,
        json_body: Any | None = None,
    ) -> Any:
        """Single attempt request, transport failures surface as RequestError"""
        session = self._require_session()
        target = self._route_url(route=route, url=url)
        self.logger.debug(f"{method} received input target={target}")
        try:
            async with session.request(
                method,
                target,
                headers=self.default_headers(),
                params=params,
                json=json_body,
            ) as response:
                return await self._handle_response(response)
        except (ClientError, asyncio.TimeoutError) as err:
            raise RequestError(f"{method} {target} failed: {err!r}") from err

    async def execute_query(
        self, query: QueryBase | str | int, performance: str | None = None
    ) -> ExecutionResponse:
        """Post's to Dune API for execute `query`"""
        query = as_query(query)
        params = query.request_format()
        params["performance"] = performance or self.performance

        self.logger.info(f"executing {query.query_id} on {performance or self.performance} cluster")
        response_json = await self._post(
            route=f"/query/{query.query_id}/execute",
            params=params,
        )
        try:
            return ExecutionResponse.from_dict(response_json)
        except (KeyError, ValueError) as err:
            raise DuneError(response_json, "ExecutionResponse", err) from err

    async def cancel_execution(self, job_id: str) -> bool:
        """POST Execution Cancellation to Dune API for `job_id` (aka `execution_id`)"""
        response_json = await self._post(
            route=f"/execution/{job_id}/cancel",
            params=None,
        )
        try:
            # No need to make a dataclass for this since it's just a boolean.
            success: bool = response_json["success"]
        except (KeyError, TypeError) as err:
            raise DuneError(response_json, "CancellationResponse", err) from err
        else:
            return success

    async def get_execution_status(self, job_id: str) -> ExecutionStatusResponse:
        """GET status from Dune API for `job_id` (aka `execution_id`)"""
        response_json = await self._get(route=f"/execution/{job_id}/status")
        try:
            return ExecutionStatusResponse.from_dict(response_json)
        except (KeyError, ValueError) as err:
            raise DuneError(response_json, "ExecutionStatusResponse", err) from err

    async def get_execution_results(
        self,
        job_id: str,
        batch_size: int | None = None,
    ) -> ResultsResponse:
        """
        GET results from Dune API for `job_id` (aka `execution_id`),
        following pagination until the entire result set is retrieved.
        """
        params = self._build_parameters(limit=batch_size or MAX_NUM_ROWS_PER_BATCH)
        results = self._ensure_ready(
            await self._get_result_page(route=f"/execution/{job_id}/results", params=params)
        )
        while results.next_uri is not None:
            results += await self._get_result_page(url=results.next_uri)
        return results

    ########################
    # Higher level functions
    ########################

    async def run_query(
        self,
        query: QueryBase | str | int,
        ping_frequency: float | None = None,
        max_wait: float | None = None,
        performance: str | None = None,
        batch_size: int | None = None,
    ) -> ResultsResponse:
        """
        Executes a Dune `query`, waits until execution completes,
        fetches and returns the results.
        Sleeps `ping_frequency` seconds between each status request.
        """
        job_id = await self._refresh(
            query, ping_frequency=ping_frequency, max_wait=max_wait, performance=performance
        )
        return await self.get_execution_results(job_id, batch_size=batch_size)

    async def refresh(
        self,
        query: QueryBase | str | int,
        record_type: type | None = None,
        ping_frequency: float | None = None,
        max_wait: float | None = None,
        performance: str | None = None,
        batch_size: int | None = None,
        registry: ConverterRegistry | None = None,
    ) -> list[Any]:
        """
        Executes a Dune `query`, waits until execution completes and returns
        the result rows converted into `record_type` (plain dicts when omitted).
        """
        results = await self.run_query(
            query,
            ping_frequency=ping_frequency,
            max_wait=max_wait,
            performance=performance,
            batch_size=batch_size,
        )
        rows = results.get_rows()
        if record_type is None:
            return rows
        return rows_to_records(rows, record_type, registry)

    async def refresh_into_dataframe(
        self,
        query: QueryBase | str | int,
        record_type: type | None = None,
        ping_frequency: float | None = None,
        max_wait: float | None = None,
        performance: str | None = None,
        batch_size: int | None = None,
        registry: ConverterRegistry | None = None,
    ) -> Any:
        """
        Execute a Dune Query, waits till execution completes,
        fetched and returns the result as a Pandas DataFrame
        """
        try:
            import pandas as pd  # noqa: PLC0415
        except ImportError as exc:
            raise ImportError("dependency failure, pandas is required but missing") from exc
        results = await self.run_query(
            query,
            ping_frequency=ping_frequency,
            max_wait=max_wait,
            performance=performance,
            batch_size=batch_size,
        )
        rows = results.get_rows()
        if record_type is None:
            return pd.DataFrame(rows, columns=results.column_names() or None)
        return pd.DataFrame(rows_to_records(rows, record_type, registry))

    #################
    # Private Methods
    #################

    async def _get_result_page(
        self,
        route: str | None = None,
        url: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> ResultsResponse:
        response_json = await self._get(route=route, url=url, params=params)
        try:
            return ResultsResponse.from_dict(response_json)
        except (KeyError, ValueError, AssertionError) as err:
            raise DuneError(response_json, "ResultsResponse", err) from err

    async def _refresh(
        self,
        query: QueryBase | str | int,
        ping_frequency: float | None = None,
        max_wait: float | None = None,
        performance: str | None = None,
    ) -> str:
        ping_frequency, max_wait = self._poll_settings(ping_frequency, max_wait)

        job_id = (await self.execute_query(query=query, performance=performance)).execution_id
        terminal_states = ExecutionState.terminal_states()
        started = time.monotonic()

        while True:
            status = await self.get_execution_status(job_id)
            if status.state in terminal_states:
                self._check_terminal_status(status)
                return job_id
            if self._poll_deadline_reached(started, time.monotonic(), ping_frequency, max_wait):
                self.logger.error(f"gave up waiting for query execution {job_id}: {status}")
                raise ExecutionTimeoutError(job_id, max_wait, status.state)

            self.logger.info(f"waiting for query execution {job_id} to complete: {status}")
            await asyncio.sleep(ping_frequency)

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError("AsyncDuneClient must be used as an async context manager")
        return self._session
