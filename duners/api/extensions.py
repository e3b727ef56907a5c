"""
Extended functionality for the ExecutionAPI
"""

from __future__ import annotations

import time
from typing import Any

from duners.api.execution import ExecutionAPI
from duners.models import ExecutionState, ExecutionTimeoutError, ResultsResponse
from duners.query import QueryBase, as_query
from duners.records import ConverterRegistry, rows_to_records


class ExtendedAPI(ExecutionAPI):
    """
    Provides higher level helper methods for faster
    and easier development on top of the base ExecutionAPI.
    """

    def run_query(
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
        Sleeps `ping_frequency` seconds between each status request
        and gives up after `max_wait` seconds (both default to the client config).
        """
        job_id = self._refresh(query, ping_frequency, max_wait, performance)
        return self.get_execution_results(job_id, batch_size=batch_size)

    def refresh(
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
        Convenience method for users to
        1. execute,
        2. wait for execution to complete,
        3. fetch and return query results converted into `record_type`.

        `query` is a QueryBase (carrying parameters) or a bare query ID
            (found at the end of a Dune Query URL: https://dune.com/queries/971694)
        `record_type` is a dataclass or NamedTuple declaring the expected fields,
            rows are returned as plain dicts when omitted.

        Example:
            @dataclass
            class ResultRow:
                text_field: str
                number_field: float
                date_field: datetime
                list_field: str

            rows = DuneClient.from_env().refresh(1215383, ResultRow)
        """
        rows = self.run_query(
            query,
            ping_frequency=ping_frequency,
            max_wait=max_wait,
            performance=performance,
            batch_size=batch_size,
        ).get_rows()
        if record_type is None:
            return rows
        return rows_to_records(rows, record_type, registry)

    def refresh_into_dataframe(
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
        fetched and returns the result as a Pandas DataFrame.

        With a `record_type` the rows are converted first, so the frame
        holds properly typed columns (e.g. datetimes instead of strings).
        """
        try:
            import pandas as pd  # noqa: PLC0415
        except ImportError as exc:
            raise ImportError("dependency failure, pandas is required but missing") from exc
        results = self.run_query(
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
    def _refresh(
        self,
        query: QueryBase | str | int,
        ping_frequency: float | None = None,
        max_wait: float | None = None,
        performance: str | None = None,
    ) -> str:
        """
        Executes a Dune `query` and waits until execution reaches a terminal state.
        Sleeps `ping_frequency` seconds between each status request.
        Returns the execution ID of a completed execution.
        """
        ping_frequency, max_wait = self._poll_settings(ping_frequency, max_wait)
        query = as_query(query)

        job_id = self.execute_query(query=query, performance=performance).execution_id
        self.logger.info(f"refreshing {query.query_id} execution ID {job_id}")
        started = time.monotonic()
        status = self.get_execution_status(job_id)
        while status.state not in ExecutionState.terminal_states():
            if self._poll_deadline_reached(started, time.monotonic(), ping_frequency, max_wait):
                self.logger.error(f"gave up waiting for query execution {job_id}: {status}")
                raise ExecutionTimeoutError(job_id, max_wait, status.state)
            self.logger.info(f"waiting for query execution {job_id} to complete: {status}")
            time.sleep(ping_frequency)
            status = self.get_execution_status(job_id)
        self._check_terminal_status(status)
        return job_id
