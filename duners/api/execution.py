"""
Implementation of all Dune API query execution and get results routes.

Further Documentation:
    execution: https://docs.dune.com/api-reference/executions/endpoint/execute-query
    get results: https://docs.dune.com/api-reference/executions/endpoint/get-execution-result
"""

from __future__ import annotations

from typing import Any

from deprecated import deprecated

from duners.api.base import MAX_NUM_ROWS_PER_BATCH, BaseRouter
from duners.models import (
    DuneError,
    ExecutionResponse,
    ExecutionStatusResponse,
    ResultsResponse,
)
from duners.query import QueryBase, as_query


class ExecutionAPI(BaseRouter):
    """
    Query execution and result fetching functions.
    """

    def execute_query(
        self, query: QueryBase | str | int, performance: str | None = None
    ) -> ExecutionResponse:
        """Post's to Dune API for execute `query`"""
        query = as_query(query)
        params = query.request_format()
        params["performance"] = performance or self.performance

        self.logger.info(f"executing {query.query_id} on {performance or self.performance} cluster")
        response_json = self._post(
            route=f"/query/{query.query_id}/execute",
            params=params,
        )
        try:
            return ExecutionResponse.from_dict(response_json)
        except (KeyError, ValueError) as err:
            raise DuneError(response_json, "ExecutionResponse", err) from err

    def cancel_execution(self, job_id: str) -> bool:
        """POST Execution Cancellation to Dune API for `job_id` (aka `execution_id`)"""
        response_json = self._post(
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

    def get_execution_status(self, job_id: str) -> ExecutionStatusResponse:
        """GET status from Dune API for `job_id` (aka `execution_id`)"""
        response_json = self._get(route=f"/execution/{job_id}/status")
        try:
            return ExecutionStatusResponse.from_dict(response_json)
        except (KeyError, ValueError) as err:
            raise DuneError(response_json, "ExecutionStatusResponse", err) from err

    def get_execution_results(
        self,
        job_id: str,
        batch_size: int | None = None,
    ) -> ResultsResponse:
        """
        GET results from Dune API for `job_id` (aka `execution_id`),
        following pagination until the entire result set is retrieved.

        Raises NotReadyError while the execution is pending or executing
        and QueryFailedError when it failed, was cancelled or expired.
        """
        params = self._build_parameters(limit=batch_size or MAX_NUM_ROWS_PER_BATCH)
        url = self._route_url(f"/execution/{job_id}/results")
        results = self._ensure_ready(self._get_execution_results_by_url(url=url, params=params))
        return self._fetch_entire_result(results)

    def _get_execution_results_by_url(
        self, url: str, params: dict[str, Any] | None = None
    ) -> ResultsResponse:
        """
        GET results from Dune API with a given URL. This is particularly useful for pagination.
        """
        assert url.startswith(self.base_url)

        response_json = self._get(url=url, params=params)
        try:
            return ResultsResponse.from_dict(response_json)
        except (KeyError, ValueError, AssertionError) as err:
            raise DuneError(response_json, "ResultsResponse", err) from err

    def _fetch_entire_result(
        self,
        results: ResultsResponse,
    ) -> ResultsResponse:
        """
        Retrieve the entire results using the paginated API
        """
        next_uri = results.next_uri
        while next_uri is not None:
            batch = self._get_execution_results_by_url(url=next_uri)
            results += batch
            next_uri = batch.next_uri

        return results

    ###############################
    # Names of the first releases:
    ###############################
    @deprecated(version="0.2.0", reason="Please use execute_query")
    def execute(
        self, query: QueryBase | str | int, performance: str | None = None
    ) -> ExecutionResponse:
        """Post's to Dune API for execute `query`"""
        return self.execute_query(query, performance)

    @deprecated(version="0.2.0", reason="Please use get_execution_status")
    def get_status(self, job_id: str) -> ExecutionStatusResponse:
        """GET status from Dune API for `job_id` (aka `execution_id`)"""
        return self.get_execution_status(job_id)

    @deprecated(version="0.2.0", reason="Please use get_execution_results")
    def get_results(self, job_id: str) -> ResultsResponse:
        """GET results from Dune API for `job_id` (aka `execution_id`)"""
        return self.get_execution_results(job_id)
