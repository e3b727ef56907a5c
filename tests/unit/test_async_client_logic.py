"""Unit tests for AsyncDuneClient core logic"""

import asyncio
import itertools
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiounittest
import pytest
from aiohttp import ClientConnectionError

from duners.client_async import AsyncDuneClient
from duners.models import (
    AuthError,
    ExecutionState,
    ExecutionStatusResponse,
    ExecutionTimeoutError,
    NotReadyError,
    QueryFailedError,
    RequestError,
    TimeData,
    UpstreamError,
)
from duners.query import QueryBase

JOB_ID = "job-123"


def results_page(rows, *, state="QUERY_STATE_COMPLETED", next_uri=None, next_offset=None):
    """Raw results payload as returned by the execution results endpoint"""
    page = {
        "execution_id": JOB_ID,
        "query_id": 12345,
        "state": state,
        "submitted_at": "2022-08-29T06:33:24.913138Z",
        "next_uri": next_uri,
        "next_offset": next_offset,
    }
    if rows is not None:
        page["result"] = {
            "rows": rows,
            "metadata": {
                "column_names": ["id"],
                "column_types": ["integer"],
                "row_count": len(rows),
                "result_set_bytes": len(rows),
                "total_row_count": len(rows),
                "datapoint_count": len(rows),
                "pending_time_millis": None,
                "execution_time_millis": 0,
            },
        }
    return page


class TestPaginationLogic(aiounittest.AsyncTestCase):
    """Test get_execution_results pagination behavior"""

    def _create_client(self):
        client = AsyncDuneClient(api_key="test")
        client._session = MagicMock()
        client._session.close = AsyncMock()
        return client

    async def test_single_page_no_pagination(self):
        """Test that single page results don't trigger pagination"""
        client = self._create_client()
        client._get = AsyncMock(return_value=results_page([{"id": 1}, {"id": 2}]))

        result = await client.get_execution_results(JOB_ID)
        assert result.get_rows() == [{"id": 1}, {"id": 2}]
        assert result.next_uri is None
        client._get.assert_awaited_once_with(
            route=f"/execution/{JOB_ID}/results", url=None, params={"limit": 32_000}
        )

    async def test_multiple_pages_collected(self):
        """Test that multiple pages are correctly combined"""
        client = self._create_client()
        page2_uri = "https://api.dune.com/api/v1/execution/job-123/results?offset=1&limit=1"
        page3_uri = "https://api.dune.com/api/v1/execution/job-123/results?offset=2&limit=1"
        client._get = AsyncMock(
            side_effect=[
                results_page([{"id": 1}], next_uri=page2_uri, next_offset=1),
                results_page([{"id": 2}], next_uri=page3_uri, next_offset=2),
                results_page([{"id": 3}]),
            ]
        )

        result = await client.get_execution_results(JOB_ID, batch_size=1)
        assert result.get_rows() == [{"id": 1}, {"id": 2}, {"id": 3}]
        assert result.result.metadata.row_count == 3
        assert result.next_uri is None
        assert result.next_offset is None
        assert [call.kwargs["url"] for call in client._get.await_args_list[1:]] == [
            page2_uri,
            page3_uri,
        ]

    async def test_empty_results(self):
        """Test pagination with empty result set"""
        client = self._create_client()
        client._get = AsyncMock(return_value=results_page([]))

        result = await client.get_execution_results(JOB_ID)
        assert result.get_rows() == []

    async def test_results_not_ready(self):
        """Results of a running execution are refused"""
        client = self._create_client()
        client._get = AsyncMock(return_value=results_page(None, state="QUERY_STATE_EXECUTING"))

        with pytest.raises(NotReadyError):
            await client.get_execution_results(JOB_ID)

    async def test_next_uri_must_stay_on_api_host(self):
        client = self._create_client()
        with pytest.raises(AssertionError):
            client._route_url(url="https://elsewhere.example/api/v1/execution/x/results")
        assert (
            client._route_url(url="https://api.dune.com/api/v1/execution/x/results")
            == "/api/v1/execution/x/results"
        )


class TestTerminalStateHandling(aiounittest.AsyncTestCase):
    """Test _refresh terminal state handling"""

    def _create_client(self):
        client = AsyncDuneClient(api_key="test")
        client._session = MagicMock()
        client._session.close = AsyncMock()
        client.execute_query = AsyncMock(return_value=MagicMock(execution_id="job-123"))
        return client

    def _mock_status_response(self, state, error=None):
        """Create a mock ExecutionStatusResponse"""
        return ExecutionStatusResponse(
            execution_id="test-job-123",
            query_id=12345,
            state=state,
            times=TimeData(
                submitted_at=MagicMock(),
                execution_started_at=None,
                execution_ended_at=None,
                expires_at=None,
                cancelled_at=None,
            ),
            queue_position=None,
            result_metadata=None,
            error=error,
        )

    async def test_failed_state_raises_query_failed_error(self):
        """Test that FAILED state raises QueryFailedError"""
        client = self._create_client()
        query = QueryBase(name="test", query_id=123)

        failed_status = self._mock_status_response(
            ExecutionState.FAILED, error=MagicMock(message="Query syntax error")
        )
        client.get_execution_status = AsyncMock(return_value=failed_status)

        with pytest.raises(QueryFailedError) as exc_info:
            await client._refresh(query)

        assert "Query syntax error" in str(exc_info.value)

    async def test_completed_state_returns_job_id(self):
        """Test that COMPLETED state returns job_id successfully"""
        client = self._create_client()
        query = QueryBase(name="test", query_id=123)

        completed_status = self._mock_status_response(ExecutionState.COMPLETED)
        client.get_execution_status = AsyncMock(return_value=completed_status)

        job_id = await client._refresh(query)
        assert job_id == "job-123"

    async def test_cancelled_and_expired_states_raise(self):
        """Test that CANCELLED and EXPIRED states never produce results"""
        client = self._create_client()
        query = QueryBase(name="test", query_id=123)

        for state in (ExecutionState.CANCELLED, ExecutionState.EXPIRED):
            client.get_execution_status = AsyncMock(return_value=self._mock_status_response(state))
            with pytest.raises(QueryFailedError) as exc_info:
                await client._refresh(query)
            assert state.value in str(exc_info.value)

    async def test_partial_state_returns_job_id(self):
        """Test that PARTIAL state returns job_id (doesn't raise)"""
        client = self._create_client()
        query = QueryBase(name="test", query_id=123)

        partial_status = self._mock_status_response(ExecutionState.PARTIAL)
        client.get_execution_status = AsyncMock(return_value=partial_status)

        job_id = await client._refresh(query)
        assert job_id == "job-123"

    async def test_pending_to_completed_waits(self):
        """Test that PENDING/EXECUTING states wait, then COMPLETED succeeds"""
        client = self._create_client()
        query = QueryBase(name="test", query_id=123)

        # Sequence: PENDING -> EXECUTING -> COMPLETED
        statuses = [
            self._mock_status_response(ExecutionState.PENDING),
            self._mock_status_response(ExecutionState.EXECUTING),
            self._mock_status_response(ExecutionState.COMPLETED),
        ]
        client.get_execution_status = AsyncMock(side_effect=statuses)

        job_id = await client._refresh(query, ping_frequency=0.001)
        assert job_id == "job-123"
        assert client.get_execution_status.call_count == 3
        client.execute_query.assert_awaited_once()

    async def test_gives_up_after_max_wait(self):
        """Test that a never ending execution raises ExecutionTimeoutError"""
        client = self._create_client()
        query = QueryBase(name="test", query_id=123)
        executing = self._mock_status_response(ExecutionState.EXECUTING)
        client.get_execution_status = AsyncMock(return_value=executing)

        clock = MagicMock()
        clock.monotonic.side_effect = itertools.count()
        with patch("duners.client_async.time", clock):
            with pytest.raises(ExecutionTimeoutError) as exc_info:
                await client._refresh(query, ping_frequency=0.001, max_wait=2.5)

        assert exc_info.value.state == ExecutionState.EXECUTING
        assert client.get_execution_status.call_count == 3

    async def test_non_positive_ping_frequency_is_refused(self):
        client = self._create_client()
        client.get_execution_status = AsyncMock()

        for ping_frequency in (0, -1):
            with pytest.raises(ValueError):
                await client._refresh(QueryBase(query_id=123), ping_frequency=ping_frequency)
        client.execute_query.assert_not_awaited()
        client.get_execution_status.assert_not_awaited()

    async def test_cancelling_stops_polling(self):
        """Cancelling the awaiting task issues no further status requests"""
        client = self._create_client()
        executing = self._mock_status_response(ExecutionState.EXECUTING)
        client.get_execution_status = AsyncMock(return_value=executing)
        client._get = AsyncMock()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(client.refresh(123, ping_frequency=60), timeout=0.05)
        await asyncio.sleep(0.01)

        assert client.get_execution_status.call_count == 1
        client._get.assert_not_awaited()


class TestHttpLayer(aiounittest.AsyncTestCase):
    """Test request and response handling against a mocked aiohttp session"""

    def _create_client(self, status, body):
        client = AsyncDuneClient(api_key="test")
        response = MagicMock()
        response.status = status
        response.json = AsyncMock(return_value=body)
        response.text = AsyncMock(return_value=json.dumps(body))
        client._session = MagicMock()
        client._session.request.return_value.__aenter__.return_value = response
        return client

    async def test_status_request(self):
        client = self._create_client(
            200,
            {
                "execution_id": JOB_ID,
                "query_id": 12345,
                "state": "QUERY_STATE_PENDING",
                "submitted_at": "2022-08-29T06:33:24.913138Z",
            },
        )
        status = await client.get_execution_status(JOB_ID)
        assert status.state == ExecutionState.PENDING

        args, kwargs = client._session.request.call_args
        assert args == ("GET", f"/api/v1/execution/{JOB_ID}/status")
        assert kwargs["headers"]["x-dune-api-key"] == "test"

    async def test_auth_error(self):
        client = self._create_client(401, {"error": "invalid API Key"})
        with pytest.raises(AuthError):
            await client.execute_query(123)

    async def test_upstream_error(self):
        client = self._create_client(500, {"error": "An internal error occured"})
        with pytest.raises(UpstreamError) as exc_info:
            await client.get_execution_status(JOB_ID)
        assert exc_info.value.status_code == 500

    async def test_error_without_error_field_keeps_body(self):
        client = self._create_client(500, {"message": "rate limited, retry later"})
        with pytest.raises(UpstreamError) as exc_info:
            await client.get_execution_status(JOB_ID)
        assert exc_info.value.status_code == 500
        assert "rate limited, retry later" in exc_info.value.message

    async def test_transport_error_is_not_retried(self):
        client = self._create_client(200, {})
        client._session.request.side_effect = ClientConnectionError("connection refused")
        with pytest.raises(RequestError):
            await client.get_execution_status(JOB_ID)
        assert client._session.request.call_count == 1


class TestSessionRequirement(aiounittest.AsyncTestCase):
    """Test _require_session error handling"""

    def test_calling_without_context_manager_raises_helpful_error(self):
        """Test that using client without context manager gives clear error"""
        client = AsyncDuneClient(api_key="test")
        # Don't set up session

        with pytest.raises(RuntimeError) as exc_info:
            client._require_session()

        assert "async context manager" in str(exc_info.value)

    async def test_using_get_without_session_raises_error(self):
        """Test that calling _get without session setup raises"""
        client = AsyncDuneClient(api_key="test")
        # Don't connect or use context manager

        with pytest.raises(RuntimeError) as exc_info:
            await client._get(route="/test")

        assert "async context manager" in str(exc_info.value)

    async def test_context_manager_opens_and_closes_session(self):
        async with AsyncDuneClient(api_key="test") as client:
            assert client._session is not None
        assert client._session is None
