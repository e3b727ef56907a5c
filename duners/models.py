"""
Dataclasses encoding response data from Dune API,
and the errors raised while talking to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from dateutil.parser import parse

if TYPE_CHECKING:
    from datetime import datetime

    from duners.types import DuneRecord

log = logging.getLogger(__name__)


class DuneRequestError(Exception):
    """Base class of every error raised by this package"""


class AuthError(DuneRequestError):
    """Missing or rejected API key"""


class RequestError(DuneRequestError):
    """Transport failure: the request never produced an HTTP response"""


class UpstreamError(DuneRequestError):
    """Dune answered with a non-success HTTP status.

    Known error messages:
    {'error': 'Query not found'}
    {'error': 'An internal error occured'}
    {'error': 'The requested execution ID (ID: Wonky Job ID) is invalid.'}
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}" if status_code else message)


class DuneError(UpstreamError):
    """Successful response whose body doesn't have the expected shape"""

    def __init__(self, data: Any, response_class: str, err: Exception):
        error_message = f"Can't build {response_class} from {data}"
        log.error(f"{error_message} due to {type(err).__name__}: {err}")
        super().__init__(error_message)


class ExecutionTimeoutError(DuneRequestError, TimeoutError):
    """Execution didn't reach a terminal state within the maximum wait"""

    def __init__(self, job_id: str, max_wait: float, state: ExecutionState):
        self.job_id = job_id
        self.state = state
        super().__init__(
            f"execution {job_id} still {state.value} after waiting {max_wait} seconds"
        )


class QueryFailedError(DuneRequestError):
    """Special Error for failed, cancelled or expired executions"""


class NotReadyError(DuneRequestError):
    """Results were requested before the execution finished"""


class DeserializationError(DuneRequestError, ValueError):
    """A raw value could not be converted into the declared type"""


class ExecutionState(Enum):
    """
    Enum for possible values of Query Execution
    """

    COMPLETED = "QUERY_STATE_COMPLETED"
    EXECUTING = "QUERY_STATE_EXECUTING"
    PARTIAL = "QUERY_STATE_COMPLETED_PARTIAL"
    PENDING = "QUERY_STATE_PENDING"
    CANCELLED = "QUERY_STATE_CANCELLED"
    FAILED = "QUERY_STATE_FAILED"
    EXPIRED = "QUERY_STATE_EXPIRED"

    @classmethod
    def terminal_states(cls) -> set[ExecutionState]:
        """
        Returns the terminal states (i.e. when a query execution is no longer executing
        """
        return {cls.COMPLETED, cls.CANCELLED, cls.FAILED, cls.EXPIRED, cls.PARTIAL}

    @classmethod
    def failure_states(cls) -> set[ExecutionState]:
        """Terminal states which never carry a result set"""
        return {cls.CANCELLED, cls.FAILED, cls.EXPIRED}

    def is_terminal(self) -> bool:
        """Returns True when no further state transitions occur."""
        return self in ExecutionState.terminal_states()

    def is_complete(self) -> bool:
        """Returns True is state is completed (possibly partially), otherwise False."""
        return self in (ExecutionState.COMPLETED, ExecutionState.PARTIAL)


@dataclass
class ExecutionResponse:
    """
    Representation of Response from Dune's [Post] Execute Query ID endpoint
    """

    execution_id: str
    state: ExecutionState

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> ExecutionResponse:
        """Constructor from dictionary. See unit test for sample input."""
        return cls(execution_id=data["execution_id"], state=ExecutionState(data["state"]))


@dataclass
class TimeData:
    """A collection of all timestamp related values contained within Dune Response"""

    submitted_at: datetime
    execution_started_at: datetime | None
    execution_ended_at: datetime | None
    # Expires only exists when we have result data
    expires_at: datetime | None
    # only exists for cancelled executions
    cancelled_at: datetime | None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimeData:
        """Constructor from dictionary. See unit test for sample input."""
        start = data.get("execution_started_at")
        end = data.get("execution_ended_at")
        expires = data.get("expires_at")
        cancelled = data.get("cancelled_at")
        return cls(
            submitted_at=parse(data["submitted_at"]),
            expires_at=None if expires is None else parse(expires),
            execution_started_at=None if start is None else parse(start),
            execution_ended_at=None if end is None else parse(end),
            cancelled_at=None if cancelled is None else parse(cancelled),
        )


@dataclass
class ExecutionError:
    """
    Representation of Execution Error Response:

    Example:
    {
        "type":"syntax_error",
        "message":"Error: Line 1:1: mismatched input 'selecdt'",
        "metadata":{"line":10,"column":73}
    }
    """

    type: str
    message: str
    metadata: dict[str, Any] | None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionError:
        """Constructs an instance from a dict"""
        return cls(
            type=data.get("type", "unknown"),
            message=data.get("message", "unknown"),
            metadata=data.get("metadata"),
        )


@dataclass
class ResultMetadata:
    """
    Representation of Dune's Result Metadata from [Get] Query Results endpoint
    """

    column_names: list[str]
    column_types: list[str]
    row_count: int
    result_set_bytes: int
    total_row_count: int
    datapoint_count: int
    pending_time_millis: int | None
    execution_time_millis: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResultMetadata:
        """Constructor from dictionary. See unit test for sample input."""
        assert isinstance(data["column_names"], list)
        pending_time = data.get("pending_time_millis")
        total_row_count = int(data["total_row_count"])
        return cls(
            column_names=data["column_names"],
            column_types=data.get("column_types", []),
            row_count=int(data.get("row_count", total_row_count)),
            result_set_bytes=int(data["result_set_bytes"]),
            total_row_count=total_row_count,
            datapoint_count=int(data["datapoint_count"]),
            pending_time_millis=int(pending_time) if pending_time else None,
            execution_time_millis=int(data["execution_time_millis"]),
        )

    def __add__(self, other: ResultMetadata) -> ResultMetadata:
        """
        Enables combining results by updating the metadata associated to
        an execution by using the `+` operator.
        """
        assert other is not None

        self.row_count += other.row_count
        self.result_set_bytes += other.result_set_bytes
        self.datapoint_count += other.datapoint_count
        return self


@dataclass
class ExecutionStatusResponse:
    """
    Representation of Response from Dune's [Get] Execution Status endpoint
    https://docs.dune.com/api-reference/executions/endpoint/get-execution-status
    """

    execution_id: str
    query_id: int
    state: ExecutionState
    times: TimeData
    queue_position: int | None
    # this will be present when the query execution completes
    result_metadata: ResultMetadata | None
    error: ExecutionError | None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionStatusResponse:
        """Constructor from dictionary. See unit test for sample input."""
        dct: MetaData | None = data.get("result_metadata")
        error: dict[str, Any] | None = data.get("error")
        return cls(
            execution_id=data["execution_id"],
            query_id=int(data["query_id"]),
            queue_position=data.get("queue_position"),
            state=ExecutionState(data["state"]),
            result_metadata=ResultMetadata.from_dict(dct) if dct else None,
            times=TimeData.from_dict(data),  # Sending the entire data dict
            error=ExecutionError.from_dict(error) if error else None,
        )

    def __str__(self) -> str:
        if self.state == ExecutionState.PENDING:
            return f"{self.state} (queue position: {self.queue_position})"
        if self.state == ExecutionState.FAILED:
            return (
                f"{self.state}: execution_id={self.execution_id}, "
                f"query_id={self.query_id}, times={self.times}"
            )

        return f"{self.state}"

    def failure_message(self) -> str:
        """Message used when this status ends a refresh without results."""
        if self.error:
            return self.error.message
        if self.state == ExecutionState.FAILED:
            return "Query execution failed"
        return f"Query execution ended in state {self.state.value}"


RowData = list[dict[str, Any]]
MetaData = dict[str, int | list[str]]


@dataclass
class ExecutionResult:
    """Representation of `result` field of a Dune ResultsResponse"""

    rows: list[DuneRecord]
    metadata: ResultMetadata

    @classmethod
    def from_dict(cls, data: dict[str, RowData | MetaData]) -> ExecutionResult:
        """Constructor from dictionary. See unit test for sample input."""
        assert isinstance(data["rows"], list)
        assert isinstance(data["metadata"], dict)
        return cls(
            rows=data["rows"],
            metadata=ResultMetadata.from_dict(data["metadata"]),
        )

    def __add__(self, other: ExecutionResult) -> ExecutionResult:
        """
        Enables combining results using the `+` operator.
        """
        self.rows.extend(other.rows)
        self.metadata += other.metadata

        return self


ResultData = dict[str, RowData | MetaData]


@dataclass
class ResultsResponse:
    """
    Representation of Response from Dune's [Get] Execution Results endpoint
    """

    execution_id: str
    query_id: int
    state: ExecutionState
    times: TimeData
    # optional because it will only be present when the query execution completes
    result: ExecutionResult | None
    next_uri: str | None = None
    next_offset: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, str | int | ResultData]) -> ResultsResponse:
        """Constructor from dictionary. See unit test for sample input."""
        assert isinstance(data["execution_id"], str)
        assert isinstance(data["query_id"], int)
        assert isinstance(data["state"], str)
        result = data.get("result", {})
        assert isinstance(result, dict)
        next_uri = data.get("next_uri")
        assert isinstance(next_uri, str) or next_uri is None
        next_offset = data.get("next_offset")
        assert isinstance(next_offset, int) or next_offset is None
        return cls(
            execution_id=data["execution_id"],
            query_id=int(data["query_id"]),
            state=ExecutionState(data["state"]),
            times=TimeData.from_dict(data),
            result=ExecutionResult.from_dict(result) if result else None,
            next_uri=next_uri,
            next_offset=next_offset,
        )

    def get_rows(self) -> list[DuneRecord]:
        """
        Absorbs the Optional check and returns the result rows.
        Raises when the execution did not complete, so that a result set
        is never mistaken for the (absent) rows of a failed run.
        """
        if self.state in ExecutionState.failure_states():
            raise QueryFailedError(f"execution {self.execution_id} ended in {self.state.value}")
        if not self.state.is_complete():
            raise NotReadyError(f"execution {self.execution_id} is {self.state.value}")
        assert self.result is not None, f"No Results on completed execution {self}"
        return self.result.rows

    def column_names(self) -> list[str]:
        """Column names in upstream order, empty when no result is attached"""
        return self.result.metadata.column_names if self.result else []

    def __add__(self, other: ResultsResponse) -> ResultsResponse:
        """
        Enables combining results using the `+` operator.
        """
        assert self.execution_id == other.execution_id
        assert self.result is not None
        assert other.result is not None
        self.result += other.result
        self.next_uri = other.next_uri
        self.next_offset = other.next_offset
        return self
