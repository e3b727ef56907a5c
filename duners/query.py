"""
Data Classes Representing a Dune Query
"""

from __future__ import annotations

from dataclasses import dataclass

from duners.types import QueryParameter, QueryParameters


def as_query(query: QueryBase | str | int) -> QueryBase:
    """
    Users are allowed to pass QueryBase or ID into the execution functions.
    Bare IDs become an unnamed query without parameters.
    """
    if isinstance(query, QueryBase):
        return query
    return QueryBase(query_id=int(query))


@dataclass
class QueryBase:
    """A Dune query ID together with the parameter values of one execution."""

    query_id: int
    name: str = "unnamed"
    params: list[QueryParameter] | None = None

    def parameters(self) -> list[QueryParameter]:
        """Non-null version of self.params"""
        return self.params or []

    def request_format(self) -> dict[str, QueryParameters]:
        """Body of an execute request, parameter values keyed by parameter name"""
        return {"query_parameters": {p.key: p.serialized_value() for p in self.parameters()}}
