"""
Connection and polling configuration shared by the sync and async clients.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from duners.models import AuthError

DEFAULT_BASE_URL = "https://api.dune.com"
# Too frequent polling leads to rate limiting (429 Too Many Requests)
DEFAULT_PING_FREQUENCY = 5.0
# Dune aborts executions running longer than 30 minutes
DEFAULT_MAX_WAIT = 1800.0
DEFAULT_REQUEST_TIMEOUT = 10.0


@dataclass(frozen=True)
class DuneConfig:
    """
    Immutable settings of a Dune client.

    ping_frequency - seconds slept between two execution status requests.
    max_wait - seconds after which a refresh gives up waiting for a terminal
        execution state. `None` waits indefinitely.
    """

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    client_version: str = "v1"
    performance: str = "medium"
    ping_frequency: float = DEFAULT_PING_FREQUENCY
    max_wait: float | None = DEFAULT_MAX_WAIT

    def __post_init__(self) -> None:
        if not self.api_key:
            raise AuthError("missing Dune API key")
        if self.ping_frequency <= 0:
            raise ValueError(f"ping_frequency must be positive, got {self.ping_frequency}")
        if self.max_wait is not None and self.max_wait < 0:
            raise ValueError(f"max_wait must be non-negative, got {self.max_wait}")

    def __repr__(self) -> str:
        # Keep the key out of logs and tracebacks.
        return (
            f"DuneConfig(base_url={self.base_url!r}, request_timeout={self.request_timeout}, "
            f"client_version={self.client_version!r}, performance={self.performance!r}, "
            f"ping_frequency={self.ping_frequency}, max_wait={self.max_wait})"
        )

    @classmethod
    def from_env(cls) -> DuneConfig:
        """
        Builds the configuration from environment variables.
        `DUNE_API_KEY` is required, all others fall back to defaults:
        DUNE_API_BASE_URL, DUNE_API_REQUEST_TIMEOUT, DUNE_PING_FREQUENCY, DUNE_MAX_WAIT
        """
        try:
            api_key = os.environ["DUNE_API_KEY"]
        except KeyError as err:
            raise AuthError("environment variable DUNE_API_KEY is not set") from err
        max_wait = os.environ.get("DUNE_MAX_WAIT")
        return cls(
            api_key=api_key,
            base_url=os.environ.get("DUNE_API_BASE_URL", DEFAULT_BASE_URL),
            request_timeout=float(
                os.environ.get("DUNE_API_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)
            ),
            ping_frequency=float(os.environ.get("DUNE_PING_FREQUENCY", DEFAULT_PING_FREQUENCY)),
            max_wait=float(max_wait) if max_wait else DEFAULT_MAX_WAIT,
        )

    @property
    def api_version(self) -> str:
        """Returns client version string"""
        return f"/api/{self.client_version}"
