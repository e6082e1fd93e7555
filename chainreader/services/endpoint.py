"""
EndpointManager - Owns the RPC handles and tracks their health.

States:
- UNKNOWN: Not probed yet (initial state and after reset)
- HEALTHY: Last outcome was a success
- DEGRADED: degraded_threshold consecutive failures, or rate limited
- DOWN: down_threshold consecutive failures

Transitions:
- any → HEALTHY: On one successful outcome
- UNKNOWN/HEALTHY → DEGRADED: When degraded_threshold is reached or on a rate limit
- DEGRADED → DOWN: When down_threshold is reached
- any → UNKNOWN: On reset()

No retries live here. The call executor reports every outcome through
report_outcome(), which is the only place health state is mutated.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from chainreader.services.errors import RateLimitError
from chainreader.services.transport import RpcTransport


class EndpointKind(str, Enum):
    """Configured handle kinds."""

    PRIMARY = "primary"  # Request/response, carries all business reads
    STREAMING = "streaming"  # Liveness signalling only


class HealthState(str, Enum):
    """Endpoint health states."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


@dataclass
class HealthConfig:
    """Configuration for health transitions."""

    degraded_threshold: int = 3  # Consecutive failures before degraded
    down_threshold: int = 6  # Consecutive failures before down
    rate_limit_cooldown: float = 60.0  # Seconds unavailable after a 429
    probe_interval: float = 30.0  # Seconds before a down endpoint is re-tested


@dataclass
class Endpoint:
    """One configured handle and its health."""

    kind: EndpointKind
    handle: Any
    state: HealthState = HealthState.UNKNOWN
    consecutive_failures: int = 0
    last_checked: float | None = None
    cooldown_until: float = 0.0


class EndpointManager:
    """
    Registry of endpoint handles with a health state machine per handle.

    Usage:
        endpoints = EndpointManager(primary=RpcTransport(url))

        transport = endpoints.get_handle()
        if endpoints.can_request():
            ...
        endpoints.report_outcome(EndpointKind.PRIMARY, success=True)
    """

    def __init__(
        self,
        primary: Any | None = None,
        streaming: Any | None = None,
        config: HealthConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or HealthConfig()
        self._clock = clock
        self._endpoints: dict[EndpointKind, Endpoint] = {}

        if primary is not None:
            self._endpoints[EndpointKind.PRIMARY] = Endpoint(EndpointKind.PRIMARY, primary)
        if streaming is not None:
            self._endpoints[EndpointKind.STREAMING] = Endpoint(
                EndpointKind.STREAMING, streaming
            )

    @classmethod
    def from_urls(
        cls,
        url: str,
        streaming_url: str | None = None,
        timeout: float = 15.0,
        config: HealthConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "EndpointManager":
        """Build a manager with httpx-backed handles."""
        primary = RpcTransport(url, timeout=timeout, name=EndpointKind.PRIMARY.value)
        streaming = (
            RpcTransport(streaming_url, timeout=timeout, name=EndpointKind.STREAMING.value)
            if streaming_url
            else None
        )
        return cls(primary=primary, streaming=streaming, config=config, clock=clock)

    def get_handle(self, kind: EndpointKind = EndpointKind.PRIMARY) -> Any | None:
        """Get the live handle for a kind, or None if not configured."""
        endpoint = self._endpoints.get(kind)
        return endpoint.handle if endpoint else None

    def get_state(self, kind: EndpointKind = EndpointKind.PRIMARY) -> HealthState:
        """Get the current health state of a handle."""
        endpoint = self._endpoints.get(kind)
        return endpoint.state if endpoint else HealthState.UNKNOWN

    def is_available(self, kind: EndpointKind = EndpointKind.PRIMARY) -> bool:
        """
        Check whether a handle is known to be usable.

        healthy/degraded map to True, unknown/down to False. A rate limit
        cooldown makes any state unavailable until it expires. A down
        endpoint becomes available again once probe_interval has passed
        since its last outcome, so one call can re-test it.
        """
        endpoint = self._endpoints.get(kind)
        if endpoint is None or endpoint.handle is None:
            return False

        now = self._clock()
        if now < endpoint.cooldown_until:
            return False

        if endpoint.state == HealthState.DOWN:
            return (
                endpoint.last_checked is not None
                and now - endpoint.last_checked >= self.config.probe_interval
            )

        return endpoint.state in (HealthState.HEALTHY, HealthState.DEGRADED)

    def in_cooldown(self, kind: EndpointKind = EndpointKind.PRIMARY) -> bool:
        """Check if a handle is inside its rate limit cooldown window."""
        endpoint = self._endpoints.get(kind)
        return endpoint is not None and self._clock() < endpoint.cooldown_until

    def can_request(self, kind: EndpointKind = EndpointKind.PRIMARY) -> bool:
        """Check if a request may be issued (available, or unknown and not cooling down)."""
        if self.is_available(kind):
            return True

        endpoint = self._endpoints.get(kind)
        return (
            endpoint is not None
            and endpoint.handle is not None
            and endpoint.state == HealthState.UNKNOWN
            and self._clock() >= endpoint.cooldown_until
        )

    def report_outcome(
        self,
        kind: EndpointKind,
        success: bool,
        rate_limited: bool = False,
    ) -> HealthState:
        """Record the outcome of one call and update health."""
        endpoint = self._endpoints.get(kind)
        if endpoint is None:
            return HealthState.UNKNOWN

        now = self._clock()
        endpoint.last_checked = now

        if success:
            previous = endpoint.state
            endpoint.consecutive_failures = 0
            endpoint.state = HealthState.HEALTHY
            if previous in (HealthState.DEGRADED, HealthState.DOWN):
                logger.info(f"Endpoint '{kind.value}' HEALTHY (recovered from {previous.value})")
            return endpoint.state

        endpoint.consecutive_failures += 1

        if rate_limited:
            endpoint.cooldown_until = now + self.config.rate_limit_cooldown
            logger.warning(
                f"Endpoint '{kind.value}' rate limited, cooling down for "
                f"{self.config.rate_limit_cooldown:.0f}s"
            )

        new_state = endpoint.state
        if endpoint.consecutive_failures >= self.config.down_threshold:
            new_state = HealthState.DOWN
        elif (
            endpoint.consecutive_failures >= self.config.degraded_threshold
            or rate_limited
        ):
            new_state = HealthState.DEGRADED

        if new_state != endpoint.state:
            logger.warning(
                f"Endpoint '{kind.value}' {new_state.value.upper()} after "
                f"{endpoint.consecutive_failures} consecutive failures"
            )
            endpoint.state = new_state

        return endpoint.state

    async def probe(self, kind: EndpointKind = EndpointKind.STREAMING) -> bool:
        """Issue a liveness read (current block) on a handle and report it."""
        handle = self.get_handle(kind)
        if handle is None:
            return False

        try:
            await handle.block_number()
        except RateLimitError:
            self.report_outcome(kind, success=False, rate_limited=True)
            return False
        except Exception as e:
            logger.debug(f"Liveness probe on '{kind.value}' failed: {e}")
            self.report_outcome(kind, success=False)
            return False

        self.report_outcome(kind, success=True)
        return True

    def reset(self) -> None:
        """Clear counters and cooldowns; force every handle back to UNKNOWN."""
        for endpoint in self._endpoints.values():
            endpoint.state = HealthState.UNKNOWN
            endpoint.consecutive_failures = 0
            endpoint.last_checked = None
            endpoint.cooldown_until = 0.0
        logger.info(f"Reset {len(self._endpoints)} endpoints")

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all handles."""
        now = self._clock()
        return {
            endpoint.kind.value: {
                "state": endpoint.state.value,
                "available": self.is_available(endpoint.kind),
                "consecutive_failures": endpoint.consecutive_failures,
                "last_checked": endpoint.last_checked,
                "cooldown_remaining": max(0.0, endpoint.cooldown_until - now),
            }
            for endpoint in self._endpoints.values()
        }

    async def close(self) -> None:
        """Close all handles."""
        for endpoint in self._endpoints.values():
            close = getattr(endpoint.handle, "close", None)
            if close is not None:
                await close()
