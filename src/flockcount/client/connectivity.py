"""Connectivity probing.

Three signals are tracked: network up (reported by the host platform),
server reachable and database connected (both from GET /api/health).
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx
import structlog

from flockcount.client.models import ConnectionState, HealthStatus

logger = structlog.get_logger()

ConnectionListener = Callable[[ConnectionState, ConnectionState], Awaitable[None] | None]


class ConnectivitySource(Protocol):
    """Anything that can check server and database health."""

    async def check(self) -> HealthStatus: ...


class HealthProbe:
    """Checks GET /api/health over HTTP. Never raises."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def check(self) -> HealthStatus:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get("/api/health")
        except httpx.TimeoutException:
            return HealthStatus(server_reachable=False, error=f"Health check timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            return HealthStatus(server_reachable=False, error=f"Server unreachable: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = None

        if response.is_success:
            connected = body is not None and body.get("database") == "connected"
            return HealthStatus(
                server_reachable=True,
                database_connected=connected,
                error=None if connected else str((body or {}).get("error") or "Database not connected"),
            )

        if body is not None and "status" in body:
            return HealthStatus(
                server_reachable=True,
                database_connected=False,
                error=str(body.get("error") or f"Server unhealthy ({response.status_code})"),
            )

        # Something answered, but not our server (proxy error page etc.)
        return HealthStatus(
            server_reachable=False,
            error=f"Unexpected health response ({response.status_code})",
        )


class ConnectivityMonitor:
    """Owns the current ConnectionState and notifies listeners on change.

    Example:
        monitor = ConnectivityMonitor(HealthProbe(settings.server_url))
        monitor.subscribe(on_change)
        task = asyncio.create_task(monitor.run())
    """

    def __init__(
        self,
        source: ConnectivitySource,
        interval: float = 30.0,
        initial: ConnectionState | None = None,
    ):
        self.source = source
        self.interval = interval
        self.state = initial or ConnectionState()
        self.network_available = True
        self.forced_offline = False
        self._listeners: list[ConnectionListener] = []

    @staticmethod
    def reconnected(previous: ConnectionState, current: ConnectionState) -> bool:
        """True when the database signal rose between two states."""
        return current.is_database_connected and not previous.is_database_connected

    def subscribe(self, listener: ConnectionListener) -> Callable[[], None]:
        """Register a `(previous, current)` listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _publish(self, current: ConnectionState) -> ConnectionState:
        previous = self.state
        self.state = current
        changed = (
            previous.is_online != current.is_online
            or previous.is_server_reachable != current.is_server_reachable
            or previous.is_database_connected != current.is_database_connected
        )
        if changed:
            logger.info(
                "connectivity.changed",
                online=current.is_online,
                server_reachable=current.is_server_reachable,
                database_connected=current.is_database_connected,
                error=current.last_error,
            )

        for listener in list(self._listeners):
            try:
                result = listener(previous, current)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    "connectivity.listener_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
        return current

    async def probe(self) -> ConnectionState:
        """Run one health check and publish the resulting state.

        Skipped (state unchanged) while forced offline; short-circuits to
        all-false without a request while the network is down.
        """
        if self.forced_offline:
            return self.state
        if not self.network_available:
            return await self._publish(ConnectionState.offline("Network unavailable"))

        health = await self.source.check()
        # Network may have dropped or a force-offline may have landed meanwhile
        if self.forced_offline or not self.network_available:
            return self.state
        return await self._publish(ConnectionState.from_health(health))

    async def set_network_available(self, available: bool) -> ConnectionState:
        """Platform online/offline event."""
        self.network_available = available
        if not available:
            if self.forced_offline:
                return self.state
            return await self._publish(ConnectionState.offline("Network unavailable"))
        return await self.probe()

    async def force_offline(self, enabled: bool) -> ConnectionState:
        """Simulate an outage; probing is suppressed until disabled."""
        if enabled:
            self.forced_offline = True
            logger.info("connectivity.forced_offline")
            return await self._publish(ConnectionState.offline("Forced offline"))

        self.forced_offline = False
        logger.info("connectivity.force_offline_cleared")
        return await self.probe()

    async def run(self) -> None:
        """Probe immediately, then every `interval` seconds until cancelled."""
        logger.info("connectivity.monitor_started", interval=self.interval)
        try:
            while True:
                try:
                    await self.probe()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(
                        "connectivity.probe_failed",
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            logger.info("connectivity.monitor_stopped")
            raise
