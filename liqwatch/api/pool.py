"""
Connection Pool
===============

Failover manager for redundant upstream feeds.

Every connection's lifecycle is an explicit state machine driven from one
entry point, on_transport_event(). The pool keeps exactly one ACTIVE
connection whenever at least one is OPEN, and none when none is.

Transition table (event -> next state), per current state:

    CONNECTING: opened -> OPEN,  closed -> CLOSED, errored -> ERRORED
    OPEN:       closed -> CLOSED, errored -> ERRORED
    CLOSED:     connecting -> CONNECTING, opened -> OPEN
    ERRORED:    connecting -> CONNECTING, opened -> OPEN, closed -> CLOSED
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .connection import (
    Connection,
    ConnectionRole,
    ConnectionState,
    TransportEvent,
)

logger = logging.getLogger(__name__)

ActiveListener = Callable[[Optional[Connection]], None]
ConnectionFactory = Callable[[str], Connection]

_S = ConnectionState
_E = TransportEvent

TRANSITIONS: Dict[Tuple[ConnectionState, TransportEvent], ConnectionState] = {
    (_S.CONNECTING, _E.CONNECTING): _S.CONNECTING,
    (_S.CONNECTING, _E.OPENED): _S.OPEN,
    (_S.CONNECTING, _E.CLOSED): _S.CLOSED,
    (_S.CONNECTING, _E.ERRORED): _S.ERRORED,
    (_S.OPEN, _E.CLOSED): _S.CLOSED,
    (_S.OPEN, _E.ERRORED): _S.ERRORED,
    (_S.CLOSED, _E.CONNECTING): _S.CONNECTING,
    (_S.CLOSED, _E.OPENED): _S.OPEN,
    (_S.ERRORED, _E.CONNECTING): _S.CONNECTING,
    (_S.ERRORED, _E.OPENED): _S.OPEN,
    (_S.ERRORED, _E.CLOSED): _S.CLOSED,
}


class ConnectionPool:
    """
    Owns N upstream connections and the single "active" reference.

    Callers of get_active() must handle None: with every connection down the
    system degrades to "no new data" and keeps running.
    """

    def __init__(self, connection_factory: ConnectionFactory = Connection):
        """
        Initialize the pool.

        Args:
            connection_factory: Builds a Connection for an endpoint URL
        """
        self._factory = connection_factory
        self.connections: List[Connection] = []
        self._active: Optional[Connection] = None
        self._listeners: List[ActiveListener] = []
        self._tasks: List[asyncio.Task] = []

    def initialize(self, endpoints: List[str]):
        """Create one Connection per endpoint (CONNECTING, STANDBY)."""
        for endpoint in endpoints:
            connection = self._factory(endpoint)
            connection.state = ConnectionState.CONNECTING
            connection.role = ConnectionRole.STANDBY
            self.connections.append(connection)
        logger.info(f"Connection pool initialized with {len(self.connections)} endpoints")

    async def start(self):
        """Launch every connection's transport loop."""
        for connection in self.connections:
            task = asyncio.create_task(connection.run(self.on_transport_event))
            self._tasks.append(task)

    async def close(self):
        """Stop all transport loops."""
        for connection in self.connections:
            try:
                await connection.close()
            except Exception as e:
                logger.warning(f"Error closing {connection.label}: {e}")
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def add_listener(self, listener: ActiveListener):
        """Register a callback fired whenever the active connection changes."""
        self._listeners.append(listener)

    def get_active(self) -> Optional[Connection]:
        return self._active

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def on_transport_event(self, connection: Connection, event: TransportEvent):
        """
        Apply one transport signal to a connection and re-evaluate the active role.

        Args:
            connection: Connection the signal came from
            event: What the transport observed
        """
        previous = connection.state
        next_state = TRANSITIONS.get((previous, event))
        if next_state is None:
            logger.warning(
                f"Ignoring {event.value} for {connection.label} in state {previous.value}"
            )
            return

        connection.state = next_state
        if next_state != previous:
            log = logger.info if next_state in (_S.OPEN, _S.CONNECTING) else logger.warning
            log(f"Connection {connection.label}: {previous.value} -> {next_state.value}")

        if next_state == ConnectionState.OPEN:
            if self._active is None:
                self._promote(connection)
        elif connection is self._active and next_state != ConnectionState.OPEN:
            connection.role = ConnectionRole.STANDBY
            self._failover(connection)

    def _failover(self, lost: Connection):
        fallback = next(
            (c for c in self.connections if c is not lost and c.state == ConnectionState.OPEN),
            None,
        )
        if fallback is not None:
            logger.warning(f"Switching active connection {lost.label} -> {fallback.label}")
            self._promote(fallback)
        else:
            logger.error("No open connection available; queries and subscriptions paused")
            self._set_active(None)

    def _promote(self, connection: Connection):
        if self._active is not None and self._active is not connection:
            self._active.role = ConnectionRole.STANDBY
        connection.role = ConnectionRole.ACTIVE
        logger.info(f"Active connection: {connection.label}")
        self._set_active(connection)

    def _set_active(self, connection: Optional[Connection]):
        self._active = connection
        for listener in self._listeners:
            try:
                listener(connection)
            except Exception:
                logger.exception("Active-connection listener failed")
