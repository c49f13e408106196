"""
WebSocket connection registry for realtime lifecycle events.

One ConnectionManager is created per running app (see app.py lifespan) and
handed to request handlers through app.state, so its lifetime matches the
server's. Every send is best effort: a connection that errors or times out is
logged and dropped, never retried.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import asyncio
import enum
import itertools
import json

from fastapi import WebSocket

from auth.security import SessionIdentity
from core.logger import logger
import config


class EventType(str, enum.Enum):
    """Types carried in the {type, payload} envelope."""
    NEW_PENDING_REPORT = "NEW_PENDING_REPORT"
    REPORT_APPROVED = "REPORT_APPROVED"
    REPORT_REJECTED = "REPORT_REJECTED"
    NEW_ITEM_APPROVED = "NEW_ITEM_APPROVED"
    YOUR_REPORT_STATUS_UPDATE = "YOUR_REPORT_STATUS_UPDATE"
    FOUND_ITEM_STATUS_UPDATED = "FOUND_ITEM_STATUS_UPDATED"
    LOST_ITEM_STATUS_UPDATED = "LOST_ITEM_STATUS_UPDATED"
    FOUND_ITEM_DELETED = "FOUND_ITEM_DELETED"
    LOST_ITEM_DELETED = "LOST_ITEM_DELETED"
    NEW_FOUND_ITEM = "NEW_FOUND_ITEM"


def build_event(event_type: EventType, payload: Dict[str, Any]) -> str:
    return json.dumps({"type": event_type.value, "payload": payload}, default=str)


_connection_ids = itertools.count(1)


@dataclass(eq=False)
class Connection:
    """A live realtime client and the identity it authenticated with."""
    websocket: WebSocket
    identity: SessionIdentity
    id: int = field(default_factory=lambda: next(_connection_ids))


class ConnectionManager:
    """Concurrency-safe registry of live connections."""

    def __init__(self, send_timeout: Optional[float] = None):
        self._connections: Dict[int, Connection] = {}
        self._lock = asyncio.Lock()
        self.send_timeout = send_timeout if send_timeout is not None else config.WS_SEND_TIMEOUT_SECONDS

    async def connect(self, websocket: WebSocket, identity: SessionIdentity) -> Connection:
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        connection = Connection(websocket=websocket, identity=identity)
        async with self._lock:
            self._connections[connection.id] = connection
        logger.info(f"Realtime connection {connection.id} opened for {identity.email}")
        return connection

    async def disconnect(self, connection: Connection):
        """Remove a connection. Safe to call more than once."""
        async with self._lock:
            removed = self._connections.pop(connection.id, None)
        if removed is not None:
            logger.info(f"Realtime connection {connection.id} closed for {connection.identity.email}")

    async def _snapshot(self, predicate: Callable[[Connection], bool]) -> List[Connection]:
        async with self._lock:
            return [c for c in self._connections.values() if predicate(c)]

    async def _send(self, connection: Connection, data: str) -> bool:
        try:
            await asyncio.wait_for(connection.websocket.send_text(data), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Realtime send to connection {connection.id} timed out, dropping it")
        except Exception as e:
            logger.warning(f"Realtime send to connection {connection.id} failed, dropping it: {e}")
        return False

    async def _fan_out(
        self,
        predicate: Callable[[Connection], bool],
        event_type: EventType,
        payload: Dict[str, Any]
    ) -> int:
        # Snapshot under the lock, send outside it so one slow socket cannot stall connects
        targets = await self._snapshot(predicate)
        if not targets:
            return 0

        data = build_event(event_type, payload)
        results = await asyncio.gather(*(self._send(c, data) for c in targets))

        dead = [c for c, ok in zip(targets, results) if not ok]
        for connection in dead:
            await self.disconnect(connection)
        return len(targets) - len(dead)

    async def broadcast_all(self, event_type: EventType, payload: Dict[str, Any]) -> int:
        """Send to every open connection. Returns the number of successful sends."""
        return await self._fan_out(lambda c: True, event_type, payload)

    async def broadcast_to_admins(self, event_type: EventType, payload: Dict[str, Any]) -> int:
        return await self._fan_out(lambda c: c.identity.is_admin, event_type, payload)

    async def send_to_user(self, email: str, event_type: EventType, payload: Dict[str, Any]) -> int:
        """Send to every connection held by the given email (a user may have several)."""
        email = (email or "").strip().lower()
        return await self._fan_out(lambda c: c.identity.email == email, event_type, payload)

    async def close_all(self, code: int = 1001):
        """Close and forget every connection (server shutdown)."""
        async with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for connection in connections:
            try:
                await connection.websocket.close(code=code)
            except Exception as e:
                logger.debug(f"Ignoring close error on connection {connection.id}: {e}")
        if connections:
            logger.info(f"Closed {len(connections)} realtime connection(s)")

    def get_total_connections(self) -> int:
        """Get total number of active connections."""
        return len(self._connections)

    def get_connected_count(self, email: str) -> int:
        email = (email or "").strip().lower()
        return sum(1 for c in self._connections.values() if c.identity.email == email)
