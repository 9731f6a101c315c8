"""
Notification hub for real-time hospital dashboard updates.

Keeps a registry of open push connections per hospital and fans messages out
to them. Delivery is fire-and-forget: nothing is buffered for subscribers that
connect later, and a connection that fails to accept a write is dropped.
"""
import asyncio
import json
import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol, Set

from ..schemas import Notification

logger = logging.getLogger(__name__)


class ConnectionClosed(Exception):
    pass


class PushConnection(Protocol):
    async def write(self, text: str) -> None: ...

    def on_close(self, callback: Callable[[], None]) -> None: ...


class SSEConnection:
    """
    Server-sent events channel backed by an asyncio queue.

    The streaming response drains `next_chunk()`; `close()` runs the close
    callbacks once and wakes the stream so it can finish.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._callbacks: List[Callable[[], None]] = []
        self.closed = False

    async def write(self, text: str) -> None:
        if self.closed:
            raise ConnectionClosed("SSE connection closed")
        self._queue.put_nowait(f"data: {text}\n\n")

    def on_close(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    async def next_chunk(self) -> Optional[str]:
        """Next framed event, or None once the connection is closed."""
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)
        for callback in self._callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in SSE close callback: {e}")


class NotificationHub:
    """
    Registry of hospital id -> open connections, with fan-out publish.
    """

    def __init__(self):
        self.clients: Dict[str, Set[PushConnection]] = {}
        self._lock = threading.Lock()

    def subscribe(self, hospital_id: str, connection: PushConnection) -> None:
        """
        Register a connection for a hospital's notifications.

        The connection deregisters itself when it closes.

        Args:
            hospital_id: Hospital whose notifications the connection receives
            connection: Push connection (SSE stream, Socket.IO session...)
        """
        hospital_id = str(hospital_id)
        with self._lock:
            self.clients.setdefault(hospital_id, set()).add(connection)
            total = len(self.clients[hospital_id])
        connection.on_close(lambda: self.unsubscribe(hospital_id, connection))
        logger.info(f"✅ Client connected for hospital {hospital_id} (Total: {total} connection(s))")

    def unsubscribe(self, hospital_id: str, connection: PushConnection) -> None:
        hospital_id = str(hospital_id)
        with self._lock:
            connections = self.clients.get(hospital_id)
            if not connections or connection not in connections:
                return
            connections.discard(connection)
            remaining = len(connections)
            if not connections:
                del self.clients[hospital_id]
        logger.info(f"❌ Client disconnected for hospital {hospital_id} (Remaining: {remaining} connection(s))")

    def _targets(self, hospital_id: Optional[str]) -> List[tuple]:
        with self._lock:
            if hospital_id is None:
                return [(h, c) for h, conns in self.clients.items() for c in conns]
            return [(hospital_id, c) for c in self.clients.get(hospital_id, ())]

    async def publish(self, notification: Notification) -> int:
        """
        Deliver a notification to its hospital, or to everyone when it has none.

        Args:
            notification: Notification to deliver

        Returns:
            Number of connections the payload was written to
        """
        hospital_id = str(notification.hospital_id) if notification.hospital_id is not None else None
        targets = self._targets(hospital_id)

        if not targets:
            logger.debug(f"No connected clients for hospital {hospital_id or 'ALL'}")
            return 0

        payload = json.dumps({
            "type": "notification",
            "notification": notification.model_dump(mode="json"),
        })

        delivered = 0
        failed = []
        for target_hospital, connection in targets:
            try:
                await connection.write(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Error pushing notification to hospital {target_hospital}: {e}")
                failed.append((target_hospital, connection))

        for target_hospital, connection in failed:
            self.unsubscribe(target_hospital, connection)

        if failed:
            logger.warning(f"Removed {len(failed)} dead connection(s)")
        logger.info(f"📡 Notification '{notification.title}' delivered to {delivered} client(s) for {hospital_id or 'ALL'}")
        return delivered

    def connected_clients(self) -> dict:
        with self._lock:
            hospitals = [
                {"hospital_id": hospital_id, "connections": len(connections)}
                for hospital_id, connections in self.clients.items()
            ]
        return {"size": len(hospitals), "hospitals": hospitals}


# Global hub instance
notification_hub = NotificationHub()
