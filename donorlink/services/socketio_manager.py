"""
Socket.IO transport for hospital dashboard notifications.

A dashboard joins its hospital with `subscribe_hospital`; each session is
wrapped in a connection the notification hub can write to. With
SOCKETIO_REDIS_ENABLED the server uses the Redis client manager so emits reach
sessions held by other instances.
"""
import json
import logging
from typing import Callable, Dict, List, Optional

import socketio

from ..core.config import settings
from .notification_hub import ConnectionClosed, notification_hub

logger = logging.getLogger(__name__)


def _client_manager():
    if settings.socketio_redis_enabled:
        return socketio.AsyncRedisManager(settings.redis_url)
    return None


sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*',
    client_manager=_client_manager(),
    logger=False,
    engineio_logger=False
)


class SocketIOConnection:
    """Push connection that emits `notification` events to one session."""

    def __init__(self, sid: str, server: socketio.AsyncServer = sio):
        self.sid = sid
        self.server = server
        self._callbacks: List[Callable[[], None]] = []
        self.closed = False

    async def write(self, text: str) -> None:
        if self.closed:
            raise ConnectionClosed(f"Socket.IO session {self.sid} closed")
        await self.server.emit('notification', json.loads(text), room=self.sid)

    def on_close(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for callback in self._callbacks:
            callback()


class SocketIOManager:
    """
    Tracks Socket.IO sessions subscribed to hospital notifications.
    """

    def __init__(self, hub=notification_hub, server: socketio.AsyncServer = sio):
        self.hub = hub
        self.server = server
        self.sessions: Dict[str, SocketIOConnection] = {}  # {sid: connection}

    def register(self, sid: str, hospital_id: str) -> SocketIOConnection:
        """
        Subscribe a session to a hospital, replacing any previous subscription.

        Args:
            sid: Socket.IO session id
            hospital_id: Hospital to receive notifications for
        """
        self.unregister(sid)
        connection = SocketIOConnection(sid, self.server)
        self.sessions[sid] = connection
        self.hub.subscribe(hospital_id, connection)
        logger.info(f"👤 Dashboard subscribed: hospital {hospital_id} (sid: {sid[:8]}...)")
        return connection

    def unregister(self, sid: str) -> None:
        connection = self.sessions.pop(sid, None)
        if connection is not None:
            connection.close()
            logger.info(f"👤 Dashboard unsubscribed (sid: {sid[:8]}...)")

    def get_connection(self, sid: str) -> Optional[SocketIOConnection]:
        return self.sessions.get(sid)


# Global manager instance
socketio_manager = SocketIOManager()


# ========== Event Handlers ==========

@sio.event
async def connect(sid, environ):
    """Initial connection handler."""
    logger.info(f"🔌 New Socket.IO connection: {sid[:8]}...")


@sio.event
async def disconnect(sid):
    """Disconnection handler."""
    socketio_manager.unregister(sid)
    logger.info(f"🔌 Socket.IO disconnected: {sid[:8]}...")


@sio.event
async def subscribe_hospital(sid, data):
    """
    Subscribe the session to a hospital's notifications.

    Expected payload:
    {
        "hospital_id": "hospital-123"
    }
    """
    hospital_id = (data or {}).get('hospital_id')

    if not hospital_id:
        await sio.emit('error', {'message': 'hospital_id is required'}, room=sid)
        return

    socketio_manager.register(sid, str(hospital_id))
    await sio.emit('subscribed', {'status': 'success', 'hospital_id': hospital_id}, room=sid)


@sio.event
async def ping(sid, data):
    """Keep-alive handler."""
    await sio.emit('pong', {'timestamp': (data or {}).get('timestamp')}, room=sid)
