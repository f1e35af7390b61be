"""
Adapter between client connections and the `ProgressChannel`.

The gateway owns the registry of connected clients and which jobs/users each
one follows; the channel stays transport-agnostic. Events are pushed through
an injected `send(connection_id, event_name, payload)` callable, so any
transport (websocket server, SSE, a test list) can sit behind it.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .progress_channel import ProgressChannel, Unsubscribe

Send = Callable[[str, str, dict], None]

JOB_PROGRESS_EVENT = "upload-progress"
USER_PROGRESS_EVENT = "user-upload-progress"


@dataclass
class _Connection:
    user_id: Optional[str] = None
    job_subscriptions: Dict[str, Unsubscribe] = field(default_factory=dict)
    user_subscriptions: Dict[str, Unsubscribe] = field(default_factory=dict)


class ProgressGateway:
    def __init__(self, channel: ProgressChannel, send: Send):
        self.channel = channel
        self.send = send
        self._connections: Dict[str, _Connection] = {}
        self._lock = threading.Lock()

    def connect(self, connection_id: str):
        with self._lock:
            self._connections.setdefault(connection_id, _Connection())
        logger.info(f"Client connected: {connection_id}")
        self._emit(connection_id, "connected", {
            "message": "Connected to upload progress server",
            "timestamp": int(time.time() * 1000),
        })

    def disconnect(self, connection_id: str):
        """Drops the connection and every subscription it held."""
        with self._lock:
            connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        for unsubscribe in list(connection.job_subscriptions.values()) + list(connection.user_subscriptions.values()):
            unsubscribe()
        logger.info(f"Client disconnected: {connection_id}")

    def join_job(self, connection_id: str, job_id: str):
        connection = self._require(connection_id)
        if job_id in connection.job_subscriptions:
            return
        connection.job_subscriptions[job_id] = self.channel.subscribe_to_job(
            job_id, lambda event: self._emit(connection_id, JOB_PROGRESS_EVENT, event.to_wire())
        )
        logger.info(f"Client {connection_id} joined job {job_id}")

    def leave_job(self, connection_id: str, job_id: str):
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        unsubscribe = connection.job_subscriptions.pop(job_id, None)
        if unsubscribe is not None:
            unsubscribe()
            logger.info(f"Client {connection_id} left job {job_id}")

    def join_user(self, connection_id: str, user_id: str):
        connection = self._require(connection_id)
        connection.user_id = user_id
        if user_id in connection.user_subscriptions:
            return
        connection.user_subscriptions[user_id] = self.channel.subscribe_to_user(
            user_id, lambda event: self._emit(connection_id, USER_PROGRESS_EVENT, event.to_wire())
        )
        logger.info(f"Client {connection_id} joined uploads of user {user_id}")

    def leave_user(self, connection_id: str, user_id: str):
        connection = self._connections.get(connection_id)
        if connection is None:
            return
        unsubscribe = connection.user_subscriptions.pop(user_id, None)
        if unsubscribe is not None:
            unsubscribe()
            logger.info(f"Client {connection_id} left uploads of user {user_id}")

    def broadcast_to_all(self, event_name: str, data: Dict[str, Any]):
        payload = dict(data, timestamp=int(time.time() * 1000))
        with self._lock:
            connection_ids = list(self._connections)
        for connection_id in connection_ids:
            self._emit(connection_id, event_name, payload)

    def connected_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def active_jobs(self) -> List[str]:
        """Job ids followed by at least one connection, in first-joined order."""
        with self._lock:
            connections = list(self._connections.values())
        seen: Dict[str, None] = {}
        for connection in connections:
            for job_id in connection.job_subscriptions:
                seen.setdefault(job_id, None)
        return list(seen)

    def _require(self, connection_id: str) -> _Connection:
        with self._lock:
            connection = self._connections.get(connection_id)
        if connection is None:
            raise KeyError(f"Unknown connection: {connection_id}")
        return connection

    def _emit(self, connection_id: str, event_name: str, payload: dict):
        try:
            self.send(connection_id, event_name, payload)
        except Exception as e:
            logger.warning(f"Could not deliver '{event_name}' to {connection_id}: {e}")
