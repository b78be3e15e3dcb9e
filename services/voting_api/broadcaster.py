"""WebSocket connection registry and candidate snapshot fan-out."""
import asyncio
import logging
from typing import Dict, Iterable, Optional, Set

from fastapi import WebSocket
from prometheus_client import Counter, Gauge
from starlette.websockets import WebSocketState

from .entities import Candidate, Snapshot
from .store import CandidateStore

logger = logging.getLogger(__name__)

# Prometheus metrics
websocket_connections = Gauge(
    "websocket_connections",
    "Number of open real-time connections"
)
broadcasts_total = Counter(
    "broadcasts_total",
    "Number of candidate snapshots broadcast after a mutation"
)
push_failures = Counter(
    "websocket_push_failures_total",
    "Number of snapshot pushes that failed"
)


def is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


class ConnectionManager:
    """Tracks open sockets and pushes full candidate snapshots to them.

    Pushes are fire-and-forget: broadcast() schedules one send task per open
    socket and returns immediately, so a slow client delays nobody else.

    Every snapshot carries a version taken before its store read. Sends to one
    socket are serialized, and a snapshot older than the last one a socket
    received is dropped, so a client never ends on stale state.
    """

    def __init__(self):
        self.active: Set[WebSocket] = set()
        self._pending: Set[asyncio.Task] = set()
        self._send_locks: Dict[WebSocket, asyncio.Lock] = {}
        self._sent_versions: Dict[WebSocket, int] = {}
        self._version = 0

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    async def connect(self, websocket: WebSocket, store: CandidateStore) -> None:
        """Accept a socket, register it, and send it the current snapshot."""
        await websocket.accept()
        lock = self._send_locks[websocket] = asyncio.Lock()

        # Broadcasts scheduled from here on queue behind the initial snapshot
        async with lock:
            self.active.add(websocket)
            websocket_connections.set(len(self.active))

            version = self._next_version()
            candidates = await store.list_candidates()
            await websocket.send_json(Snapshot.of(candidates).to_dict())
            self._sent_versions[websocket] = version
        logger.info(f"WebSocket client connected ({len(self.active)} open)")

    def disconnect(self, websocket: WebSocket) -> None:
        self._send_locks.pop(websocket, None)
        self._sent_versions.pop(websocket, None)
        if websocket in self.active:
            self.active.discard(websocket)
            websocket_connections.set(len(self.active))
            logger.info(f"WebSocket client disconnected ({len(self.active)} open)")

    def broadcast(self, candidates: Iterable[Candidate], version: Optional[int] = None) -> int:
        """Schedule a snapshot push to every open socket.

        Args:
            candidates: The full candidate list
            version: Version taken before the list was read; a new one if omitted

        Returns:
            int: number of sockets a push was scheduled for
        """
        if version is None:
            version = self._next_version()
        message = Snapshot.of(candidates).to_dict()
        broadcasts_total.inc()

        scheduled = 0
        for websocket in list(self.active):
            if not is_open(websocket):
                self.disconnect(websocket)
                continue
            task = asyncio.create_task(self._send(websocket, version, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            scheduled += 1
        return scheduled

    async def publish(self, store: CandidateStore) -> int:
        """Broadcast the store's current candidate list."""
        version = self._next_version()
        return self.broadcast(await store.list_candidates(), version)

    async def _send(self, websocket: WebSocket, version: int, message: dict) -> None:
        lock = self._send_locks.get(websocket)
        if lock is None:
            return

        async with lock:
            if version <= self._sent_versions.get(websocket, 0):
                logger.debug(f"Skipping stale snapshot {version} for WebSocket client")
                return
            try:
                await websocket.send_json(message)
                self._sent_versions[websocket] = version
            except Exception as e:
                push_failures.inc()
                logger.warning(f"Dropping WebSocket client after failed push: {e}")
                self.disconnect(websocket)

    async def drain(self) -> None:
        """Wait for pushes already scheduled. Used at shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close_all(self) -> None:
        for websocket in list(self.active):
            try:
                await websocket.close(code=1001)
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")
            self.disconnect(websocket)
