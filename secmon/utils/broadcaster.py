import asyncio
import json
import logging
import threading

logger = logging.getLogger(__name__)


class AlertBroadcaster:
    """
    Fans events out to connected WebSocket subscribers.
    emit() may be called from any thread; sends are scheduled on the loop
    that accepted the subscribers.
    """

    def __init__(self):
        self._connections = set()
        self._loop = None
        self._lock = threading.Lock()

    @property
    def subscriber_count(self):
        with self._lock:
            return len(self._connections)

    async def connect(self, websocket):
        await websocket.accept()
        with self._lock:
            self._loop = asyncio.get_running_loop()
            self._connections.add(websocket)
        logger.info("Alert subscriber connected (%d active)", self.subscriber_count)

    def disconnect(self, websocket):
        with self._lock:
            self._connections.discard(websocket)
        logger.info("Alert subscriber disconnected (%d active)", self.subscriber_count)

    def emit(self, event, payload):
        """Queue `event` for every subscriber. Returns False when nobody is listening."""
        with self._lock:
            connections = list(self._connections)
            loop = self._loop

        if not connections or loop is None or loop.is_closed():
            logger.debug("No alert subscribers, skipping '%s'", event)
            return False

        message = json.dumps({"event": event, "data": payload}, default=str)
        asyncio.run_coroutine_threadsafe(self._send_all(connections, message), loop)
        return True

    async def _send_all(self, connections, message):
        for websocket in connections:
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.warning(f"Dropping alert subscriber after send error: {e}")
                self.disconnect(websocket)
