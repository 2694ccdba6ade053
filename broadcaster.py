"""In-process event fan-out for real-time chat delivery.

Publishers run in worker threads (sync endpoints, background tasks); the
WebSocket subscribers live on the event loop. Listeners are plain callables
so each subscriber decides how to hop back onto its own loop.
"""
import asyncio
import logging
import threading
from collections import defaultdict

logger = logging.getLogger(__name__)

AGENT_MESSAGE_SENT = "agent-message-sent"
VISITOR_MESSAGE_SENT = "visitor-message-sent"


def session_channel(session_id) -> str:
    return f"chat-session.{session_id}"


class Broadcaster:
    def __init__(self):
        self._listeners = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, channel, listener):
        """Register ``listener(event, payload)`` on *channel*; returns an unsubscribe callable"""
        with self._lock:
            self._listeners[channel].append(listener)

        def unsubscribe():
            with self._lock:
                listeners = self._listeners.get(channel, [])
                if listener in listeners:
                    listeners.remove(listener)
                if not listeners:
                    self._listeners.pop(channel, None)

        return unsubscribe

    def subscribe_queue(self, channel, loop=None):
        """Subscribe an asyncio.Queue fed thread-safely from any publisher"""
        loop = loop or asyncio.get_running_loop()
        queue = asyncio.Queue()

        def listener(event, payload):
            loop.call_soon_threadsafe(queue.put_nowait, {"event": event, "message": payload})

        return queue, self.subscribe(channel, listener)

    def publish(self, channel, event, payload) -> int:
        """Deliver an event to every listener on *channel*; returns the delivery count"""
        with self._lock:
            listeners = list(self._listeners.get(channel, []))

        delivered = 0
        for listener in listeners:
            try:
                listener(event, payload)
                delivered += 1
            except Exception:
                logger.exception("❌ Listener failed for %s on %s", event, channel)
        logger.info("Broadcast %s on %s to %s listener(s)", event, channel, delivered)
        return delivered


broadcaster = Broadcaster()
