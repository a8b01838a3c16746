import logging
import threading
from typing import Callable, List

from schemas import LeaderboardEntry

logger = logging.getLogger(__name__)

Listener = Callable[[LeaderboardEntry], None]


class ChangeFeed:
    """In-process publish/subscribe channel for leaderboard row changes."""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, entry: LeaderboardEntry) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            # the write is already committed; a broken subscriber only loses its copy
            try:
                listener(entry)
            except Exception:
                logger.exception("Leaderboard listener failed for user %s", entry.user_id)
