"""In-process publish/subscribe used for state changes and balance pushes."""
import logging
import threading
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class Broadcaster:
    """Fan a published payload out to every subscriber.

    A failing subscriber is logged and skipped; it never blocks the others.
    """

    def __init__(self):
        self._subscribers: List[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register a callback and return a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, *args: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed: {e}")

    def __len__(self) -> int:
        return len(self._subscribers)


class BalanceNotifier:
    """Push new balances to subscribers keyed by user id."""

    def __init__(self):
        self._by_user: Dict[str, Broadcaster] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: str, callback: Callable[[float], Any]) -> Callable[[], None]:
        with self._lock:
            channel = self._by_user.setdefault(user_id, Broadcaster())
        return channel.subscribe(callback)

    def publish(self, user_id: str, new_balance: float) -> None:
        with self._lock:
            channel = self._by_user.get(user_id)
        if channel is not None:
            logger.debug(f"Balance for {user_id} is now {new_balance:.2f}")
            channel.publish(new_balance)
