"""Job record delivery: live change feed, store-backed sink, polling fallback."""
from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from reelforge.services.shared.logging import get_logger
from reelforge.services.tracking.store import JobStore

logger = get_logger("tracking.feeds")

Subscriber = Callable[[Dict[str, Any]], Any]


class ChangeFeed:
    """In-process pub/sub of job records.

    While disconnected, published records are not delivered; they are still
    in the store, so a :class:`PollingFallback` picks them up.
    """

    def __init__(self, connected: bool = True):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._connected = connected

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        self._connected = True
        logger.info("Change feed connected")

    def disconnect(self) -> None:
        self._connected = False
        logger.warning("Change feed disconnected; polling fallback takes over")

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; return a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, record: Dict[str, Any]) -> int:
        """Deliver ``record`` to every subscriber. Returns the delivery count."""
        if not self._connected:
            return 0
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(record)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Feed subscriber failed for %s: %s", record.get("id"), exc)
        return len(subscribers)


class JobEventSink:
    """Job listener for the orchestrator: persist the record, then publish it."""

    def __init__(self, store: JobStore, feed: ChangeFeed):
        self._store = store
        self._feed = feed

    def __call__(self, event: Dict[str, Any]) -> None:
        record = self._store.upsert(event)
        # Publish what was received on top of the stored view so transient
        # fields (retry_count) reach subscribers too.
        self._feed.publish({**record, **{k: v for k, v in event.items() if v is not None}})


class PollingFallback:
    """Reads a run's job records from the store while the feed is down.

    Usage::

        poller = PollingFallback(store, feed, tracker.apply_status_event, run_id)
        poller.start()
    """

    def __init__(
        self,
        store: JobStore,
        feed: ChangeFeed,
        apply: Subscriber,
        run_id: str,
        interval: float = 3.0,
    ):
        self._store = store
        self._feed = feed
        self._apply = apply
        self._run_id = run_id
        self._interval = interval
        self._cursor = 0.0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> int:
        """Apply records changed since the last poll. No-op while the feed is connected."""
        if self._feed.connected:
            return 0
        records = self._store.list_updated_since(self._run_id, self._cursor)
        for record in records:
            self._apply(record)
            self._cursor = max(self._cursor, record["updated_at"])
        if records:
            logger.debug("Polled %d record(s) for run %s", len(records), self._run_id)
        return len(records)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._loop, args=(self._stop,), name=f"poll-{self._run_id}", daemon=True,
        )
        self._thread.start()

    def stop(self, wait: bool = True) -> None:
        """Stop polling. Safe to call from the polling thread itself."""
        self._stop.set()
        thread, self._thread = self._thread, None
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._interval * 2)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self, stop: threading.Event) -> None:
        while not stop.wait(self._interval):
            try:
                self.poll_once()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Polling run %s failed: %s", self._run_id, exc)
