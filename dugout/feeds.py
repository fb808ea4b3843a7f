"""
Live annotation feed.

A subscription is a channel of full, ordered annotation snapshots for one
video: the current list on subscribe, then the whole list again after every
change. Consumers read with :meth:`Subscription.get` or by iterating and must
call :meth:`Subscription.close` (or use it as a context manager) when done;
nothing expires on its own.

The hub is in-process and thread-safe. Snapshots are computed under the
hub lock so every subscriber of a video sees them in commit order.
"""
import queue
import threading
from collections import defaultdict
from collections.abc import Callable, Iterator

import structlog

logger = structlog.get_logger(__name__)

Snapshot = tuple[dict, ...]

_CLOSED = object()


class Subscription:
    """Consumer end of a per-video snapshot channel."""

    def __init__(self, feed: "AnnotationFeed", video_id: str):
        self.video_id = video_id
        self._feed = feed
        self._queue: queue.Queue = queue.Queue()
        self._closed = threading.Event()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Subscription video={self.video_id} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _push(self, snapshot: Snapshot) -> None:
        if not self.closed:
            self._queue.put(snapshot)

    def _finish(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_CLOSED)

    def get(self, timeout: float | None = None) -> Snapshot | None:
        """
        Next snapshot, blocking up to ``timeout`` seconds.

        Returns:
            The snapshot, or None once the subscription is closed and drained

        Raises:
            queue.Empty: If nothing arrived within ``timeout``
        """
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Leave the marker for later readers
            self._queue.put(_CLOSED)
            return None
        return item

    def latest(self) -> Snapshot | None:
        """Drain pending snapshots without blocking and return the newest one."""
        newest = None
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return newest
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return newest
            newest = item

    def close(self) -> None:
        """Stop receiving snapshots and release the hub's reference."""
        self._feed._unregister(self)
        self._finish()

    def __iter__(self) -> Iterator[Snapshot]:
        while True:
            snapshot = self.get()
            if snapshot is None:
                return
            yield snapshot

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class AnnotationFeed:
    """Registry of open subscriptions keyed by video id."""

    def __init__(self):
        self._lock = threading.RLock()
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, video_id: str, loader: Callable[[], Snapshot]) -> Subscription:
        """Open a subscription and deliver the current snapshot from ``loader``."""
        subscription = Subscription(self, video_id)
        with self._lock:
            subscription._push(loader())
            self._subscribers[video_id].add(subscription)
        logger.debug("annotation_subscription_opened", video_id=video_id)
        return subscription

    def publish(self, video_id: str, loader: Callable[[], Snapshot]) -> int:
        """
        Push a fresh snapshot to every open subscription of ``video_id``.

        ``loader`` is only called when someone is listening.

        Returns:
            Number of subscriptions notified
        """
        with self._lock:
            subscribers = list(self._subscribers.get(video_id, ()))
            if not subscribers:
                return 0
            snapshot = loader()
            for subscription in subscribers:
                subscription._push(snapshot)
        return len(subscribers)

    def close_video(self, video_id: str) -> int:
        """Send a final empty snapshot to a deleted video's subscribers and close them."""
        with self._lock:
            subscribers = list(self._subscribers.pop(video_id, ()))
            for subscription in subscribers:
                subscription._push(())
                subscription._finish()
        if subscribers:
            logger.info("annotation_subscriptions_closed", video_id=video_id, count=len(subscribers))
        return len(subscribers)

    def subscriber_count(self, video_id: str | None = None) -> int:
        with self._lock:
            if video_id is not None:
                return len(self._subscribers.get(video_id, ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def _unregister(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.video_id)
            if subs is not None:
                subs.discard(subscription)
                if not subs:
                    del self._subscribers[subscription.video_id]


def get_feed() -> AnnotationFeed:
    """The application's feed hub."""
    from flask import current_app

    return current_app.extensions["dugout.feed"]
