"""Change notification and watching.

``ChangeHub`` is the long-lived notifier: the hosting process builds one,
hands it to the engines (which only call ``publish``), and request
handlers open pull-based ``Subscription`` objects on it.  Delivery is best
effort: a subscriber whose queue is full loses the newest events, and
consumers must tolerate duplicates.

How a subscription is fed is a ``WatchStrategy``:

- ``PushWatchStrategy``: events published to the hub.
- ``PollingWatchStrategy``: a timer polls the store for documents updated
  since the last check.
- ``FallbackWatchStrategy``: primary strategy, or the secondary when the
  primary reports ``WatchUnavailableError``.

``select_watch_strategy()`` maps the configured mode to a strategy.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Protocol

from pydantic import BaseModel

from docsflow_sync.core.async_utils import run_sync
from docsflow_sync.errors import DocsflowError
from docsflow_sync.sync.models import ChangeEvent
from docsflow_sync.sync.store import DocumentStore, in_prefix

logger = logging.getLogger(__name__)


class WatchUnavailableError(DocsflowError):
    error_type = "watch_unavailable"
    default_action = "Use polling, or retry once the notifier is running."


class ChangeNotifier(Protocol):
    """What the engines need to emit events."""

    def publish(self, event: ChangeEvent) -> None:
        ...  # pragma: no cover


class NullNotifier:
    """Notifier that drops every event."""

    def publish(self, event: ChangeEvent) -> None:
        logger.debug("Dropping %s event for %s", event.kind, event.path)


class WatchQuery(BaseModel):
    """Selects the events a subscription receives.

    Attributes:
        doc_id: Only events for this document path.
        path_prefix: Only events under this directory.
        streams: ``doc`` and/or ``tree``.
    """

    doc_id: str | None = None
    path_prefix: str = ""
    streams: frozenset[str] = frozenset({"doc", "tree"})

    model_config = {"frozen": True}

    def matches(self, event: ChangeEvent) -> bool:
        if event.stream not in self.streams:
            return False
        if self.doc_id is not None:
            return event.path == self.doc_id
        return in_prefix(event.path, self.path_prefix)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


class Subscription:
    """Pull-based event channel.

    Use as a context manager, or call ``close()`` when done.
    """

    def __init__(
        self,
        query: WatchQuery,
        on_close: Callable[[Subscription], None] | None = None,
        maxsize: int = 1000,
    ) -> None:
        self.query = query
        self._queue: queue.Queue[ChangeEvent] = queue.Queue(maxsize=maxsize)
        self._on_close = on_close
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, event: ChangeEvent) -> None:
        if self.closed or not self.query.matches(event):
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(
                "Subscription queue full; dropping %s event for %s",
                event.kind,
                event.path,
            )

    def get(self, timeout: float | None = None) -> ChangeEvent | None:
        """Next event, or ``None`` if none arrives within *timeout*."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[ChangeEvent]:
        """All queued events, without waiting."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    async def next_event(self, timeout: float | None = None) -> ChangeEvent | None:
        """Async variant of ``get`` for event-loop consumers."""
        return await run_sync(self.get, timeout)

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        if self._on_close is not None:
            self._on_close(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ChangeHub:
    """Long-lived in-process notifier owning its subscriptions."""

    def __init__(self, max_queue: int = 1000) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        self._max_queue = max_queue
        self._closed = False

    @property
    def available(self) -> bool:
        return not self._closed

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, query: WatchQuery | None = None) -> Subscription:
        """Open a subscription.

        Raises:
            WatchUnavailableError: If the hub has been closed.
        """
        if self._closed:
            raise WatchUnavailableError("Change hub is closed")
        subscription = Subscription(
            query or WatchQuery(), self._unsubscribe, self._max_queue
        )
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.deliver(event)
        logger.debug(
            "Published %s/%s for %s to %d subscriber(s)",
            event.stream,
            event.kind,
            event.path,
            len(subscriptions),
        )

    def close(self) -> None:
        """Close every subscription and refuse new ones."""
        self._closed = True
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)


class PollingSubscription(Subscription):
    """Subscription fed by polling the document store.

    Only the ``doc`` stream is available through polling.  ``poll_once``
    runs one check; ``start`` runs it every *interval* seconds on a daemon
    thread until the subscription is closed.
    """

    def __init__(
        self,
        query: WatchQuery,
        store: DocumentStore,
        interval: float,
        since: str = "",
    ) -> None:
        super().__init__(query)
        self._store = store
        self._interval = interval
        self._last_check = since
        self._thread: threading.Thread | None = None

    def poll_once(self) -> int:
        """Queue events for documents updated since the last check."""
        documents = self._store.find_updated_since(
            self._last_check, self.query.path_prefix
        )
        for document in documents:
            self.deliver(
                ChangeEvent(
                    kind="update",
                    path=document.id,
                    actor=document.last_updated_by or "",
                    stream="doc",
                    timestamp=document.updated_at or "",
                    payload={
                        "status": document.status.value,
                        "source": document.source.value,
                    },
                )
            )
            self._last_check = max(self._last_check, document.updated_at or "")
        return len(documents)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name="docsflow-poll", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._closed.wait(self._interval):
            try:
                self.poll_once()
            except Exception:
                logger.exception("Polling the document store failed")


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class WatchStrategy(Protocol):
    name: str

    def open(self, query: WatchQuery) -> Subscription:
        ...  # pragma: no cover


class PushWatchStrategy:
    name = "push"

    def __init__(self, hub: ChangeHub) -> None:
        self.hub = hub

    def open(self, query: WatchQuery) -> Subscription:
        if not self.hub.available:
            raise WatchUnavailableError("Push delivery is not available")
        return self.hub.subscribe(query)


class PollingWatchStrategy:
    """Timer-driven polling of the store.

    Args:
        store: Store to poll.
        interval: Seconds between polls.
        autostart: Start the polling thread on ``open``; tests drive
            ``poll_once`` by hand instead.
    """

    name = "poll"

    def __init__(
        self, store: DocumentStore, interval: float = 5.0, autostart: bool = True
    ) -> None:
        self.store = store
        self.interval = interval
        self.autostart = autostart

    def open(self, query: WatchQuery, since: str = "") -> PollingSubscription:
        if "doc" not in query.streams:
            raise WatchUnavailableError(
                "Polling only supports the 'doc' stream"
            )
        query = query.model_copy(update={"streams": frozenset({"doc"})})
        subscription = PollingSubscription(query, self.store, self.interval, since)
        if self.autostart:
            subscription.start()
        return subscription


class FallbackWatchStrategy:
    def __init__(self, primary: WatchStrategy, secondary: WatchStrategy) -> None:
        self.primary = primary
        self.secondary = secondary
        self.name = f"{primary.name}+{secondary.name}"

    def open(self, query: WatchQuery) -> Subscription:
        try:
            return self.primary.open(query)
        except WatchUnavailableError as exc:
            logger.warning(
                "%s watch unavailable (%s); falling back to %s",
                self.primary.name,
                exc,
                self.secondary.name,
            )
            return self.secondary.open(query)


def select_watch_strategy(
    mode: str,
    hub: ChangeHub,
    store: DocumentStore,
    polling_interval: float = 5.0,
) -> WatchStrategy:
    """Build the strategy for a configured watch mode.

    Raises:
        ValueError: If *mode* is not ``push``, ``poll`` or ``auto``.
    """
    match mode:
        case "push":
            return PushWatchStrategy(hub)
        case "poll":
            return PollingWatchStrategy(store, polling_interval)
        case "auto":
            return FallbackWatchStrategy(
                PushWatchStrategy(hub),
                PollingWatchStrategy(store, polling_interval),
            )
        case _:
            raise ValueError(
                f"Unknown watch mode: '{mode}'. Valid modes: ['auto', 'poll', 'push']"
            )
