"""Live fan-out of run log appends to subscribed viewers."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from queue import Empty, Full, Queue
from threading import RLock
from typing import Any, Iterator

from sched_dash.application.run_log import RunLog
from sched_dash.domain.events import SchedulerEvent
from sched_dash.domain.run import Run
from sched_dash.utils.logging import setup_logger

ALL_RUNS = "*"

logger = setup_logger("sched_dash.broadcaster")


class EnvelopeType(str, Enum):
    EVENT = "event"
    STDERR = "stderr"
    RUN_FINISHED = "run_finished"
    RUN_KILLED = "run_killed"


class DisconnectReason(str, Enum):
    OVERFLOW = "overflow"
    UNSUBSCRIBED = "unsubscribed"
    SHUTDOWN = "shutdown"


class SubscriberDisconnected(Exception):
    """Raised to a consumer whose subscription was closed by the broadcaster."""

    def __init__(self, reason: DisconnectReason) -> None:
        super().__init__(f"Subscriber disconnected: {reason.value}")
        self.reason = reason


@dataclass(frozen=True, slots=True)
class Envelope:
    """Message delivered to live subscribers."""

    type: EnvelopeType
    run_id: str
    payload: Any
    sequence: int | None = None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "type": self.type.value,
            "run_id": self.run_id,
            "payload": self.payload,
        }
        if self.sequence is not None:
            message["sequence"] = self.sequence
        return message


_CLOSED = object()


class Subscription:
    """One subscriber's view: backlog first, then its bounded live queue.

    The live queue is attached before the backlog is read, so events can show
    up in both; any event at or below the last delivered sequence is dropped.
    """

    __slots__ = (
        "subscription_id",
        "run_id",
        "_hub",
        "_queue",
        "_capacity",
        "_backlog",
        "_last_sequence",
        "_close_reason",
    )

    def __init__(
        self,
        *,
        subscription_id: int,
        run_id: str,
        hub: "LiveBroadcaster",
        capacity: int,
        last_sequence: int | None,
    ) -> None:
        self.subscription_id = subscription_id
        self.run_id = run_id
        self._hub = hub
        # One slot past capacity is reserved for the close marker.
        self._queue: Queue[object] = Queue(maxsize=capacity + 1)
        self._capacity = capacity
        self._backlog: deque[Envelope] = deque()
        self._last_sequence: dict[str, int] = {}
        if last_sequence is not None and run_id != ALL_RUNS:
            self._last_sequence[run_id] = last_sequence
        self._close_reason: DisconnectReason | None = None

    @property
    def close_reason(self) -> DisconnectReason | None:
        return self._close_reason

    def last_sequence(self, run_id: str | None = None) -> int | None:
        """Highest event sequence delivered so far for ``run_id``."""
        return self._last_sequence.get(run_id or self.run_id)

    def next(self, *, timeout_seconds: float | None = None) -> Envelope | None:
        """Return the next envelope, or ``None`` when the timeout elapses.

        Raises ``SubscriberDisconnected`` once a closed subscription is drained.
        """
        while True:
            if self._backlog:
                envelope = self._backlog.popleft()
            else:
                try:
                    item = self._queue.get(timeout=timeout_seconds)
                except Empty:
                    return None
                if item is _CLOSED:
                    # Re-arm so later calls also observe the disconnect.
                    self._queue.put_nowait(_CLOSED)
                    assert self._close_reason is not None
                    raise SubscriberDisconnected(self._close_reason)
                envelope = item  # type: ignore[assignment]

            if self._is_duplicate(envelope):
                continue
            return envelope

    def close(self) -> None:
        self._hub.unsubscribe(self)

    def __iter__(self) -> Iterator[Envelope]:
        while True:
            try:
                envelope = self.next()
            except SubscriberDisconnected as exc:
                if exc.reason is DisconnectReason.UNSUBSCRIBED:
                    return
                raise
            if envelope is not None:
                yield envelope

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Broadcaster-side helpers; called with the hub lock held.
    def _offer(self, envelope: Envelope) -> bool:
        if self._close_reason is not None:
            return True
        if self._queue.qsize() >= self._capacity:
            return False
        self._queue.put_nowait(envelope)
        return True

    def _load_backlog(self, events: list[SchedulerEvent]) -> None:
        for event in events:
            self._backlog.append(_event_envelope(event))

    def _mark_closed(self, reason: DisconnectReason) -> None:
        if self._close_reason is not None:
            return
        self._close_reason = reason
        try:
            self._queue.put_nowait(_CLOSED)
        except Full:
            pass

    def _is_duplicate(self, envelope: Envelope) -> bool:
        if envelope.type is not EnvelopeType.EVENT or envelope.sequence is None:
            return False
        last = self._last_sequence.get(envelope.run_id)
        if last is not None and envelope.sequence <= last:
            return True
        self._last_sequence[envelope.run_id] = envelope.sequence
        return False


class LiveBroadcaster:
    """Thread-safe per-run and global fan-out with disconnect-on-overflow.

    Every subscriber owns a queue of at most ``buffer_size`` envelopes. A
    publish that finds a queue full drops that subscriber with reason
    ``overflow`` instead of waiting, so the run log's writer never blocks.
    """

    __slots__ = (
        "_run_log",
        "_subscribers",
        "_buffer_size",
        "_next_subscription_id",
        "_dropped_subscriber_count",
        "_lock",
    )

    def __init__(self, run_log: RunLog, *, buffer_size: int = 256) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self._run_log = run_log
        self._subscribers: dict[int, Subscription] = {}
        self._buffer_size = buffer_size
        self._next_subscription_id = 1
        self._dropped_subscriber_count = 0
        self._lock = RLock()
        run_log.add_listener(self.publish_event)

    def subscribe(
        self,
        run_id: str = ALL_RUNS,
        *,
        after_sequence: int | None = None,
    ) -> Subscription:
        """Attach a live subscription, then queue history after ``after_sequence``.

        ``after_sequence`` is the last sequence the caller has already seen;
        ``-1`` (or any negative value) asks for the full history. The global
        channel is live-only.
        """
        with self._lock:
            subscription = Subscription(
                subscription_id=self._next_subscription_id,
                run_id=run_id,
                hub=self,
                capacity=self._buffer_size,
                last_sequence=after_sequence if after_sequence is None or after_sequence >= 0 else None,
            )
            self._next_subscription_id += 1
            self._subscribers[subscription.subscription_id] = subscription

        if run_id != ALL_RUNS and after_sequence is not None:
            backlog = self._run_log.read(run_id, from_sequence=max(0, after_sequence + 1))
            subscription._load_backlog(backlog)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscribers.pop(subscription.subscription_id, None)
            if removed is not None:
                removed._mark_closed(DisconnectReason.UNSUBSCRIBED)

    def publish_event(self, event: SchedulerEvent) -> None:
        self._publish(_event_envelope(event))

    def publish_stderr(self, run_id: str, line: str) -> None:
        self._publish(Envelope(type=EnvelopeType.STDERR, run_id=run_id, payload=line))

    def publish_run_finished(self, run: Run) -> None:
        self._publish(Envelope(type=EnvelopeType.RUN_FINISHED, run_id=run.run_id, payload=run.to_dict()))

    def publish_run_killed(self, run: Run) -> None:
        self._publish(Envelope(type=EnvelopeType.RUN_KILLED, run_id=run.run_id, payload=run.to_dict()))

    def close(self) -> None:
        """Disconnect every subscriber and detach from the run log."""
        self._run_log.remove_listener(self.publish_event)
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
            for subscription in subscribers:
                subscription._mark_closed(DisconnectReason.SHUTDOWN)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def dropped_subscriber_count(self) -> int:
        with self._lock:
            return self._dropped_subscriber_count

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    def _publish(self, envelope: Envelope) -> None:
        with self._lock:
            overflowed: list[Subscription] = []
            for subscription in self._subscribers.values():
                if subscription.run_id not in (ALL_RUNS, envelope.run_id):
                    continue
                if not subscription._offer(envelope):
                    overflowed.append(subscription)

            for subscription in overflowed:
                self._subscribers.pop(subscription.subscription_id, None)
                subscription._mark_closed(DisconnectReason.OVERFLOW)
                self._dropped_subscriber_count += 1
                logger.warning(
                    "Disconnected subscriber %s on run %s: buffer of %s envelopes overflowed",
                    subscription.subscription_id,
                    subscription.run_id,
                    self._buffer_size,
                )


def _event_envelope(event: SchedulerEvent) -> Envelope:
    return Envelope(
        type=EnvelopeType.EVENT,
        run_id=event.run_id,
        payload=event.to_dict(),
        sequence=event.sequence,
    )
