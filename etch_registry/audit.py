from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Callable

from .event import PubEvent

Subscriber = Callable[[PubEvent], None]


@dataclass(frozen=True)
class DeliveryFailure:
    subscriber: Subscriber
    error: Exception


class AuditEmitter:
    """
    Publishes PubEvent records exactly as given.

    Records are appended to an in-process log and handed to each subscriber in
    subscription order. Nothing is validated, transformed or deduplicated. A
    subscriber that raises does not stop delivery to the others; its error is
    returned from emit() and kept in failures().
    """

    def __init__(self) -> None:
        self._records: list[PubEvent] = []
        self._failures: list[DeliveryFailure] = []
        self._subscribers: list[Subscriber] = []
        self._lock = Lock()

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """Register a subscriber and return a function that removes it."""
        with self._lock:
            self._subscribers.append(fn)

        def _unsubscribe() -> None:
            with self._lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)

        return _unsubscribe

    def emit(self, record: PubEvent) -> list[DeliveryFailure]:
        with self._lock:
            self._records.append(record)
            subscribers = list(self._subscribers)

        failures: list[DeliveryFailure] = []
        for fn in subscribers:
            try:
                fn(record)
            except Exception as e:
                failures.append(DeliveryFailure(subscriber=fn, error=e))

        if failures:
            with self._lock:
                self._failures.extend(failures)
        return failures

    def records(self) -> list[PubEvent]:
        with self._lock:
            return list(self._records)

    def failures(self) -> list[DeliveryFailure]:
        """Every subscriber error seen so far, oldest first."""
        with self._lock:
            return list(self._failures)
