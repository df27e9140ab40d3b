"""Per-app change notifications for live-updating read models.

Callers that render lists (pending invoices, low-stock products, ...) re-run
their query when a topic they care about is published. Publishing happens
after the surrounding transaction committed, so a subscriber always sees
the new state.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Callable

from flask import Flask, current_app


INVOICE_CREATED = "invoice.created"
INVOICE_STATUS_CHANGED = "invoice.status_changed"
INVOICE_DELETED = "invoice.deleted"
PRODUCT_CREATED = "product.created"
PRODUCT_UPDATED = "product.updated"
PRODUCT_DELETED = "product.deleted"
PRODUCT_STOCK_CHANGED = "product.stock_changed"
CUSTOMER_CHANGED = "customer.changed"

ALL_TOPICS = "*"

Subscriber = Callable[[str, dict[str, Any]], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers[topic].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, topic: str, payload: dict[str, Any] | None = None) -> None:
        payload = payload or {}
        with self._lock:
            callbacks = list(self._subscribers.get(topic, [])) + list(self._subscribers.get(ALL_TOPICS, []))
        for callback in callbacks:
            try:
                callback(topic, payload)
            except Exception:  # noqa: BLE001
                current_app.logger.exception("Change feed subscriber failed for %s", topic)


def init_change_feed(app: Flask) -> ChangeFeed:
    feed = ChangeFeed()
    app.extensions["kasir_change_feed"] = feed
    return feed


def get_change_feed() -> ChangeFeed:
    return current_app.extensions["kasir_change_feed"]


def subscribe(topic: str, callback: Subscriber) -> Callable[[], None]:
    return get_change_feed().subscribe(topic, callback)


def publish(topic: str, payload: dict[str, Any] | None = None) -> None:
    get_change_feed().publish(topic, payload)
