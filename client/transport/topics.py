"""Authoritative record of subscribed channels, independent of connection state."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any, Protocol

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = structlog.get_logger()


class SubscriptionListener(Protocol):
    """Receives topic-level changes so a live connection can mirror them."""

    def topic_added(self, topic: str) -> None: ...

    def topic_removed(self, topic: str) -> None: ...


class TopicRegistry:
    """Track (topic, handler) pairs and replay them after every reconnect.

    Subscribing while disconnected only records the intent. A topic is
    subscribed on the wire once, no matter how many handlers share it.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, dict[int, Callable[[Any], None]]] = {}
        self._resubscribe_hooks: dict[int, Callable[[], None]] = {}
        self._ids = itertools.count(1)
        self._listener: SubscriptionListener | None = None

    def bind(self, listener: SubscriptionListener | None) -> None:
        self._listener = listener

    @property
    def topics(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    def is_subscribed(self, topic: str) -> bool:
        return topic in self._subscriptions

    def subscribe(self, topic: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Register handler for topic. Returns an idempotent unsubscribe handle."""
        subscription_id = next(self._ids)
        handlers = self._subscriptions.get(topic)
        is_new_topic = handlers is None
        if handlers is None:
            handlers = self._subscriptions[topic] = {}
        handlers[subscription_id] = handler
        if is_new_topic:
            logger.debug("topic subscribed", topic=topic)
            if self._listener is not None:
                self._listener.topic_added(topic)

        def unsubscribe() -> None:
            self._unsubscribe(topic, subscription_id)

        return unsubscribe

    def _unsubscribe(self, topic: str, subscription_id: int) -> None:
        handlers = self._subscriptions.get(topic)
        if handlers is None or handlers.pop(subscription_id, None) is None:
            return
        if not handlers:
            del self._subscriptions[topic]
            logger.debug("topic unsubscribed", topic=topic)
            if self._listener is not None:
                self._listener.topic_removed(topic)

    def on_resubscribed(self, hook: Callable[[], None]) -> Callable[[], None]:
        """Run hook after every subscription replay (state refresh requests go here)."""
        hook_id = next(self._ids)
        self._resubscribe_hooks[hook_id] = hook

        def remove() -> None:
            self._resubscribe_hooks.pop(hook_id, None)

        return remove

    async def resubscribe_all(self, issue: Callable[[str], Awaitable[None]]) -> list[str]:
        """Re-issue every registered topic against a new connection, then run refresh hooks.

        Errors raised by issue propagate: a replay that fails means the new
        connection is unusable.
        """
        topics = list(self._subscriptions)
        for topic in topics:
            await issue(topic)
        logger.info("subscriptions replayed", count=len(topics))
        for hook in list(self._resubscribe_hooks.values()):
            try:
                hook()
            except Exception:
                logger.exception("resubscribe hook failed")
        return topics

    def dispatch(self, topic: str, body: Any) -> int:  # noqa: ANN401
        """Deliver a message body to every handler of topic. Returns the handler count."""
        handlers = self._subscriptions.get(topic)
        if not handlers:
            # Late delivery for a topic dropped locally; not an error.
            logger.debug("message for unsubscribed topic dropped", topic=topic)
            return 0
        delivered = 0
        for handler in list(handlers.values()):
            try:
                handler(body)
            except Exception:
                logger.exception("topic handler failed", topic=topic)
            delivered += 1
        return delivered
