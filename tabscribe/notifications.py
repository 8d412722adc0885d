"""Notification channel built on pubsub.pub topics."""

import logging
from typing import Any, Callable, Dict, Type

from pubsub import pub

from .models.events import (
    StatusChanged,
    TranscriptionProgress,
    TranscriptionComplete,
    TranscriptionFailed,
    KeepAlive,
)

logger = logging.getLogger(__name__)

TOPIC_STATUS = "session.status"
TOPIC_PROGRESS = "transcription.progress"
TOPIC_COMPLETE = "transcription.complete"
TOPIC_ERROR = "transcription.error"
TOPIC_KEEPALIVE = "transcription.keepalive"

TOPICS_BY_MESSAGE: Dict[Type, str] = {
    StatusChanged: TOPIC_STATUS,
    TranscriptionProgress: TOPIC_PROGRESS,
    TranscriptionComplete: TOPIC_COMPLETE,
    TranscriptionFailed: TOPIC_ERROR,
    KeepAlive: TOPIC_KEEPALIVE,
}

ALL_TOPICS = tuple(TOPICS_BY_MESSAGE.values())


def log_listener_error(listener_id: str, topic_obj) -> None:
    """pubsub listener exception handler; the remaining listeners still get the message."""
    logger.warning(f"Notification listener {listener_id} failed on {topic_obj.getName()}", exc_info=True)


class NotificationChannel:
    """Publishes typed notifications; every message goes out as the ``message`` keyword.

    Delivery is best-effort: having no subscriber is normal, and a failing
    subscriber is logged rather than propagated to the publisher.
    """

    def __init__(self, prefix: str = ""):
        """Initialize notification channel.

        Args:
            prefix: Optional topic prefix, used to keep independent channels apart
        """
        self.prefix = prefix
        pub.setListenerExcHandler(log_listener_error)
        logger.info(f"NotificationChannel initialized (prefix={prefix or '<none>'})")

    def topic_for(self, topic: str) -> str:
        return f"{self.prefix}.{topic}" if self.prefix else topic

    def publish(self, message: Any) -> None:
        """Publish a notification to the topic matching its type."""
        topic = TOPICS_BY_MESSAGE.get(type(message))
        if topic is None:
            raise TypeError(f"Unsupported notification type: {type(message).__name__}")

        try:
            pub.sendMessage(self.topic_for(topic), message=message)
        except Exception as e:
            logger.warning(f"Notification listener failed on {topic}: {e}", exc_info=True)
            return
        logger.debug(f"Published {type(message).__name__} on {topic}")

    def subscribe(self, listener: Callable[[Any], None], topic: str) -> Callable[[], None]:
        """Subscribe ``listener(message)`` to a topic.

        pubsub keeps weak references, so the caller must keep the listener
        alive for as long as it wants to receive messages.

        Returns:
            Callable that removes the subscription
        """
        full_topic = self.topic_for(topic)
        pub.subscribe(listener, full_topic)

        def unsubscribe() -> None:
            if pub.isSubscribed(listener, full_topic):
                pub.unsubscribe(listener, full_topic)

        return unsubscribe

    def subscribe_all(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe one listener to every notification topic."""
        unsubscribers = [self.subscribe(listener, topic) for topic in ALL_TOPICS]

        def unsubscribe_all() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return unsubscribe_all
