import logging
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """User-facing outcome of a save."""

    @abstractmethod
    def success(self, message: str, description: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def error(self, message: str, detail: str, persistent: bool = True) -> None:
        """``persistent`` errors stay until the user dismisses them."""

    @abstractmethod
    def reload_prompt(self, title: str, message: str) -> None:
        """Ask the user to reload stale data instead of retrying."""


class LoggingNotifier(Notifier):
    def success(self, message, description=None):
        logger.info("%s%s", message, f" ({description})" if description else "")

    def error(self, message, detail, persistent=True):
        logger.error("%s: %s", message, detail)

    def reload_prompt(self, title, message):
        logger.warning("%s: %s", title, message)


class BusNotifier(Notifier):
    """Publishes notifications as events for the UI gateway."""

    def __init__(self, producer):
        self.producer = producer

    def success(self, message, description=None):
        self.producer.publish("order.saved", {"message": message, "description": description})

    def error(self, message, detail, persistent=True):
        self.producer.publish("order.save_failed",
                              {"message": message, "detail": detail, "persistent": persistent})

    def reload_prompt(self, title, message):
        self.producer.publish("order.version_conflict",
                              {"title": title, "message": message, "action": "reload"})
