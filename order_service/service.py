import logging
from typing import Optional

from .errors import SaveError
from .notifications import LoggingNotifier, Notifier
from .sequencer import OrderSaveSequencer
from .store import OrderAggregate

logger = logging.getLogger(__name__)

VERSION_CONFLICT_TITLE = "Version conflict"
VERSION_CONFLICT_MESSAGE = ("The order was changed by another user. "
                            "Reload the order and apply your changes again.")


class OrderSaveService:
    """Runs a save and tells the user how it went. Never retries."""

    def __init__(self, sequencer: OrderSaveSequencer, notifier: Optional[Notifier] = None):
        self.sequencer = sequencer
        self.notifier = notifier or LoggingNotifier()

    def save_order(self, aggregate: OrderAggregate, is_edit: bool) -> int:
        try:
            order_id = self.sequencer.save(aggregate, is_edit)
        except SaveError as e:
            if e.is_version_conflict:
                self.notifier.reload_prompt(VERSION_CONFLICT_TITLE, VERSION_CONFLICT_MESSAGE)
            else:
                action = "updating" if is_edit else "creating"
                self.notifier.error(f"Error {action} order", e.detail, persistent=True)
            raise

        self.notifier.success(f"Order {'updated' if is_edit else 'created'}", f"Order ID: {order_id}")
        return order_id
