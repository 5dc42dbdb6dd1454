import logging
from typing import Optional

from .errors import ErrorKind
from .providers.base import DataProvider
from .schemas import ORDERS

logger = logging.getLogger(__name__)


class RollbackController:
    """Compensates a failed save where the data service has no transactions."""

    def __init__(self, provider: DataProvider):
        self.provider = provider

    def on_failure(self, error: BaseException, order_id: Optional[int], is_edit: bool) -> bool:
        """
        Undo what a failed save left behind. Returns True when the header
        created by this save attempt was deleted.

        Edit saves are never rolled back: the header existed before the save
        and phases that already succeeded stay written.
        """
        kind = getattr(error, "kind", ErrorKind.UNKNOWN)
        if kind == ErrorKind.VERSION_CONFLICT:
            logger.warning("Order %s save hit a version conflict, reload required", order_id)

        if is_edit or order_id is None:
            if is_edit:
                logger.warning("Edit of order %s failed, no rollback for already written phases", order_id)
            return False

        try:
            self.provider.delete_one(ORDERS, order_id)
        except Exception:
            # The original error is what the user needs to see.
            logger.exception("Rollback failed: order %s could not be deleted", order_id)
            return False

        logger.info("Rollback: deleted order %s", order_id)
        return True
