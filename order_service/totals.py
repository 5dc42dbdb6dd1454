import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

from .providers.base import NO_PAGINATION, DataProvider, Filter
from .schemas import ORDER_DETAILS, ORDERS

logger = logging.getLogger(__name__)


def sum_line_costs(details: Iterable[Dict[str, Any]]) -> float:
    """Sum of detail_cost to the cent; missing costs count as zero."""
    total = sum((Decimal(str(d.get("detail_cost") or 0)) for d in details), Decimal("0"))
    return float(total.quantize(Decimal("0.01")))


def recompute_total(provider: DataProvider, order_id: int,
                    version: Optional[int] = None) -> Tuple[float, Dict[str, Any]]:
    """
    Re-read the persisted details of an order and write their summed line
    cost to the header.

    Only the details the server holds count, never the in-memory ones.
    Returns the total and the updated header record.
    """
    persisted = provider.get_list(ORDER_DETAILS, [Filter("order_id", "eq", order_id)], NO_PAGINATION)
    total = sum_line_costs(persisted)

    values: Dict[str, Any] = {"total_amount": total}
    if version is not None:
        values["version"] = version
    header = provider.update(ORDERS, order_id, values)
    logger.info("Order %s total recomputed from %d persisted details: %.2f",
                order_id, len(persisted), total)
    return total, header
