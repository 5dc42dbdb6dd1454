"""Persists an order aggregate as an ordered series of remote writes.

Phases run strictly one after another; the independent writes inside a
phase run concurrently and the phase is fully awaited before the next one
starts. A failure in any phase goes through the RollbackController and is
raised to the caller as a SaveError.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .cache import DETAIL, LIST, CacheInvalidator
from .diff import ChangeSet, plan_changes
from .errors import ErrorKind, OrderServiceError, SaveError, describe_error
from .fanout import fan_out
from .providers.base import DataProvider
from .rollback import RollbackController
from .schemas import (AUDIT_FIELDS, ORDER_DETAILS, ORDER_REQUIREMENTS, ORDER_WORKSHOPS, ORDERS,
                      ORDERS_VIEW, PAYMENTS, ChildRecord, OrderHeader)
from .store import OrderAggregate
from .totals import recompute_total

logger = logging.getLogger(__name__)

# --- Phases, in execution order ---
HEADER = "header"
DETAIL_WRITES = "detail_writes"
DETAIL_DELETES = "detail_deletes"
TOTAL = "total"
PAYMENT_WRITES = "payment_writes"
PAYMENT_DELETES = "payment_deletes"
WORKSHOP_WRITES = "workshop_writes"
WORKSHOP_DELETES = "workshop_deletes"
REQUIREMENT_WRITES = "requirement_writes"
REQUIREMENT_DELETES = "requirement_deletes"
INVALIDATE = "invalidate"

CHILD_PHASES = frozenset({
    DETAIL_WRITES, DETAIL_DELETES, PAYMENT_WRITES, PAYMENT_DELETES,
    WORKSHOP_WRITES, WORKSHOP_DELETES, REQUIREMENT_WRITES, REQUIREMENT_DELETES,
})

HEADER_EXCLUDED = frozenset({"order_id", "created_at", "updated_at", "created_by", "edited_by"})


@dataclass
class PhaseResult:
    phase: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0

    @property
    def calls(self) -> int:
        return self.created + self.updated + self.deleted


@dataclass
class SaveReport:
    order_id: Optional[int] = None
    total_amount: Optional[float] = None
    version: Optional[int] = None
    phases: List[PhaseResult] = field(default_factory=list)

    def phase(self, name: str) -> Optional[PhaseResult]:
        return next((p for p in self.phases if p.phase == name), None)

    @property
    def child_writes(self) -> int:
        """Create and update calls issued for child records."""
        return sum(p.created + p.updated for p in self.phases if p.phase in CHILD_PHASES)


def _child_values(record: ChildRecord, order_id: int) -> Dict[str, Any]:
    values = record.to_values(exclude={"temp_id", record.id_field} | AUDIT_FIELDS)
    values["order_id"] = order_id
    return values


def _header_values(header: OrderHeader, is_edit: bool) -> Dict[str, Any]:
    excluded = HEADER_EXCLUDED if is_edit else HEADER_EXCLUDED | {"version"}
    values = header.to_values(exclude=excluded)
    if is_edit:
        values["version"] = header.version or 0
    return values


class OrderSaveSequencer:
    def __init__(self, provider: DataProvider, cache: CacheInvalidator,
                 rollback: Optional[RollbackController] = None, max_workers: Optional[int] = None):
        self.provider = provider
        self.cache = cache
        self.rollback = rollback or RollbackController(provider)
        self.executor = ThreadPoolExecutor(max_workers=max_workers or config.SAVE_MAX_WORKERS,
                                           thread_name_prefix="order-save")

    def close(self):
        self.executor.shutdown(wait=True)

    def save(self, aggregate: OrderAggregate, is_edit: bool) -> int:
        """Persist the aggregate and return the order id, or raise SaveError."""
        return self.run(aggregate, is_edit).order_id

    def run(self, aggregate: OrderAggregate, is_edit: bool) -> SaveReport:
        if is_edit and aggregate.header.order_id is None:
            raise SaveError(ErrorKind.VALIDATION, "Cannot update an order that has no order_id",
                            phase=HEADER)

        report = SaveReport()
        order_id = aggregate.header.order_id if is_edit else None
        version = None
        phase = HEADER
        created: List[Tuple[ChildRecord, Dict[str, Any]]] = []
        deleted: Dict[str, List[int]] = {}
        try:
            # 1. Header upsert
            header_row = self._upsert_header(aggregate.header, is_edit)
            order_id = header_row.get("order_id") or aggregate.header.order_id
            version = header_row.get("version")
            report.phases.append(PhaseResult(HEADER, created=0 if is_edit else 1, updated=1 if is_edit else 0))
            logger.info("Order %s %s", order_id, "updated" if is_edit else "created")

            # 2-3. Details
            details = plan_changes(aggregate.details, aggregate.original_details, aggregate.deleted_details)
            phase = DETAIL_WRITES
            self._write(ORDER_DETAILS, details, order_id, report, phase, created)
            phase = DETAIL_DELETES
            self._delete(ORDER_DETAILS, details, report, phase, deleted)

            # 4. Total from the persisted details
            phase = TOTAL
            total, header_row = recompute_total(self.provider, order_id, version if is_edit else None)
            version = header_row.get("version", version)
            report.phases.append(PhaseResult(TOTAL, updated=1))

            # 5-6. Payments
            payments = plan_changes(aggregate.payments, aggregate.original_payments, aggregate.deleted_payments)
            phase = PAYMENT_WRITES
            self._write(PAYMENTS, payments, order_id, report, phase, created)
            phase = PAYMENT_DELETES
            self._delete(PAYMENTS, payments, report, phase, deleted)

            # 7-8. Workshops, always written
            workshops = plan_changes(aggregate.workshops, deleted_ids=aggregate.deleted_workshops, diff=False)
            phase = WORKSHOP_WRITES
            self._write(ORDER_WORKSHOPS, workshops, order_id, report, phase, created)
            phase = WORKSHOP_DELETES
            self._delete(ORDER_WORKSHOPS, workshops, report, phase, deleted)

            # 9. Requirements, always written
            requirements = plan_changes(aggregate.requirements, deleted_ids=aggregate.deleted_requirements,
                                        diff=False)
            phase = REQUIREMENT_WRITES
            self._write(ORDER_REQUIREMENTS, requirements, order_id, report, phase, created)
            phase = REQUIREMENT_DELETES
            self._delete(ORDER_REQUIREMENTS, requirements, report, phase, deleted)

            # 10. Cached read views
            phase = INVALIDATE
            self._invalidate(order_id)
        except Exception as e:
            logger.error("Error saving order %s in phase %s", order_id, phase, exc_info=True)
            kind = e.kind if isinstance(e, OrderServiceError) else ErrorKind.UNKNOWN
            rolled_back = self.rollback.on_failure(e, order_id, is_edit)
            if is_edit:
                self._write_back_partial(aggregate, version, created, deleted)
            partial_write = is_edit and any(p.phase in CHILD_PHASES and p.calls for p in report.phases)
            raise SaveError(kind, describe_error(e), phase=phase, order_id=order_id,
                            rolled_back=rolled_back, partial=partial_write) from e

        self._write_back(aggregate, order_id, total, version, created)
        report.order_id = order_id
        report.total_amount = total
        report.version = aggregate.header.version
        return report

    # --- Phases ---

    def _upsert_header(self, header: OrderHeader, is_edit: bool) -> Dict[str, Any]:
        values = _header_values(header, is_edit)
        if is_edit:
            return self.provider.update(ORDERS, header.order_id, values)
        return self.provider.create(ORDERS, values)

    def _write(self, resource: str, changes: ChangeSet, order_id: int, report: SaveReport, phase: str,
               created: List[Tuple[ChildRecord, Dict[str, Any]]]):
        calls = [partial(self._create_child, resource, r, _child_values(r, order_id), created)
                 for r in changes.creates]
        calls += [partial(self.provider.update, resource, r.persisted_id, _child_values(r, order_id))
                  for r in changes.updates]
        fan_out(self.executor, calls)
        for record in changes.skips:
            logger.debug("Skipping unchanged %s %s", resource, record.persisted_id)

        report.phases.append(PhaseResult(phase, created=len(changes.creates),
                                         updated=len(changes.updates), skipped=len(changes.skips)))
        if changes.writes or changes.skips:
            logger.info("Saved %d %s (%d created, %d updated, %d unchanged)",
                        len(changes.writes), resource, len(changes.creates),
                        len(changes.updates), len(changes.skips))

    def _create_child(self, resource: str, record: ChildRecord, values: Dict[str, Any],
                      created: List[Tuple[ChildRecord, Dict[str, Any]]]) -> Dict[str, Any]:
        row = self.provider.create(resource, values)
        created.append((record, row))
        return row

    def _delete(self, resource: str, changes: ChangeSet, report: SaveReport, phase: str,
                deleted: Dict[str, List[int]]):
        done = deleted.setdefault(resource, [])
        fan_out(self.executor, [partial(self._delete_child, resource, i, done) for i in changes.deletes])
        report.phases.append(PhaseResult(phase, deleted=len(changes.deletes)))
        if changes.deletes:
            logger.info("Deleted %d %s", len(changes.deletes), resource)

    def _delete_child(self, resource: str, record_id: int, done: List[int]):
        self.provider.delete_one(resource, record_id)
        done.append(record_id)

    def _invalidate(self, order_id: int):
        for resource in (ORDERS, ORDERS_VIEW):
            self.cache.invalidate(resource, DETAIL, order_id)
            self.cache.invalidate(resource, LIST)
        self.cache.invalidate(ORDER_DETAILS, LIST)
        self.cache.invalidate(PAYMENTS, LIST)

    # --- Success ---

    def _write_back(self, aggregate: OrderAggregate, order_id: int, total: float,
                    version: Optional[int], created: List[Tuple[ChildRecord, Dict[str, Any]]]):
        """Bring the aggregate in line with what was just saved."""
        aggregate.header.order_id = order_id
        aggregate.header.total_amount = total
        if version is not None:
            aggregate.header.version = version
        for record, row in created:
            setattr(record, record.id_field, row.get(record.id_field))
            record.temp_id = None
        for records in (aggregate.details, aggregate.payments, aggregate.workshops, aggregate.requirements):
            for record in records:
                record.order_id = order_id
        aggregate.sync_originals()

    # --- Failure ---

    def _write_back_partial(self, aggregate: OrderAggregate, version: Optional[int],
                            created: List[Tuple[ChildRecord, Dict[str, Any]]], deleted: Dict[str, List[int]]):
        """Apply the writes a failed edit save completed, so a retry does not repeat them."""
        if version is not None:
            aggregate.header.version = version
        originals = {ORDER_DETAILS: aggregate.original_details, PAYMENTS: aggregate.original_payments}
        for record, row in created:
            setattr(record, record.id_field, row.get(record.id_field))
            record.temp_id = None
            if record.resource in originals and record.persisted_id is not None:
                originals[record.resource][record.persisted_id] = record.model_copy(deep=True)
        pending = {ORDER_DETAILS: aggregate.deleted_details, PAYMENTS: aggregate.deleted_payments,
                   ORDER_WORKSHOPS: aggregate.deleted_workshops, ORDER_REQUIREMENTS: aggregate.deleted_requirements}
        for resource, ids in deleted.items():
            pending[resource][:] = [i for i in pending[resource] if i not in ids]
        logger.info("Kept %d created and %d deleted children of order %s after a failed save",
                    len(created), sum(len(ids) for ids in deleted.values()), aggregate.header.order_id)
