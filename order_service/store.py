"""In-memory order aggregate owned by one edit session.

The aggregate is passed explicitly to the save pipeline; the snapshots used
for change detection live beside the collections they describe.
"""
import itertools
import logging
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field

from .errors import DataProviderError, ErrorKind
from .providers.base import NO_PAGINATION, DataProvider, Filter
from .schemas import (DEFAULT_PRIORITY, ORDER_DETAILS, ORDER_REQUIREMENTS, ORDER_WORKSHOPS,
                      ORDERS, PAYMENTS, ChildRecord, OrderDetail, OrderHeader, OrderTotals,
                      OrderWorkshop, Payment, ResourceRequirement)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=ChildRecord)

_temp_ids = itertools.count(1)


def generate_temp_id() -> int:
    # Negative, so a temp id never collides with an id issued by the server.
    return -next(_temp_ids)


def snapshot(records: List[R]) -> Dict[int, R]:
    return {r.persisted_id: r.model_copy(deep=True) for r in records if r.persisted_id is not None}


class OrderAggregate(BaseModel):
    header: OrderHeader = Field(default_factory=OrderHeader)
    details: List[OrderDetail] = Field(default_factory=list)
    payments: List[Payment] = Field(default_factory=list)
    workshops: List[OrderWorkshop] = Field(default_factory=list)
    requirements: List[ResourceRequirement] = Field(default_factory=list)

    # Persisted ids removed during the session, deleted on the next save.
    deleted_details: List[int] = Field(default_factory=list)
    deleted_payments: List[int] = Field(default_factory=list)
    deleted_workshops: List[int] = Field(default_factory=list)
    deleted_requirements: List[int] = Field(default_factory=list)

    # Last known server shape, keyed by persisted id.
    original_details: Dict[int, OrderDetail] = Field(default_factory=dict)
    original_payments: Dict[int, Payment] = Field(default_factory=dict)

    # --- Construction ---

    @classmethod
    def from_records(cls, header: Mapping[str, Any], details=(), payments=(), workshops=(),
                     requirements=()) -> "OrderAggregate":
        aggregate = cls(
            header=OrderHeader.model_validate(dict(header)),
            details=[OrderDetail.model_validate(dict(d)) for d in details],
            payments=[Payment.model_validate(dict(p)) for p in payments],
            workshops=[OrderWorkshop.model_validate(dict(w)) for w in workshops],
            requirements=[ResourceRequirement.model_validate(dict(r)) for r in requirements],
        )
        if aggregate.header.priority is None or aggregate.header.priority < 1:
            aggregate.header.priority = DEFAULT_PRIORITY
        aggregate.sync_originals()
        return aggregate

    @classmethod
    def new(cls) -> "OrderAggregate":
        return cls.from_records({"priority": DEFAULT_PRIORITY})

    @classmethod
    def load(cls, provider: DataProvider, order_id: int) -> "OrderAggregate":
        """Read an order and its child collections from the data service."""
        header = provider.get_one(ORDERS, order_id)
        if header is None:
            raise DataProviderError(ErrorKind.VALIDATION, f"Order {order_id} not found", 404, ORDERS)
        by_order = [Filter("order_id", "eq", order_id)]
        aggregate = cls.from_records(
            header,
            details=provider.get_list(ORDER_DETAILS, by_order, NO_PAGINATION),
            payments=provider.get_list(PAYMENTS, by_order, NO_PAGINATION),
            workshops=provider.get_list(ORDER_WORKSHOPS, by_order, NO_PAGINATION),
            requirements=provider.get_list(ORDER_REQUIREMENTS, by_order, NO_PAGINATION),
        )
        aggregate.details.sort(key=lambda d: (d.detail_number is None, d.detail_number or 0))
        logger.info("Loaded order %s with %d details", order_id, len(aggregate.details))
        return aggregate

    @property
    def order_id(self) -> Optional[int]:
        return self.header.order_id

    @property
    def version(self) -> int:
        return self.header.version

    # --- Generic collection helpers ---

    @staticmethod
    def _build(model: Type[R], values: Union[Mapping[str, Any], R], **defaults) -> R:
        data = values.model_dump() if isinstance(values, BaseModel) else dict(values)
        for identity in ("temp_id", model.id_field):
            data.pop(identity, None)
        return model.model_validate({**data, **defaults, "temp_id": generate_temp_id()})

    @staticmethod
    def _index(records: List[R], key: int) -> int:
        for i, record in enumerate(records):
            if record.matches(key):
                return i
        raise KeyError(f"No record with id or temp id {key}")

    def _update(self, records: List[R], key: int, values: Mapping[str, Any]) -> R:
        i = self._index(records, key)
        record = records[i]
        records[i] = type(record).model_validate({**record.model_dump(), **dict(values)})
        return records[i]

    def _delete(self, records: List[R], deleted: List[int], key: int) -> R:
        record = records.pop(self._index(records, key))
        # Client-local records just disappear; persisted ones are deleted on save.
        if record.persisted_id is not None:
            deleted.append(record.persisted_id)
        return record

    # --- Details ---

    def add_detail(self, values) -> OrderDetail:
        next_number = max((d.detail_number or 0 for d in self.details), default=0) + 1
        data = values.model_dump() if isinstance(values, BaseModel) else dict(values)
        detail = self._build(OrderDetail, data, detail_number=next_number,
                             priority=data.get("priority") or DEFAULT_PRIORITY, delete_flag=False)
        self.details.append(detail)
        self.recalculate_financials()
        return detail

    def insert_detail_after(self, key: int, values) -> OrderDetail:
        after = next((d for d in self.details if d.matches(key)), None)
        new_number = (after.detail_number or 0) + 1 if after else 1
        for d in self.details:
            if (d.detail_number or 0) >= new_number:
                d.detail_number = (d.detail_number or 0) + 1
        data = values.model_dump() if isinstance(values, BaseModel) else dict(values)
        detail = self._build(OrderDetail, data, detail_number=new_number,
                             priority=data.get("priority") or DEFAULT_PRIORITY, delete_flag=False)
        self.details.append(detail)
        self.recalculate_financials()
        return detail

    def update_detail(self, key: int, values: Mapping[str, Any]) -> OrderDetail:
        detail = self._update(self.details, key, values)
        self.recalculate_financials()
        return detail

    def delete_detail(self, key: int) -> OrderDetail:
        detail = self._delete(self.details, self.deleted_details, key)
        self.recalculate_financials()
        return detail

    def reorder_details(self):
        for number, detail in enumerate(self.details, start=1):
            detail.detail_number = number

    # --- Payments ---

    def add_payment(self, values) -> Payment:
        payment = self._build(Payment, values)
        self.payments.append(payment)
        return payment

    def update_payment(self, key: int, values: Mapping[str, Any]) -> Payment:
        return self._update(self.payments, key, values)

    def delete_payment(self, key: int) -> Payment:
        return self._delete(self.payments, self.deleted_payments, key)

    # --- Workshops ---

    def add_workshop(self, values) -> OrderWorkshop:
        workshop = self._build(OrderWorkshop, values, delete_flag=False)
        self.workshops.append(workshop)
        return workshop

    def update_workshop(self, key: int, values: Mapping[str, Any]) -> OrderWorkshop:
        return self._update(self.workshops, key, values)

    def delete_workshop(self, key: int) -> OrderWorkshop:
        return self._delete(self.workshops, self.deleted_workshops, key)

    # --- Requirements ---

    def add_requirement(self, values) -> ResourceRequirement:
        requirement = self._build(ResourceRequirement, values, is_active=True)
        self.requirements.append(requirement)
        return requirement

    def update_requirement(self, key: int, values: Mapping[str, Any]) -> ResourceRequirement:
        return self._update(self.requirements, key, values)

    def delete_requirement(self, key: int) -> ResourceRequirement:
        return self._delete(self.requirements, self.deleted_requirements, key)

    # --- Computed ---

    def calculated_totals(self) -> OrderTotals:
        return OrderTotals(
            positions_count=len(self.details),
            parts_count=sum(d.quantity or 0 for d in self.details),
            total_area=round(sum(d.area or 0 for d in self.details), 4),
            total_paid=round(sum(p.amount or 0 for p in self.payments), 2),
            total_amount=round(sum(d.detail_cost or 0 for d in self.details), 2),
        )

    def recalculate_financials(self):
        """In-memory totals for display. The save pipeline overwrites
        total_amount with the persisted sum."""
        total = round(sum(d.detail_cost or 0 for d in self.details), 2)
        discount = self.header.discount or 0
        surcharge = self.header.surcharge or 0
        if surcharge > 0:
            final = round(total + surcharge, 2)
        else:
            final = max(0, round(total - discount, 2))
        self.header.total_amount = total
        self.header.final_amount = final

    def rebase(self, persisted: "OrderAggregate"):
        """
        Take another aggregate's originals as this one's server state.

        Used when a whole aggregate arrives over HTTP: persisted children that
        are missing from this aggregate are queued for deletion.
        """
        self.original_details = persisted.original_details
        self.original_payments = persisted.original_payments
        for current, before, deleted in (
                (self.details, persisted.details, self.deleted_details),
                (self.payments, persisted.payments, self.deleted_payments),
                (self.workshops, persisted.workshops, self.deleted_workshops),
                (self.requirements, persisted.requirements, self.deleted_requirements)):
            kept = {r.persisted_id for r in current}
            for record in before:
                if record.persisted_id not in kept and record.persisted_id not in deleted:
                    deleted.append(record.persisted_id)

    def sync_originals(self):
        """Take the current collections as the server state."""
        self.original_details = snapshot(self.details)
        self.original_payments = snapshot(self.payments)
        self.deleted_details = []
        self.deleted_payments = []
        self.deleted_workshops = []
        self.deleted_requirements = []
