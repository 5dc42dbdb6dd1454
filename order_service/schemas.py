"""Record types of the order aggregate.

One header plus four child collections. Every child carries either the
persisted id the data service assigned or a client-only ``temp_id``.
"""
from datetime import date, datetime
from typing import Any, ClassVar, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator

# --- Resources of the data service ---
ORDERS = "orders"
ORDERS_VIEW = "orders_view"
ORDER_DETAILS = "order_details"
PAYMENTS = "payments"
ORDER_WORKSHOPS = "order_workshops"
ORDER_REQUIREMENTS = "order_resource_requirements"

ID_COLUMNS = {
    ORDERS: "order_id",
    ORDERS_VIEW: "order_id",
    ORDER_DETAILS: "detail_id",
    PAYMENTS: "payment_id",
    ORDER_WORKSHOPS: "order_workshop_id",
    ORDER_REQUIREMENTS: "requirement_id",
}

# Fields changed as a side effect of persistence, never by the user.
IDENTITY_FIELDS = frozenset(
    {"detail_id", "payment_id", "order_workshop_id", "requirement_id", "temp_id", "order_id"}
)
AUDIT_FIELDS = frozenset({"created_at", "updated_at", "created_by", "edited_by", "version"})

DEFAULT_PRIORITY = 100


def coerce_date(value: Any) -> Any:
    """Reduce datetimes and ISO datetime strings to a plain date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in "T ":
        return date.fromisoformat(value[:10])
    return value


def sanitize_values(values: Dict[str, Any]) -> Dict[str, Any]:
    """Empty strings are sent as an explicit null, never as ''."""
    return {key: (None if value == "" else value) for key, value in values.items()}


class Record(BaseModel):
    """Common behaviour of every aggregate record."""
    model_config = ConfigDict(extra="allow", validate_assignment=True)

    resource: ClassVar[str]
    id_field: ClassVar[str]

    created_by: Optional[int] = None
    edited_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def persisted_id(self) -> Optional[int]:
        return getattr(self, self.id_field, None)

    def to_values(self, exclude=frozenset()) -> Dict[str, Any]:
        """JSON-ready values for the data service, dates as YYYY-MM-DD."""
        values = self.model_dump(mode="json", exclude=set(exclude))
        return sanitize_values(values)


class ChildRecord(Record):
    order_id: Optional[int] = None
    temp_id: Optional[int] = None

    @property
    def key(self) -> Optional[int]:
        """Persisted id when there is one, temp id otherwise."""
        return self.persisted_id if self.persisted_id is not None else self.temp_id

    def matches(self, key: int) -> bool:
        return key is not None and (self.temp_id == key or self.persisted_id == key)


class OrderHeader(Record):
    resource = ORDERS
    id_field = "order_id"

    order_id: Optional[int] = None
    order_name: Optional[str] = None
    client_id: Optional[int] = None
    manager_id: Optional[int] = None
    order_status_id: Optional[int] = None
    payment_status_id: Optional[int] = None
    priority: Optional[int] = DEFAULT_PRIORITY

    order_date: Optional[date] = None
    completion_date: Optional[date] = None
    planned_completion_date: Optional[date] = None
    issue_date: Optional[date] = None
    payment_date: Optional[date] = None

    # total_amount is derived from the persisted details, never typed in.
    total_amount: Optional[float] = None
    discount: Optional[float] = 0
    surcharge: Optional[float] = 0
    discounted_amount: Optional[float] = None
    final_amount: Optional[float] = None
    paid_amount: Optional[float] = 0

    link_cutting_file: Optional[str] = None
    link_cutting_image_file: Optional[str] = None
    link_cad_file: Optional[str] = None
    link_pdf_file: Optional[str] = None

    notes: Optional[str] = None
    version: Optional[int] = 0

    @field_validator("order_date", "completion_date", "planned_completion_date",
                     "issue_date", "payment_date", mode="before")
    @classmethod
    def coerce_dates(cls, value):
        return coerce_date(value)


class OrderDetail(ChildRecord):
    resource = ORDER_DETAILS
    id_field = "detail_id"

    detail_id: Optional[int] = None
    detail_number: Optional[int] = None
    detail_name: Optional[str] = None

    height: Optional[float] = None
    width: Optional[float] = None
    quantity: Optional[int] = 1
    area: Optional[float] = None

    material_id: Optional[int] = None
    milling_type_id: Optional[int] = None
    edge_type_id: Optional[int] = None
    film_id: Optional[int] = None

    milling_cost_per_sqm: Optional[float] = None
    detail_cost: Optional[float] = None

    note: Optional[str] = None
    priority: Optional[int] = DEFAULT_PRIORITY
    production_status_id: Optional[int] = None

    link_cutting_file: Optional[str] = None
    link_cutting_image_file: Optional[str] = None
    link_cad_file: Optional[str] = None
    link_pdf_file: Optional[str] = None

    delete_flag: Optional[bool] = False
    version: Optional[int] = None


class Payment(ChildRecord):
    resource = PAYMENTS
    id_field = "payment_id"

    payment_id: Optional[int] = None
    type_paid_id: Optional[int] = None
    amount: Optional[float] = 0
    payment_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("payment_date", mode="before")
    @classmethod
    def coerce_dates(cls, value):
        return coerce_date(value)


class OrderWorkshop(ChildRecord):
    resource = ORDER_WORKSHOPS
    id_field = "order_workshop_id"

    order_workshop_id: Optional[int] = None
    workshop_id: Optional[int] = None
    production_status_id: Optional[int] = None

    received_date: Optional[date] = None
    started_date: Optional[date] = None
    completed_date: Optional[date] = None
    planned_completion_date: Optional[date] = None

    sequence_order: Optional[int] = None
    notes: Optional[str] = None
    responsible_employee_id: Optional[int] = None
    delete_flag: Optional[bool] = False

    @field_validator("received_date", "started_date", "completed_date",
                     "planned_completion_date", mode="before")
    @classmethod
    def coerce_dates(cls, value):
        return coerce_date(value)


class ResourceRequirement(ChildRecord):
    resource = ORDER_REQUIREMENTS
    id_field = "requirement_id"

    requirement_id: Optional[int] = None
    resource_type: Optional[str] = None  # material, film, edge

    material_id: Optional[int] = None
    film_id: Optional[int] = None
    edge_type_id: Optional[int] = None

    required_quantity: Optional[float] = 0
    unit_id: Optional[int] = None
    waste_percentage: Optional[float] = None
    final_quantity: Optional[float] = None

    requirement_status_id: Optional[int] = None
    supplier_id: Optional[int] = None
    purchase_price: Optional[float] = None

    notes: Optional[str] = None
    is_active: Optional[bool] = True


class OrderTotals(BaseModel):
    positions_count: int
    parts_count: int
    total_area: float
    total_paid: float
    total_amount: float
