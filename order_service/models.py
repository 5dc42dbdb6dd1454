from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text

from .database import Base


def _now():
    return datetime.now()


class AuditMixin:
    created_by = Column(Integer)
    edited_by = Column(Integer)
    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)


# Order header. One row per order, version guards concurrent edits.
class Order(AuditMixin, Base):
    __tablename__ = "orders"

    order_id = Column(Integer, primary_key=True, index=True)
    order_name = Column(String)
    client_id = Column(Integer)
    manager_id = Column(Integer)
    order_status_id = Column(Integer)
    payment_status_id = Column(Integer)
    priority = Column(Integer, default=100)

    order_date = Column(Date)
    completion_date = Column(Date)
    planned_completion_date = Column(Date)
    issue_date = Column(Date)
    payment_date = Column(Date)

    total_amount = Column(Float, default=0)  # Sum of detail_cost, written by the save pipeline.
    discount = Column(Float, default=0)
    surcharge = Column(Float, default=0)
    discounted_amount = Column(Float)
    final_amount = Column(Float)
    paid_amount = Column(Float, default=0)

    link_cutting_file = Column(String)
    link_cutting_image_file = Column(String)
    link_cad_file = Column(String)
    link_pdf_file = Column(String)

    notes = Column(Text)
    version = Column(Integer, default=0, nullable=False)


# Priced line item of an order.
class OrderDetail(AuditMixin, Base):
    __tablename__ = "order_details"

    detail_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), index=True, nullable=False)
    detail_number = Column(Integer)
    detail_name = Column(String)

    height = Column(Float)
    width = Column(Float)
    quantity = Column(Integer, default=1)
    area = Column(Float)

    material_id = Column(Integer)
    milling_type_id = Column(Integer)
    edge_type_id = Column(Integer)
    film_id = Column(Integer)

    milling_cost_per_sqm = Column(Float)
    detail_cost = Column(Float)  # Line cost.

    note = Column(Text)
    priority = Column(Integer, default=100)
    production_status_id = Column(Integer)

    link_cutting_file = Column(String)
    link_cutting_image_file = Column(String)
    link_cad_file = Column(String)
    link_pdf_file = Column(String)

    delete_flag = Column(Boolean, default=False)
    version = Column(Integer, default=0)


# Money received against an order.
class Payment(AuditMixin, Base):
    __tablename__ = "payments"

    payment_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), index=True, nullable=False)
    type_paid_id = Column(Integer)
    amount = Column(Float, nullable=False)
    payment_date = Column(Date)
    notes = Column(Text)


class OrderWorkshop(AuditMixin, Base):
    __tablename__ = "order_workshops"

    order_workshop_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), index=True, nullable=False)
    workshop_id = Column(Integer)
    production_status_id = Column(Integer)

    received_date = Column(Date)
    started_date = Column(Date)
    completed_date = Column(Date)
    planned_completion_date = Column(Date)

    sequence_order = Column(Integer)
    notes = Column(Text)
    responsible_employee_id = Column(Integer)
    delete_flag = Column(Boolean, default=False)


class OrderResourceRequirement(AuditMixin, Base):
    __tablename__ = "order_resource_requirements"

    requirement_id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.order_id", ondelete="CASCADE"), index=True, nullable=False)
    resource_type = Column(String)  # material, film or edge

    material_id = Column(Integer)
    film_id = Column(Integer)
    edge_type_id = Column(Integer)

    required_quantity = Column(Float, default=0)
    unit_id = Column(Integer)
    waste_percentage = Column(Float)
    final_quantity = Column(Float)

    requirement_status_id = Column(Integer)
    supplier_id = Column(Integer)
    purchase_price = Column(Float)

    notes = Column(Text)
    is_active = Column(Boolean, default=True)


# Resource name -> table. orders_view is served read-only from the orders table.
MODELS = {
    "orders": Order,
    "orders_view": Order,
    "order_details": OrderDetail,
    "payments": Payment,
    "order_workshops": OrderWorkshop,
    "order_resource_requirements": OrderResourceRequirement,
}
READ_ONLY_RESOURCES = {"orders_view"}
