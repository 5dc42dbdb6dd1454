# =============================================================================
# TEST STORE
# =============================================================================
# In-memory aggregate: child collections, numbering, financials, loading
# =============================================================================

import pytest

from order_service.errors import DataProviderError
from order_service.schemas import ORDER_DETAILS, ORDERS, PAYMENTS
from order_service.store import OrderAggregate, generate_temp_id


@pytest.fixture
def aggregate() -> OrderAggregate:
    return OrderAggregate.from_records(
        {"order_id": 1, "order_name": "Kitchen", "version": 2},
        details=[
            {"detail_id": 10, "order_id": 1, "detail_number": 1, "detail_cost": 100.0, "quantity": 2, "area": 0.5},
            {"detail_id": 11, "order_id": 1, "detail_number": 2, "detail_cost": 50.0, "quantity": 1, "area": 0.25},
        ],
        payments=[{"payment_id": 20, "order_id": 1, "amount": 40.0}],
    )


class TestConstruction:

    def test_new_order_is_empty(self):
        aggregate = OrderAggregate.new()
        assert aggregate.order_id is None
        assert aggregate.header.priority == 100
        assert aggregate.details == []
        assert aggregate.original_details == {}

    def test_originals_snapshot_persisted_children(self, aggregate):
        assert set(aggregate.original_details) == {10, 11}
        assert set(aggregate.original_payments) == {20}
        assert aggregate.original_details[10] is not aggregate.details[0]

    def test_load_reads_header_and_children(self, provider):
        order = provider.seed(ORDERS, order_name="Wardrobe")
        order_id = order["order_id"]
        provider.seed(ORDER_DETAILS, order_id=order_id, detail_number=2, detail_cost=5.0)
        provider.seed(ORDER_DETAILS, order_id=order_id, detail_number=1, detail_cost=7.0)
        provider.seed(ORDER_DETAILS, order_id=order_id + 100, detail_number=1)
        provider.seed(PAYMENTS, order_id=order_id, amount=3.0)

        aggregate = OrderAggregate.load(provider, order_id)

        assert aggregate.header.order_name == "Wardrobe"
        assert [d.detail_number for d in aggregate.details] == [1, 2]
        assert len(aggregate.payments) == 1
        assert len(aggregate.original_details) == 2

    def test_load_missing_order(self, provider):
        with pytest.raises(DataProviderError) as exc:
            OrderAggregate.load(provider, 404)
        assert exc.value.remote_status == 404


class TestDetails:
    """Detail lines and their numbering."""

    def test_temp_ids_are_negative_and_unique(self):
        first, second = generate_temp_id(), generate_temp_id()
        assert first < 0 and second < 0
        assert first != second

    def test_add_detail(self, aggregate):
        added = aggregate.add_detail({"detail_cost": 25.0, "detail_id": 999})
        assert added.detail_id is None
        assert added.temp_id < 0
        assert added.detail_number == 3
        assert added.priority == 100
        assert added.delete_flag is False
        assert aggregate.header.total_amount == 175.0

    def test_insert_after_shifts_later_numbers(self, aggregate):
        inserted = aggregate.insert_detail_after(10, {"detail_cost": 1.0})
        numbers = {d.key: d.detail_number for d in aggregate.details}
        assert inserted.detail_number == 2
        assert numbers[11] == 3
        assert numbers[10] == 1

    def test_update_by_temp_id(self, aggregate):
        added = aggregate.add_detail({"detail_cost": 1.0})
        aggregate.update_detail(added.temp_id, {"detail_cost": 9.0})
        assert aggregate.details[-1].detail_cost == 9.0
        assert aggregate.header.total_amount == 159.0

    def test_delete_persisted_detail_is_tracked(self, aggregate):
        aggregate.delete_detail(10)
        assert aggregate.deleted_details == [10]
        assert [d.detail_id for d in aggregate.details] == [11]

    def test_delete_local_detail_is_not_tracked(self, aggregate):
        added = aggregate.add_detail({"detail_cost": 1.0})
        aggregate.delete_detail(added.temp_id)
        assert aggregate.deleted_details == []

    def test_unknown_key(self, aggregate):
        with pytest.raises(KeyError):
            aggregate.update_detail(12345, {"detail_cost": 1.0})

    def test_reorder(self, aggregate):
        aggregate.delete_detail(10)
        aggregate.add_detail({"detail_cost": 1.0})
        aggregate.reorder_details()
        assert [d.detail_number for d in aggregate.details] == [1, 2]


class TestOtherCollections:

    def test_payments(self, aggregate):
        added = aggregate.add_payment({"amount": 10.0})
        aggregate.update_payment(added.temp_id, {"amount": 15.0})
        aggregate.delete_payment(20)
        assert [p.amount for p in aggregate.payments] == [15.0]
        assert aggregate.deleted_payments == [20]

    def test_workshops_default_flag(self, aggregate):
        workshop = aggregate.add_workshop({"workshop_id": 4})
        assert workshop.delete_flag is False
        aggregate.delete_workshop(workshop.temp_id)
        assert aggregate.workshops == []
        assert aggregate.deleted_workshops == []

    def test_requirements_are_active(self, aggregate):
        requirement = aggregate.add_requirement({"resource_type": "material", "material_id": 3})
        assert requirement.is_active is True
        aggregate.update_requirement(requirement.temp_id, {"required_quantity": 4.5})
        assert aggregate.requirements[0].required_quantity == 4.5


class TestFinancials:

    def test_calculated_totals(self, aggregate):
        totals = aggregate.calculated_totals()
        assert totals.positions_count == 2
        assert totals.parts_count == 3
        assert totals.total_area == 0.75
        assert totals.total_paid == 40.0
        assert totals.total_amount == 150.0

    def test_discount(self, aggregate):
        aggregate.header.discount = 20
        aggregate.recalculate_financials()
        assert aggregate.header.final_amount == 130.0

    def test_discount_never_goes_negative(self, aggregate):
        aggregate.header.discount = 500
        aggregate.recalculate_financials()
        assert aggregate.header.final_amount == 0

    def test_surcharge_wins_over_discount(self, aggregate):
        aggregate.header.discount = 20
        aggregate.header.surcharge = 10
        aggregate.recalculate_financials()
        assert aggregate.header.final_amount == 160.0


class TestSync:

    def test_sync_originals_clears_deleted(self, aggregate):
        aggregate.delete_detail(10)
        aggregate.delete_payment(20)
        aggregate.sync_originals()
        assert aggregate.deleted_details == []
        assert aggregate.deleted_payments == []
        assert set(aggregate.original_details) == {11}

    def test_rebase_queues_missing_children(self, aggregate):
        submitted = OrderAggregate.model_validate(aggregate.model_dump())
        submitted.details = [d for d in submitted.details if d.detail_id != 10]
        submitted.original_details = {}
        submitted.payments = []

        submitted.rebase(aggregate)

        assert submitted.deleted_details == [10]
        assert submitted.deleted_payments == [20]
        assert set(submitted.original_details) == {10, 11}
