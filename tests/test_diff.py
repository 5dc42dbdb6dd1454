# =============================================================================
# TEST DIFF
# =============================================================================
# Create / update / skip classification of child records
# =============================================================================

from datetime import datetime

from order_service.diff import Action, classify, normalize, plan_changes
from order_service.schemas import OrderDetail, OrderWorkshop, Payment


def detail(**values) -> OrderDetail:
    base = {"detail_id": 7, "order_id": 1, "detail_number": 1, "detail_cost": 100.0, "quantity": 2}
    return OrderDetail(**{**base, **values})


class TestClassify:
    """Single-record decisions."""

    def test_record_without_persisted_id_is_created(self):
        record = OrderDetail(temp_id=-1, detail_cost=10)
        assert classify(record, None) == Action.CREATE

    def test_unchanged_record_is_skipped(self):
        assert classify(detail(), detail()) == Action.SKIP

    def test_audit_fields_do_not_count_as_changes(self):
        original = detail(updated_at=datetime(2024, 1, 1), edited_by=3, version=1)
        current = detail(updated_at=datetime(2024, 5, 2, 10, 30), edited_by=9, version=4)
        assert classify(current, original) == Action.SKIP

    def test_changed_field_is_an_update(self):
        assert classify(detail(detail_cost=150.0), detail()) == Action.UPDATE

    def test_persisted_record_without_snapshot_is_an_update(self):
        assert classify(detail(), None) == Action.UPDATE

    def test_order_id_and_temp_id_are_ignored(self):
        assert classify(detail(order_id=99, temp_id=-5), detail()) == Action.SKIP

    def test_empty_string_equals_null(self):
        assert classify(detail(note=""), detail(note=None)) == Action.SKIP


class TestNormalize:

    def test_identity_and_audit_fields_stripped(self):
        projection = normalize(Payment(payment_id=3, order_id=1, temp_id=-2, amount=50,
                                       created_by=1, created_at=datetime(2024, 1, 1)))
        for field in ("payment_id", "order_id", "temp_id", "created_by", "created_at"):
            assert field not in projection
        assert projection["amount"] == 50

    def test_dates_normalized(self):
        projection = normalize(Payment(payment_id=3, amount=1, payment_date="2024-03-05T14:00:00"))
        assert projection["payment_date"] == "2024-03-05"


class TestPlanChanges:
    """Grouping a collection into a change set."""

    def test_groups_records(self):
        originals = {7: detail(), 8: detail(detail_id=8)}
        records = [detail(), detail(detail_id=8, detail_cost=1.0), OrderDetail(temp_id=-1)]

        changes = plan_changes(records, originals, deleted_ids=[11])

        assert [r.detail_id for r in changes.skips] == [7]
        assert [r.detail_id for r in changes.updates] == [8]
        assert [r.temp_id for r in changes.creates] == [-1]
        assert changes.deletes == [11]
        assert len(changes.writes) == 2

    def test_duplicate_deletes_collapse(self):
        changes = plan_changes([], {}, deleted_ids=[4, 4, None, 5])
        assert changes.deletes == [4, 5]

    def test_without_diff_every_persisted_record_is_updated(self):
        records = [OrderWorkshop(order_workshop_id=1, workshop_id=2), OrderWorkshop(temp_id=-3)]
        changes = plan_changes(records, deleted_ids=(), diff=False)
        assert len(changes.updates) == 1
        assert len(changes.creates) == 1
        assert not changes.skips

    def test_nothing_to_do(self):
        changes = plan_changes([detail()], {7: detail()})
        assert changes.is_empty()
