import pytest

from domain.models import (
    InventoryItem,
    Order,
    OrderItem,
    OrderStatus,
    StageHistoryEntry,
    WorkflowDefinition,
    WorkflowMaterial,
    WorkflowStage,
)
from services import workflow_service


@pytest.fixture
def workflows():
    return [
        WorkflowDefinition(
            id="wf-clean",
            label="Vệ sinh",
            stages=[
                WorkflowStage(id="st-wash", name="Giặt", order=1),
                WorkflowStage(id="st-dry", name="Sấy", order=2),
                WorkflowStage(id="st-last", name="Hoàn thành", order=3),
            ],
            materials=[WorkflowMaterial(inventory_item_id="inv-soap", quantity=1)],
        ),
        WorkflowDefinition(
            id="wf-repair",
            label="Sửa chữa",
            stages=[WorkflowStage(id="st-glue", name="Dán đế", order=1)],
            materials=[
                WorkflowMaterial(inventory_item_id="inv-soap", quantity=2),
                WorkflowMaterial(inventory_item_id="inv-glue", quantity=1),
            ],
        ),
    ]


def _item(item_id="i1", status=None, **kwargs):
    return OrderItem(id=item_id, name=item_id, status=status, **kwargs)


class TestDoneStatus:
    @pytest.mark.parametrize("status", ["done", "DONE", "Hoàn thành", "finished", "da_giao", "huy", "cancelled"])
    def test_keywords(self, status):
        assert workflow_service.is_done_status(status)

    @pytest.mark.parametrize("status", [None, "", "st-wash", "cho_xu_ly", "in-queue"])
    def test_not_done(self, status, workflows):
        assert not workflow_service.is_done_status(status, workflows)

    def test_stage_named_as_finishing(self, workflows):
        assert workflow_service.is_done_status("st-last", workflows)
        assert not workflow_service.is_done_status("st-last")


class TestDeriveOrderStatus:
    def test_no_items_leaves_status(self):
        assert workflow_service.derive_order_status(OrderStatus.CONFIRMED, []) == OrderStatus.CONFIRMED

    @pytest.mark.parametrize("current", list(OrderStatus))
    def test_all_done_is_done_from_any_status(self, current):
        assert workflow_service.derive_order_status(current, ["done", "Hoàn thành"]) == OrderStatus.DONE

    def test_pending_with_started_item_is_processing(self):
        status = workflow_service.derive_order_status(OrderStatus.PENDING, ["cho_xu_ly", "st-wash"])
        assert status == OrderStatus.PROCESSING

    def test_pending_with_nothing_started_stays(self):
        status = workflow_service.derive_order_status(OrderStatus.PENDING, ["cho_xu_ly", "Pending", "in-queue"])
        assert status == OrderStatus.PENDING

    @pytest.mark.parametrize("blank", [None, ""])
    def test_blank_item_status_counts_as_activity(self, blank):
        assert not workflow_service.is_not_started(blank)
        status = workflow_service.derive_order_status(OrderStatus.PENDING, ["cho_xu_ly", blank])
        assert status == OrderStatus.PROCESSING

    def test_done_with_reopened_item_is_processing(self):
        status = workflow_service.derive_order_status(OrderStatus.DONE, ["done", "cho_xu_ly"])
        assert status == OrderStatus.PROCESSING

    @pytest.mark.parametrize("current", [OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.DELIVERED])
    def test_other_statuses_untouched(self, current):
        assert workflow_service.derive_order_status(current, ["st-wash", "done"]) == current

    def test_idempotent(self, workflows):
        statuses = ["st-last", "st-dry"]
        once = workflow_service.derive_order_status(OrderStatus.PENDING, statuses, workflows)
        twice = workflow_service.derive_order_status(once, statuses, workflows)
        assert once == twice == OrderStatus.PROCESSING

    def test_products_are_ignored(self):
        order = Order(
            id="o1",
            customer_id="c1",
            customer_name="Bình",
            status=OrderStatus.PROCESSING,
            items=[_item("i1", "done"), _item("p1", "cho_xu_ly", is_product=True)],
        )
        assert workflow_service.recompute_order_status(order) == OrderStatus.DONE


class TestAdvanceItem:
    def test_closes_open_entry_and_opens_new_one(self, workflows):
        item = _item(
            status="st-wash",
            workflow_id="wf-clean",
            history=[StageHistoryEntry("st-wash", "Giặt", entered_at=1_000, performed_by="an")],
        )
        advanced = workflow_service.advance_item(item, "st-dry", "alice", now=4_000, workflows=workflows)

        assert advanced.status == "st-dry"
        assert advanced.last_updated == 4_000
        first, second = advanced.history
        assert (first.left_at, first.duration) == (4_000, 3_000)
        assert second.stage_id == "st-dry"
        assert second.stage_name == "Sấy"
        assert second.entered_at == 4_000
        assert second.performed_by == "alice"
        assert second.is_open
        # input untouched
        assert item.history[0].is_open
        assert item.status == "st-wash"

    def test_at_most_one_open_entry_after_many_moves(self, workflows):
        item = _item(workflow_id="wf-clean")
        now = 100
        for stage in ["st-wash", "st-dry", "st-wash", "st-last"]:
            item = workflow_service.advance_item(item, stage, "an", now=now, workflows=workflows)
            now += 50

        assert sum(1 for h in item.history if h.is_open) == 1
        assert item.history[-1].stage_id == "st-last"
        for h in item.history:
            if not h.is_open:
                assert h.duration == h.left_at - h.entered_at
                assert h.duration >= 0

    def test_clock_going_backwards_never_gives_negative_duration(self):
        item = _item(history=[StageHistoryEntry("a", "a", entered_at=5_000, performed_by="an")])
        advanced = workflow_service.advance_item(item, "b", "an", now=4_000)
        assert advanced.history[0].duration == 0

    def test_note_is_logged_against_new_stage(self, workflows):
        item = _item(status="st-wash", workflow_id="wf-clean")
        advanced = workflow_service.advance_item(
            item, "st-dry", "alice", now=2_000, note="checked fit", log_id="log-1", timestamp="10:00", workflows=workflows
        )
        (entry,) = advanced.technical_log
        assert (entry.id, entry.content, entry.author, entry.stage) == ("log-1", "checked fit", "alice", "st-dry")

    def test_no_note_no_log(self):
        advanced = workflow_service.advance_item(_item(), "st-dry", "alice", now=2_000)
        assert advanced.technical_log == []

    def test_unknown_stage_name_falls_back_to_id(self, workflows):
        advanced = workflow_service.advance_item(_item(), "done", "alice", now=2_000, workflows=workflows)
        assert advanced.history[0].stage_name == "done"


class TestWorkflowLinks:
    def test_own_workflow_wins(self):
        item = _item(workflow_id="wf-a", service_id="svc-1")
        assert workflow_service.resolve_workflow_id(item, {"svc-1": "wf-b"}) == "wf-a"

    def test_falls_back_to_service(self):
        item = _item(service_id="svc-1")
        assert workflow_service.resolve_workflow_id(item, {"svc-1": "wf-b"}) == "wf-b"

    def test_no_link(self):
        assert workflow_service.resolve_workflow_id(_item(service_id="svc-x"), {}) is None

    def test_with_resolved_workflows_keeps_unchanged_items(self):
        plain = _item("i1")
        linked = _item("i2", service_id="svc-1")
        resolved = workflow_service.with_resolved_workflows([plain, linked], {"svc-1": "wf-b"})
        assert resolved[0] is plain
        assert resolved[1].workflow_id == "wf-b"


class TestMaterialDeductions:
    def test_quantity_scales_consumption(self, workflows):
        inventory = [InventoryItem(id="inv-soap", name="Xà phòng", quantity=10)]
        items = [_item(workflow_id="wf-clean", quantity=3)]
        assert workflow_service.compute_material_deductions(items, workflows, inventory) == {"inv-soap": 7}

    def test_deductions_accumulate_and_floor_at_zero(self, workflows):
        inventory = [
            InventoryItem(id="inv-soap", name="Xà phòng", quantity=5),
            InventoryItem(id="inv-glue", name="Keo", quantity=1),
        ]
        items = [
            _item("i1", workflow_id="wf-clean", quantity=2),
            _item("i2", workflow_id="wf-repair", quantity=2),
        ]
        updates = workflow_service.compute_material_deductions(items, workflows, inventory)
        assert updates == {"inv-soap": 0, "inv-glue": 0}

    def test_products_and_unlinked_items_consume_nothing(self, workflows):
        inventory = [InventoryItem(id="inv-soap", name="Xà phòng", quantity=10)]
        items = [_item("p1", workflow_id="wf-clean", is_product=True), _item("i2")]
        assert workflow_service.compute_material_deductions(items, workflows, inventory) == {}

    def test_unknown_workflow_or_inventory_is_skipped(self, workflows):
        items = [_item("i1", workflow_id="wf-missing"), _item("i2", workflow_id="wf-repair")]
        inventory = [InventoryItem(id="inv-glue", name="Keo", quantity=4)]
        assert workflow_service.compute_material_deductions(items, workflows, inventory) == {"inv-glue": 3}
