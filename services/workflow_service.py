# services/workflow_service.py
"""
Stage transitions for order line items and the order status derived
from them. Everything here is pure: callers pass the clock value in.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence

from domain.models import (
    InventoryItem,
    Order,
    OrderItem,
    OrderStatus,
    StageHistoryEntry,
    TechnicalLogEntry,
    WorkflowDefinition,
)

logger = logging.getLogger("atelier.workflow")

# Matched as substrings of the lowercased status
DONE_KEYWORDS = (
    "done",
    "hoàn thành",
    "hoàn tất",
    "đã xong",
    "finish",
    "complete",
    "delivered",
    "da_giao",
    "huy",
    "cancel",
)
# Stage names that mark a workflow stage as the finishing one
DONE_STAGE_NAME_KEYWORDS = ("done", "hoàn thành", "hoàn tất", "đã xong", "finish", "complete")

NOT_STARTED_STATUSES = ("in-queue", "pending", "cho_xu_ly")


def is_done_status(status: Optional[str], workflows: Sequence[WorkflowDefinition] = ()) -> bool:
    if not status:
        return False
    s = status.lower().strip()
    if any(k in s for k in DONE_KEYWORDS):
        return True

    for workflow in workflows:
        for stage in workflow.stages:
            if (stage.id or "").lower() != s:
                continue
            name = (stage.name or "").lower().strip()
            if any(k in name for k in DONE_STAGE_NAME_KEYWORDS):
                return True
    return False


def is_not_started(status: Optional[str]) -> bool:
    return (status or "").lower().strip() in NOT_STARTED_STATUSES


def service_statuses(items: Iterable[OrderItem]) -> List[Optional[str]]:
    """Statuses of the items that take part in the workflow (products excluded)."""
    return [i.status for i in items if not i.is_product]


def derive_order_status(
        current: OrderStatus,
        statuses: Sequence[Optional[str]],
        workflows: Sequence[WorkflowDefinition] = (),
) -> OrderStatus:
    """
    Order status implied by the statuses of its non-product items.

      - no items                       -> unchanged
      - every item done                -> Done
      - order Pending, any item moved  -> Processing
      - order Done, an item reopened   -> Processing
      - otherwise                      -> unchanged

    Confirmed / Delivered / Cancelled are never produced here.
    """
    if not statuses:
        return current

    if all(is_done_status(s, workflows) for s in statuses):
        return OrderStatus.DONE

    if current == OrderStatus.PENDING and any(not is_not_started(s) for s in statuses):
        return OrderStatus.PROCESSING

    if current == OrderStatus.DONE:
        return OrderStatus.PROCESSING

    return current


def recompute_order_status(order: Order, workflows: Sequence[WorkflowDefinition] = ()) -> OrderStatus:
    return derive_order_status(order.status, service_statuses(order.items), workflows)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

def close_open_entries(history: Sequence[StageHistoryEntry], now: int) -> List[StageHistoryEntry]:
    closed = []
    for h in history:
        if h.is_open:
            left_at = max(now, h.entered_at)
            h = replace(h, left_at=left_at, duration=left_at - h.entered_at)
        closed.append(h)
    return closed


def find_workflow(workflow_id: Optional[str], workflows: Sequence[WorkflowDefinition]) -> Optional[WorkflowDefinition]:
    if not workflow_id:
        return None
    return next((w for w in workflows if w.id == workflow_id), None)


def stage_name_for(item: OrderItem, stage_id: str, workflows: Sequence[WorkflowDefinition]) -> str:
    workflow = find_workflow(item.workflow_id, workflows)
    stage = workflow.find_stage(stage_id) if workflow else None
    if stage is None:
        # stage ids are unique across workflows, so a global lookup is safe
        stage = next((s for w in workflows for s in w.stages if s.id == stage_id), None)
    return stage.name if stage else stage_id


def advance_item(
        item: OrderItem,
        new_stage: str,
        performed_by: str,
        now: int,
        note: Optional[str] = None,
        log_id: Optional[str] = None,
        timestamp: Optional[str] = None,
        workflows: Sequence[WorkflowDefinition] = (),
) -> OrderItem:
    """
    Move `item` to `new_stage`:
      1. close the open history entry (left_at = now)
      2. open a new entry for `new_stage`
      3. append a technical log entry when `note` is given
    Returns a new OrderItem; the input is not modified.
    """
    history = close_open_entries(item.history, now)
    history.append(
        StageHistoryEntry(
            stage_id=new_stage,
            stage_name=stage_name_for(item, new_stage, workflows),
            entered_at=now,
            performed_by=performed_by,
        )
    )

    log = list(item.technical_log)
    if note:
        log.append(
            TechnicalLogEntry(
                id=log_id or str(now),
                content=note,
                author=performed_by,
                timestamp=timestamp or str(now),
                stage=new_stage,
            )
        )

    return replace(item, status=new_stage, history=history, technical_log=log, last_updated=now)


# ---------------------------------------------------------------------------
# Workflow links and materials
# ---------------------------------------------------------------------------

def resolve_workflow_id(item: OrderItem, service_workflows: Dict[str, str]) -> Optional[str]:
    if item.workflow_id:
        return item.workflow_id
    if item.service_id:
        return service_workflows.get(item.service_id)
    return None


def with_resolved_workflows(items: Iterable[OrderItem], service_workflows: Dict[str, str]) -> List[OrderItem]:
    resolved = []
    for item in items:
        workflow_id = resolve_workflow_id(item, service_workflows)
        if workflow_id != item.workflow_id:
            item = replace(item, workflow_id=workflow_id)
        resolved.append(item)
    return resolved


def compute_material_deductions(
        items: Iterable[OrderItem],
        workflows: Sequence[WorkflowDefinition],
        inventory: Sequence[InventoryItem],
) -> Dict[str, float]:
    """
    New stock levels after the workflow materials of `items` are consumed.

    Each non-product item with a workflow consumes
    material.quantity * item.quantity of every listed inventory record.
    Several items hitting the same record accumulate; stock never goes
    below zero. Returns {inventory_item_id: new_quantity}.
    """
    stock = {inv.id: inv.quantity for inv in inventory}
    updates: Dict[str, float] = {}

    for item in items:
        if item.is_product or not item.workflow_id:
            continue
        workflow = find_workflow(item.workflow_id, workflows)
        if workflow is None:
            logger.warning("Workflow %s not loaded, skipping materials for %s", item.workflow_id, item.name)
            continue
        for material in workflow.materials:
            if material.inventory_item_id not in stock or not material.quantity:
                continue
            current = updates.get(material.inventory_item_id, stock[material.inventory_item_id])
            deduct = material.quantity * (item.quantity or 1)
            updates[material.inventory_item_id] = max(0, current - deduct)

    return updates
