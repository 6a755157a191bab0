"""
Status Transition Tables

This module is the SINGLE SOURCE OF TRUTH for every status change made by
the receiving and return workflows. Services never assign ``.status``
directly; they call ``transition_entity`` which consults the table for the
entity kind.

Job sheet transitions are intentionally not modelled here.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Tuple

from app.core.exceptions import InvalidStateError
from app.models.purchase import PurchaseOrderStatus, GoodsReceiptStatus
from app.models.product_return import ReturnStatus
from app.models.sales import SaleStatus


class EntityKind(str, Enum):
    PURCHASE_ORDER = "PURCHASE_ORDER"
    GOODS_RECEIPT = "GOODS_RECEIPT"
    PRODUCT_RETURN = "PRODUCT_RETURN"
    SALE = "SALE"


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> allowed next statuses.
# Self-loops are listed explicitly where re-entering a status is legitimate
# (another partial receipt, another inspection pass, another partial refund).

PO_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PurchaseOrderStatus.DRAFT: frozenset({
        PurchaseOrderStatus.SUBMITTED,
        PurchaseOrderStatus.CANCELLED,
    }),
    PurchaseOrderStatus.SUBMITTED: frozenset({
        PurchaseOrderStatus.CONFIRMED,
        PurchaseOrderStatus.PARTIALLY_RECEIVED,
        PurchaseOrderStatus.RECEIVED,
        PurchaseOrderStatus.CANCELLED,
    }),
    PurchaseOrderStatus.CONFIRMED: frozenset({
        PurchaseOrderStatus.PARTIALLY_RECEIVED,
        PurchaseOrderStatus.RECEIVED,
        PurchaseOrderStatus.CANCELLED,
    }),
    PurchaseOrderStatus.PARTIALLY_RECEIVED: frozenset({
        PurchaseOrderStatus.PARTIALLY_RECEIVED,
        PurchaseOrderStatus.RECEIVED,
    }),
    PurchaseOrderStatus.RECEIVED: frozenset({
        PurchaseOrderStatus.COMPLETED,
    }),
    PurchaseOrderStatus.COMPLETED: frozenset(),   # Terminal
    PurchaseOrderStatus.CANCELLED: frozenset(),   # Terminal
}

GRN_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    GoodsReceiptStatus.PENDING_QC: frozenset({
        GoodsReceiptStatus.PENDING_QC,   # Partial quality check
        GoodsReceiptStatus.INSPECTING,   # Every item decided
        GoodsReceiptStatus.COMPLETED,    # Approved without a separate QC pass
    }),
    GoodsReceiptStatus.INSPECTING: frozenset({
        GoodsReceiptStatus.COMPLETED,
    }),
    GoodsReceiptStatus.COMPLETED: frozenset(),   # Terminal
}

RETURN_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ReturnStatus.RECEIVED: frozenset({
        ReturnStatus.INSPECTING,
        ReturnStatus.PENDING_APPROVAL,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    }),
    ReturnStatus.INSPECTING: frozenset({
        ReturnStatus.INSPECTING,
        ReturnStatus.PENDING_APPROVAL,
        ReturnStatus.APPROVED,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    }),
    ReturnStatus.PENDING_APPROVAL: frozenset({
        ReturnStatus.APPROVED,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    }),
    ReturnStatus.APPROVED: frozenset({
        ReturnStatus.COMPLETED,
        ReturnStatus.REJECTED,
        ReturnStatus.CANCELLED,
    }),
    # A rejected return can still be withdrawn; nothing else moves it
    ReturnStatus.REJECTED: frozenset({
        ReturnStatus.CANCELLED,
    }),
    ReturnStatus.COMPLETED: frozenset(),   # Terminal
    ReturnStatus.CANCELLED: frozenset(),   # Terminal
}

SALE_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    SaleStatus.DRAFT: frozenset({
        SaleStatus.COMPLETED,
        SaleStatus.CANCELLED,
    }),
    SaleStatus.COMPLETED: frozenset({
        SaleStatus.PARTIAL_REFUND,
        SaleStatus.REFUNDED,
        SaleStatus.CANCELLED,
    }),
    SaleStatus.PARTIAL_REFUND: frozenset({
        SaleStatus.PARTIAL_REFUND,
        SaleStatus.REFUNDED,
    }),
    SaleStatus.REFUNDED: frozenset(),    # Terminal
    SaleStatus.CANCELLED: frozenset(),   # Terminal
}

TRANSITIONS: Dict[EntityKind, Dict[str, FrozenSet[str]]] = {
    EntityKind.PURCHASE_ORDER: PO_TRANSITIONS,
    EntityKind.GOODS_RECEIPT: GRN_TRANSITIONS,
    EntityKind.PRODUCT_RETURN: RETURN_TRANSITIONS,
    EntityKind.SALE: SALE_TRANSITIONS,
}

ENTITY_LABELS: Dict[EntityKind, str] = {
    EntityKind.PURCHASE_ORDER: "Purchase order",
    EntityKind.GOODS_RECEIPT: "Goods receipt",
    EntityKind.PRODUCT_RETURN: "Return",
    EntityKind.SALE: "Sale",
}

# Statuses a goods receipt may be created from
RECEIVABLE_PO_STATUSES: FrozenSet[str] = frozenset({
    PurchaseOrderStatus.SUBMITTED,
    PurchaseOrderStatus.CONFIRMED,
    PurchaseOrderStatus.PARTIALLY_RECEIVED,
})

# Statuses a return may be inspected from / approved from
INSPECTABLE_RETURN_STATUSES: FrozenSet[str] = frozenset({
    ReturnStatus.RECEIVED,
    ReturnStatus.INSPECTING,
})
APPROVABLE_RETURN_STATUSES: FrozenSet[str] = frozenset({
    ReturnStatus.PENDING_APPROVAL,
    ReturnStatus.INSPECTING,
})


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _status_str(status) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def _table(entity_kind: EntityKind) -> Dict[str, FrozenSet[str]]:
    try:
        return TRANSITIONS[EntityKind(entity_kind)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown entity kind '{entity_kind}'")


def can_transition(entity_kind: EntityKind, current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return _status_str(new_status) in _table(entity_kind).get(_status_str(current_status), frozenset())


def get_allowed_transitions(entity_kind: EntityKind, current_status: str) -> List[str]:
    """Statuses reachable from current status, sorted for stable messages."""
    return sorted(_status_str(s) for s in _table(entity_kind).get(_status_str(current_status), frozenset()))


def is_terminal(entity_kind: EntityKind, status: str) -> bool:
    """Is this a terminal (final) state?"""
    return not _table(entity_kind).get(_status_str(status), frozenset())


def validate_transition(entity_kind: EntityKind, current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises InvalidStateError if invalid.

    Unlike a plain equality check, staying in the same status is only
    allowed where the table lists a self-loop.
    """
    if can_transition(entity_kind, current_status, new_status):
        return

    label = ENTITY_LABELS[EntityKind(entity_kind)]
    current = _status_str(current_status)
    requested = _status_str(new_status)
    allowed = get_allowed_transitions(entity_kind, current_status)
    if not allowed:
        raise InvalidStateError(
            f"{label} in '{current}' status cannot be modified. This is a terminal state."
        )
    raise InvalidStateError(
        f"Cannot change {label.lower()} from '{current}' to '{requested}'. "
        f"Allowed transitions: {', '.join(allowed)}"
    )


# =============================================================================
# STATUS CHECK HELPERS (for common operations)
# =============================================================================

def can_receive_goods(po_status: str) -> bool:
    """Can a goods receipt be created against this PO?"""
    return po_status in RECEIVABLE_PO_STATUSES


def can_inspect_return(return_status: str) -> bool:
    return return_status in INSPECTABLE_RETURN_STATUSES


def can_approve_return(return_status: str) -> bool:
    return return_status in APPROVABLE_RETURN_STATUSES


def can_delete_goods_receipt(grn_status: str) -> bool:
    return grn_status != GoodsReceiptStatus.COMPLETED


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_entity(entity, entity_kind: EntityKind, new_status: str) -> Tuple[str, str]:
    """
    Move an entity to a new status.

    Validates against the table, assigns the status and stamps
    ``updated_at`` when the model has one. The caller sets the
    workflow-specific audit fields (approved_by, completed_at, ...).

    Returns:
        (previous_status, new_status)

    Raises:
        InvalidStateError: If transition is not allowed
    """
    current_status = entity.status
    validate_transition(entity_kind, current_status, new_status)

    entity.status = _status_str(new_status)
    if hasattr(entity, "updated_at"):
        entity.updated_at = datetime.now(timezone.utc)

    return current_status, entity.status


def describe_transitions(entity_kind: EntityKind) -> Dict[str, List[str]]:
    """Whole table as plain strings (served by the API for front-ends)."""
    return {
        _status_str(status): get_allowed_transitions(entity_kind, status)
        for status in _table(entity_kind)
    }
