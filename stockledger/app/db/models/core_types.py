import enum


class TransactionType(str, enum.Enum):
    receipt = "receipt"
    issue = "issue"
    adjustment = "adjustment"
    return_ = "return"
    write_off = "write_off"


class StockStatus(str, enum.Enum):
    in_stock = "in_stock"
    low_stock = "low_stock"
    out_of_stock = "out_of_stock"
    on_order = "on_order"


class AlertType(str, enum.Enum):
    low_stock = "low_stock"
    out_of_stock = "out_of_stock"


class AlertSeverity(str, enum.Enum):
    warning = "warning"
    critical = "critical"


class POStatus(str, enum.Enum):
    draft = "draft"
    pending_approval = "pending_approval"
    approved = "approved"
    sent = "sent"
    partially_received = "partially_received"
    received = "received"
    cancelled = "cancelled"
    closed = "closed"


class ItemHistoryAction(str, enum.Enum):
    created = "created"
    updated = "updated"
    price_changed = "price_changed"
    reorder_level_changed = "reorder_level_changed"
    deleted = "deleted"


class AllocationStatus(str, enum.Enum):
    allocated = "allocated"
    issued = "issued"
    returned = "returned"
    cancelled = "cancelled"
