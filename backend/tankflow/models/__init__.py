# Overview: Model package exports for the tankflow ORM layer.

from .locations import Location, LocationAssignment, InventorySnapshot, CurrentInventoryPointer
from .inventory import (
    TankType,
    InventoryItem,
    LedgerTankLine,
    LedgerItemLine,
    TankTransaction,
    ItemTransaction,
)
from .orders import (
    Order,
    OrderItem,
    OrderStatusHistory,
    InventoryReservation,
    OrderTransactionLink,
    OrderNumberSequence,
)

__all__ = [
    "Location",
    "LocationAssignment",
    "InventorySnapshot",
    "CurrentInventoryPointer",
    "TankType",
    "InventoryItem",
    "LedgerTankLine",
    "LedgerItemLine",
    "TankTransaction",
    "ItemTransaction",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "InventoryReservation",
    "OrderTransactionLink",
    "OrderNumberSequence",
]
