# Overview: Shared enumerations for orders, reservations, and ledger transactions.

"""
One definition per concept. Models store the `.value` strings; services
compare against the enum members (str-valued, so both forms compare equal).
"""

from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    RESERVED = "RESERVED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ReservationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FULFILLED = "FULFILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class ItemType(str, Enum):
    TANK = "tank"
    ITEM = "item"


class TransactionType(str, Enum):
    SALE = "SALE"
    PURCHASE = "PURCHASE"
    RETURN = "RETURN"
    TRANSFER = "TRANSFER"
    ASSIGNMENT = "ASSIGNMENT"


class TankBucket(str, Enum):
    FULL = "full"
    EMPTY = "empty"


class PaymentMethod(str, Enum):
    CASH = "cash"
    YAPE = "yape"
    PLIN = "plin"
    TRANSFER = "transfer"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    DEBT = "debt"


class SnapshotStatus(str, Enum):
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    VALIDATED = "VALIDATED"


def parse_enum(enum_cls, value, field: str):
    """Coerce a raw value into `enum_cls`, raising BadRequestError on failure."""
    from .errors import BadRequestError

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise BadRequestError(f"Invalid {field} '{value}'. Allowed: {allowed}")
