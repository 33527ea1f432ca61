# Overview: Per-(transaction type, item type) rules that turn a stock movement into ledger postings.

"""
Transaction strategies.

Each strategy answers three questions for one (TransactionType, ItemType):
- validate: is the request well formed and is there enough stock?
- calculate_delta: which signed postings does it make, in which order?
- execute: apply the postings under lock, log each one, report the result.

POSTING ORDER:
SALE and PURCHASE touch two tank buckets. They are written as two postings,
outgoing bucket first, each with its own TankTransaction row.

TRANSFER:
The source debit and the target credit are written in the same database
transaction. The target leg lands on the target assignment's current
snapshot, creating the line if needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..domain import ItemType, TankBucket, TransactionType, parse_enum
from ..errors import BadRequestError, ConflictError, NotFoundError
from . import ledger_service
from .concurrency import DEFAULT_LINE_LOCK_TIMEOUT_SECONDS, acquire_line_locks, line_key

logger = logging.getLogger(__name__)


@dataclass
class TransactionRequest:
    transaction_type: TransactionType
    item_type: ItemType
    item_id: int
    quantity: int
    actor_id: int
    snapshot_id: int | None = None
    assignment_id: int | None = None
    tank_bucket: TankBucket | None = None
    target_assignment_id: int | None = None
    order_id: int | None = None
    reference_id: int | None = None
    note: str | None = None

    @classmethod
    def from_dict(cls, data: dict, *, actor_id: int) -> "TransactionRequest":
        try:
            transaction_type = parse_enum(TransactionType, data["transaction_type"], "transaction_type")
            item_type = parse_enum(ItemType, data["item_type"], "item_type")
            item_id = data["item_id"]
            quantity = data["quantity"]
        except KeyError as e:
            raise BadRequestError(f"Missing required field: {e}")

        bucket = data.get("tank_bucket")
        return cls(
            transaction_type=transaction_type,
            item_type=item_type,
            item_id=item_id,
            quantity=quantity,
            actor_id=actor_id,
            snapshot_id=data.get("snapshot_id"),
            assignment_id=data.get("assignment_id"),
            tank_bucket=parse_enum(TankBucket, bucket, "tank_bucket") if bucket else None,
            target_assignment_id=data.get("target_assignment_id"),
            order_id=data.get("order_id"),
            reference_id=data.get("reference_id"),
            note=data.get("note"),
        )


@dataclass(frozen=True)
class Posting:
    """One signed change to one bucket. bucket is None for item lines."""
    bucket: TankBucket | None
    change: int


@dataclass(frozen=True)
class LedgerDelta:
    postings: tuple[Posting, ...]
    target_postings: tuple[Posting, ...] = ()

    def _sum(self, bucket) -> int:
        return sum(p.change for p in self.postings if p.bucket == bucket)

    @property
    def full_change(self) -> int:
        return self._sum(TankBucket.FULL)

    @property
    def empty_change(self) -> int:
        return self._sum(TankBucket.EMPTY)

    @property
    def quantity_change(self) -> int:
        return self._sum(None)

    def to_dict(self) -> dict:
        return {
            "postings": [
                {"bucket": p.bucket.value if p.bucket else None, "change": p.change}
                for p in self.postings
            ],
            "target_postings": [
                {"bucket": p.bucket.value if p.bucket else None, "change": p.change}
                for p in self.target_postings
            ],
        }


@dataclass
class TransactionResult:
    transaction_type: TransactionType
    item_type: ItemType
    item_id: int
    snapshot_id: int
    delta: LedgerDelta
    transaction_ids: list[int] = field(default_factory=list)
    current_full: int | None = None
    current_empty: int | None = None
    current_quantity: int | None = None
    target_snapshot_id: int | None = None
    target_transaction_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction_type": self.transaction_type.value,
            "item_type": self.item_type.value,
            "item_id": self.item_id,
            "snapshot_id": self.snapshot_id,
            "delta": self.delta.to_dict(),
            "transaction_ids": list(self.transaction_ids),
            "current_full": self.current_full,
            "current_empty": self.current_empty,
            "current_quantity": self.current_quantity,
            "target_snapshot_id": self.target_snapshot_id,
            "target_transaction_ids": list(self.target_transaction_ids),
        }


class TransactionStrategy:
    transaction_type: TransactionType
    item_type: ItemType

    allow_zero_quantity = False
    requires_bucket = False
    requires_target = False
    # RETURN/ASSIGNMENT may open a line that does not exist yet
    creates_line = False

    def __init__(self, *, lock_timeout: float = DEFAULT_LINE_LOCK_TIMEOUT_SECONDS):
        self.lock_timeout = lock_timeout

    # -- validate -----------------------------------------------------------

    def validate(self, session, request: TransactionRequest) -> None:
        """Raise before any write if the request cannot be applied."""
        if request.transaction_type != self.transaction_type or request.item_type != self.item_type:
            raise BadRequestError(
                f"{type(self).__name__} cannot handle {request.transaction_type.value}/{request.item_type.value}"
            )

        qty = request.quantity
        if not isinstance(qty, int) or isinstance(qty, bool):
            raise BadRequestError("quantity must be an integer")
        if self.allow_zero_quantity:
            if qty < 0:
                raise BadRequestError(f"quantity must be zero or positive (got {qty})")
        elif qty <= 0:
            raise BadRequestError(f"quantity must be positive (got {qty})")

        if not request.item_id:
            raise BadRequestError("item_id is required")
        if not request.actor_id:
            raise BadRequestError("actor_id is required")
        if self.requires_bucket and request.tank_bucket is None:
            raise BadRequestError(
                f"tank_bucket ('full' or 'empty') is required for {self.transaction_type.value}"
            )
        if self.requires_target and not request.target_assignment_id:
            raise BadRequestError("target_assignment_id is required for TRANSFER")
        if request.snapshot_id is None and request.assignment_id is None:
            raise BadRequestError("snapshot_id or assignment_id is required")

        snapshot_id = self.resolve_snapshot_id(session, request)
        if self.requires_target:
            source_assignment_id = ledger_service.get_snapshot_assignment_id(session, snapshot_id)
            if request.target_assignment_id == source_assignment_id:
                raise BadRequestError("Target assignment must differ from source assignment")
            ledger_service.get_current_snapshot_id(session, request.target_assignment_id)

        line = ledger_service.get_line(session, snapshot_id, self.item_type, request.item_id)
        if line is None and not self.creates_line:
            raise NotFoundError(
                f"No {self.item_type.value} line for id {request.item_id} in snapshot {snapshot_id}"
            )
        if line is not None:
            self.check_stock(line, request)

    def check_stock(self, line, request: TransactionRequest) -> None:
        """Stock precondition. Default: none (credits only)."""

    # -- delta ----------------------------------------------------------------

    def calculate_delta(self, request: TransactionRequest) -> LedgerDelta:
        raise NotImplementedError

    # -- execute --------------------------------------------------------------

    def resolve_snapshot_id(self, session, request: TransactionRequest) -> int:
        if request.snapshot_id is not None:
            return request.snapshot_id
        return ledger_service.get_current_snapshot_id(session, request.assignment_id)

    def execute(self, session, request: TransactionRequest) -> TransactionResult:
        """
        Apply the postings. Caller owns the transaction boundary.

        Takes the line lock(s), re-reads the line FOR UPDATE, re-checks stock,
        then writes one log row per posting.
        """
        snapshot_id = self.resolve_snapshot_id(session, request)
        source_assignment_id = ledger_service.get_snapshot_assignment_id(session, snapshot_id)

        target_snapshot_id = None
        keys = [line_key(source_assignment_id, self.item_type.value, request.item_id)]
        if self.requires_target:
            target_snapshot_id = ledger_service.get_current_snapshot_id(session, request.target_assignment_id)
            keys.append(line_key(request.target_assignment_id, self.item_type.value, request.item_id))
        acquire_line_locks(session, keys, timeout=self.lock_timeout)

        line = self._lock_line(session, snapshot_id, request.item_id)
        self.check_stock(line, request)

        delta = self.calculate_delta(request)
        result = TransactionResult(
            transaction_type=self.transaction_type,
            item_type=self.item_type,
            item_id=request.item_id,
            snapshot_id=snapshot_id,
            delta=delta,
        )

        for posting in delta.postings:
            tx = self._post(session, line, posting, request)
            result.transaction_ids.append(tx.id)
        self.after_postings(line, request)

        if delta.target_postings:
            target_line = self._open_line(session, target_snapshot_id, request.item_id)
            for posting in delta.target_postings:
                tx = self._post(session, target_line, posting, request)
                result.target_transaction_ids.append(tx.id)
            result.target_snapshot_id = target_snapshot_id

        self._fill_quantities(result, line)
        logger.info(
            "%s %s %s x%s on snapshot %s (actor %s)",
            self.transaction_type.value,
            self.item_type.value,
            request.item_id,
            request.quantity,
            snapshot_id,
            request.actor_id,
        )
        return result

    def after_postings(self, line, request: TransactionRequest) -> None:
        """Hook for line bookkeeping beyond the logged postings."""

    def _lock_line(self, session, snapshot_id: int, item_id: int):
        if self.creates_line:
            return self._open_line(session, snapshot_id, item_id)
        line = ledger_service.get_line(session, snapshot_id, self.item_type, item_id, for_update=True)
        if line is None:
            raise NotFoundError(
                f"No {self.item_type.value} line for id {item_id} in snapshot {snapshot_id}"
            )
        return line

    def _open_line(self, session, snapshot_id: int, item_id: int):
        raise NotImplementedError

    def _post(self, session, line, posting: Posting, request: TransactionRequest):
        raise NotImplementedError

    def _fill_quantities(self, result: TransactionResult, line) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Tanks
# ---------------------------------------------------------------------------

class TankStrategy(TransactionStrategy):
    item_type = ItemType.TANK

    def _open_line(self, session, snapshot_id: int, item_id: int):
        return ledger_service.ensure_tank_line(session, snapshot_id, item_id)

    def _post(self, session, line, posting: Posting, request: TransactionRequest):
        full_change = posting.change if posting.bucket == TankBucket.FULL else 0
        empty_change = posting.change if posting.bucket == TankBucket.EMPTY else 0
        return ledger_service.post_tank_delta(
            session,
            line,
            transaction_type=self.transaction_type,
            actor_id=request.actor_id,
            full_change=full_change,
            empty_change=empty_change,
            order_id=request.order_id,
            reference_id=request.reference_id,
            note=request.note,
        )

    def _fill_quantities(self, result: TransactionResult, line) -> None:
        result.current_full = line.current_full
        result.current_empty = line.current_empty

    @staticmethod
    def _bucket_stock(line, bucket: TankBucket) -> int:
        return line.current_full if bucket == TankBucket.FULL else line.current_empty


class TankSaleStrategy(TankStrategy):
    """Customer swaps an empty for a full: full -qty, empty +qty."""
    transaction_type = TransactionType.SALE

    def check_stock(self, line, request):
        if line.current_full < request.quantity:
            raise ConflictError(
                f"Insufficient full tanks for tank type {request.item_id} "
                f"(need {request.quantity}, available {line.current_full})"
            )

    def calculate_delta(self, request):
        return LedgerDelta(postings=(
            Posting(TankBucket.FULL, -request.quantity),
            Posting(TankBucket.EMPTY, request.quantity),
        ))


class TankPurchaseStrategy(TankStrategy):
    """Empties go back to the supplier in exchange for fulls: empty -qty, full +qty."""
    transaction_type = TransactionType.PURCHASE

    def check_stock(self, line, request):
        if line.current_empty < request.quantity:
            raise ConflictError(
                f"Insufficient empty tanks to exchange for tank type {request.item_id} "
                f"(need {request.quantity}, available {line.current_empty})"
            )

    def calculate_delta(self, request):
        return LedgerDelta(postings=(
            Posting(TankBucket.EMPTY, -request.quantity),
            Posting(TankBucket.FULL, request.quantity),
        ))


class TankReturnStrategy(TankStrategy):
    transaction_type = TransactionType.RETURN
    requires_bucket = True
    creates_line = True

    def calculate_delta(self, request):
        return LedgerDelta(postings=(Posting(request.tank_bucket, request.quantity),))


class TankTransferStrategy(TankStrategy):
    transaction_type = TransactionType.TRANSFER
    requires_bucket = True
    requires_target = True

    def check_stock(self, line, request):
        available = self._bucket_stock(line, request.tank_bucket)
        if available < request.quantity:
            raise ConflictError(
                f"Insufficient {request.tank_bucket.value} tanks to transfer for tank type "
                f"{request.item_id} (need {request.quantity}, available {available})"
            )

    def calculate_delta(self, request):
        return LedgerDelta(
            postings=(Posting(request.tank_bucket, -request.quantity),),
            target_postings=(Posting(request.tank_bucket, request.quantity),),
        )


class TankAssignmentStrategy(TankStrategy):
    """Initial or corrective stocking of one bucket. No exchange."""
    transaction_type = TransactionType.ASSIGNMENT
    requires_bucket = True
    allow_zero_quantity = True
    creates_line = True

    def calculate_delta(self, request):
        if request.quantity == 0:
            return LedgerDelta(postings=())
        return LedgerDelta(postings=(Posting(request.tank_bucket, request.quantity),))

    def after_postings(self, line, request):
        if request.tank_bucket == TankBucket.FULL:
            line.assigned_full = (line.assigned_full or 0) + request.quantity
        else:
            line.assigned_empty = (line.assigned_empty or 0) + request.quantity


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

class ItemStrategy(TransactionStrategy):
    item_type = ItemType.ITEM

    def _open_line(self, session, snapshot_id: int, item_id: int):
        return ledger_service.ensure_item_line(session, snapshot_id, item_id)

    def _post(self, session, line, posting: Posting, request: TransactionRequest):
        return ledger_service.post_item_delta(
            session,
            line,
            transaction_type=self.transaction_type,
            actor_id=request.actor_id,
            quantity_change=posting.change,
            order_id=request.order_id,
            reference_id=request.reference_id,
            note=request.note,
        )

    def _fill_quantities(self, result: TransactionResult, line) -> None:
        result.current_quantity = line.current_quantity

    def _require_stock(self, line, request, verb: str) -> None:
        if line.current_quantity < request.quantity:
            raise ConflictError(
                f"Insufficient stock to {verb} item {request.item_id} "
                f"(need {request.quantity}, available {line.current_quantity})"
            )


class ItemSaleStrategy(ItemStrategy):
    transaction_type = TransactionType.SALE

    def check_stock(self, line, request):
        self._require_stock(line, request, "sell")

    def calculate_delta(self, request):
        return LedgerDelta(postings=(Posting(None, -request.quantity),))


class ItemPurchaseStrategy(ItemStrategy):
    transaction_type = TransactionType.PURCHASE
    creates_line = True

    def calculate_delta(self, request):
        return LedgerDelta(postings=(Posting(None, request.quantity),))


class ItemReturnStrategy(ItemStrategy):
    transaction_type = TransactionType.RETURN
    creates_line = True

    def calculate_delta(self, request):
        return LedgerDelta(postings=(Posting(None, request.quantity),))


class ItemTransferStrategy(ItemStrategy):
    transaction_type = TransactionType.TRANSFER
    requires_target = True

    def check_stock(self, line, request):
        self._require_stock(line, request, "transfer")

    def calculate_delta(self, request):
        return LedgerDelta(
            postings=(Posting(None, -request.quantity),),
            target_postings=(Posting(None, request.quantity),),
        )


class ItemAssignmentStrategy(ItemStrategy):
    transaction_type = TransactionType.ASSIGNMENT
    allow_zero_quantity = True
    creates_line = True

    def calculate_delta(self, request):
        if request.quantity == 0:
            return LedgerDelta(postings=())
        return LedgerDelta(postings=(Posting(None, request.quantity),))

    def after_postings(self, line, request):
        line.assigned_quantity = (line.assigned_quantity or 0) + request.quantity


STRATEGIES: dict[tuple[TransactionType, ItemType], type[TransactionStrategy]] = {
    (TransactionType.SALE, ItemType.TANK): TankSaleStrategy,
    (TransactionType.PURCHASE, ItemType.TANK): TankPurchaseStrategy,
    (TransactionType.RETURN, ItemType.TANK): TankReturnStrategy,
    (TransactionType.TRANSFER, ItemType.TANK): TankTransferStrategy,
    (TransactionType.ASSIGNMENT, ItemType.TANK): TankAssignmentStrategy,
    (TransactionType.SALE, ItemType.ITEM): ItemSaleStrategy,
    (TransactionType.PURCHASE, ItemType.ITEM): ItemPurchaseStrategy,
    (TransactionType.RETURN, ItemType.ITEM): ItemReturnStrategy,
    (TransactionType.TRANSFER, ItemType.ITEM): ItemTransferStrategy,
    (TransactionType.ASSIGNMENT, ItemType.ITEM): ItemAssignmentStrategy,
}


def get_strategy(transaction_type, item_type, **kwargs) -> TransactionStrategy:
    transaction_type = parse_enum(TransactionType, transaction_type, "transaction_type")
    item_type = parse_enum(ItemType, item_type, "item_type")
    strategy_cls = STRATEGIES.get((transaction_type, item_type))
    if strategy_cls is None:
        raise BadRequestError(
            f"No strategy for {transaction_type.value}/{item_type.value}"
        )
    return strategy_cls(**kwargs)


def supported_transactions() -> list[dict]:
    return [
        {"transaction_type": tx_type.value, "item_type": item_type.value, "strategy": cls.__name__}
        for (tx_type, item_type), cls in STRATEGIES.items()
    ]
