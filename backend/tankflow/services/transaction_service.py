# Overview: Service-layer entry points for posting stock movements through the strategy registry.

from __future__ import annotations

import logging

from ..domain import ItemType, TankBucket, TransactionType, parse_enum
from ..errors import TankflowError
from .concurrency import DEFAULT_LINE_LOCK_TIMEOUT_SECONDS, run_unit_of_work
from .transaction_strategies import TransactionRequest, TransactionResult, get_strategy

logger = logging.getLogger(__name__)


def _normalize(request: TransactionRequest) -> TransactionRequest:
    request.transaction_type = parse_enum(TransactionType, request.transaction_type, "transaction_type")
    request.item_type = parse_enum(ItemType, request.item_type, "item_type")
    if request.tank_bucket is not None:
        request.tank_bucket = parse_enum(TankBucket, request.tank_bucket, "tank_bucket")
    return request


def process_transaction(
    session,
    request: TransactionRequest,
    *,
    commit: bool = True,
    lock_timeout: float = DEFAULT_LINE_LOCK_TIMEOUT_SECONDS,
) -> TransactionResult:
    """
    Validate then execute one stock movement as a single unit of work.

    Validation errors surface before any ledger write. With commit=False the
    postings join the caller's transaction.
    """
    request = _normalize(request)
    strategy = get_strategy(request.transaction_type, request.item_type, lock_timeout=lock_timeout)

    def _op() -> TransactionResult:
        strategy.validate(session, request)
        return strategy.execute(session, request)

    return run_unit_of_work(session, _op, commit=commit)


def preview_transaction(session, request: TransactionRequest) -> dict:
    """Validate and compute the postings without writing anything."""
    request = _normalize(request)
    strategy = get_strategy(request.transaction_type, request.item_type)
    strategy.validate(session, request)
    return strategy.calculate_delta(request).to_dict()


def process_batch(session, requests: list[TransactionRequest]) -> dict:
    """
    Apply each request in its own unit of work.

    Failures are isolated per request and reported by index.
    """
    successful = []
    failed = []
    for index, request in enumerate(requests):
        try:
            result = process_transaction(session, request, commit=True)
            successful.append(result.to_dict())
        except TankflowError as e:
            failed.append({"index": index, "error": str(e), "kind": e.kind})
            logger.warning("batch transaction %s failed: %s", index, e)
    return {"successful": successful, "failed": failed}
