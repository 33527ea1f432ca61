# Overview: Read-only workflow reporting; timelines, stuck orders, and transition metrics built from status history.

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from sqlalchemy import func

from ..domain import OrderStatus, ReservationStatus, parse_enum
from ..errors import NotFoundError
from ..models import InventoryReservation, LocationAssignment, Order, OrderStatusHistory
from ..time_utils import hours_ago, hours_between, minutes_between, parse_iso_datetime, to_utc_z, utcnow
from . import reservation_service
from .workflow_service import STATUS_DESCRIPTIONS, TERMINAL_STATUSES, can_transition

S = OrderStatus

ACTIVE_STATUSES = [s.value for s in OrderStatus if s not in TERMINAL_STATUSES]


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    start_dt = parse_iso_datetime(start) if start else None
    end_dt = parse_iso_datetime(end) if end else None
    return start_dt, end_dt


def _history_by_order(session, *, start: datetime | None = None, end: datetime | None = None) -> dict[int, list[OrderStatusHistory]]:
    query = session.query(OrderStatusHistory)
    if start:
        query = query.filter(OrderStatusHistory.created_at >= start)
    if end:
        query = query.filter(OrderStatusHistory.created_at <= end)
    grouped: dict[int, list[OrderStatusHistory]] = defaultdict(list)
    for entry in query.order_by(
        OrderStatusHistory.order_id.asc(),
        OrderStatusHistory.created_at.asc(),
        OrderStatusHistory.id.asc(),
    ):
        grouped[entry.order_id].append(entry)
    return grouped


def _dwell_intervals(entries: list[OrderStatusHistory]):
    """Yield (status, hours) for every status the order has already left."""
    for current, following in zip(entries, entries[1:]):
        yield current.to_status, hours_between(current.created_at, following.created_at)


def get_order_timeline(session, order_id: int) -> dict:
    """History entries with the minutes spent in each status."""
    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")

    entries = (
        session.query(OrderStatusHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
        .all()
    )

    timeline = []
    for index, entry in enumerate(entries):
        following = entries[index + 1] if index + 1 < len(entries) else None
        timeline.append({
            **entry.to_dict(),
            "description": STATUS_DESCRIPTIONS[S(entry.to_status)],
            "duration_minutes": minutes_between(entry.created_at, following.created_at) if following else None,
        })

    total = minutes_between(entries[0].created_at, entries[-1].created_at) if entries else 0
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "current_status": order.status,
        "timeline": timeline,
        "total_minutes": total,
    }


def get_stuck_orders(
    session,
    *,
    status=None,
    threshold_hours: float = 24,
    location_id: int | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Orders whose status has not changed for longer than threshold_hours."""
    current = now or utcnow()
    cutoff = hours_ago(threshold_hours, now=current)

    query = session.query(Order).filter(Order.status_changed_at <= cutoff)
    if status is not None:
        query = query.filter(Order.status == parse_enum(OrderStatus, status, "status").value)
    else:
        query = query.filter(Order.status.in_(ACTIVE_STATUSES))
    if location_id is not None:
        query = query.join(LocationAssignment, LocationAssignment.id == Order.assignment_id).filter(
            LocationAssignment.location_id == location_id
        )

    rows = []
    for order in query.order_by(Order.status_changed_at.asc(), Order.id.asc()):
        rows.append({
            **order.to_dict(include_items=False),
            "hours_in_status": round(hours_between(order.status_changed_at, current), 2),
        })
    return rows


def get_orders_requiring_attention(
    session,
    *,
    pending_medium_hours: float = 4,
    pending_high_hours: float = 24,
    stalled_hours: float = 24,
    now: datetime | None = None,
) -> list[dict]:
    """
    FAILED orders are high priority. PENDING orders escalate with age.
    CONFIRMED / RESERVED orders stalled past stalled_hours are low priority.
    """
    current = now or utcnow()
    results = []

    for order in session.query(Order).filter(Order.status == S.FAILED.value):
        results.append((order, "high", "Delivery failed"))

    pending = session.query(Order).filter(
        Order.status == S.PENDING.value,
        Order.created_at <= hours_ago(pending_medium_hours, now=current),
    )
    for order in pending:
        age = hours_between(order.created_at, current)
        level = "high" if age > pending_high_hours else "medium"
        results.append((order, level, f"Pending for {age:.1f} hours"))

    stalled = session.query(Order).filter(
        Order.status.in_([S.CONFIRMED.value, S.RESERVED.value]),
        Order.status_changed_at <= hours_ago(stalled_hours, now=current),
    )
    for order in stalled:
        age = hours_between(order.status_changed_at, current)
        results.append((order, "low", f"{order.status} for {age:.1f} hours"))

    rank = {"high": 0, "medium": 1, "low": 2}
    results.sort(key=lambda r: (rank[r[1]], r[0].status_changed_at, r[0].id))
    return [
        {"order": order.to_dict(include_items=False), "priority": level, "reason": reason}
        for order, level, reason in results
    ]


def get_orders_ready_for_transition(session, from_status, to_status, *, limit: int = 50) -> list[Order]:
    """
    Orders in from_status whose move to to_status should succeed now.

    -> RESERVED needs an assignment with enough available stock;
    -> DELIVERED needs active holds.
    """
    from_s = parse_enum(OrderStatus, from_status, "from_status")
    to_s = parse_enum(OrderStatus, to_status, "to_status")
    if not can_transition(from_s, to_s):
        return []

    candidates = (
        session.query(Order)
        .filter(Order.status == from_s.value)
        .order_by(Order.priority.desc(), Order.created_at.asc(), Order.id.asc())
        .limit(limit)
        .all()
    )

    ready = []
    for order in candidates:
        if to_s == S.RESERVED:
            if order.assignment_id is None or not order.items:
                continue
            report = reservation_service.check_assignment_availability(
                session, order.assignment_id, reservation_service.items_from_order(order)
            )
            if not report["available"]:
                continue
        elif to_s == S.DELIVERED:
            has_holds = (
                session.query(InventoryReservation.id)
                .filter_by(order_id=order.id, status=ReservationStatus.ACTIVE.value)
                .first()
            )
            if not has_holds:
                continue
        ready.append(order)
    return ready


def get_workflow_metrics(session, *, start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    orders = session.query(Order)
    if start_dt:
        orders = orders.filter(Order.created_at >= start_dt)
    if end_dt:
        orders = orders.filter(Order.created_at <= end_dt)

    total = orders.count()

    by_status = {s.value: 0 for s in OrderStatus}
    for status, count in orders.with_entities(Order.status, func.count(Order.id)).group_by(Order.status):
        by_status[status] = int(count)

    day = func.date(Order.created_at)
    daily = [
        {"date": str(row.day), "count": int(row.count)}
        for row in orders.with_entities(day.label("day"), func.count(Order.id).label("count"))
        .group_by(day)
        .order_by(day)
    ]

    history = _history_by_order(session, start=start_dt, end=end_dt)
    transition_counts: dict[str, int] = defaultdict(int)
    reasons: dict[str, int] = defaultdict(int)
    delivered = failed = 0
    fulfilled_at: dict[int, datetime] = {}
    for order_id, entries in history.items():
        for entry in entries:
            origin = entry.from_status or "NONE"
            transition_counts[f"{origin}->{entry.to_status}"] += 1
            if entry.reason:
                reasons[entry.reason] += 1
            if entry.from_status == S.IN_TRANSIT.value and entry.to_status == S.DELIVERED.value:
                delivered += 1
            elif entry.from_status == S.IN_TRANSIT.value and entry.to_status == S.FAILED.value:
                failed += 1
            if entry.to_status == S.FULFILLED.value:
                fulfilled_at[order_id] = entry.created_at

    processing_hours = []
    if fulfilled_at:
        created = dict(
            session.query(Order.id, Order.created_at).filter(Order.id.in_(list(fulfilled_at)))
        )
        processing_hours = [
            hours_between(created[order_id], done)
            for order_id, done in fulfilled_at.items()
            if order_id in created
        ]

    top_reasons = sorted(reasons.items(), key=lambda kv: (-kv[1], kv[0]))[:10]
    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "total_orders": total,
        "orders_by_status": by_status,
        "status_transition_counts": dict(transition_counts),
        "daily_order_creation": daily,
        "delivery_success_rate": round(delivered / (delivered + failed) * 100, 2) if (delivered + failed) else 0.0,
        "cancellation_rate": round(by_status[S.CANCELLED.value] / total * 100, 2) if total else 0.0,
        "top_reasons": [{"reason": reason, "count": count} for reason, count in top_reasons],
        "average_processing_time_hours": (
            round(sum(processing_hours) / len(processing_hours), 2) if processing_hours else 0.0
        ),
    }


def get_status_transition_metrics(
    session,
    *,
    bottleneck_threshold_hours: float = 3,
    start: str | None = None,
    end: str | None = None,
) -> dict:
    """
    Transition counts plus average dwell time per status.

    Dwell is measured between consecutive history entries, so only statuses
    an order has already left are counted. Statuses averaging more than
    bottleneck_threshold_hours are reported as bottlenecks, slowest first.
    """
    start_dt, end_dt = _parse_range(start, end)
    history = _history_by_order(session, start=start_dt, end=end_dt)

    transition_counts: dict[str, int] = defaultdict(int)
    dwell: dict[str, list[float]] = defaultdict(list)
    for entries in history.values():
        for entry in entries:
            if entry.from_status:
                transition_counts[f"{entry.from_status}->{entry.to_status}"] += 1
        for status, hours in _dwell_intervals(entries):
            dwell[status].append(hours)

    averages = {
        status: round(sum(values) / len(values), 2)
        for status, values in dwell.items()
        if values
    }
    bottlenecks = sorted(
        (
            {"status": status, "average_hours": avg, "samples": len(dwell[status])}
            for status, avg in averages.items()
            if avg > bottleneck_threshold_hours
        ),
        key=lambda b: -b["average_hours"],
    )
    return {
        "transition_counts": dict(transition_counts),
        "average_time_in_status_hours": averages,
        "bottlenecks": bottlenecks,
    }
