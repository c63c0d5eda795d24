from __future__ import annotations
"""Order lifecycle: transition tables and the pure transition planner.

plan_transition never touches the session. It returns the new status together with the
tracking event to append so persistence (services.orders) and automation stay thin.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from storefront.models.order import Order
from storefront.utils.fsm import TransitionValidator
from storefront.utils.timeutil import utc_now

# Order lifecycle graph:
# pending -> confirmed -> processing -> shipped -> delivered -> refunded
# pending/confirmed/processing -> cancelled, shipped -> refunded
CORE_TRANSITIONS = {
    Order.STATUS_PENDING: {Order.STATUS_CONFIRMED, Order.STATUS_CANCELLED},
    Order.STATUS_CONFIRMED: {Order.STATUS_PROCESSING, Order.STATUS_CANCELLED},
    Order.STATUS_PROCESSING: {Order.STATUS_SHIPPED, Order.STATUS_CANCELLED},
    Order.STATUS_SHIPPED: {Order.STATUS_DELIVERED, Order.STATUS_REFUNDED},
    Order.STATUS_DELIVERED: {Order.STATUS_REFUNDED},
    Order.STATUS_CANCELLED: set(),
    Order.STATUS_REFUNDED: set(),
}

# Courier hand-off and returns, layered on the core graph.
EXTENDED_TRANSITIONS = {
    Order.STATUS_SHIPPED: {Order.STATUS_OUT_FOR_DELIVERY},
    Order.STATUS_OUT_FOR_DELIVERY: {Order.STATUS_DELIVERED, Order.STATUS_REFUNDED},
    Order.STATUS_DELIVERED: {Order.STATUS_RETURNED},
    Order.STATUS_RETURNED: {Order.STATUS_REFUNDED},
}

# final statuses reject every mutation, including edges still listed above
TERMINAL_STATUSES = frozenset({Order.STATUS_DELIVERED, Order.STATUS_CANCELLED, Order.STATUS_REFUNDED})

ORDER_FSM = TransitionValidator(CORE_TRANSITIONS, terminal=TERMINAL_STATUSES)
EXTENDED_ORDER_FSM = ORDER_FSM.extended(EXTENDED_TRANSITIONS)

STATUS_DESCRIPTIONS = {
    Order.STATUS_PENDING: 'Order received',
    Order.STATUS_CONFIRMED: 'Order confirmed',
    Order.STATUS_PROCESSING: 'Being prepared',
    Order.STATUS_SHIPPED: 'Shipped',
    Order.STATUS_OUT_FOR_DELIVERY: 'Out for delivery',
    Order.STATUS_DELIVERED: 'Delivered',
    Order.STATUS_CANCELLED: 'Cancelled',
    Order.STATUS_REFUNDED: 'Refunded',
    Order.STATUS_RETURNED: 'Returned',
}


def get_order_fsm(extended: bool = True) -> TransitionValidator:
    return EXTENDED_ORDER_FSM if extended else ORDER_FSM


def can_transition(current: Optional[str], target: Optional[str], fsm: TransitionValidator = ORDER_FSM) -> bool:
    return fsm.can_transition(current, target)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


@dataclass(frozen=True)
class TrackingEventData:
    status: str
    timestamp: datetime
    description: str
    location: Optional[Dict[str, Any]] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'timestamp': self.timestamp.isoformat(),
            'description': self.description,
            'location': self.location,
            'carrier': self.carrier,
            'tracking_number': self.tracking_number,
        }


@dataclass(frozen=True)
class TransitionResult:
    previous_status: str
    status: str
    status_changed_at: Optional[datetime]
    event: Optional[TrackingEventData] = field(default=None)

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status


def tracking_event_for(order: Any, status: str, at: datetime) -> TrackingEventData:
    """Snapshot of the order's location/carrier/tracking number at the moment of change."""
    location = _field(order, 'current_location')
    return TrackingEventData(
        status=status,
        timestamp=at,
        description=STATUS_DESCRIPTIONS.get(status, status),
        location=dict(location) if location else None,
        carrier=_field(order, 'carrier'),
        tracking_number=_field(order, 'tracking_number'),
    )


def _field(order: Any, name: str) -> Any:
    if isinstance(order, Mapping):
        return order.get(name)
    return getattr(order, name, None)


def plan_transition(order: Any, target: str, fsm: TransitionValidator = EXTENDED_ORDER_FSM,
                    at: Optional[datetime] = None) -> TransitionResult:
    """Validate ``current -> target`` and describe the outcome without mutating ``order``.

    Raises TerminalStateViolation for orders already in a final status and
    InvalidTransition for any edge missing from the table. A same-status request on a
    live order yields an unchanged result with no tracking event.
    """
    current = _field(order, 'status')
    fsm.assert_can_transition(current, target)
    if current == target:
        return TransitionResult(previous_status=current, status=current, status_changed_at=None)
    at = at or utc_now()
    return TransitionResult(
        previous_status=current,
        status=target,
        status_changed_at=at,
        event=tracking_event_for(order, target, at),
    )


__all__ = [
    'CORE_TRANSITIONS', 'EXTENDED_TRANSITIONS', 'TERMINAL_STATUSES', 'ORDER_FSM', 'EXTENDED_ORDER_FSM',
    'STATUS_DESCRIPTIONS', 'get_order_fsm', 'can_transition', 'is_terminal', 'TrackingEventData',
    'TransitionResult', 'tracking_event_for', 'plan_transition',
]
