from __future__ import annotations
"""Order persistence: checkout, field edits, status changes, notes.

Status writes are compare-and-swap on the status column: the UPDATE only matches while
the row still holds the status this request read. A miss means another request or the
automation sweep moved the order first; the change is re-planned once against the fresh
row and then rejected with ConcurrentModification.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, HTTPException, NotFound

from storefront.authz.conditions import ConditionSet
from storefront.authz.scope import check_write
from storefront.errors import ConcurrentModification, TerminalStateViolation
from storefront.models.authz import User
from storefront.models.order import Order, OrderNote, OrderTrackingEvent
from storefront.services.audit import add_audit
from storefront.services.order_lifecycle import (
    EXTENDED_ORDER_FSM, TERMINAL_STATUSES, TrackingEventData, TransitionResult, plan_transition, tracking_event_for,
)
from storefront.utils.fsm import TransitionValidator
from storefront.utils.timeutil import iso, utc_now

logger = logging.getLogger(__name__)

CAS_ATTEMPTS = 2
EDITABLE_FIELDS = ('branch_id', 'priority', 'assigned_to', 'carrier', 'tracking_number', 'current_location', 'shipping_address')


def order_snapshot(order: Order) -> Dict[str, Any]:
    return {
        'id': order.id,
        'user_id': order.user_id,
        'branch_id': order.branch_id,
        'total_cents': order.total_cents,
        'status': order.status,
        'priority': order.priority,
        'assigned_to': order.assigned_to,
        'carrier': order.carrier,
        'tracking_number': order.tracking_number,
        'current_location': order.current_location,
        'shipping_address': order.shipping_address,
    }


def order_json(order: Order, with_notes: bool = False) -> Dict[str, Any]:
    body = order_snapshot(order)
    body.update({
        'order_number': order.order_number,
        'guest_email': order.guest_email,
        'items': order.items or [],
        'status_changed_at': iso(order.status_changed_at),
        'created_at': iso(order.created_at),
    })
    if with_notes:
        body['internal_notes'] = [note_json(n) for n in order.internal_notes]
    return body


def event_json(ev: OrderTrackingEvent) -> Dict[str, Any]:
    return {
        'status': ev.status,
        'timestamp': iso(ev.timestamp),
        'description': ev.description,
        'location': ev.location,
        'carrier': ev.carrier,
        'tracking_number': ev.tracking_number,
    }


def note_json(n: OrderNote) -> Dict[str, Any]:
    return {'text': n.text, 'created_by': n.created_by, 'created_by_name': n.created_by_name, 'created_at': iso(n.created_at)}


def load_order(session: Session, order_id: int) -> Order:
    order = session.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise NotFound(description='Order not found')
    return order


def next_order_number(session: Session, at: datetime) -> str:
    """YYMMDD + 3 digit daily sequence."""
    prefix = at.strftime('%y%m%d')
    last = session.execute(
        select(Order.order_number)
        .where(Order.order_number.like(f'{prefix}%'))
        .order_by(func.length(Order.order_number).desc(), Order.order_number.desc())
        .limit(1)
    ).scalar_one_or_none()
    seq = int(last[len(prefix):]) + 1 if last else 1
    return f'{prefix}{seq:03d}'


def add_tracking_event(session: Session, order_id: int, event: TrackingEventData, actor_id: Any = None) -> OrderTrackingEvent:
    ev = OrderTrackingEvent(
        order_id=order_id,
        status=event.status,
        timestamp=event.timestamp,
        description=event.description,
        location=event.location,
        carrier=event.carrier,
        tracking_number=event.tracking_number,
        actor_user_id=int(actor_id) if actor_id is not None else None,
    )
    session.add(ev)
    return ev


def create_order(session: Session, *, user_id: Optional[int], total_cents: int, branch_id: Optional[str] = None,
                 items: Optional[list] = None, shipping_address: Optional[dict] = None,
                 guest_email: Optional[str] = None, at: Optional[datetime] = None) -> Order:
    at = at or utc_now()
    order = Order(
        order_number=next_order_number(session, at),
        user_id=user_id,
        guest_email=guest_email,
        branch_id=branch_id,
        total_cents=total_cents,
        items=items or [],
        shipping_address=shipping_address,
        status=Order.STATUS_PENDING,
        status_changed_at=at,
        created_at=at,
        updated_at=at,
    )
    session.add(order)
    session.flush()
    add_tracking_event(session, order.id, tracking_event_for(order, Order.STATUS_PENDING, at), actor_id=user_id)
    session.commit()
    return order


def compare_and_swap_status(session: Session, order_id: int, result: TransitionResult, actor_id: Any = None) -> bool:
    """Write ``result`` only if the row still holds ``result.previous_status``; stage its tracking event."""
    res = session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == result.previous_status)
        .values(status=result.status, status_changed_at=result.status_changed_at, updated_at=result.status_changed_at)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    if result.event is not None:
        add_tracking_event(session, order_id, result.event, actor_id=actor_id)
    return True


def _add_note(session: Session, order_id: int, text: str, author_id: Any, author_name: Optional[str]) -> OrderNote:
    note = OrderNote(order_id=order_id, text=text, created_by=author_id, created_by_name=author_name or 'System')
    session.add(note)
    return note


_TEXT_FIELDS = ('branch_id', 'carrier', 'tracking_number')
_OBJECT_FIELDS = ('current_location', 'shipping_address')


def _check_field_types(session: Session, changes: Dict[str, Any]) -> None:
    """JSON values must match the column they land in; null clears optional fields."""
    for key in _TEXT_FIELDS:
        if changes.get(key) is not None and not isinstance(changes[key], str):
            raise BadRequest(description=f'{key} must be a string')
    for key in _OBJECT_FIELDS:
        if changes.get(key) is not None and not isinstance(changes[key], dict):
            raise BadRequest(description=f'{key} must be an object')
    if 'priority' in changes and (not isinstance(changes['priority'], str) or changes['priority'] not in Order.PRIORITIES):
        raise BadRequest(description='Invalid priority value')
    if 'status' in changes and not isinstance(changes['status'], str):
        raise BadRequest(description='status must be a string')
    assignee = changes.get('assigned_to')
    if assignee is not None:
        if isinstance(assignee, bool) or not isinstance(assignee, int):
            raise BadRequest(description='assigned_to must be an integer')
        if session.get(User, assignee) is None:
            raise BadRequest(description='assignee not found')


def update_order(session: Session, order_id: int, changes: Dict[str, Any], *,
                 fsm: TransitionValidator = EXTENDED_ORDER_FSM, actor_id: Any = None,
                 conditions: Optional[ConditionSet] = None, note: Optional[str] = None,
                 author_name: Optional[str] = None, at: Optional[datetime] = None) -> Tuple[Order, Optional[TransitionResult]]:
    """Apply field edits and/or a status change to one order, scope-checked before and after."""
    unknown = set(changes) - set(EDITABLE_FIELDS) - {'status'}
    if unknown:
        raise BadRequest(description=f'Unknown order fields: {sorted(unknown)}')
    _check_field_types(session, changes)
    if note is not None and not isinstance(note, str):
        raise BadRequest(description='note must be a string')
    target = changes.get('status')
    fields = {k: v for k, v in changes.items() if k != 'status'}
    for attempt in range(CAS_ATTEMPTS):
        order = load_order(session, order_id)
        check_write(order, {**order_snapshot(order), **fields}, conditions, actor_id, resource='orders', record_id=order.id)
        if fields and order.status in TERMINAL_STATUSES:
            raise TerminalStateViolation(order.status)
        result = plan_transition(order, target, fsm, at) if target is not None else None
        for key, value in fields.items():
            setattr(order, key, value)
        if result is not None and result.changed:
            if result.event is not None:
                # event snapshot reflects carrier/location edits made in this same request
                result = TransitionResult(result.previous_status, result.status, result.status_changed_at,
                                          tracking_event_for(order, result.status, result.status_changed_at))
            if not compare_and_swap_status(session, order.id, result, actor_id):
                session.rollback()
                logger.info('status conflict on order %s (attempt %s): %s -> %s', order_id, attempt + 1,
                            result.previous_status, result.status)
                continue
            add_audit(session, 'ORDER.STATUS', 'Order', order.id,
                      {'changes': {'status': {'before': result.previous_status, 'after': result.status}}}, actor_id)
        if fields:
            add_audit(session, 'ORDER.UPDATE', 'Order', order.id, {'fields': sorted(fields)}, actor_id)
        if note:
            _add_note(session, order.id, note, actor_id, author_name)
        session.commit()
        session.refresh(order)
        return order, result
    raise ConcurrentModification(order_id)


def change_status(session: Session, order_id: int, target: str, **kwargs) -> Tuple[Order, Optional[TransitionResult]]:
    return update_order(session, order_id, {'status': target}, **kwargs)


def add_note(session: Session, order_id: int, text: str, *, actor_id: Any = None, author_name: Optional[str] = None,
             conditions: Optional[ConditionSet] = None) -> OrderNote:
    """Internal notes are append-only and allowed in every status, final ones included."""
    if not text or not str(text).strip():
        raise BadRequest(description='text is required')
    order = load_order(session, order_id)
    check_write(order, None, conditions, actor_id, resource='orders', record_id=order.id)
    note = _add_note(session, order.id, str(text).strip(), actor_id, author_name)
    session.commit()
    return note


def bulk_change_status(session: Session, order_ids: Iterable[Any], target: str, **kwargs) -> List[Dict[str, Any]]:
    """Per-order outcome list; one failure never aborts the rest."""
    results: List[Dict[str, Any]] = []
    for raw_id in order_ids:
        try:
            order_id = int(raw_id)
        except (TypeError, ValueError):
            results.append({'order_id': raw_id, 'success': False, 'error': 'invalid order id'})
            continue
        try:
            order, _ = change_status(session, order_id, target, **kwargs)
            results.append({'order_id': order_id, 'success': True, 'status': order.status})
        except HTTPException as e:
            session.rollback()
            entry = {'order_id': order_id, 'success': False, 'error': e.description}
            kind = getattr(e, 'kind', None)
            if kind:
                entry['kind'] = kind
            results.append(entry)
    return results


def tracking_events(session: Session, order_id: int) -> List[OrderTrackingEvent]:
    return session.execute(
        select(OrderTrackingEvent).where(OrderTrackingEvent.order_id == order_id).order_by(OrderTrackingEvent.id.asc())
    ).scalars().all()


__all__ = [
    'order_snapshot', 'order_json', 'event_json', 'note_json', 'load_order', 'next_order_number',
    'add_tracking_event', 'create_order', 'compare_and_swap_status', 'update_order', 'change_status',
    'add_note', 'bulk_change_status', 'tracking_events', 'EDITABLE_FIELDS',
]
