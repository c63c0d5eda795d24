"""
Order automation
Background sweep that walks live orders along the fulfilment chain once they have
dwelt long enough in their current status.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.exceptions import HTTPException

from storefront.config.settings import DEFAULT_DWELL
from storefront.models.order import Order
from storefront.services.audit import add_audit
from storefront.services.order_lifecycle import plan_transition
from storefront.services.orders import compare_and_swap_status, load_order
from storefront.utils.fsm import TransitionValidator
from storefront.utils.timeutil import utc_now

logger = logging.getLogger(__name__)


Chain = Dict[str, Tuple[str, timedelta]]


def parse_dwell(raw: Optional[str]) -> Dict[str, timedelta]:
    """Parse ``status:seconds`` pairs separated by commas."""
    out: Dict[str, timedelta] = {}
    for part in (raw or '').split(','):
        part = part.strip()
        if not part:
            continue
        status, sep, seconds = part.partition(':')
        if not sep:
            raise ValueError(f'dwell entry must be status:seconds, got {part!r}')
        value = float(seconds)
        if value < 0:
            raise ValueError(f'dwell for {status} must be >= 0')
        out[status.strip()] = timedelta(seconds=value)
    return out


def default_chain(dwell: Optional[Mapping[str, timedelta]] = None, extended: bool = True) -> Chain:
    dwell = dict(parse_dwell(DEFAULT_DWELL), **(dwell or {}))
    steps: List[Tuple[str, str]] = [
        (Order.STATUS_PENDING, Order.STATUS_CONFIRMED),
        (Order.STATUS_CONFIRMED, Order.STATUS_PROCESSING),
        (Order.STATUS_PROCESSING, Order.STATUS_SHIPPED),
    ]
    if extended:
        steps += [
            (Order.STATUS_SHIPPED, Order.STATUS_OUT_FOR_DELIVERY),
            (Order.STATUS_OUT_FOR_DELIVERY, Order.STATUS_DELIVERED),
        ]
    else:
        steps.append((Order.STATUS_SHIPPED, Order.STATUS_DELIVERED))
    return {src: (dst, dwell[src]) for src, dst in steps}


@dataclass
class SweepResult:
    examined: int = 0
    advanced: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {'examined': self.examined, 'advanced': self.advanced, 'skipped': self.skipped, 'failed': self.failed}


class OrderAutomationScheduler:
    def __init__(self, session_factory: Callable[[], Session], fsm: TransitionValidator, chain: Chain,
                 interval_seconds: float = 60.0, clock: Callable[[], datetime] = utc_now):
        for src, (dst, dwell) in chain.items():
            if not fsm.can_transition(src, dst) or src == dst:
                raise ValueError(f'automation step {src} -> {dst} is not a valid transition')
            if dwell < timedelta(0):
                raise ValueError(f'negative dwell for {src}')
        self.session_factory = session_factory
        self.fsm = fsm
        self.chain = dict(chain)
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _due_ids(self, session: Session, now: datetime) -> List[Tuple[int, str]]:
        clauses = [
            and_(Order.status == src, Order.status_changed_at < now - dwell)
            for src, (_, dwell) in self.chain.items()
        ]
        if not clauses:
            return []
        rows = session.execute(
            select(Order.id, Order.status).where(or_(*clauses)).order_by(Order.status_changed_at.asc(), Order.id.asc())
        ).all()
        return [(r[0], r[1]) for r in rows]

    def _advance(self, session: Session, order_id: int, seen_status: str, now: datetime) -> bool:
        order = load_order(session, order_id)
        if order.status != seen_status:
            return False
        target, dwell = self.chain[seen_status]
        if not order.status_changed_at or order.status_changed_at + dwell >= now:
            return False
        result = plan_transition(order, target, self.fsm, at=now)
        if not compare_and_swap_status(session, order.id, result):
            session.rollback()
            return False
        add_audit(session, 'ORDER.STATUS.AUTO', 'Order', order.id,
                  {'changes': {'status': {'before': result.previous_status, 'after': result.status}}})
        session.commit()
        return True

    def sweep(self, now: Optional[datetime] = None, session: Optional[Session] = None) -> SweepResult:
        """One pass: each due order advances at most one step."""
        now = now or self.clock()
        own = session is None
        session = session or self.session_factory()
        result = SweepResult()
        try:
            due = self._due_ids(session, now)
            result.examined = len(due)
            for order_id, status in due:
                try:
                    if self._advance(session, order_id, status, now):
                        result.advanced += 1
                        logger.info('order %s advanced from %s to %s', order_id, status, self.chain[status][0])
                    else:
                        result.skipped += 1
                except (HTTPException, SQLAlchemyError) as e:
                    session.rollback()
                    result.failed += 1
                    logger.error('automation failed for order %s: %s', order_id, e, exc_info=True)
        finally:
            if own:
                session.close()
        if result.examined:
            logger.info('automation sweep: %s', result.to_dict())
        return result

    def _run_loop(self):
        while not self._stop.wait(self.interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception('automation sweep crashed; retrying next interval')

    def start(self):
        if self.running:
            logger.warning('order automation already running')
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name='OrderAutomation', daemon=True)
        self._thread.start()
        logger.info('order automation started (interval=%ss, steps=%s)', self.interval_seconds, len(self.chain))

    def stop(self, timeout: Optional[float] = None):
        if not self.running:
            return
        self._stop.set()
        self._thread.join(timeout=timeout if timeout is not None else min(self.interval_seconds, 5) + 1)
        if self._thread.is_alive():
            logger.warning('order automation thread did not terminate in time')
        else:
            logger.info('order automation stopped')
        self._thread = None


def build_scheduler(session_factory: Callable[[], Session], fsm: TransitionValidator, dwell_spec: Optional[str],
                    interval_seconds: float, extended: bool) -> OrderAutomationScheduler:
    chain = default_chain(parse_dwell(dwell_spec) if dwell_spec else None, extended=extended)
    return OrderAutomationScheduler(session_factory, fsm, chain, interval_seconds=interval_seconds)


__all__ = ['SweepResult', 'OrderAutomationScheduler', 'parse_dwell', 'default_chain', 'build_scheduler', 'DEFAULT_DWELL']
