from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, ForeignKey, DateTime, JSON, Text, Index
from datetime import datetime
from typing import Optional, Dict, Any

from .authz import Base
from storefront.utils.timeutil import utc_now


class Order(Base):
    __tablename__ = 'orders'
    # Lifecycle status constants
    STATUS_PENDING = 'pending'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_PROCESSING = 'processing'
    STATUS_SHIPPED = 'shipped'
    STATUS_OUT_FOR_DELIVERY = 'out_for_delivery'
    STATUS_DELIVERED = 'delivered'
    STATUS_CANCELLED = 'cancelled'
    STATUS_REFUNDED = 'refunded'
    STATUS_RETURNED = 'returned'
    ALL_STATUSES = (
        STATUS_PENDING,
        STATUS_CONFIRMED,
        STATUS_PROCESSING,
        STATUS_SHIPPED,
        STATUS_OUT_FOR_DELIVERY,
        STATUS_DELIVERED,
        STATUS_CANCELLED,
        STATUS_REFUNDED,
        STATUS_RETURNED,
    )
    PRIORITIES = ('low', 'normal', 'high', 'urgent')

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[Optional[str]] = mapped_column(String(16), unique=True)
    # owner: registered purchaser; guests carry guest_email only
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), index=True, nullable=True)
    guest_email: Mapped[Optional[str]] = mapped_column(String(128))
    branch_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING)
    status_changed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default='normal')
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), index=True, nullable=True)
    carrier: Mapped[Optional[str]] = mapped_column(String(64))
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    current_location: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    shipping_address: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    items: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    tracking_events = relationship('OrderTrackingEvent', back_populates='order', order_by='OrderTrackingEvent.id')
    internal_notes = relationship('OrderNote', back_populates='order', order_by='OrderNote.id')

    __table_args__ = (Index('ix_orders_status_changed', 'status', 'status_changed_at'),)


class OrderTrackingEvent(Base):
    """Append-only audit trail of status changes; rows are never updated."""
    __tablename__ = 'order_tracking_events'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id'), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    location: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    carrier: Mapped[Optional[str]] = mapped_column(String(64))
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64))
    actor_user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    order = relationship('Order', back_populates='tracking_events')


class OrderNote(Base):
    __tablename__ = 'order_notes'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey('orders.id'), index=True, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_by_name: Mapped[str] = mapped_column(String(128), nullable=False, default='System')
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)

    order = relationship('Order', back_populates='internal_notes')
