from __future__ import annotations
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, DateTime, Float, JSON, Enum as SAEnum, ForeignKey, func
from portal.models.authz import Base
from portal.constants.permissions import TicketStatus

# Non-native enum: values are stored as plain strings, unknown strings fail on load/flush.
STATUS_TYPE = SAEnum(
    TicketStatus,
    name='ticket_status',
    native_enum=False,
    length=32,
    values_callable=lambda e: [m.value for m in e],
    validate_strings=True,
)


class ServiceTicket(Base):
    __tablename__ = 'service_tickets'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    work_start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    work_end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    before_photos: Mapped[List[str]] = mapped_column(JSON, default=list)
    after_photos: Mapped[List[str]] = mapped_column(JSON, default=list)
    invoice_file: Mapped[Optional[str]] = mapped_column(String(255))
    hourly_rate_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(64))
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[TicketStatus] = mapped_column(STATUS_TYPE, nullable=False, default=TicketStatus.DRAFT, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    line_items = relationship('LineItem', back_populates='ticket', cascade='all, delete-orphan', order_by='LineItem.id')

    def attachment_paths(self) -> List[str]:
        """Every blob path referenced by this ticket (photos first, invoice last)."""
        paths = list(self.before_photos or []) + list(self.after_photos or [])
        if self.invoice_file:
            paths.append(self.invoice_file)
        return paths


class LineItem(Base):
    __tablename__ = 'line_items'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('service_tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    hourly_rate_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    ticket = relationship('ServiceTicket', back_populates='line_items')

# Lifecycle: draft|submitted on creation; moves are gated by the role matrix, not a fixed graph.
