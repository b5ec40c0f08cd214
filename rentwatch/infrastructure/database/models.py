"""SQLAlchemy ORM models for tenancies, rent ledger, notices and the regeneration queue"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Tenant(Base):
    """Tenancy with its rent terms (terms are NULL until configured)"""

    __tablename__ = "tenant"

    id = Column(Text, primary_key=True, default=_new_id)
    name = Column(Text, nullable=False)
    frequency = Column(Text, nullable=True)
    rent_amount = Column(Numeric(12, 2), nullable=True)
    due_day = Column(Text, nullable=True)
    tracking_start_date = Column(Date, nullable=True)
    opening_arrears = Column(Numeric(12, 2), nullable=False, default=0)
    schedule_adjustment = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=_utcnow)

    obligations = relationship("PaymentObligationRow", back_populates="tenant", cascade="all, delete-orphan")
    payments = relationship("PaymentHistoryRow", back_populates="tenant", cascade="all, delete-orphan")
    notices = relationship("NoticeRow", back_populates="tenant", cascade="all, delete-orphan")


class PaymentObligationRow(Base):
    """One rent cycle owed by a tenant"""

    __tablename__ = "payment_obligation"
    __table_args__ = (UniqueConstraint("tenant_id", "due_date", name="uq_obligation_tenant_due_date"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    amount_due = Column(Numeric(12, 2), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(Text, nullable=False, default="Unpaid")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    tenant = relationship("Tenant", back_populates="obligations")


class PaymentHistoryRow(Base):
    """Append-only record of money received"""

    __tablename__ = "payment_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    paid_on = Column(Date, nullable=False)
    method = Column(Text, nullable=False)
    # Rows are rebuilt on regeneration, so the link is informational only
    obligation_id = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    tenant = relationship("Tenant", back_populates="payments")
    allocations = relationship("PaymentAllocationRow", back_populates="payment", cascade="all, delete-orphan")


class PaymentAllocationRow(Base):
    """Share of a payment applied to one due date; kept across ledger regenerations"""

    __tablename__ = "payment_allocation"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payment_history.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(Text, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    payment = relationship("PaymentHistoryRow", back_populates="allocations")


class NoticeRow(Base):
    """Strike or remedy notice served on a tenant (immutable once written)"""

    __tablename__ = "notice"
    # A rent occasion can carry at most one strike; remedy notices have no due_date_for
    __table_args__ = (UniqueConstraint("tenant_id", "due_date_for", name="uq_notice_tenant_occasion"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    notice_type = Column(Text, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=False)
    official_service_date = Column(Date, nullable=False)
    due_date_for = Column(Date, nullable=True)
    debt_snapshot = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    tenant = relationship("Tenant", back_populates="notices")


class LedgerRegenerationQueue(Base):
    """Durable queue of ledger regenerations with retry tracking"""

    __tablename__ = "ledger_regeneration_queue"
    __table_args__ = (Index("ix_regeneration_tenant_status", "tenant_id", "status"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False)
    old_rent_amount = Column(Numeric(12, 2), nullable=True)
    new_rent_amount = Column(Numeric(12, 2), nullable=False)
    old_frequency = Column(Text, nullable=True)
    new_frequency = Column(Text, nullable=False)
    old_due_day = Column(Text, nullable=True)
    new_due_day = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    triggered_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)
