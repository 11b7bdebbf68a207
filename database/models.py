"""SQLAlchemy models for the ledger."""
import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from .database import Base

AMOUNT_TYPE = Numeric(18, 6)


def utc_now() -> datetime:
    """Helper function to get current UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Helper function to ensure datetime is UTC timezone-aware."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_cycle_id() -> str:
    return str(uuid.uuid4())


class CycleStatus(str, enum.Enum):
    OPEN = "open"
    LOCKED = "locked"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class OutcomeKind(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _enum_column(enum_cls):
    return Enum(
        enum_cls,
        native_enum=False,
        length=16,
        values_callable=lambda members: [member.value for member in members],
    )


class Cycle(Base):
    """One instance of the recurring pot."""
    __tablename__ = "cycles"
    __table_args__ = (
        # At most one cycle accepts participants at a time
        Index(
            "uq_cycles_single_open",
            "status",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_cycle_id)
    label: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    status: Mapped[CycleStatus] = mapped_column(
        _enum_column(CycleStatus), default=CycleStatus.OPEN, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    execution_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    condition: Mapped[Optional["CycleCondition"]] = relationship(
        back_populates="cycle",
        uselist=False,
        lazy="selectin"
    )


class CycleCondition(Base):
    """Payout parameters of one cycle."""
    __tablename__ = "cycle_conditions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_condition_amount_positive"),
        CheckConstraint("max_participants > 0", name="ck_condition_cap_positive"),
    )

    cycle_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cycles.id", ondelete="CASCADE"),
        primary_key=True
    )
    amount: Mapped[Decimal] = mapped_column(AMOUNT_TYPE, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_test_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_participants: Mapped[int] = mapped_column(Integer, nullable=False)

    cycle: Mapped["Cycle"] = relationship(back_populates="condition")


class Participant(Base):
    """One admitted payout address within a cycle."""
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("cycle_id", "address", name="uq_participant_cycle_address"),
        UniqueConstraint("cycle_id", "visitor_id", name="uq_participant_cycle_visitor"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cycle_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cycles.id"),
        nullable=False,
        index=True
    )
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    visitor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class PayoutOutcome(Base):
    """Append-only record of one disbursement attempt to one participant."""
    __tablename__ = "payout_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cycle_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("cycles.id"),
        nullable=False,
        index=True
    )
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    share_amount: Mapped[Decimal] = mapped_column(AMOUNT_TYPE, nullable=False)
    transfer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    outcome: Mapped[OutcomeKind] = mapped_column(_enum_column(OutcomeKind), nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_simulated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
