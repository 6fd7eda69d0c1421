import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class RsuGrant(Base):
    __tablename__ = "rsu_grants"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("total_units > 0", name="ck_rsu_grants_total_units_positive"),
        CheckConstraint("vesting_cliff_months >= 0", name="ck_rsu_grants_cliff_nonnegative"),
        CheckConstraint(
            "vesting_duration_months > vesting_cliff_months",
            name="ck_rsu_grants_duration_exceeds_cliff",
        ),
        CheckConstraint(
            "vesting_frequency IN ('monthly', 'quarterly', 'annually')",
            name="ck_rsu_grants_frequency",
        ),
        CheckConstraint("status IN ('active', 'cancelled')", name="ck_rsu_grants_status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shareholder_id = Column(
        UUID(as_uuid=True),
        ForeignKey("shareholders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    share_class_id = Column(UUID(as_uuid=True), ForeignKey("share_classes.id"), nullable=False)
    grant_date = Column(Date, nullable=False)
    total_units = Column(Numeric(20, 6), nullable=False)
    vesting_start_date = Column(Date, nullable=False)
    vesting_cliff_months = Column(Integer, nullable=False, default=0)
    vesting_duration_months = Column(Integer, nullable=False)
    vesting_frequency = Column(String(20), nullable=False, default="monthly")
    status = Column(String(20), nullable=False, default="active")
    cancellation_date = Column(Date, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    grant_document_path = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    shareholder = relationship("Shareholder", back_populates="rsu_grants")
    vesting_events = relationship(
        "VestingEvent",
        back_populates="grant",
        cascade="all, delete-orphan",
        order_by="VestingEvent.vesting_date",
    )
