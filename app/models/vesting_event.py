import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.base import Base


class VestingEvent(Base):
    __tablename__ = "rsu_vesting_events"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("units_vested >= 0", name="ck_rsu_vesting_events_units_nonnegative"),
        UniqueConstraint("grant_id", "vesting_date", name="uq_rsu_vesting_events_grant_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    grant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("rsu_grants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vesting_date = Column(Date, nullable=False, index=True)
    units_vested = Column(Numeric(20, 6), nullable=False)
    is_projected = Column(Boolean, nullable=False, default=True)
    # One-way flags: only ever flipped from false to true.
    notification_sent = Column(Boolean, nullable=False, default=False)
    pre_vest_notification_sent = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    grant = relationship("RsuGrant", back_populates="vesting_events")
