import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base

USER_ROLES = ("admin_edit", "admin_view", "board_member", "shareholder")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('admin_edit', 'admin_view', 'board_member', 'shareholder')",
            name="ck_users_role",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(50), nullable=False, default="shareholder")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
