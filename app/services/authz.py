from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.shareholder import Shareholder
from app.models.user import User

EDITOR_ROLES = frozenset({"admin_edit"})
PRIVILEGED_ROLES = frozenset({"admin_edit", "admin_view", "board_member"})

ACCESS_ALL_SHAREHOLDERS = "all_shareholders"
ACCESS_BOARD_AND_MANAGEMENT = "board_and_management_only"


def _is_active(user: User | None) -> bool:
    return user is not None and bool(user.is_active)


def is_authorized_editor(user: User | None) -> bool:
    return _is_active(user) and (user.role or "") in EDITOR_ROLES


def is_privileged(user: User | None) -> bool:
    return _is_active(user) and (user.role or "") in PRIVILEGED_ROLES


def visible_access_levels(user: User | None) -> list[str]:
    if not _is_active(user):
        return []
    levels = [ACCESS_ALL_SHAREHOLDERS]
    if is_privileged(user):
        levels.append(ACCESS_BOARD_AND_MANAGEMENT)
    return levels


def can_access_document(user: User | None, access_level: str) -> bool:
    return access_level in visible_access_levels(user)


async def can_view_shareholder(db: AsyncSession, user: User | None, shareholder_id: UUID) -> bool:
    """Privileged roles see every shareholder; shareholders see only themselves."""
    if not _is_active(user):
        return False
    if is_privileged(user):
        return True
    stmt = select(Shareholder.id).where(
        Shareholder.id == shareholder_id,
        Shareholder.user_id == user.id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None
