from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.clock import Clock
from app.db.session import get_db
from app.models.user import User
from app.schemas.cap_table import CapTableResponse, ShareClassPositionOut
from app.services import authz, cap_table
from app.services.cap_table import ShareClassPosition

router = APIRouter(tags=["cap-table"])


def _position_out(position: ShareClassPosition, *, detailed: bool) -> ShareClassPositionOut:
    if not detailed:
        return ShareClassPositionOut(
            class_name=position.class_name,
            class_type=position.class_type,
            shareholder_count=position.shareholder_count,
        )
    return ShareClassPositionOut(
        class_name=position.class_name,
        class_type=position.class_type,
        shareholder_count=position.shareholder_count,
        granted_units=position.granted_units,
        vested_units=position.vested_units,
        unvested_units=position.unvested_units,
    )


@router.get(
    "/cap-table",
    response_model=CapTableResponse,
    response_model_exclude_none=True,
    summary="Capitalization table by share class",
)
async def get_cap_table(
    current_user: User = Depends(deps.get_current_user),
    clock: Clock = Depends(deps.get_clock),
    db: AsyncSession = Depends(get_db),
) -> CapTableResponse:
    table = await cap_table.get_cap_table(db, clock.today())
    detailed = authz.is_privileged(current_user)
    return CapTableResponse(
        as_of=table.as_of,
        total_shareholders=table.total_shareholders,
        share_classes=[_position_out(position, detailed=detailed) for position in table.share_classes],
        total_granted_units=table.total_granted_units if detailed else None,
    )
