from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.clock import Clock
from app.core.limiter import limiter
from app.core.settings import settings
from app.db.session import get_db
from app.schemas.rsu import EmailQueueResultOut, SweepResultOut
from app.services.notifications import EmailQueueNotifier, process_email_queue, transport_from_settings
from app.services.vesting_sweep import SweepResult, VestingSweep, VestingSweepConfig

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(deps.require_cron_secret)])


def _build_sweep(db: AsyncSession) -> VestingSweep:
    return VestingSweep.for_session(
        db,
        EmailQueueNotifier(db, app_url=settings.app_url),
        VestingSweepConfig.from_settings(settings),
    )


def _result_out(result: SweepResult) -> SweepResultOut:
    return SweepResultOut(
        target_date=result.target_date,
        processed=result.processed,
        failed=result.failed,
        skipped=result.skipped,
    )


@router.post("/process-vesting", response_model=SweepResultOut, summary="Run the daily vesting sweep")
@limiter.exempt
async def process_vesting(
    clock: Clock = Depends(deps.get_clock),
    db: AsyncSession = Depends(get_db),
) -> SweepResultOut:
    result = await _build_sweep(db).process_vesting_events(clock.today())
    return _result_out(result)


@router.post(
    "/pre-vest-notifications",
    response_model=SweepResultOut,
    summary="Send reminders for upcoming vesting events",
)
@limiter.exempt
async def pre_vest_notifications(
    clock: Clock = Depends(deps.get_clock),
    db: AsyncSession = Depends(get_db),
) -> SweepResultOut:
    result = await _build_sweep(db).process_pre_vest_notifications(clock.today())
    return _result_out(result)


@router.post("/process-emails", response_model=EmailQueueResultOut, summary="Deliver queued emails")
@limiter.exempt
async def process_emails(db: AsyncSession = Depends(get_db)) -> EmailQueueResultOut:
    sent, failed = await process_email_queue(
        db,
        transport_from_settings(settings),
        batch_size=settings.email_batch_size,
        max_retries=settings.email_max_retries,
    )
    return EmailQueueResultOut(sent=sent, failed=failed)
