from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import text

from app.core.settings import settings
from app.db.session import engine

APP_VERSION = "0.1.0"


async def _check_db() -> dict[str, str]:
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:  # pragma: no cover - exercised in runtime
        return {"status": "error", "error": str(exc)}


async def _check_document_storage() -> dict[str, str]:
    path = Path(settings.documents_path)
    if not path.is_dir():
        return {"status": "error", "error": f"{path} does not exist"}
    if not os.access(path, os.W_OK):
        return {"status": "error", "error": f"{path} is not writable"}
    return {"status": "ok"}


async def _check_api() -> dict[str, str]:
    return {"status": "ok", "version": APP_VERSION}


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def ready_payload() -> dict[str, Any]:
    checks = {
        "api": await _check_api(),
        "database": await _check_db(),
        "document_storage": await _check_document_storage(),
    }
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "vesting_jobs": {
            "auto_vesting": settings.enable_rsu_auto_calculation,
            "pre_vest_notifications": settings.enable_pre_vest_notifications,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
