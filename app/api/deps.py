import hmac
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, system_clock
from app.core.context import set_actor_id
from app.core.security import decode_token
from app.core.settings import settings
from app.db.session import get_db
from app.models import User
from app.services import authz
from app.services.document_store import LocalDocumentStore

bearer_scheme = HTTPBearer()


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


def get_clock() -> Clock:
    return system_clock


def get_document_store() -> LocalDocumentStore:
    return LocalDocumentStore(settings.documents_path)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    try:
        payload = decode_token(credentials.credentials, expected_type="access")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    user_sub = payload.get("sub")
    if not user_sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        user_id = UUID(str(user_sub))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")
    set_actor_id(str(user.id))
    return user


async def require_editor(current_user: User = Depends(get_current_user)) -> User:
    if not authz.is_authorized_editor(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Editor access required")
    return current_user


async def require_cron_secret(
    cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
) -> None:
    expected = settings.cron_secret
    if not expected or not cron_secret or not hmac.compare_digest(expected, cron_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")
