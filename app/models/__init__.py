from app.models.audit_log import AuditLog
from app.models.document import Document
from app.models.email_queue import EmailQueue
from app.models.rsu_grant import RsuGrant
from app.models.share_class import ShareClass
from app.models.shareholder import Shareholder
from app.models.user import User
from app.models.vesting_event import VestingEvent

__all__ = [
    "AuditLog",
    "Document",
    "EmailQueue",
    "RsuGrant",
    "ShareClass",
    "Shareholder",
    "User",
    "VestingEvent",
]
