from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.envelope import decrypt_from_envelope, encrypt_to_envelope, plaintext_hash
from app.core.errors import Forbidden, IntegrityError, InvalidInput, NotFound, PersistenceFailure
from app.models.document import Document
from app.models.user import User
from app.schemas.documents import DocumentAccessLevel, DocumentMetadata
from app.services import authz
from app.services.audit import record_audit_log
from app.services.document_store import LocalDocumentStore
from app.services.notifications import notify_new_document

logger = logging.getLogger(__name__)

# Magic byte signatures used to cross-check content against the extension.
_MAGIC_SIGNATURES: dict[str, list[bytes]] = {
    ".pdf": [b"%PDF"],
    ".docx": [b"PK\x03\x04", b"PK\x05\x06"],
    ".xlsx": [b"PK\x03\x04", b"PK\x05\x06"],
}

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@dataclass(frozen=True)
class DocumentDownload:
    filename: str
    content_type: str
    content: bytes


def sanitize_filename(filename: str | None, fallback: str = "upload.bin") -> str:
    name = Path(filename or "").name or fallback
    return re.sub(r"[^a-zA-Z0-9.-]", "_", name)


def content_type_for(name: str) -> str:
    return CONTENT_TYPES.get(Path(name).suffix.lower(), "application/octet-stream")


def validate_upload(
    filename: str | None,
    content: bytes,
    *,
    allowed_extensions: list[str] | set[str],
    max_size_bytes: int,
) -> str:
    """Return the normalized extension or raise ``InvalidInput``."""
    if not content:
        raise InvalidInput("File is empty")
    if max_size_bytes and len(content) > max_size_bytes:
        raise InvalidInput("File too large", details={"max_size_bytes": max_size_bytes})

    ext = Path(sanitize_filename(filename)).suffix.lower()
    normalized_allowed = {e.lower() if e.startswith(".") else f".{e.lower()}" for e in allowed_extensions}
    if ext not in normalized_allowed:
        raise InvalidInput(
            f"File type not allowed. Allowed extensions: {', '.join(sorted(normalized_allowed))}"
        )
    signatures = _MAGIC_SIGNATURES.get(ext)
    if signatures and not any(content.startswith(sig) for sig in signatures):
        raise InvalidInput(f"File content does not match the expected format for '{ext}'")
    return ext


async def upload_document(
    db: AsyncSession,
    store: LocalDocumentStore,
    *,
    filename: str | None,
    content: bytes,
    metadata: DocumentMetadata,
    actor: User | None,
    passphrase: str,
    allowed_extensions: list[str] | set[str],
    max_size_bytes: int,
    app_url: str = "",
) -> Document:
    if not authz.is_authorized_editor(actor):
        raise Forbidden("Editor access required")
    if metadata.period_start and metadata.period_end and metadata.period_start > metadata.period_end:
        raise InvalidInput("period_start must not be after period_end")
    validate_upload(filename, content, allowed_extensions=allowed_extensions, max_size_bytes=max_size_bytes)

    document_id = uuid4()
    object_key = f"{document_id.hex}.enc"
    file_hash = plaintext_hash(content)
    # Key derivation is deliberately slow; keep it off the event loop.
    envelope = await asyncio.to_thread(encrypt_to_envelope, content, passphrase)
    await asyncio.to_thread(store.write, object_key, envelope)

    document = Document(
        id=document_id,
        title=metadata.title,
        description=metadata.description,
        document_type=metadata.document_type,
        access_level=metadata.access_level.value,
        file_path=object_key,
        file_size=len(content),
        file_hash=file_hash,
        period_start=metadata.period_start,
        period_end=metadata.period_end,
        is_audited=metadata.is_audited,
        annotation=metadata.annotation,
        uploaded_by=actor.id,
    )
    try:
        db.add(document)
        record_audit_log(
            db,
            actor_id=actor.id,
            action="document.uploaded",
            resource_type="document",
            resource_id=str(document_id),
            new_value={
                "title": metadata.title,
                "document_type": metadata.document_type,
                "access_level": metadata.access_level.value,
                "file_size": len(content),
                "file_hash": file_hash,
            },
        )
        if metadata.access_level == DocumentAccessLevel.ALL_SHAREHOLDERS:
            await notify_new_document(db, metadata.title, metadata.document_type, app_url=app_url)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        await asyncio.to_thread(store.delete, object_key)
        raise PersistenceFailure("Unable to record uploaded document") from exc

    logger.info("Stored document %s (%d bytes)", document_id, len(content))
    return document


async def list_documents(db: AsyncSession, actor: User | None) -> list[Document]:
    levels = authz.visible_access_levels(actor)
    if not levels:
        raise Forbidden("Document access denied")
    stmt = (
        select(Document)
        .where(Document.access_level.in_(levels))
        .order_by(Document.uploaded_at.desc())
    )
    result = await db.execute(stmt)
    return result.scalars().all()


async def download_document(
    db: AsyncSession,
    store: LocalDocumentStore,
    document_id: UUID,
    *,
    actor: User | None,
    passphrase: str,
) -> DocumentDownload:
    document = await db.get(Document, document_id)
    if document is None:
        raise NotFound("Document not found")
    if not authz.can_access_document(actor, document.access_level):
        raise Forbidden("Document access denied")

    try:
        envelope = await asyncio.to_thread(store.read, document.file_path)
    except FileNotFoundError as exc:
        raise NotFound("Document content is missing") from exc

    plaintext = await asyncio.to_thread(decrypt_from_envelope, envelope, passphrase)
    if plaintext_hash(plaintext) != document.file_hash:
        logger.error("Plaintext hash mismatch for document %s", document.id)
        raise IntegrityError("Document content failed integrity verification")

    try:
        record_audit_log(
            db,
            actor_id=actor.id,
            action="document.downloaded",
            resource_type="document",
            resource_id=str(document.id),
            new_value={"title": document.title, "size": document.file_size},
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceFailure("Unable to record document access") from exc

    return DocumentDownload(
        filename=sanitize_filename(document.title, fallback="document"),
        content_type=content_type_for(document.title),
        content=plaintext,
    )
