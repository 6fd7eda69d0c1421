from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import Response
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import InvalidInput
from app.core.limiter import limiter
from app.core.settings import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.documents import DocumentAccessLevel, DocumentMetadata, DocumentOut, DocumentUploadResponse
from app.services import documents
from app.services.document_store import LocalDocumentStore

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post(
    "",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload and encrypt a document",
)
async def upload_document(
    file: UploadFile = File(...),
    title: str = Form(...),
    document_type: str = Form(..., alias="documentType"),
    description: str | None = Form(default=None),
    access_level: DocumentAccessLevel = Form(default=DocumentAccessLevel.ALL_SHAREHOLDERS, alias="accessLevel"),
    period_start: date | None = Form(default=None, alias="periodStart"),
    period_end: date | None = Form(default=None, alias="periodEnd"),
    is_audited: bool = Form(default=False, alias="isAudited"),
    annotation: str | None = Form(default=None),
    current_user: User = Depends(deps.require_editor),
    store: LocalDocumentStore = Depends(deps.get_document_store),
    db: AsyncSession = Depends(get_db),
) -> DocumentUploadResponse:
    try:
        metadata = DocumentMetadata(
            title=title,
            document_type=document_type,
            description=description,
            access_level=access_level,
            period_start=period_start,
            period_end=period_end,
            is_audited=is_audited,
            annotation=annotation,
        )
    except ValidationError as exc:
        raise InvalidInput("Missing required fields", details={"errors": exc.errors(include_url=False, include_context=False)}) from exc

    # Read one byte past the limit so oversize files are detected without buffering them fully.
    content = await file.read(settings.max_file_size + 1)
    await file.close()
    document = await documents.upload_document(
        db,
        store,
        filename=file.filename,
        content=content,
        metadata=metadata,
        actor=current_user,
        passphrase=settings.document_encryption_key,
        allowed_extensions=settings.allowed_document_extensions,
        max_size_bytes=settings.max_file_size,
        app_url=settings.app_url,
    )
    return DocumentUploadResponse(document_id=document.id, file_hash=document.file_hash)


@router.get("", response_model=list[DocumentOut], summary="List documents visible to the caller")
async def list_documents(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[DocumentOut]:
    items = await documents.list_documents(db, current_user)
    return [DocumentOut.model_validate(item) for item in items]


@router.get("/{document_id}/download", summary="Download a decrypted document")
@limiter.limit("30/minute")
async def download_document(
    request: Request,
    document_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    store: LocalDocumentStore = Depends(deps.get_document_store),
    db: AsyncSession = Depends(get_db),
) -> Response:
    download = await documents.download_document(
        db,
        store,
        document_id,
        actor=current_user,
        passphrase=settings.document_encryption_key,
    )
    return Response(
        content=download.content,
        media_type=download.content_type,
        headers={"Content-Disposition": f'attachment; filename="{download.filename}"'},
    )
