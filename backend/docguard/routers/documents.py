import asyncio

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from docguard.config import settings
from docguard.database import get_db
from docguard.dependencies import get_reliability_service
from docguard.errors import DocumentNotFound, StorageError
from docguard.models.document import Document
from docguard.schemas.document import DocumentResponse, UploadResponse, VerifyResponse
from docguard.services.document_service import UploadRejected
from docguard.services.ledger import DocumentLedger
from docguard.services.reliability_service import ReliabilityService

router = APIRouter(tags=["documents"])


def _doc_to_response(doc: Document) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        application_id=doc.application_id,
        file_name=doc.file_name,
        document_type=doc.document_type,
        file_size_bytes=doc.file_size_bytes,
        mime_type=doc.mime_type,
        disk_path=doc.disk_path,
        object_store_key=doc.object_store_key,
        checksum_sha256=doc.checksum_sha256,
        backup_status=doc.backup_status,
        verified=bool(doc.verified),
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


async def _read_capped(file: UploadFile) -> bytes:
    # Reject oversized payloads before buffering all of them.
    max_bytes = settings.max_upload_bytes
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(status_code=413, detail=f"File too large (max {max_bytes} bytes)")
        chunks.append(chunk)
    return b"".join(chunks)


@router.post("/applications/{application_id}/documents", response_model=UploadResponse, status_code=201)
async def upload_document(
    application_id: str,
    file: UploadFile = File(...),
    document_type: str = Form(...),
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    content = await _read_capped(file)
    try:
        result = await asyncio.to_thread(
            service.upload,
            db, application_id, content, file.filename or "upload", document_type, file.content_type,
        )
    except UploadRejected as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=f"Disk write failed: {exc.message}")
    return UploadResponse(**result)


@router.get("/applications/{application_id}/documents", response_model=list[DocumentResponse])
def list_documents(application_id: str, db: Session = Depends(get_db)):
    docs = DocumentLedger(db).find_by_application(application_id)
    return [_doc_to_response(d) for d in docs]


@router.post("/documents/{document_id}/reupload", response_model=UploadResponse)
async def reupload_document(
    document_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    content = await _read_capped(file)
    try:
        result = await asyncio.to_thread(
            service.reupload, db, document_id, content, file.filename, file.content_type
        )
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")
    except UploadRejected as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=f"Disk write failed: {exc.message}")
    return UploadResponse(**result)


@router.get("/documents/{document_id}/verify", response_model=VerifyResponse)
def verify_document(
    document_id: str,
    db: Session = Depends(get_db),
    service: ReliabilityService = Depends(get_reliability_service),
):
    """Re-hash the stored bytes and compare against the recorded SHA-256."""
    try:
        return VerifyResponse(**service.verify_document(db, document_id))
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")
