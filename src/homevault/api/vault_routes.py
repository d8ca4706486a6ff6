# HomeVault - Vault API
#
# Owner-scoped CRUD for the unlocked account:
#   /api/credentials  - list/add/update/delete, reveal secret
#   /api/sites        - list/add/update/delete
#   /api/documents    - list/add (base64 file and/or link)/delete/open
#   /api/health       - weak/reused/stale password report
#   /api/search       - keyword search over the account's index
#   /api/backup       - encrypted export (GET) and import (POST) of the account
#
# Every route needs the session token and an unlocked account (403 otherwise).

import base64
import binascii
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..accounts import Session
from ..errors import ValidationError
from ..health import estimate_password_strength, generate_strong_password
from ..storage.models import CredentialEntry, DocumentRecord, SiteRecord
from .security import require_unlocked_session, verify_session_token
from .services import services

router = APIRouter(prefix="/api", tags=["vault"], dependencies=[Depends(verify_session_token)])


# Request/Response Models
class AddCredentialRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    url: Optional[str] = None
    tags: List[str] = []


class UpdateCredentialRequest(BaseModel):
    title: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    url: Optional[str] = None
    tags: Optional[List[str]] = None


class CredentialResponse(BaseModel):
    id: int
    title: str
    username: str
    url: Optional[str]
    tags: List[str]
    created_at: int
    updated_at: int
    # the secret is only returned by /reveal


class ImportBackupRequest(BaseModel):
    backup: str = Field(..., min_length=1)


class SiteRequest(BaseModel):
    title: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None


class AddDocumentRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    file_name: Optional[str] = None
    file_base64: Optional[str] = None
    mime: Optional[str] = None
    link_url: Optional[str] = None
    tags: List[str] = []


def _credential_response(entry: CredentialEntry) -> CredentialResponse:
    return CredentialResponse(
        id=entry.id,
        title=entry.title,
        username=entry.username,
        url=entry.url,
        tags=entry.tags,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


def _site_response(site: SiteRecord) -> dict:
    return site.to_dict()


def _document_response(doc: DocumentRecord) -> dict:
    return doc.to_dict()


# Credentials

@router.get("/credentials", response_model=List[CredentialResponse])
async def list_credentials(
    tag: Optional[List[str]] = Query(None, description="Only entries carrying every tag"),
    session: Session = Depends(require_unlocked_session),
):
    entries = await services.items.list_credentials(session, tags=tag)
    return [_credential_response(entry) for entry in entries]


@router.post("/credentials", response_model=CredentialResponse, status_code=201)
async def add_credential(request: AddCredentialRequest, session: Session = Depends(require_unlocked_session)):
    """Add a credential; the password is encrypted before it is stored."""
    entry = await services.items.add_credential(
        session, request.title, request.username, request.password, request.url, request.tags
    )
    return _credential_response(entry)


@router.put("/credentials/{entry_id}", response_model=CredentialResponse)
async def update_credential(
    entry_id: int,
    request: UpdateCredentialRequest,
    session: Session = Depends(require_unlocked_session),
):
    entry = await services.items.update_credential(
        session, entry_id,
        title=request.title, username=request.username, password=request.password,
        url=request.url, tags=request.tags,
    )
    return _credential_response(entry)


@router.get("/credentials/{entry_id}/reveal")
async def reveal_credential(entry_id: int, session: Session = Depends(require_unlocked_session)):
    """Decrypted secret plus its strength estimate."""
    secret = await services.items.reveal_secret(session, entry_id)
    return {"id": entry_id, "password": secret, "strength": estimate_password_strength(secret).to_dict()}


@router.delete("/credentials/{entry_id}")
async def delete_credential(entry_id: int, session: Session = Depends(require_unlocked_session)):
    await services.items.delete_credential(session, entry_id)
    return {"success": True}


@router.get("/generate-password")
async def generate_password(
    length: int = Query(16, ge=4, le=128),
    symbols: bool = Query(True),
    session: Session = Depends(require_unlocked_session),
):
    return {"password": generate_strong_password(length=length, include_symbols=symbols)}


# Sites

@router.get("/sites")
async def list_sites(
    tag: Optional[List[str]] = Query(None),
    session: Session = Depends(require_unlocked_session),
):
    sites = await services.items.list_sites(session, tags=tag)
    return [_site_response(site) for site in sites]


@router.post("/sites", status_code=201)
async def add_site(request: SiteRequest, session: Session = Depends(require_unlocked_session)):
    site = await services.items.add_site(
        session, request.title or "", request.url or "", request.description, request.tags
    )
    return _site_response(site)


@router.put("/sites/{site_id}")
async def update_site(site_id: int, request: SiteRequest, session: Session = Depends(require_unlocked_session)):
    site = await services.items.update_site(
        session, site_id,
        title=request.title, url=request.url, description=request.description, tags=request.tags,
    )
    return _site_response(site)


@router.delete("/sites/{site_id}")
async def delete_site(site_id: int, session: Session = Depends(require_unlocked_session)):
    await services.items.delete_site(session, site_id)
    return {"success": True}


# Documents

@router.get("/documents")
async def list_documents(
    tag: Optional[List[str]] = Query(None),
    session: Session = Depends(require_unlocked_session),
):
    docs = await services.items.list_documents(session, tags=tag)
    return [_document_response(doc) for doc in docs]


@router.post("/documents", status_code=201)
async def add_document(request: AddDocumentRequest, session: Session = Depends(require_unlocked_session)):
    """Store a document with a file (base64 body), a link, or both."""
    file_bytes = None
    if request.file_base64 is not None:
        try:
            file_bytes = base64.b64decode(request.file_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("file_base64 is not valid base64") from e

    doc = await services.items.add_document(
        session,
        request.title,
        description=request.description,
        file_bytes=file_bytes,
        file_name=request.file_name,
        mime=request.mime,
        link_url=request.link_url,
        tags=request.tags,
    )
    return _document_response(doc)


@router.delete("/documents/{doc_id}")
async def delete_document(doc_id: int, session: Session = Depends(require_unlocked_session)):
    await services.items.delete_document(session, doc_id)
    return {"success": True}


@router.post("/documents/{doc_id}/open")
async def open_document(doc_id: int, session: Session = Depends(require_unlocked_session)):
    """Open the document's file (or link) with the host's default handler."""
    await services.items.open_document(session, doc_id)
    return {"success": True}


# Health & search

@router.get("/health")
async def password_health(session: Session = Depends(require_unlocked_session)):
    report = await services.health.analyze(session)
    return report.to_dict()


@router.get("/search")
async def search(
    q: str = Query("", max_length=200),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(require_unlocked_session),
):
    hits = await services.items.search(session, q, limit)
    return [hit.to_dict() for hit in hits]


# Backup

@router.get("/backup")
async def export_backup(session: Session = Depends(require_unlocked_session)):
    """Encrypted backup of the account's records, readable only with its master key."""
    blob = await services.items.export_backup(session)
    return {"email": session.email, "backup": blob}


@router.post("/backup")
async def import_backup(request: ImportBackupRequest, session: Session = Depends(require_unlocked_session)):
    """Replace the account's records with a backup exported from the same account."""
    summary = await services.items.import_backup(session, request.backup)
    return summary.to_dict()
