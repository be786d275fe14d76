"""Machine document routes."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import clock
from ..audit.service import audit
from ..config import settings
from ..database.base import get_db
from .schemas import BulkRenewRequest, DocumentUpsertRequest, RenewRequest
from .service import (
    bulk_renew,
    delete_document,
    describe_document,
    get_document,
    get_document_stats,
    get_expiring_documents,
    list_documents,
    renew_document,
    upsert_document,
)

router = APIRouter(tags=["documents"])


@router.get("/documents")
def documents_list(
    machine_id: str | None = None,
    document_type: str | None = None,
    status: str | None = None,
    expiring_within_days: int | None = Query(None, ge=0, le=3650),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    documents = list_documents(
        db,
        machine_id=machine_id,
        document_type=document_type,
        status=status,
        expiring_within_days=expiring_within_days,
        limit=limit,
        offset=offset,
    )
    return JSONResponse({"documents": documents, "count": len(documents)})


@router.post("/documents")
def documents_upsert(
    request: Request,
    body: DocumentUpsertRequest,
    db: Session = Depends(get_db),
):
    result = upsert_document(
        db,
        body.machine_id,
        body.document_type,
        body.expiry_date,
        body.last_renewed_date,
        body.remarks,
    )
    audit(db, request, f"document_{result.action}", f"{body.document_type} for machine {body.machine_id}")
    db.commit()
    return JSONResponse(
        {"ok": True, "id": str(result.id), "action": result.action},
        status_code=201 if result.action == "created" else 200,
    )


@router.get("/documents/expiring")
def documents_expiring(
    days: int = Query(settings.expiring_window_days, ge=0, le=365),
    db: Session = Depends(get_db),
):
    today = clock.today()
    documents = [describe_document(doc, today) for doc in get_expiring_documents(db, days, today=today)]
    return JSONResponse({"documents": documents, "count": len(documents), "days_ahead": days})


@router.get("/documents/stats")
def documents_stats(db: Session = Depends(get_db)):
    return JSONResponse(get_document_stats(db))


@router.post("/documents/bulk-renew")
def documents_bulk_renew(
    request: Request,
    body: BulkRenewRequest,
    db: Session = Depends(get_db),
):
    result = bulk_renew(db, body.document_ids, body.new_expiry_dates, body.remarks)
    audit(db, request, "documents_bulk_renewed", f"{result.renewed} renewed, {len(result.not_found)} not found")
    db.commit()
    return JSONResponse({"ok": True, "renewed": result.renewed, "not_found": result.not_found})


@router.get("/documents/{document_id}")
def documents_get(document_id: str, db: Session = Depends(get_db)):
    return JSONResponse({"document": describe_document(get_document(db, document_id), clock.today())})


@router.delete("/documents/{document_id}")
def documents_delete(
    request: Request,
    document_id: str,
    db: Session = Depends(get_db),
):
    delete_document(db, document_id)
    audit(db, request, "document_deleted", document_id)
    db.commit()
    return JSONResponse({"ok": True})


@router.post("/documents/{document_id}/renew")
def documents_renew(
    request: Request,
    document_id: str,
    body: RenewRequest,
    db: Session = Depends(get_db),
):
    today = clock.today()
    doc = renew_document(db, document_id, body.new_expiry_date, body.remarks, today=today)
    audit(db, request, "document_renewed", f"{doc.id} until {doc.expiry_date.isoformat()}")
    db.commit()
    return JSONResponse({"ok": True, "document": describe_document(doc, today)})
