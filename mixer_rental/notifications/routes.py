"""Notification rule, default and trigger routes."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..audit.service import audit, get_actor
from ..config import settings
from ..database.base import get_db
from ..dependencies import get_mail_sender
from ..integrations.mailer import MailSender
from ..rate_limit import limiter
from .rules import (
    apply_default_notifications,
    configure_notifications,
    get_notification_defaults,
    get_notification_history,
    get_notification_settings,
    initialize_default_notifications,
    update_notification_defaults,
)
from .scheduler import due_notifications_to_dicts, run_expiry_cycle, send_expiry_alerts
from .schemas import (
    ApplyDefaultsRequest,
    InitializeDefaultsRequest,
    NotificationDaysRequest,
    NotificationDefaultsRequest,
    SendAlertsRequest,
)

router = APIRouter(tags=["notifications"])


def _default_to_dict(default) -> dict:
    return {
        "id": str(default.id),
        "document_type": default.document_type,
        "days_before": default.days_before,
        "created_by": default.created_by,
        "updated_at": default.updated_at.isoformat() if default.updated_at else None,
    }


@router.get("/documents/{document_id}/notifications")
def notification_settings(document_id: str, db: Session = Depends(get_db)):
    rules = get_notification_settings(db, document_id)
    return JSONResponse(
        {
            "document_id": document_id,
            "notifications": [
                {"id": str(r.id), "days_before": r.days_before, "is_active": r.is_active} for r in rules
            ],
        }
    )


@router.put("/documents/{document_id}/notifications")
def notification_configure(
    request: Request,
    document_id: str,
    body: NotificationDaysRequest,
    db: Session = Depends(get_db),
):
    days = configure_notifications(db, document_id, body.days_before)
    audit(db, request, "notifications_configured", f"{document_id}: {days}")
    db.commit()
    return JSONResponse({"ok": True, "document_id": document_id, "days_before": days})


@router.get("/notifications/defaults")
def notification_defaults(document_type: str | None = None, db: Session = Depends(get_db)):
    defaults = get_notification_defaults(db, document_type)
    return JSONResponse({"defaults": [_default_to_dict(d) for d in defaults]})


@router.put("/notifications/defaults")
def notification_defaults_update(
    request: Request,
    body: NotificationDefaultsRequest,
    db: Session = Depends(get_db),
):
    default = update_notification_defaults(db, body.document_type, body.days_before, actor=get_actor(request))
    audit(db, request, "notification_defaults_updated", f"{default.document_type}: {default.days_before}")
    db.commit()
    return JSONResponse({"ok": True, "default": _default_to_dict(default)})


@router.post("/notifications/defaults/apply")
def notification_defaults_apply(
    request: Request,
    body: ApplyDefaultsRequest,
    db: Session = Depends(get_db),
):
    configured = apply_default_notifications(db, body.document_type)
    audit(db, request, "notification_defaults_applied", f"{body.document_type}: {configured} documents")
    db.commit()
    return JSONResponse({"ok": True, "document_type": body.document_type, "configured": configured})


@router.post("/notifications/defaults/initialize")
def notification_defaults_initialize(
    request: Request,
    body: InitializeDefaultsRequest,
    db: Session = Depends(get_db),
):
    configured = initialize_default_notifications(db, body.document_type)
    audit(db, request, "notification_defaults_initialized", str(configured))
    db.commit()
    return JSONResponse({"ok": True, "configured": configured, "total": sum(configured.values())})


@router.post("/notifications/check")
@limiter.limit(settings.rate_limit_manual_send)
def notification_check(
    request: Request,
    db: Session = Depends(get_db),
    mailer: MailSender = Depends(get_mail_sender),
):
    result = run_expiry_cycle(db, mailer)
    audit(db, request, "notifications_checked", f"{result['total']} due, {result['sent']} sent")
    db.commit()
    return JSONResponse(
        {
            "ok": True,
            "notifications": due_notifications_to_dicts(result["due"]),
            "sent": result["sent"],
            "failed": result["failed"],
            "skipped": result["skipped"],
            "total": result["total"],
        }
    )


@router.post("/notifications/send-alerts")
@limiter.limit(settings.rate_limit_manual_send)
def notification_send_alerts(
    request: Request,
    body: SendAlertsRequest,
    db: Session = Depends(get_db),
    mailer: MailSender = Depends(get_mail_sender),
):
    result = send_expiry_alerts(db, mailer, body.document_ids, force_send=body.force_send)
    audit(
        db,
        request,
        "expiry_alerts_sent",
        f"{result['sent']} sent, {result['failed']} failed, {result['skipped']} skipped",
    )
    db.commit()
    return JSONResponse({"ok": True, **result})


@router.get("/notifications/history")
def notification_history(
    document_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    history = get_notification_history(db, document_id, limit=limit, offset=offset)
    return JSONResponse({"history": history, "count": len(history)})
