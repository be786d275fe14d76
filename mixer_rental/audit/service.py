"""Audit log service."""

from fastapi import Request
from sqlalchemy.orm import Session

from .models import AuditLog

ACTOR_HEADER = "X-Actor"


def _get_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def get_actor(request: Request) -> str:
    return (request.headers.get(ACTOR_HEADER) or "").strip()[:255] or "system"


def audit(db: Session, request: Request, action: str, detail: str = "", actor: str | None = None) -> None:
    """Write an audit log entry. The caller commits."""
    db.add(
        AuditLog(
            actor=actor or get_actor(request),
            action=action,
            detail=detail,
            ip_address=_get_ip(request),
        )
    )
