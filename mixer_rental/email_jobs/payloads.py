"""Typed payloads for each email job type.

Every EmailJobType maps to exactly one payload model; the queue validates the
JSON column through this registry instead of poking at raw dict keys.
"""

from dataclasses import dataclass
from datetime import date
from html import escape
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .models import EmailJobType


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    body: str


class DocumentExpiryPayload(BaseModel):
    document_id: UUID
    machine_number: str
    machine_name: str = ""
    document_type: str
    expiry_date: date
    days_until_expiry: int
    days_before: int | None = None  # threshold that fired; None for manual alerts

    def render(self) -> RenderedEmail:
        if self.days_until_expiry <= 0:
            headline = "This document has EXPIRED!"
        else:
            headline = f"This document expires in {self.days_until_expiry} days!"

        color = "red" if self.days_until_expiry <= 0 else "orange" if self.days_until_expiry <= 7 else "blue"
        body = f"""\
<div style="font-family:Arial,sans-serif; max-width:600px; margin:0 auto;">
  <h2 style="color:#0081C9;">Document Expiry Alert</h2>
  <div style="background-color:#f8f9fa; padding:20px; border-radius:8px; margin:20px 0;">
    <p><strong>Machine:</strong> {escape(self.machine_number)}</p>
    <p><strong>Machine Name:</strong> {escape(self.machine_name or "N/A")}</p>
    <p><strong>Document Type:</strong> {escape(self.document_type)}</p>
    <p><strong>Expiry Date:</strong> {self.expiry_date.strftime("%d/%m/%Y")}</p>
  </div>
  <p style="color:{color}; font-weight:bold;">{headline}</p>
  <p>Please renew this document to avoid compliance issues and keep the machine on hire.</p>
  <p style="color:#666; font-size:12px;">This is an automated notification from the rental back-office.</p>
</div>"""
        return RenderedEmail(
            subject=f"Document Expiry Alert - {self.machine_number} ({self.document_type})",
            body=body,
        )


PAYLOAD_MODELS: dict[EmailJobType, type[BaseModel]] = {
    EmailJobType.DOCUMENT_EXPIRY: DocumentExpiryPayload,
}


def parse_payload(job_type: EmailJobType, raw: dict) -> BaseModel:
    """Validate a stored payload against the model registered for its job type."""
    model = PAYLOAD_MODELS[EmailJobType(job_type)]
    try:
        return model.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {job_type} payload",
            details=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()],
        ) from exc
