"""Document request schemas."""

from pydantic import BaseModel, Field


class DocumentUpsertRequest(BaseModel):
    machine_id: str
    document_type: str
    expiry_date: str | None = None
    last_renewed_date: str | None = None
    remarks: str | None = Field(None, max_length=2000)


class RenewRequest(BaseModel):
    new_expiry_date: str | None = None
    remarks: str | None = Field(None, max_length=2000)


class BulkRenewRequest(BaseModel):
    document_ids: list[str] = Field(default_factory=list, max_length=500)
    new_expiry_dates: list[str] = Field(default_factory=list, max_length=500)
    remarks: str | None = Field(None, max_length=2000)
