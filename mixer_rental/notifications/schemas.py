"""Notification request schemas.

Day lists are left untyped so the rule store can report every bad entry in
one validation error.
"""

from typing import Any

from pydantic import BaseModel, Field


class NotificationDaysRequest(BaseModel):
    days_before: list[Any] = Field(default_factory=list, max_length=60)


class NotificationDefaultsRequest(BaseModel):
    document_type: str
    days_before: list[Any] = Field(default_factory=list, max_length=60)


class ApplyDefaultsRequest(BaseModel):
    document_type: str


class InitializeDefaultsRequest(BaseModel):
    document_type: str | None = None


class SendAlertsRequest(BaseModel):
    document_ids: list[str] | None = Field(None, max_length=500)
    force_send: bool = False
