"""Common response schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class EmailDeliveryLogResponse(BaseModel):
    id: uuid.UUID
    email_channel_id: uuid.UUID
    type: str
    status: str
    subject: Optional[str]
    recipient: Optional[str]
    ticket_id: Optional[uuid.UUID]
    error: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookDeliveryResponse(BaseModel):
    id: uuid.UUID
    webhook_id: uuid.UUID
    event_type: str
    payload: Optional[dict]
    response_status: Optional[int]
    response_body: Optional[str]
    duration_ms: Optional[int]
    attempt: int
    success: bool
    error: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookTestResponse(BaseModel):
    success: bool
    status: Optional[int] = None
    duration_ms: int = 0
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str = "1.0.0"
    db: str
    redis: str
