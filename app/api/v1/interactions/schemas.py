"""
Interaction schemas for request/response validation
"""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime
import uuid

class InteractionResponse(BaseModel):
    """Schema for an interaction request as seen by either party"""
    id: uuid.UUID
    client_id: uuid.UUID
    companion_id: uuid.UUID
    payment_id: Optional[uuid.UUID] = None
    interaction_type: str
    service_type: Optional[str] = None
    status: str
    payment_status: Optional[str] = None
    amount_cents: Optional[int] = None
    duration_minutes: int
    expires_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    service_completed_at: Optional[datetime] = None
    session_ends_at: Optional[datetime] = None
    session_ended: bool = False
    created_at: Optional[datetime] = None

class RejectResponse(BaseModel):
    status: str
    refunded_cents: int

class ServiceDoneResponse(BaseModel):
    status: str
    message: str
    released_cents: int
