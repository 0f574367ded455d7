"""Pydantic schemas for the provider inbox."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class NotificationResponse(BaseModel):
    """One inbox entry for a new connection."""

    id: str
    event_type: str = Field(..., description="connection_created")
    title: str
    message: str
    action_url: Optional[str] = None
    entity_type: Optional[str] = Field(None, description="e.g. connection")
    entity_id: Optional[str] = Field(None, description="Connection record id (user_provider)")
    status: str = Field(..., description="unread or read")
    created_at: datetime
    read_at: Optional[datetime] = None


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    total: int = Field(..., description="Entries matching the status filter")
    unread_count: int


class MarkReadResponse(BaseModel):
    success: bool


class UnreadCountResponse(BaseModel):
    count: int
