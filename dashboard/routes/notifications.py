"""REST API endpoints for run notifications."""

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from dashboard.services import RunServices, get_services

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class ReadRequest(BaseModel):
    """Request model for marking notifications as read."""

    user_id: str = Field(..., min_length=1, description="User marking the notifications")


class NotificationResponse(BaseModel):
    """Response model for a notification."""

    id: str
    test_id: str = Field(..., alias="testId")
    title: str
    message: str
    type: str
    created_at: str = Field(..., alias="createdAt")
    read_by: list[str] = Field(default_factory=list, alias="readBy")

    model_config = {"populate_by_name": True}


class NotificationListResponse(BaseModel):
    """Response model for listing notifications."""

    notifications: list[NotificationResponse] = Field(default_factory=list)
    total: int
    unread: int | None = Field(None, description="Unread count for user_id, if given")


@router.get("", response_model=NotificationListResponse, response_model_by_alias=True)
async def list_notifications(
    user_id: str | None = Query(None, description="Compute unread count for this user"),
    limit: int | None = Query(None, ge=1, le=500, description="Maximum notifications"),
    services: RunServices = Depends(get_services),
) -> dict[str, Any]:
    """List notifications, newest first."""
    notifications = await asyncio.to_thread(services.notifications.list_all, limit)
    unread = None
    if user_id:
        unread = sum(1 for n in notifications if not n.is_read_by(user_id))
    return {
        "notifications": [n.to_dict() for n in notifications],
        "total": len(notifications),
        "unread": unread,
    }


@router.post("/read-all")
async def mark_all_read(
    request: ReadRequest,
    services: RunServices = Depends(get_services),
) -> dict[str, Any]:
    """Mark every notification as read for a user."""
    updated = await asyncio.to_thread(services.notifications.mark_all_read, request.user_id)
    return {"updated": updated}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    request: ReadRequest,
    services: RunServices = Depends(get_services),
) -> dict[str, Any]:
    """Mark one notification as read for a user."""
    found = await asyncio.to_thread(
        services.notifications.mark_read, notification_id, request.user_id
    )
    if not found:
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return {"id": notification_id, "read": True}
