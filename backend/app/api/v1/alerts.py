"""
FastAPI routes: emergency alerts.

Provides endpoints to:
    POST /api/v1/alerts                    — trigger an alert (201, status "sent")
    GET  /api/v1/alerts                    — history, newest first
    GET  /api/v1/alerts/stats              — counts per status
    POST /api/v1/alerts/test               — single-contact test
    GET  /api/v1/alerts/{id}               — detail with contact details
    PUT  /api/v1/alerts/{id}/status        — owner status update
    GET  /api/v1/alerts/{id}/deliveries    — delivery attempts so far
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.alerts.lifecycle import AlertLifecycleController
from backend.app.alerts.models import AlertRequest
from backend.app.api.deps import get_current_user, get_lifecycle
from backend.app.api.schemas import AlertCreate, AlertStatusUpdate
from backend.app.core.database import get_db
from backend.app.users.models import UserIdentity

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.post(
    "",
    status_code=201,
    summary="Trigger an emergency alert",
    description=(
        "Stores the alert, starts notifying every active contact in the "
        "background and returns immediately with status 'sent'."
    ),
)
async def trigger_alert(
    body: AlertCreate,
    request: Request,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleController = Depends(get_lifecycle),
) -> Dict[str, Any]:
    alert, _task = await lifecycle.trigger(db, user, AlertRequest(
        alert_type=body.alert_type,
        message=body.message,
        latitude=body.latitude,
        longitude=body.longitude,
        location_accuracy=body.location_accuracy,
        address=body.address,
        contact_police=body.contact_police,
        metadata={
            "user_agent": request.headers.get("user-agent"),
            "ip_address": request.client.host if request.client else None,
        },
    ))
    return {
        "message": "Emergency alert sent successfully",
        "alert": {
            "id": alert.id,
            "alertType": alert.alert_type.value,
            "status": alert.status.value,
            "contactsNotified": len(alert.contacts_notified),
            "policeContacted": alert.police_contacted,
            "createdAt": alert.created_at.isoformat(),
        },
    }


@router.get("", summary="Alert history")
async def alert_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleController = Depends(get_lifecycle),
) -> Dict[str, Any]:
    alerts = await lifecycle.history(db, user, limit=limit, offset=offset)
    return {
        "message": "Alert history retrieved successfully",
        "alerts": alerts,
        "count": len(alerts),
    }


@router.get("/stats", summary="Alert statistics")
async def alert_stats(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleController = Depends(get_lifecycle),
) -> Dict[str, Any]:
    return {
        "message": "Alert statistics retrieved successfully",
        "stats": await lifecycle.stats(db, user),
    }


@router.post("/test", summary="Test the alert system with the first active contact")
async def test_alert_system(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleController = Depends(get_lifecycle),
) -> Dict[str, Any]:
    alert, contact, attempts = await lifecycle.send_test(db, user)
    return {
        "message": "Emergency system test completed",
        "testAlert": {
            "id": alert.id,
            "contactTested": contact.name,
            "timestamp": alert.created_at.isoformat(),
            "deliveries": [a.to_dict() for a in attempts],
        },
    }


@router.get("/{alert_id}", summary="Alert detail")
async def alert_detail(
    alert_id: str,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleController = Depends(get_lifecycle),
) -> Dict[str, Any]:
    return {
        "message": "Alert details retrieved successfully",
        "alert": await lifecycle.detail(db, user, alert_id),
    }


@router.put("/{alert_id}/status", summary="Update alert status")
async def update_alert_status(
    alert_id: str,
    body: AlertStatusUpdate,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleController = Depends(get_lifecycle),
) -> Dict[str, Any]:
    alert = await lifecycle.update_status(db, user, alert_id, body.status, body.notes)
    return {
        "message": "Alert status updated successfully",
        "alert": {
            "id": alert.id,
            "status": alert.status.value,
            "acknowledgedAt": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
            "resolvedAt": alert.resolved_at.isoformat() if alert.resolved_at else None,
        },
    }


@router.get("/{alert_id}/deliveries", summary="Delivery attempts for an alert")
async def alert_deliveries(
    alert_id: str,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleController = Depends(get_lifecycle),
) -> Dict[str, Any]:
    return await lifecycle.deliveries(db, user, alert_id)
