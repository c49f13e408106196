"""
Admin endpoints: report queue, approval/rejection, direct item creation,
archive views and item status transitions.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel

from auth.dependencies import get_db_session, require_admin, get_realtime
from auth.security import SessionIdentity
from core.exceptions import ValidationError
from core.realtime import ConnectionManager
from core.logger import logger
from services.report_service import ReportService, serialize_report
from services.item_service import ItemService, serialize_item, serialize_found_item
from services.item_status_service import ItemStatusService
from services.notification_service import NotificationService
from services.audit_service import AuditService


router = APIRouter(prefix="/admin", tags=["admin"])


class FoundItemCreate(BaseModel):
    """Direct found-item creation by the lost & found office."""
    name: str
    description: Optional[str] = None
    location: str
    contact: str
    date_found: date


def parse_id(value: str, label: str = "id") -> int:
    """Path ids arrive as strings so a malformed id is a 400, not a 422."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}: {value!r}")
    if parsed <= 0:
        raise ValidationError(f"Invalid {label}: {value!r}")
    return parsed


def _audit(db: Session, request: Request, identity: SessionIdentity, action: str, resource_type: str, resource_id, details=None):
    AuditService.log_from_request(
        db=db,
        request=request,
        action=action,
        user_id=identity.user_id,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details
    )


# ============================================================================
# Reports
# ============================================================================

@router.get("/reports")
async def list_reports(
    status: Optional[str] = Query(None, description="pending | approved | rejected"),
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    """All submitted reports, newest first."""
    reports = ReportService.list_reports(db, status)
    return {"reports": [serialize_report(r) for r in reports]}


@router.post("/reports/{report_id}/approve")
async def approve_report(
    report_id: str,
    request: Request,
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session),
    manager: ConnectionManager = Depends(get_realtime)
):
    """
    Approve a pending report.
    Creates exactly one found/lost item; approving again is a 409.
    """
    rid = parse_id(report_id, "report id")
    report, item = await ReportService.approve(db, manager, rid)
    _audit(db, request, identity, "report_approve", "report", rid, {"item_kind": item["kind"], "item_id": item["id"]})
    return {"message": "Report approved", "report": report, "item": item}


@router.post("/reports/{report_id}/reject")
async def reject_report(
    report_id: str,
    request: Request,
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session),
    manager: ConnectionManager = Depends(get_realtime)
):
    rid = parse_id(report_id, "report id")
    report = await ReportService.reject(db, manager, rid)
    _audit(db, request, identity, "report_reject", "report", rid)
    return {"message": "Report rejected", "report": report}


# ============================================================================
# Items
# ============================================================================

@router.post("/items")
async def create_found_item(
    body: FoundItemCreate,
    request: Request,
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session),
    manager: ConnectionManager = Depends(get_realtime)
):
    """Add a found item directly (e.g. handed in at the office)."""
    item = ItemService.create_found_item(
        db,
        name=body.name,
        description=body.description,
        location=body.location,
        contact=body.contact,
        date_found=body.date_found,
    )
    payload = serialize_found_item(item)
    _audit(db, request, identity, "found_item_create", "found_item", item.id)
    await NotificationService.new_found_item(manager, payload)
    return {"message": "Item added successfully", "item": payload}


@router.get("/archive")
async def archive(
    type: str = Query(..., description="claimed | reunited | expired"),
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    items = ItemService.list_archive(db, type.strip().lower())
    return {"items": [serialize_item(i) for i in items]}


@router.post("/found-items/{item_id}/mark-claimed")
async def mark_claimed(
    item_id: str,
    request: Request,
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session),
    manager: ConnectionManager = Depends(get_realtime)
):
    iid = parse_id(item_id, "item id")
    item = await ItemStatusService.mark_claimed(db, manager, iid)
    _audit(db, request, identity, "item_mark_claimed", "found_item", iid)
    return {"message": "Item marked as claimed", "item": item}


@router.post("/lost-items/{item_id}/mark-found")
async def mark_found(
    item_id: str,
    request: Request,
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session),
    manager: ConnectionManager = Depends(get_realtime)
):
    iid = parse_id(item_id, "item id")
    item = await ItemStatusService.mark_found(db, manager, iid)
    _audit(db, request, identity, "item_mark_found", "lost_item", iid)
    return {"message": "Item marked as found", "item": item}


@router.post("/item/{item_id}/mark-expired")
async def mark_expired(
    item_id: str,
    request: Request,
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session),
    manager: ConnectionManager = Depends(get_realtime)
):
    """Expire a live found or lost item. Found items are matched first."""
    iid = parse_id(item_id, "item id")
    item = await ItemStatusService.mark_expired(db, manager, iid)
    _audit(db, request, identity, "item_mark_expired", f"{item['kind']}_item", iid)
    return {"message": "Item marked as expired", "item": item}


@router.delete("/item/delete/{item_id}")
async def delete_item(
    item_id: str,
    request: Request,
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session),
    manager: ConnectionManager = Depends(get_realtime)
):
    """Delete an archived item. Live items must be claimed, found or expired first."""
    iid = parse_id(item_id, "item id")
    item = await ItemStatusService.delete(db, manager, iid)
    _audit(db, request, identity, "item_delete", f"{item['kind']}_item", iid, {"name": item["name"]})
    logger.info(f"Admin {identity.email} deleted {item['kind']} item {iid}")
    return {"message": "Item deleted successfully", "item": item}


@router.get("/audit-logs")
async def audit_logs(
    limit: int = Query(50, ge=1, le=500),
    action: Optional[str] = Query(None),
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    """Most recent audit entries, newest first."""
    logs = AuditService.recent(db, limit=limit, action=action)
    return {
        "logs": [
            {
                "id": log.id,
                "user_id": log.user_id,
                "action": log.action,
                "resource_type": log.resource_type,
                "resource_id": log.resource_id,
                "ip_address": log.ip_address,
                "details": log.details,
                "created_at": log.created_at.isoformat(),
            }
            for log in logs
        ]
    }
