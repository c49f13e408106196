"""
Dashboard stats for the admin panel.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func

from database.models import (
    User, ReportedItem, ReportStatus, FoundItem, FoundItemStatus, LostItem, LostItemStatus
)
from auth.dependencies import get_db_session, require_admin
from auth.security import SessionIdentity


router = APIRouter(prefix="/admin", tags=["dashboards"])


def _counts_by_status(db: Session, model, statuses) -> dict:
    rows = db.query(model.status, func.count(model.id)).group_by(model.status).all()
    counts = {s.value: 0 for s in statuses}
    for status, count in rows:
        key = status.value if hasattr(status, "value") else str(status)
        counts[key] = count
    return counts


@router.get("/stats")
async def admin_stats(
    identity: SessionIdentity = Depends(require_admin),
    db: Session = Depends(get_db_session)
):
    """
    Aggregate counts for the admin dashboard.
    Admin only.
    """
    reports = _counts_by_status(db, ReportedItem, ReportStatus)
    found = _counts_by_status(db, FoundItem, FoundItemStatus)
    lost = _counts_by_status(db, LostItem, LostItemStatus)

    total_users = db.query(func.count(User.id)).scalar() or 0
    verified_users = db.query(func.count(User.id)).filter(User.is_verified == True).scalar() or 0

    # Top locations across both item tables
    location_rows = (
        db.query(FoundItem.location, func.count(FoundItem.id)).group_by(FoundItem.location).all()
        + db.query(LostItem.location, func.count(LostItem.id)).group_by(LostItem.location).all()
    )
    by_location: dict = {}
    for location, count in location_rows:
        by_location[location] = by_location.get(location, 0) + count
    top_locations = sorted(by_location.items(), key=lambda kv: (-kv[1], kv[0]))[:5]

    return {
        "reports": {**reports, "total": sum(reports.values())},
        "found_items": {**found, "total": sum(found.values())},
        "lost_items": {**lost, "total": sum(lost.values())},
        "live_items": found[FoundItemStatus.AVAILABLE.value] + lost[LostItemStatus.MISSING.value],
        "archived_items": (
            found[FoundItemStatus.CLAIMED.value] + found[FoundItemStatus.EXPIRED.value]
            + lost[LostItemStatus.FOUND.value] + lost[LostItemStatus.EXPIRED.value]
        ),
        "users": {"total": total_users, "verified": verified_users},
        "top_locations": [{"location": loc, "count": count} for loc, count in top_locations],
    }
