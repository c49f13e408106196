"""
End-user report endpoints: submit a lost/found report and list your own.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel

from auth.dependencies import get_db_session, require_user, get_realtime
from auth.security import SessionIdentity
from core.realtime import ConnectionManager
from services.report_service import ReportService, serialize_report


router = APIRouter(prefix="/user", tags=["reports"])


class ReportCreate(BaseModel):
    """Report submission. The submitter always comes from the session, never the body."""
    name: str
    description: Optional[str] = None
    location: str
    contact: str
    date_reported: date
    type: str


@router.post("/report")
async def submit_report(
    body: ReportCreate,
    identity: SessionIdentity = Depends(require_user),
    db: Session = Depends(get_db_session),
    manager: ConnectionManager = Depends(get_realtime)
):
    report = await ReportService.submit_report(
        db,
        manager,
        identity,
        name=body.name,
        description=body.description,
        location=body.location,
        contact=body.contact,
        date_reported=body.date_reported,
        report_type=body.type,
    )
    return {"message": "Report submitted successfully", "report": report}


@router.get("/my-reports")
async def my_reports(
    identity: SessionIdentity = Depends(require_user),
    db: Session = Depends(get_db_session)
):
    reports = ReportService.list_my_reports(db, identity)
    return {"reports": [serialize_report(r) for r in reports]}
