"""
Report lifecycle: user submissions and admin approval/rejection.

pending --approve--> approved
pending --reject---> rejected
Both outcomes are terminal; processing a resolved report is a Conflict and
repeats no side effects.
"""
from datetime import date, datetime
from typing import List, Optional, Tuple
import enum

from sqlalchemy.orm import Session

from database.models import ReportedItem, ReportStatus, ReportType
from auth.security import SessionIdentity
from services.item_service import ItemService, serialize_item
from services.notification_service import NotificationService
from core.realtime import ConnectionManager
from core.exceptions import ValidationError, NotFoundError, ConflictError
from core.validators import clean_text, require_text
from core.logger import logger


def serialize_report(report: ReportedItem) -> dict:
    status = report.status
    return {
        "id": report.id,
        "name": report.name,
        "description": report.description,
        "location": report.location,
        "contact": report.contact,
        "date_reported": report.date_reported.isoformat() if report.date_reported else None,
        "type": report.type,
        "status": status.value if isinstance(status, enum.Enum) else status,
        "submitter_email": report.submitter_email,
        "submitter_id": report.submitter_id,
        "created_at": report.created_at.isoformat() if report.created_at else None,
        "processed_at": report.processed_at.isoformat() if report.processed_at else None,
    }


def _parse_report_type(value: str) -> ReportType:
    try:
        return ReportType((value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Invalid report type '{value}'. Expected 'lost' or 'found'")


def _parse_status_filter(value: Optional[str]) -> Optional[ReportStatus]:
    if not value:
        return None
    try:
        return ReportStatus(value.strip().lower())
    except ValueError:
        raise ValidationError(
            f"Invalid status filter '{value}'. Expected one of: {', '.join(s.value for s in ReportStatus)}"
        )


class ReportService:
    """Submission, listing and disposition of reported items."""

    @staticmethod
    async def submit_report(
        db: Session,
        manager: ConnectionManager,
        submitter: SessionIdentity,
        name: str,
        location: str,
        contact: str,
        date_reported: date,
        report_type: str,
        description: Optional[str] = None
    ) -> dict:
        """
        Create a pending report stamped with the session's identity and tell admins.

        Returns:
            Serialized report
        """
        if date_reported is None:
            raise ValidationError("date_reported is required")
        parsed_type = _parse_report_type(report_type)

        report = ReportedItem(
            name=require_text(name, "Name"),
            description=clean_text(description, max_length=5000, field="Description"),
            location=require_text(location, "Location"),
            contact=require_text(contact, "Contact"),
            date_reported=date_reported,
            type=parsed_type.value,
            status=ReportStatus.PENDING,
            submitter_email=submitter.email,
            submitter_id=submitter.user_id,
        )
        db.add(report)
        db.commit()
        db.refresh(report)
        logger.info(f"Report {report.id} ({report.type}) submitted by user {submitter.user_id}")

        payload = serialize_report(report)
        await NotificationService.new_pending_report(manager, payload)
        return payload

    @staticmethod
    def list_my_reports(db: Session, submitter: SessionIdentity) -> List[ReportedItem]:
        return db.query(ReportedItem).filter(
            ReportedItem.submitter_id == submitter.user_id
        ).order_by(ReportedItem.date_reported, ReportedItem.id).all()

    @staticmethod
    def list_reports(db: Session, status: Optional[str] = None) -> List[ReportedItem]:
        """All reports for the admin queue, newest first, optionally filtered by status."""
        query = db.query(ReportedItem)
        status_filter = _parse_status_filter(status)
        if status_filter is not None:
            query = query.filter(ReportedItem.status == status_filter)
        return query.order_by(ReportedItem.id.desc()).all()

    @staticmethod
    def _load_pending(db: Session, report_id: int) -> ReportedItem:
        report = db.query(ReportedItem).filter(ReportedItem.id == report_id).first()
        if report is None:
            raise NotFoundError("Report not found")
        if report.status != ReportStatus.PENDING:
            current = getattr(report.status, "value", report.status)
            raise ConflictError(f"Report {report_id} has already been processed ({current})")
        return report

    @staticmethod
    def _claim(db: Session, report_id: int, new_status: ReportStatus):
        """
        Move a report out of pending atomically.

        Only one caller can match status == pending; the loser gets a Conflict.
        """
        updated = db.query(ReportedItem).filter(
            ReportedItem.id == report_id,
            ReportedItem.status == ReportStatus.PENDING
        ).update(
            {ReportedItem.status: new_status, ReportedItem.processed_at: datetime.utcnow()},
            synchronize_session=False
        )
        if updated == 0:
            db.rollback()
            raise ConflictError(f"Report {report_id} has already been processed")

    @staticmethod
    def approve_report(db: Session, report_id: int) -> Tuple[dict, dict]:
        """
        Approve a pending report and create its found/lost item in one transaction.

        Returns:
            (serialized report, serialized item)

        Raises:
            NotFoundError: No such report
            ConflictError: Report already approved or rejected
            ValidationError: Stored type is neither lost nor found
        """
        report = ReportService._load_pending(db, report_id)

        try:
            report_type = ReportType(report.type)
        except ValueError:
            logger.error(f"Report {report_id} has invalid type {report.type!r}; refusing to approve")
            raise ValidationError(f"Report {report_id} has an invalid type '{report.type}'")

        ReportService._claim(db, report_id, ReportStatus.APPROVED)

        try:
            if report_type == ReportType.FOUND:
                item = ItemService.create_found_item(
                    db,
                    name=report.name,
                    description=report.description,
                    location=report.location,
                    contact=report.contact,
                    date_found=report.date_reported,
                    source_report_id=report.id,
                    commit=False,
                )
            else:
                item = ItemService.create_lost_item(
                    db,
                    name=report.name,
                    description=report.description,
                    location=report.location,
                    contact=report.contact,
                    date_lost=report.date_reported,
                    owner=report.submitter_email,
                    source_report_id=report.id,
                    commit=False,
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(report)
        db.refresh(item)
        logger.info(f"Report {report_id} approved -> {report_type.value} item {item.id}")
        return serialize_report(report), serialize_item(item)

    @staticmethod
    def reject_report(db: Session, report_id: int) -> dict:
        ReportService._load_pending(db, report_id)
        ReportService._claim(db, report_id, ReportStatus.REJECTED)
        db.commit()

        report = db.query(ReportedItem).filter(ReportedItem.id == report_id).first()
        db.refresh(report)
        logger.info(f"Report {report_id} rejected")
        return serialize_report(report)

    @staticmethod
    async def approve(db: Session, manager: ConnectionManager, report_id: int) -> Tuple[dict, dict]:
        """Approve, then notify the submitter, every subscriber and the admins."""
        report, item = ReportService.approve_report(db, report_id)
        await NotificationService.report_approved(manager, report, item)
        return report, item

    @staticmethod
    async def reject(db: Session, manager: ConnectionManager, report_id: int) -> dict:
        report = ReportService.reject_report(db, report_id)
        await NotificationService.report_rejected(manager, report)
        return report
