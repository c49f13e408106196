"""
Realtime notifications for report and item lifecycle changes.

Call these only after the database change has been committed; a client that
hears an event may immediately refetch.
"""
from core.realtime import ConnectionManager, EventType
from core.logger import logger


class NotificationService:
    """Maps lifecycle changes onto realtime audiences."""

    @staticmethod
    async def new_pending_report(manager: ConnectionManager, report: dict):
        """Admins only; users never see each other's pending queue."""
        await manager.broadcast_to_admins(EventType.NEW_PENDING_REPORT, {"report": report})

    @staticmethod
    async def report_approved(manager: ConnectionManager, report: dict, item: dict):
        delivered = await manager.send_to_user(
            report["submitter_email"],
            EventType.YOUR_REPORT_STATUS_UPDATE,
            {"report": report, "status": "approved", "item": item},
        )
        await manager.broadcast_all(EventType.NEW_ITEM_APPROVED, {"item": item})
        await manager.broadcast_to_admins(EventType.REPORT_APPROVED, {"report": report, "item": item})
        logger.debug(f"Report {report['id']} approval pushed to {delivered} submitter connection(s)")

    @staticmethod
    async def report_rejected(manager: ConnectionManager, report: dict):
        await manager.send_to_user(
            report["submitter_email"],
            EventType.YOUR_REPORT_STATUS_UPDATE,
            {"report": report, "status": "rejected", "item": None},
        )
        await manager.broadcast_to_admins(EventType.REPORT_REJECTED, {"report": report})

    @staticmethod
    async def item_status_updated(manager: ConnectionManager, item: dict):
        event_type = (
            EventType.FOUND_ITEM_STATUS_UPDATED if item["kind"] == "found"
            else EventType.LOST_ITEM_STATUS_UPDATED
        )
        await manager.broadcast_all(event_type, {"item": item})

    @staticmethod
    async def item_deleted(manager: ConnectionManager, item: dict):
        event_type = (
            EventType.FOUND_ITEM_DELETED if item["kind"] == "found"
            else EventType.LOST_ITEM_DELETED
        )
        await manager.broadcast_all(event_type, {"id": item["id"], "item": item})

    @staticmethod
    async def new_found_item(manager: ConnectionManager, item: dict):
        await manager.broadcast_all(EventType.NEW_FOUND_ITEM, {"item": item})
