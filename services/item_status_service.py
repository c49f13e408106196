"""
Status transitions for approved items.

Every transition is a compare-and-swap: the UPDATE only matches while the row
is still in an allowed source status, so two concurrent admin actions cannot
both succeed.
"""
from datetime import datetime
from typing import Dict, FrozenSet, Tuple
import enum

from sqlalchemy.orm import Session

from database.models import FoundItemStatus, LostItemStatus
from services.item_service import ItemService, ItemRef, ItemKind, serialize_item
from services.notification_service import NotificationService
from core.realtime import ConnectionManager
from core.exceptions import ConflictError
from core.logger import logger


class ItemAction(str, enum.Enum):
    MARK_CLAIMED = "mark-claimed"
    MARK_FOUND = "mark-found"
    MARK_EXPIRED = "mark-expired"


# (kind, action) -> (allowed source statuses, target status)
TRANSITIONS: Dict[Tuple[ItemKind, ItemAction], Tuple[FrozenSet[enum.Enum], enum.Enum]] = {
    (ItemKind.FOUND, ItemAction.MARK_CLAIMED): (frozenset({FoundItemStatus.AVAILABLE}), FoundItemStatus.CLAIMED),
    (ItemKind.FOUND, ItemAction.MARK_EXPIRED): (frozenset({FoundItemStatus.AVAILABLE}), FoundItemStatus.EXPIRED),
    (ItemKind.LOST, ItemAction.MARK_FOUND): (frozenset({LostItemStatus.MISSING}), LostItemStatus.FOUND),
    (ItemKind.LOST, ItemAction.MARK_EXPIRED): (frozenset({LostItemStatus.MISSING}), LostItemStatus.EXPIRED),
}

# Only archived rows may be deleted; live items must be closed out first
ARCHIVED_STATUSES: Dict[ItemKind, FrozenSet[enum.Enum]] = {
    ItemKind.FOUND: frozenset({FoundItemStatus.CLAIMED, FoundItemStatus.EXPIRED}),
    ItemKind.LOST: frozenset({LostItemStatus.FOUND, LostItemStatus.EXPIRED}),
}


def _label(ref: ItemRef) -> str:
    return f"{ref.kind.value.capitalize()} item {ref.id}"


def _status_value(status) -> str:
    return status.value if isinstance(status, enum.Enum) else str(status)


class ItemStatusService:
    """Admin-only item transitions. Each successful change is fanned out."""

    @staticmethod
    def transition(db: Session, ref: ItemRef, action: ItemAction) -> dict:
        """
        Apply one transition and commit.

        Returns:
            The serialized item after the change

        Raises:
            NotFoundError: No such item
            ConflictError: The action is not allowed from the item's current status
        """
        if (ref.kind, action) not in TRANSITIONS:
            raise ConflictError(f"Cannot {action.value} a {ref.kind.value} item")
        allowed_from, target = TRANSITIONS[(ref.kind, action)]
        model = ref.model

        # Raises NotFound before we try the update
        ItemService.get(db, ref)

        updated = db.query(model).filter(
            model.id == ref.id,
            model.status.in_(list(allowed_from))
        ).update(
            {model.status: target, model.updated_at: datetime.utcnow()},
            synchronize_session=False
        )
        if updated == 0:
            db.rollback()
            current = ItemService.get(db, ref)
            raise ConflictError(
                f"{_label(ref)} is already {_status_value(current.status)}; cannot {action.value}"
            )
        db.commit()

        item = ItemService.get(db, ref)
        db.refresh(item)
        logger.info(f"{_label(ref)} -> {_status_value(target)}")
        return serialize_item(item)

    @staticmethod
    async def mark_claimed(db: Session, manager: ConnectionManager, item_id: int) -> dict:
        item = ItemStatusService.transition(db, ItemRef(ItemKind.FOUND, item_id), ItemAction.MARK_CLAIMED)
        await NotificationService.item_status_updated(manager, item)
        return item

    @staticmethod
    async def mark_found(db: Session, manager: ConnectionManager, item_id: int) -> dict:
        item = ItemStatusService.transition(db, ItemRef(ItemKind.LOST, item_id), ItemAction.MARK_FOUND)
        await NotificationService.item_status_updated(manager, item)
        return item

    @staticmethod
    async def mark_expired(db: Session, manager: ConnectionManager, item_id: int) -> dict:
        """Expire a live item from either table; found items are looked up first."""
        ref = ItemService.resolve(db, item_id)
        item = ItemStatusService.transition(db, ref, ItemAction.MARK_EXPIRED)
        await NotificationService.item_status_updated(manager, item)
        return item

    @staticmethod
    async def delete(db: Session, manager: ConnectionManager, item_id: int) -> dict:
        """
        Delete an archived item (claimed/found/expired) from either table.

        Raises:
            NotFoundError: The id exists in neither table
            ConflictError: The item is still live
        """
        ref = ItemService.resolve(db, item_id)
        model = ref.model
        snapshot = serialize_item(ItemService.get(db, ref))

        deleted = db.query(model).filter(
            model.id == ref.id,
            model.status.in_(list(ARCHIVED_STATUSES[ref.kind]))
        ).delete(synchronize_session=False)
        if deleted == 0:
            db.rollback()
            current = ItemService.get(db, ref)
            raise ConflictError(
                f"{_label(ref)} is still {_status_value(current.status)}; only archived items can be deleted"
            )
        db.commit()
        logger.info(f"{_label(ref)} deleted")

        await NotificationService.item_deleted(manager, snapshot)
        return snapshot
