"""
Item store: found and lost items, live versus archived views.
"""
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Union
import enum

from sqlalchemy.orm import Session

from database.models import FoundItem, LostItem, FoundItemStatus, LostItemStatus
from core.exceptions import ValidationError, NotFoundError
from core.validators import clean_text, require_text
from core.logger import logger


class ItemKind(str, enum.Enum):
    FOUND = "found"
    LOST = "lost"


@dataclass(frozen=True)
class ItemRef:
    """Tagged reference to a row in one of the two item tables."""
    kind: ItemKind
    id: int

    @property
    def model(self):
        return FoundItem if self.kind == ItemKind.FOUND else LostItem


Item = Union[FoundItem, LostItem]

ARCHIVE_VIEWS = ("claimed", "reunited", "expired")


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _status(value) -> str:
    return value.value if isinstance(value, enum.Enum) else value


def serialize_found_item(item: FoundItem) -> dict:
    return {
        "id": item.id,
        "kind": ItemKind.FOUND.value,
        "name": item.name,
        "description": item.description,
        "location": item.location,
        "contact": item.contact,
        "date_found": _iso(item.date_found),
        "status": _status(item.status),
        "source_report_id": item.source_report_id,
        "updated_at": _iso(item.updated_at),
    }


def serialize_lost_item(item: LostItem) -> dict:
    return {
        "id": item.id,
        "kind": ItemKind.LOST.value,
        "name": item.name,
        "description": item.description,
        "location": item.location,
        "contact": item.contact,
        "owner": item.owner,
        "date_lost": _iso(item.date_lost),
        "status": _status(item.status),
        "source_report_id": item.source_report_id,
        "updated_at": _iso(item.updated_at),
    }


def serialize_item(item: Item) -> dict:
    if isinstance(item, FoundItem):
        return serialize_found_item(item)
    return serialize_lost_item(item)


class ItemService:
    """Data access for found and lost items."""

    @staticmethod
    def create_found_item(
        db: Session,
        name: str,
        location: str,
        contact: str,
        date_found: date,
        description: Optional[str] = None,
        source_report_id: Optional[int] = None,
        commit: bool = True
    ) -> FoundItem:
        """
        Insert a found item with status=available.

        With commit=False the row is only flushed, so the caller can make it part
        of a larger transaction (report approval).
        """
        if date_found is None:
            raise ValidationError("date_found is required")
        item = FoundItem(
            name=require_text(name, "Name"),
            description=clean_text(description, max_length=5000, field="Description"),
            location=require_text(location, "Location"),
            contact=require_text(contact, "Contact"),
            date_found=date_found,
            status=FoundItemStatus.AVAILABLE,
            source_report_id=source_report_id,
        )
        db.add(item)
        if commit:
            db.commit()
            db.refresh(item)
            logger.info(f"Created found item {item.id}")
        else:
            db.flush()
        return item

    @staticmethod
    def create_lost_item(
        db: Session,
        name: str,
        location: str,
        contact: str,
        date_lost: date,
        description: Optional[str] = None,
        owner: Optional[str] = None,
        source_report_id: Optional[int] = None,
        commit: bool = True
    ) -> LostItem:
        """Insert a lost item with status=missing. owner is the submitter email, if any."""
        if date_lost is None:
            raise ValidationError("date_lost is required")
        item = LostItem(
            name=require_text(name, "Name"),
            description=clean_text(description, max_length=5000, field="Description"),
            location=require_text(location, "Location"),
            contact=require_text(contact, "Contact"),
            owner=owner,
            date_lost=date_lost,
            status=LostItemStatus.MISSING,
            source_report_id=source_report_id,
        )
        db.add(item)
        if commit:
            db.commit()
            db.refresh(item)
            logger.info(f"Created lost item {item.id}")
        else:
            db.flush()
        return item

    @staticmethod
    def list_live_found(db: Session) -> List[FoundItem]:
        """Found items still waiting to be claimed, newest first."""
        return db.query(FoundItem).filter(
            FoundItem.status == FoundItemStatus.AVAILABLE
        ).order_by(FoundItem.id.desc()).all()

    @staticmethod
    def list_live_lost(db: Session) -> List[LostItem]:
        return db.query(LostItem).filter(
            LostItem.status == LostItemStatus.MISSING
        ).order_by(LostItem.id.desc()).all()

    @staticmethod
    def list_archive(db: Session, view: str) -> List[Item]:
        """
        Archived items for one of the archive views.

        - claimed: found items handed back to their owner
        - reunited: lost items that turned up
        - expired: expired rows from both tables, most recently archived first

        Raises:
            ValidationError: Unknown view name
        """
        if view == "claimed":
            return db.query(FoundItem).filter(
                FoundItem.status == FoundItemStatus.CLAIMED
            ).order_by(FoundItem.id.desc()).all()

        if view == "reunited":
            return db.query(LostItem).filter(
                LostItem.status == LostItemStatus.FOUND
            ).order_by(LostItem.id.desc()).all()

        if view == "expired":
            found = db.query(FoundItem).filter(FoundItem.status == FoundItemStatus.EXPIRED).all()
            lost = db.query(LostItem).filter(LostItem.status == LostItemStatus.EXPIRED).all()
            # Ids from different tables are not comparable; order by archive time instead
            return sorted(found + lost, key=lambda i: (i.updated_at, i.id), reverse=True)

        raise ValidationError(f"Invalid archive type. Expected one of: {', '.join(ARCHIVE_VIEWS)}")

    @staticmethod
    def resolve(db: Session, item_id: int) -> ItemRef:
        """
        Find which table holds an item id. Found items are checked first.

        Raises:
            NotFoundError: The id exists in neither table
        """
        if db.query(FoundItem.id).filter(FoundItem.id == item_id).first() is not None:
            return ItemRef(ItemKind.FOUND, item_id)
        if db.query(LostItem.id).filter(LostItem.id == item_id).first() is not None:
            return ItemRef(ItemKind.LOST, item_id)
        raise NotFoundError("Item not found")

    @staticmethod
    def get(db: Session, ref: ItemRef) -> Item:
        item = db.query(ref.model).filter(ref.model.id == ref.id).first()
        if item is None:
            raise NotFoundError(f"{ref.kind.value.capitalize()} item not found")
        return item
