"""
Public (any signed-in role) item listings. Only live items are returned here;
archived items are an admin view.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.dependencies import get_db_session, require_any
from auth.security import SessionIdentity
from services.item_service import ItemService, serialize_found_item, serialize_lost_item


router = APIRouter(tags=["items"])


@router.get("/found-items")
async def list_found_items(
    identity: SessionIdentity = Depends(require_any),
    db: Session = Depends(get_db_session)
):
    """Found items still available for pickup, newest first."""
    return {"items": [serialize_found_item(i) for i in ItemService.list_live_found(db)]}


@router.get("/lost-items")
async def list_lost_items(
    identity: SessionIdentity = Depends(require_any),
    db: Session = Depends(get_db_session)
):
    """Lost items still missing, newest first."""
    return {"items": [serialize_lost_item(i) for i in ItemService.list_live_lost(db)]}
