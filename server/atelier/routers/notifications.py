from fastapi import APIRouter, Depends, Query

from atelier.database.connection import mongo_db_dependency
from atelier.repositories.notification_repository import NotificationRepository
from atelier.services.errors import NotFoundError
from atelier.utils.dependencies import get_current_user
from atelier.utils.ids import as_utc, parse_object_id


router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_repo(db = Depends(mongo_db_dependency)) -> NotificationRepository:
    return NotificationRepository(db)


def _serialize(doc: dict) -> dict:
    return {
        "id": doc["_id"],
        "type": doc.get("type"),
        "title": doc.get("title"),
        "message": doc.get("message"),
        "link": doc.get("link"),
        "read": bool(doc.get("read")),
        "created_at": as_utc(doc["created_at"]).isoformat(),
    }


def _notification_oid(notification_id: str):
    oid = parse_object_id(notification_id)
    if oid is None:
        raise NotFoundError("Notification not found")
    return oid


@router.get("")
async def list_notifications(limit: int = Query(50, ge=1, le=200), current_user: dict = Depends(get_current_user), repo: NotificationRepository = Depends(get_notification_repo)):
    items = await repo.list_for_user(current_user["_id"], limit=limit)
    return {"items": [_serialize(it) for it in items]}


@router.get("/unread-count")
async def unread_count(current_user: dict = Depends(get_current_user), repo: NotificationRepository = Depends(get_notification_repo)):
    return {"unread": await repo.count_unread(current_user["_id"])}


@router.post("/read-all")
async def mark_all_read(current_user: dict = Depends(get_current_user), repo: NotificationRepository = Depends(get_notification_repo)):
    return {"updated": await repo.mark_all_read(current_user["_id"])}


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, current_user: dict = Depends(get_current_user), repo: NotificationRepository = Depends(get_notification_repo)):
    if not await repo.mark_read(_notification_oid(notification_id), current_user["_id"]):
        raise NotFoundError("Notification not found")
    return {"ok": True}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, current_user: dict = Depends(get_current_user), repo: NotificationRepository = Depends(get_notification_repo)):
    if not await repo.delete(_notification_oid(notification_id), current_user["_id"]):
        raise NotFoundError("Notification not found")
    return {"ok": True}
