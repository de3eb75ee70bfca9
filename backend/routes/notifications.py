"""
Routes Notifications

Notifications internes de l'utilisateur connecté (visa à traiter, visa traité).
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from config import db, now_iso
from routes.auth import get_current_user

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
async def list_notifications(
    unread_only: bool = False,
    marche_id: Optional[str] = None,
    limit: int = 50,
    user: dict = Depends(get_current_user)
):
    query = {"user_id": user["id"]}
    if unread_only:
        query["lue"] = False
    if marche_id:
        query["marche_id"] = marche_id

    notifications = await db.notifications.find(query, {"_id": 0}) \
        .sort("created_at", -1).limit(limit).to_list(limit)
    unread = await db.notifications.count_documents({"user_id": user["id"], "lue": False})

    return {"notifications": notifications, "count": len(notifications), "unread": unread}


@router.put("/read-all")
async def mark_all_read(user: dict = Depends(get_current_user)):
    result = await db.notifications.update_many(
        {"user_id": user["id"], "lue": False},
        {"$set": {"lue": True, "read_at": now_iso()}}
    )
    return {"success": True, "updated": result.modified_count}


@router.put("/{notification_id}/read")
async def mark_read(notification_id: str, user: dict = Depends(get_current_user)):
    result = await db.notifications.update_one(
        {"id": notification_id, "user_id": user["id"]},
        {"$set": {"lue": True, "read_at": now_iso()}}
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Notification non trouvée")
    return {"success": True}


@router.delete("")
async def delete_all(user: dict = Depends(get_current_user)):
    result = await db.notifications.delete_many({"user_id": user["id"]})
    return {"success": True, "deleted": result.deleted_count}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, user: dict = Depends(get_current_user)):
    result = await db.notifications.delete_one({"id": notification_id, "user_id": user["id"]})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Notification non trouvée")
    return {"success": True}
