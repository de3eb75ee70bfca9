"""
Routes Event Log (piste d'audit du workflow)
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

from config import db
from services.permissions import require_permission, require_marche_access

router = APIRouter(prefix="/event-log", tags=["EventLog"])


@router.get("")
async def list_events(
    marche_id: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    user: Optional[str] = Query(None, alias="user_filter"),
    limit: int = 100,
    skip: int = 0,
    current_user: dict = Depends(require_permission("activity.view"))
):
    """Liste les events avec filtres"""
    query = {}
    if marche_id:
        await require_marche_access(current_user, marche_id)
        query["marche_id"] = marche_id
    elif current_user.get("role_global") != "ADMIN":
        raise HTTPException(status_code=400, detail="marche_id requis")

    if action:
        query["action"] = action
    if entity_type:
        query["entity_type"] = entity_type
    if entity_id:
        query["$or"] = [
            {"entity_id": entity_id},
            {"related.document_id": entity_id},
            {"related.version_id": entity_id},
            {"related.visa_id": entity_id}
        ]
    if user:
        query["user"] = {"$regex": user, "$options": "i"}

    events = await db.event_log.find(
        query, {"_id": 0}
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)

    total = await db.event_log.count_documents(query)

    return {"events": events, "count": len(events), "total": total}


@router.get("/actions")
async def list_action_types(
    current_user: dict = Depends(require_permission("activity.view"))
):
    """Liste les types d'actions distincts dans le log"""
    actions = await db.event_log.distinct("action")
    return {"actions": sorted(actions)}
