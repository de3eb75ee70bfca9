"""
Routes Activité

Journal des actions utilisateurs (collection activity_logs).
Sans marche_id, le journal complet est réservé aux comptes activity.view;
avec marche_id, tout membre du marché peut consulter l'activité de ce marché.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from routes.auth import get_current_user
from services.activity_logger import list_activity
from services.permissions import require_marche_access, user_has_permission

router = APIRouter(prefix="/activity", tags=["Activité"])


@router.get("")
async def get_activity(
    marche_id: Optional[str] = None,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    since: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    user: dict = Depends(get_current_user)
):
    if marche_id:
        await require_marche_access(user, marche_id)
    elif not user_has_permission(user, "activity.view"):
        raise HTTPException(status_code=403, detail="Permission requise: activity.view")

    return await list_activity(
        {"marche_id": marche_id, "user_id": user_id, "entity_type": entity_type, "action": action},
        since=since,
        limit=min(max(limit, 1), 500),
        skip=max(skip, 0)
    )
