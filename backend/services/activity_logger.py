"""
Journal d'activité (collection activity_logs)

Une entrée par action d'un utilisateur: qui, quoi, sur quel objet, dans quel
marché. Les transitions du workflow sont en plus tracées dans event_log
(services/event_logger.py); ce journal-ci alimente l'écran "Activité" d'un
marché et l'historique d'un compte.
"""

import logging
import uuid
from typing import Optional, Dict, Any, List

from config import db, now_iso

logger = logging.getLogger("activity")

# Champs filtrables depuis l'API
ACTIVITY_FILTERS = ("user_id", "entity_type", "action", "marche_id")


def _actor(user: dict) -> Dict[str, str]:
    """Identité figée de l'auteur au moment de l'action"""
    nom = " ".join(p for p in (user.get("prenom"), user.get("nom")) if p)
    return {
        "user_id": user.get("id", "system"),
        "user_email": user.get("email", "system"),
        "user_nom": nom or "Système",
    }


async def log_activity(
    user: dict,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    entity_name: Optional[str] = None,
    marche_id: Optional[str] = None,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None
) -> dict:
    """
    Actions: create, update, delete, login, change_password,
             diffuse_version, process_visa, create_version, cancel_version,
             assign_role, remove_role, create_user, update_user, deactivate_user,
             create_fascicule, update_fascicule, delete_fascicule,
             ask_question, answer_question, delete_question
    Entity types: marche, document, version, visa, droit, user, settings,
                  fascicule, question
    """
    entry = {
        "id": str(uuid.uuid4()),
        **_actor(user),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "entity_name": entity_name,
        "marche_id": marche_id,
        "details": details or {},
        "ip_address": ip_address,
        "created_at": now_iso(),
    }

    await db.activity_logs.insert_one(entry)
    entry.pop("_id", None)
    logger.debug(f"[ACTIVITY] {entry['user_email']} {action} {entity_type}:{entity_id}")
    return entry


async def list_activity(
    filters: Dict[str, Any],
    since: Optional[str] = None,
    limit: int = 100,
    skip: int = 0
) -> dict:
    """Entrées les plus récentes d'abord. Les clés hors ACTIVITY_FILTERS sont ignorées."""
    query = {k: v for k, v in filters.items() if k in ACTIVITY_FILTERS and v}
    if since:
        query["created_at"] = {"$gte": since}

    logs = await db.activity_logs.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)
    total = await db.activity_logs.count_documents(query)

    return {"logs": logs, "total": total, "limit": limit, "skip": skip}


async def get_marche_activity(marche_id: str, limit: int = 10) -> List[dict]:
    return await db.activity_logs.find(
        {"marche_id": marche_id},
        {"_id": 0, "ip_address": 0}
    ).sort("created_at", -1).limit(limit).to_list(limit)
