"""
Event Logger

Piste d'audit des transitions du workflow (diffusion, visa, nouvelle version).
Single function to call from the state machine.
"""

import uuid
from config import db, now_iso


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    marche_id: str = "",
    details: dict = None,
    related: dict = None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. diffuse_version, process_visa, create_version
        entity_type: document | version | visa
        entity_id: ID of the primary entity
        user: email of user performing action
        marche_id: marché owning the entity
        details: free-form dict (from_status, to_status, visa_type, ...)
        related: linked entity IDs (document_id, version_id, visa_id, ...)
    """
    await db.event_log.insert_one({
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "marche_id": marche_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    })


async def get_events(entity_id: str = None, marche_id: str = None, limit: int = 100):
    """Liste les évènements (plus récents d'abord)"""
    query = {}
    if entity_id:
        query["$or"] = [
            {"entity_id": entity_id},
            {"related.document_id": entity_id},
        ]
    if marche_id:
        query["marche_id"] = marche_id

    return await db.event_log.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)
