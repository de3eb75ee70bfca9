"""
Service Notifications

Notifications internes envoyées aux acteurs d'un marché lors des étapes du workflow:
- diffusion d'une version -> MOE du marché (visa à traiter)
- traitement d'un visa -> demandeur du visa (résultat)
"""

import logging
import uuid
from typing import List, Optional

from config import db, now_iso

logger = logging.getLogger("notifications")


async def create_notification(
    user_id: str,
    marche_id: str,
    type: str,
    titre: str,
    message: str,
    objet_type: str,
    objet_id: str
) -> dict:
    notif = {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "marche_id": marche_id,
        "type": type,
        "titre": titre,
        "message": message,
        "objet_type": objet_type,
        "objet_id": objet_id,
        "lue": False,
        "created_at": now_iso()
    }
    await db.notifications.insert_one(notif)
    notif.pop("_id", None)
    return notif


async def get_marche_users_with_role(marche_id: str, role: str) -> List[str]:
    """
    IDs des utilisateurs ayant un rôle donné sur le marché.
    Le créateur compte comme MOE s'il n'a pas de droit explicite.
    """
    droits = await db.droits_marche.find(
        {"marche_id": marche_id}, {"_id": 0, "user_id": 1, "role_specifique": 1}
    ).to_list(500)

    user_ids = [d["user_id"] for d in droits if d.get("role_specifique") == role]

    if role == "MOE":
        marche = await db.marches.find_one({"id": marche_id}, {"_id": 0, "user_id": 1})
        creator = (marche or {}).get("user_id")
        explicit = {d["user_id"] for d in droits}
        if creator and creator not in explicit:
            user_ids.append(creator)

    return user_ids


async def notify_marche_role(
    marche_id: str,
    role: str,
    type: str,
    titre: str,
    message: str,
    objet_type: str,
    objet_id: str,
    exclude_user_id: Optional[str] = None
) -> int:
    user_ids = await get_marche_users_with_role(marche_id, role)
    count = 0
    for uid in user_ids:
        if uid == exclude_user_id:
            continue
        await create_notification(uid, marche_id, type, titre, message, objet_type, objet_id)
        count += 1

    logger.info(f"[NOTIF] {type} -> {count} {role} (marche={marche_id})")
    return count
