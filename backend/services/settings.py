"""
Service Settings

Gestion des parametres systeme dynamiques.
Collection: settings (chaque doc identifie par key)

Settings disponibles:
- visa_workflow: longueur minimale des commentaires VAO/Refusé,
  delai (jours) de l'echeance d'un visa
"""

import logging
from typing import Optional, Dict, Any
from config import db, now_iso

logger = logging.getLogger("settings")


async def get_setting(key: str) -> Optional[Dict]:
    """Recupere un setting par sa cle"""
    doc = await db.settings.find_one({"key": key}, {"_id": 0})
    return doc


async def upsert_setting(key: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Cree ou met a jour un setting"""
    data["key"] = key
    data["updated_at"] = now_iso()
    data["updated_by"] = updated_by

    existing = await db.settings.find_one({"key": key})
    if existing:
        await db.settings.update_one({"key": key}, {"$set": data})
    else:
        data["created_at"] = now_iso()
        await db.settings.insert_one(data)

    result = await db.settings.find_one({"key": key}, {"_id": 0})
    return result


# ---- Visa workflow ----

DEFAULT_VISA_SETTINGS = {
    "min_comment_length": 3,
    "echeance_jours": 15,
}


async def get_visa_settings() -> Dict:
    """Retourne les settings du workflow de visa (avec defaults)"""
    doc = await get_setting("visa_workflow")
    if not doc:
        return dict(DEFAULT_VISA_SETTINGS)
    return {**DEFAULT_VISA_SETTINGS, **{k: v for k, v in doc.items() if k in DEFAULT_VISA_SETTINGS}}
