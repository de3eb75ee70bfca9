"""
Routes Settings (Admin)

Endpoints pour gerer les parametres du workflow de visa:
- longueur minimale du commentaire (VAO / Refusé)
- delai (jours) de l'echeance d'un visa
"""

from fastapi import APIRouter, Depends, HTTPException

from config import db
from models.document import VisaSettingsUpdate
from routes.auth import get_current_user, require_admin
from services.settings import upsert_setting, get_visa_settings, DEFAULT_VISA_SETTINGS

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("")
async def list_settings(user: dict = Depends(require_admin)):
    """Liste tous les settings"""
    docs = await db.settings.find({}, {"_id": 0}).to_list(50)

    keys = [d.get("key") for d in docs]
    if "visa_workflow" not in keys:
        docs.append({**DEFAULT_VISA_SETTINGS, "key": "visa_workflow", "source": "default"})

    return {"settings": docs, "count": len(docs)}


@router.get("/visa-workflow")
async def get_visa_workflow(user: dict = Depends(get_current_user)):
    """Lisible par tous (le formulaire de visa affiche la longueur minimale)"""
    return await get_visa_settings()


@router.put("/visa-workflow")
async def update_visa_workflow(
    data: VisaSettingsUpdate,
    user: dict = Depends(require_admin)
):
    """Met a jour les settings du workflow de visa"""
    payload = {k: v for k, v in data.model_dump().items() if v is not None}
    if not payload:
        raise HTTPException(status_code=400, detail="Aucune donnée à mettre à jour")

    await upsert_setting("visa_workflow", payload, user.get("email", "admin"))
    return {"success": True, "settings": await get_visa_settings()}
