"""
Routes Fascicules

- Liste des fascicules d'un marché avec leur avancement
- Détail: documents du fascicule + avancement
- Création / modification (MOE, MANDATAIRE), suppression (MOE)
  La suppression détache les documents, elle ne les supprime pas.
"""

from fastapi import APIRouter, Depends, HTTPException
import logging
import re
import uuid

from config import db, now_iso
from models.fascicule import FasciculeCreate, FasciculeUpdate
from routes.auth import get_current_user
from services.activity_logger import log_activity
from services.fascicules import compute_fascicule_progress, list_fascicules_with_progress
from services.permissions import require_marche_access, DOCUMENT_EDIT_ROLES, DROITS_MANAGE_ROLES

router = APIRouter(prefix="/fascicules", tags=["Fascicules"])
logger = logging.getLogger("fascicules")


async def _get_fascicule_or_404(fascicule_id: str) -> dict:
    fascicule = await db.fascicules.find_one({"id": fascicule_id}, {"_id": 0})
    if not fascicule:
        raise HTTPException(status_code=404, detail="Fascicule non trouvé")
    return fascicule


async def _check_unique_nom(marche_id: str, nom: str, exclude_id: str = None):
    existing = await db.fascicules.find(
        {"marche_id": marche_id, "nom": {"$regex": f"^{re.escape(nom)}$", "$options": "i"}},
        {"_id": 0, "id": 1}
    ).to_list(10)
    if any(f["id"] != exclude_id for f in existing):
        raise HTTPException(status_code=400, detail=f"Un fascicule '{nom}' existe déjà sur ce marché")


@router.get("")
async def list_fascicules(marche_id: str, user: dict = Depends(get_current_user)):
    await require_marche_access(user, marche_id)

    fascicules = await list_fascicules_with_progress(marche_id)
    total = await db.documents.count_documents({"marche_id": marche_id})
    sans_fascicule = total - sum(f["nombredocuments"] for f in fascicules)
    return {"fascicules": fascicules, "count": len(fascicules), "documents_sans_fascicule": sans_fascicule}


@router.get("/{fascicule_id}")
async def get_fascicule(fascicule_id: str, user: dict = Depends(get_current_user)):
    fascicule = await _get_fascicule_or_404(fascicule_id)
    await require_marche_access(user, fascicule["marche_id"])

    documents = await db.documents.find(
        {"fascicule_id": fascicule_id}, {"_id": 0}
    ).sort("numero", 1).to_list(1000)

    return {**fascicule, **compute_fascicule_progress(documents), "documents": documents}


@router.post("")
async def create_fascicule(data: FasciculeCreate, user: dict = Depends(get_current_user)):
    _, role = await require_marche_access(user, data.marche_id)
    if role not in DOCUMENT_EDIT_ROLES:
        raise HTTPException(status_code=403, detail="Rôle insuffisant pour gérer les fascicules")

    await _check_unique_nom(data.marche_id, data.nom)

    fascicule = {
        "id": str(uuid.uuid4()),
        "marche_id": data.marche_id,
        "nom": data.nom,
        "description": data.description or "",
        "created_by": user["id"],
        "created_at": now_iso(),
    }
    await db.fascicules.insert_one(fascicule)
    fascicule.pop("_id", None)

    await log_activity(
        user=user,
        action="create_fascicule",
        entity_type="fascicule",
        entity_id=fascicule["id"],
        entity_name=fascicule["nom"],
        marche_id=data.marche_id
    )

    return {"success": True, "fascicule": {**fascicule, **compute_fascicule_progress([])}}


@router.put("/{fascicule_id}")
async def update_fascicule(fascicule_id: str, data: FasciculeUpdate, user: dict = Depends(get_current_user)):
    fascicule = await _get_fascicule_or_404(fascicule_id)
    _, role = await require_marche_access(user, fascicule["marche_id"])
    if role not in DOCUMENT_EDIT_ROLES:
        raise HTTPException(status_code=403, detail="Rôle insuffisant pour gérer les fascicules")

    update_data = data.model_dump(exclude_none=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="Aucune donnée à mettre à jour")
    if "nom" in update_data:
        await _check_unique_nom(fascicule["marche_id"], update_data["nom"], exclude_id=fascicule_id)

    update_data["updated_at"] = now_iso()
    await db.fascicules.update_one({"id": fascicule_id}, {"$set": update_data})

    await log_activity(
        user=user,
        action="update_fascicule",
        entity_type="fascicule",
        entity_id=fascicule_id,
        entity_name=update_data.get("nom", fascicule.get("nom")),
        marche_id=fascicule["marche_id"]
    )

    return {"success": True, "fascicule": await _get_fascicule_or_404(fascicule_id)}


@router.delete("/{fascicule_id}")
async def delete_fascicule(fascicule_id: str, user: dict = Depends(get_current_user)):
    fascicule = await _get_fascicule_or_404(fascicule_id)
    _, role = await require_marche_access(user, fascicule["marche_id"])
    if role not in DROITS_MANAGE_ROLES:
        raise HTTPException(status_code=403, detail="Seul le MOE peut supprimer un fascicule")

    detached = await db.documents.update_many(
        {"fascicule_id": fascicule_id},
        {"$set": {"fascicule_id": None, "updated_at": now_iso()}}
    )
    await db.questions.update_many({"fascicule_id": fascicule_id}, {"$set": {"fascicule_id": None}})
    await db.fascicules.delete_one({"id": fascicule_id})

    await log_activity(
        user=user,
        action="delete_fascicule",
        entity_type="fascicule",
        entity_id=fascicule_id,
        entity_name=fascicule.get("nom"),
        marche_id=fascicule["marche_id"],
        details={"documents_detaches": detached.modified_count}
    )

    logger.info(f"[FASCICULE_DELETE] {fascicule_id}: {detached.modified_count} documents détachés")
    return {"success": True, "documents_detaches": detached.modified_count}
