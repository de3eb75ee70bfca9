"""
Routes Marchés

- CRUD marchés (contrats de travaux)
- Image de couverture / logo
- Droits (rôles MOE / MANDATAIRE / OBSERVATEUR par marché)
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File
from fastapi.responses import FileResponse
from typing import Optional
import logging
import uuid

from config import db, now_iso
from models.marche import MarcheCreate, MarcheUpdate, DroitAssign
from routes.auth import get_current_user
from services.activity_logger import log_activity, get_marche_activity
from services.permissions import (
    require_permission,
    require_marche_access,
    user_has_permission,
    DROITS_MANAGE_ROLES,
)
from services import storage

router = APIRouter(prefix="/marches", tags=["Marchés"])
logger = logging.getLogger("marches")


# ---- CRUD ----

@router.get("")
async def list_marches(
    statut: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    user: dict = Depends(require_permission("marches.view"))
):
    """Liste les marchés accessibles à l'utilisateur"""
    query = {}

    if user.get("role_global") != "ADMIN":
        droits = await db.droits_marche.find(
            {"user_id": user["id"]}, {"_id": 0, "marche_id": 1}
        ).to_list(1000)
        marche_ids = [d["marche_id"] for d in droits]
        query["$or"] = [{"user_id": user["id"]}, {"id": {"$in": marche_ids}}]

    if statut:
        query["statut"] = statut
    if search:
        query["titre"] = {"$regex": search, "$options": "i"}

    marches = await db.marches.find(query, {"_id": 0}) \
        .sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.marches.count_documents(query)

    return {"marches": marches, "count": len(marches), "total": total}


@router.get("/{marche_id}")
async def get_marche(marche_id: str, user: dict = Depends(get_current_user)):
    marche, role = await require_marche_access(user, marche_id)

    stats = {
        "documents": await db.documents.count_documents({"marche_id": marche_id}),
        "versions": await db.versions.count_documents({"marche_id": marche_id}),
        "visas_en_attente": await db.visas.count_documents(
            {"marche_id": marche_id, "statut": "En attente"}
        ),
        "fascicules": await db.fascicules.count_documents({"marche_id": marche_id}),
        "questions_en_attente": await db.questions.count_documents(
            {"marche_id": marche_id, "statut": "En attente"}
        ),
    }

    return {
        **marche,
        "role": role,
        "stats": stats,
        "activite_recente": await get_marche_activity(marche_id),
    }


@router.post("")
async def create_marche(data: MarcheCreate, user: dict = Depends(require_permission("marches.create"))):
    """Créer un marché. Le créateur devient MOE du marché."""
    now = now_iso()
    marche = {
        "id": str(uuid.uuid4()),
        "titre": data.titre,
        "description": data.description or "",
        "client": data.client or "",
        "statut": data.statut.value,
        "budget": data.budget or "",
        "datecreation": data.datecreation or now,
        "image": None,
        "logo": None,
        "user_id": user["id"],
        "created_at": now,
    }

    await db.marches.insert_one(marche)
    marche.pop("_id", None)

    await log_activity(
        user=user,
        action="create",
        entity_type="marche",
        entity_id=marche["id"],
        entity_name=marche["titre"],
        marche_id=marche["id"]
    )

    return {"success": True, "marche": marche}


@router.put("/{marche_id}")
async def update_marche(marche_id: str, data: MarcheUpdate, user: dict = Depends(get_current_user)):
    marche, role = await require_marche_access(user, marche_id)
    if role not in DROITS_MANAGE_ROLES or not user_has_permission(user, "marches.edit"):
        raise HTTPException(status_code=403, detail="Seul le MOE peut modifier le marché")

    update_data = {k: v for k, v in data.model_dump().items() if v is not None}
    if "statut" in update_data:
        update_data["statut"] = data.statut.value
    if not update_data:
        raise HTTPException(status_code=400, detail="Aucune donnée à mettre à jour")

    update_data["updated_at"] = now_iso()
    await db.marches.update_one({"id": marche_id}, {"$set": update_data})

    await log_activity(
        user=user,
        action="update",
        entity_type="marche",
        entity_id=marche_id,
        entity_name=marche.get("titre"),
        marche_id=marche_id,
        details={k: v for k, v in update_data.items() if k != "updated_at"}
    )

    updated = await db.marches.find_one({"id": marche_id}, {"_id": 0})
    return {"success": True, "marche": updated}


@router.delete("/{marche_id}")
async def delete_marche(marche_id: str, user: dict = Depends(require_permission("marches.delete"))):
    """Supprime un marché et tout son contenu (documents, fascicules, questions, fichiers)"""
    marche = await db.marches.find_one({"id": marche_id}, {"_id": 0})
    if not marche:
        raise HTTPException(status_code=404, detail="Marché non trouvé")

    for bucket, collection, field in (
        ("documents", db.documents, "file_path"),
        ("versions", db.versions, "file_path"),
        ("visas", db.visas, "attachment_path"),
        ("questions", db.questions, "attachment_path"),
        ("reponses", db.reponses, "attachment_path"),
    ):
        docs = await collection.find({"marche_id": marche_id, field: {"$ne": None}}, {"_id": 0, field: 1}).to_list(10000)
        for d in docs:
            try:
                storage.delete_file(bucket, d.get(field))
            except storage.StorageError as e:
                logger.warning(f"[MARCHE_DELETE] {e}")

    for key in ("image", "logo"):
        if marche.get(key):
            try:
                storage.delete_file("covers" if key == "image" else "logos", marche[key])
            except storage.StorageError as e:
                logger.warning(f"[MARCHE_DELETE] {e}")

    counts = {
        "visas": (await db.visas.delete_many({"marche_id": marche_id})).deleted_count,
        "versions": (await db.versions.delete_many({"marche_id": marche_id})).deleted_count,
        "documents": (await db.documents.delete_many({"marche_id": marche_id})).deleted_count,
        "droits": (await db.droits_marche.delete_many({"marche_id": marche_id})).deleted_count,
        "fascicules": (await db.fascicules.delete_many({"marche_id": marche_id})).deleted_count,
        "questions": (await db.questions.delete_many({"marche_id": marche_id})).deleted_count,
        "reponses": (await db.reponses.delete_many({"marche_id": marche_id})).deleted_count,
    }
    await db.notifications.delete_many({"marche_id": marche_id})
    await db.marches.delete_one({"id": marche_id})

    await log_activity(
        user=user,
        action="delete",
        entity_type="marche",
        entity_id=marche_id,
        entity_name=marche.get("titre"),
        details=counts
    )

    logger.info(f"[MARCHE_DELETE] {marche_id} supprimé: {counts}")
    return {"success": True, "deleted": counts}


# ---- Image / logo ----

@router.post("/{marche_id}/media/{kind}")
async def upload_marche_image(
    marche_id: str,
    kind: str,
    file: UploadFile = File(...),
    user: dict = Depends(get_current_user)
):
    """Upload de l'image de couverture (kind=image) ou du logo (kind=logo)"""
    if kind not in ("image", "logo"):
        raise HTTPException(status_code=404, detail="Ressource inconnue")

    marche, role = await require_marche_access(user, marche_id)
    if role not in DROITS_MANAGE_ROLES:
        raise HTTPException(status_code=403, detail="Seul le MOE peut modifier le marché")

    bucket = "covers" if kind == "image" else "logos"
    content = await file.read()
    try:
        path = storage.save_file(bucket, marche_id, file.filename, content)
        if marche.get(kind):
            storage.delete_file(bucket, marche[kind])
    except storage.StorageError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await db.marches.update_one({"id": marche_id}, {"$set": {kind: path, "updated_at": now_iso()}})
    return {"success": True, kind: path}


@router.get("/{marche_id}/media/{kind}")
async def get_marche_image(marche_id: str, kind: str, user: dict = Depends(get_current_user)):
    if kind not in ("image", "logo"):
        raise HTTPException(status_code=404, detail="Ressource inconnue")

    marche, _ = await require_marche_access(user, marche_id)
    if not marche.get(kind):
        raise HTTPException(status_code=404, detail="Aucun fichier")

    bucket = "covers" if kind == "image" else "logos"
    try:
        path = storage.get_file_path(bucket, marche[kind])
    except storage.StorageError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return FileResponse(path, media_type=storage.guess_mime_type(marche[kind]))


# ---- Droits ----

@router.get("/{marche_id}/role")
async def get_my_role(marche_id: str, user: dict = Depends(get_current_user)):
    """Rôle effectif de l'utilisateur connecté sur le marché"""
    _, role = await require_marche_access(user, marche_id)
    return {"marche_id": marche_id, "role": role}


@router.get("/{marche_id}/droits")
async def list_droits(marche_id: str, user: dict = Depends(get_current_user)):
    await require_marche_access(user, marche_id)

    droits = await db.droits_marche.find({"marche_id": marche_id}, {"_id": 0}).to_list(500)
    user_ids = [d["user_id"] for d in droits]
    users = await db.users.find(
        {"id": {"$in": user_ids}}, {"_id": 0, "id": 1, "email": 1, "nom": 1, "prenom": 1}
    ).to_list(500)
    by_id = {u["id"]: u for u in users}

    for d in droits:
        d["userInfo"] = by_id.get(d["user_id"], {})

    return {"droits": droits, "count": len(droits)}


@router.post("/{marche_id}/droits")
async def assign_droit(marche_id: str, data: DroitAssign, user: dict = Depends(get_current_user)):
    """Attribue (ou remplace) le rôle d'un utilisateur sur le marché"""
    marche, role = await require_marche_access(user, marche_id)
    if role not in DROITS_MANAGE_ROLES:
        raise HTTPException(status_code=403, detail="Seul le MOE peut gérer les rôles du marché")

    target = await db.users.find_one({"id": data.user_id}, {"_id": 0, "id": 1, "email": 1})
    if not target:
        raise HTTPException(status_code=404, detail="Utilisateur non trouvé")

    existing = await db.droits_marche.find_one({"marche_id": marche_id, "user_id": data.user_id})
    if existing:
        await db.droits_marche.update_one(
            {"marche_id": marche_id, "user_id": data.user_id},
            {"$set": {"role_specifique": data.role_specifique.value, "updated_at": now_iso()}}
        )
    else:
        await db.droits_marche.insert_one({
            "id": str(uuid.uuid4()),
            "user_id": data.user_id,
            "marche_id": marche_id,
            "role_specifique": data.role_specifique.value,
            "created_at": now_iso()
        })

    await log_activity(
        user=user,
        action="assign_role",
        entity_type="droit",
        entity_id=data.user_id,
        entity_name=target.get("email"),
        marche_id=marche_id,
        details={"role_specifique": data.role_specifique.value}
    )

    droit = await db.droits_marche.find_one({"marche_id": marche_id, "user_id": data.user_id}, {"_id": 0})
    return {"success": True, "droit": droit}


@router.delete("/{marche_id}/droits/{user_id}")
async def remove_droit(marche_id: str, user_id: str, user: dict = Depends(get_current_user)):
    _, role = await require_marche_access(user, marche_id)
    if role not in DROITS_MANAGE_ROLES:
        raise HTTPException(status_code=403, detail="Seul le MOE peut gérer les rôles du marché")

    result = await db.droits_marche.delete_one({"marche_id": marche_id, "user_id": user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Droit non trouvé")

    await log_activity(
        user=user,
        action="remove_role",
        entity_type="droit",
        entity_id=user_id,
        marche_id=marche_id
    )
    return {"success": True}
