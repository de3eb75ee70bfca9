"""
Routes Collaborateurs

Comptes des intervenants (maîtres d'oeuvre, mandataires, observateurs).
- Administration des comptes (permission users.manage)
- Recherche d'un collaborateur à ajouter sur un marché
- Marchés d'un compte avec son rôle sur chacun
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
import logging
import uuid

from config import db, hash_password, now_iso
from models.auth import CollaborateurCreate, CollaborateurUpdate
from models.marche import VALID_MARCHE_ROLES
from routes.auth import get_current_user, public_profile
from services.activity_logger import log_activity
from services.permissions import (
    ALL_PERMISSION_KEYS,
    ROLE_PRESETS,
    DROITS_MANAGE_ROLES,
    get_preset_permissions,
    list_user_marches,
    require_marche_access,
    require_permission,
    user_has_permission,
)

router = APIRouter(prefix="/users", tags=["Collaborateurs"])
logger = logging.getLogger("users")


async def _get_user_or_404(user_id: str) -> dict:
    target = await db.users.find_one({"id": user_id}, {"_id": 0, "password": 0})
    if not target:
        raise HTTPException(status_code=404, detail="Utilisateur non trouvé")
    return target


@router.get("")
async def list_users(
    search: Optional[str] = None,
    actif: Optional[bool] = None,
    user: dict = Depends(require_permission("users.manage"))
):
    """Comptes avec le nombre de marchés sur lesquels chacun a un droit"""
    query = {}
    if search:
        pattern = {"$regex": search.strip(), "$options": "i"}
        query["$or"] = [{"email": pattern}, {"nom": pattern}, {"prenom": pattern}, {"entreprise": pattern}]
    if actif is not None:
        query["is_active"] = actif

    users = await db.users.find(query, {"_id": 0, "password": 0}).sort("nom", 1).to_list(1000)

    droits = await db.droits_marche.find({}, {"_id": 0, "user_id": 1}).to_list(10000)
    counts = {}
    for d in droits:
        counts[d["user_id"]] = counts.get(d["user_id"], 0) + 1

    return {
        "users": [{**public_profile(u), "droits_count": counts.get(u["id"], 0)} for u in users],
        "count": len(users),
    }


@router.get("/search")
async def search_collaborateurs(
    q: str,
    marche_id: Optional[str] = None,
    user: dict = Depends(get_current_user)
):
    """
    Recherche par email / nom / entreprise pour l'ajout d'un collaborateur.
    Avec marche_id (réservé au MOE du marché), les membres actuels sont exclus.
    """
    term = q.strip()
    if len(term) < 2:
        return {"users": []}

    excluded = []
    if marche_id:
        marche, role = await require_marche_access(user, marche_id)
        if role not in DROITS_MANAGE_ROLES:
            raise HTTPException(status_code=403, detail="Seul le MOE peut gérer les rôles du marché")
        droits = await db.droits_marche.find({"marche_id": marche_id}, {"_id": 0, "user_id": 1}).to_list(1000)
        excluded = [d["user_id"] for d in droits] + [marche.get("user_id")]

    pattern = {"$regex": term, "$options": "i"}
    users = await db.users.find(
        {
            "$or": [{"email": pattern}, {"nom": pattern}, {"prenom": pattern}, {"entreprise": pattern}],
            "is_active": True,
            "id": {"$nin": excluded},
        },
        {"_id": 0, "id": 1, "email": 1, "nom": 1, "prenom": 1, "entreprise": 1}
    ).to_list(20)
    return {"users": users}


@router.get("/roles")
async def list_roles(user: dict = Depends(require_permission("users.manage"))):
    """Rôles globaux (presets de permissions) et rôles attribuables sur un marché"""
    return {
        "roles_globaux": ROLE_PRESETS,
        "permission_keys": ALL_PERMISSION_KEYS,
        "roles_marche": VALID_MARCHE_ROLES,
    }


@router.post("")
async def create_collaborateur(data: CollaborateurCreate, user: dict = Depends(require_permission("users.manage"))):
    if await db.users.find_one({"email": data.email}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=400, detail="Cet email existe déjà")

    new_user = {
        "id": str(uuid.uuid4()),
        "email": data.email,
        "password": hash_password(data.password),
        "nom": data.nom.strip(),
        "prenom": (data.prenom or "").strip(),
        "entreprise": (data.entreprise or "").strip(),
        "role_global": data.role_global,
        "permissions": get_preset_permissions(data.role_global),
        "is_active": True,
        "created_at": now_iso(),
        "created_by": user["id"],
    }
    await db.users.insert_one(new_user)

    await log_activity(
        user=user,
        action="create_user",
        entity_type="user",
        entity_id=new_user["id"],
        entity_name=new_user["email"],
        details={"role_global": data.role_global}
    )
    logger.info(f"[USERS] Compte {new_user['email']} créé ({data.role_global})")

    return {"success": True, "user": public_profile(new_user)}


@router.patch("/{user_id}")
async def update_collaborateur(
    user_id: str,
    data: CollaborateurUpdate,
    user: dict = Depends(require_permission("users.manage"))
):
    target = await _get_user_or_404(user_id)

    update_data = data.model_dump(exclude_none=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="Aucune donnée à mettre à jour")
    if user_id == user["id"] and (update_data.get("is_active") is False or "role_global" in update_data):
        raise HTTPException(status_code=400, detail="Impossible de modifier votre propre rôle ou statut")

    # Nouveau rôle global sans permissions explicites: preset du rôle
    if "role_global" in update_data and "permissions" not in update_data:
        update_data["permissions"] = get_preset_permissions(update_data["role_global"])
    if "permissions" in update_data:
        unknown = set(update_data["permissions"]) - set(ALL_PERMISSION_KEYS)
        if unknown:
            raise HTTPException(status_code=400, detail=f"Permissions inconnues: {sorted(unknown)}")

    update_data["updated_at"] = now_iso()
    await db.users.update_one({"id": user_id}, {"$set": update_data})
    if update_data.get("is_active") is False:
        await db.sessions.delete_many({"user_id": user_id})

    await log_activity(
        user=user,
        action="update_user",
        entity_type="user",
        entity_id=user_id,
        entity_name=target.get("email"),
        details={k: v for k, v in update_data.items() if k != "updated_at"}
    )

    return {"success": True, "user": public_profile(await _get_user_or_404(user_id))}


@router.delete("/{user_id}")
async def deactivate_collaborateur(user_id: str, user: dict = Depends(require_permission("users.manage"))):
    """
    Désactive le compte et ferme ses sessions. Ses droits sur les marchés sont
    conservés pour l'historique des visas et diffusions.
    """
    target = await _get_user_or_404(user_id)
    if user_id == user["id"]:
        raise HTTPException(status_code=400, detail="Impossible de désactiver votre propre compte")

    await db.users.update_one(
        {"id": user_id},
        {"$set": {"is_active": False, "deactivated_at": now_iso()}}
    )
    sessions = await db.sessions.delete_many({"user_id": user_id})

    await log_activity(
        user=user,
        action="deactivate_user",
        entity_type="user",
        entity_id=user_id,
        entity_name=target.get("email")
    )
    logger.info(f"[USERS] Compte {target.get('email')} désactivé")

    return {"success": True, "sessions_closed": sessions.deleted_count}


@router.get("/{user_id}/marches")
async def get_collaborateur_marches(user_id: str, user: dict = Depends(get_current_user)):
    if user_id != user["id"] and not user_has_permission(user, "users.manage"):
        raise HTTPException(status_code=403, detail="Permission requise: users.manage")

    target = await _get_user_or_404(user_id)
    marches = await list_user_marches(target)
    return {"user_id": user_id, "marches": marches, "count": len(marches)}
