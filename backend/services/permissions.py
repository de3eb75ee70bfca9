"""
Permission System
Granular permission keys + global role presets + per-marché roles + FastAPI dependencies.
Permissions are the source of truth for global actions. Per-marché roles
(MOE / MANDATAIRE / OBSERVATEUR) gate the document workflow.
"""

import logging
from typing import Optional, Dict, List, Tuple
from fastapi import Depends, HTTPException
from config import db

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# ALL PERMISSION KEYS
# ════════════════════════════════════════════════════════════════════════

ALL_PERMISSION_KEYS = [
    "marches.view",
    "marches.create",
    "marches.edit",
    "marches.delete",

    "documents.view",
    "documents.create",
    "documents.edit",
    "documents.delete",

    "activity.view",
    "settings.access",
    "users.manage",
]

# ════════════════════════════════════════════════════════════════════════
# ROLE PRESETS (defaults when creating a user with a global role)
# ════════════════════════════════════════════════════════════════════════

ROLE_PRESETS: Dict[str, Dict[str, bool]] = {
    "ADMIN": {k: True for k in ALL_PERMISSION_KEYS},

    "MOE": {
        "marches.view": True, "marches.create": True, "marches.edit": True, "marches.delete": False,
        "documents.view": True, "documents.create": True, "documents.edit": True, "documents.delete": True,
        "activity.view": True,
        "settings.access": False,
        "users.manage": False,
    },

    "MANDATAIRE": {
        "marches.view": True, "marches.create": True, "marches.edit": False, "marches.delete": False,
        "documents.view": True, "documents.create": True, "documents.edit": True, "documents.delete": False,
        "activity.view": False,
        "settings.access": False,
        "users.manage": False,
    },

    "STANDARD": {
        "marches.view": True, "marches.create": False, "marches.edit": False, "marches.delete": False,
        "documents.view": True, "documents.create": False, "documents.edit": False, "documents.delete": False,
        "activity.view": False,
        "settings.access": False,
        "users.manage": False,
    },
}

# Rôles effectifs sur un marché autorisés pour chaque action du workflow
DIFFUSION_ROLES = ("ADMIN", "MANDATAIRE")
VISA_ROLES = ("ADMIN", "MOE")
REVISION_ROLES = ("ADMIN", "MANDATAIRE")
DROITS_MANAGE_ROLES = ("ADMIN", "MOE")
DOCUMENT_EDIT_ROLES = ("ADMIN", "MOE", "MANDATAIRE")


def get_preset_permissions(role: str) -> Dict[str, bool]:
    """Returns the default permissions for a global role."""
    return dict(ROLE_PRESETS.get(role, ROLE_PRESETS["STANDARD"]))


# ════════════════════════════════════════════════════════════════════════
# PERMISSION CHECK HELPERS
# ════════════════════════════════════════════════════════════════════════

def user_has_permission(user: dict, key: str) -> bool:
    """Check if user has a specific permission."""
    if user.get("role_global") == "ADMIN":
        return True
    perms = user.get("permissions", {})
    return perms.get(key, False) is True


def resolve_marche_role(user: dict, marche: dict, droit: Optional[dict]) -> Optional[str]:
    """
    Rôle effectif d'un utilisateur sur un marché.
    - ADMIN global: "ADMIN"
    - droit explicite (droits_marche): son role_specifique
    - créateur du marché sans droit explicite: "MOE"
    - sinon: None (pas d'accès)
    """
    if user.get("role_global") == "ADMIN":
        return "ADMIN"
    if droit and droit.get("role_specifique"):
        return droit["role_specifique"]
    if marche and marche.get("user_id") and marche.get("user_id") == user.get("id"):
        return "MOE"
    return None


async def get_marche_role(user: dict, marche: dict) -> Optional[str]:
    droit = await db.droits_marche.find_one(
        {"marche_id": marche["id"], "user_id": user.get("id")},
        {"_id": 0}
    )
    return resolve_marche_role(user, marche, droit)


async def list_user_marches(user: dict) -> List[dict]:
    """
    Marchés où l'utilisateur a un rôle: droits explicites + marchés créés.
    Un droit explicite l'emporte sur le rôle MOE implicite du créateur.
    Returns: [{marche_id, titre, statut, role}]
    """
    droits = await db.droits_marche.find(
        {"user_id": user["id"]}, {"_id": 0, "marche_id": 1, "role_specifique": 1}
    ).to_list(1000)
    roles = {d["marche_id"]: d["role_specifique"] for d in droits}

    marches = await db.marches.find(
        {"$or": [{"user_id": user["id"]}, {"id": {"$in": list(roles)}}]},
        {"_id": 0, "id": 1, "titre": 1, "statut": 1, "user_id": 1}
    ).sort("titre", 1).to_list(1000)

    return [
        {
            "marche_id": m["id"],
            "titre": m.get("titre"),
            "statut": m.get("statut"),
            "role": roles.get(m["id"], "MOE"),
        }
        for m in marches
    ]


async def require_marche_access(user: dict, marche_id: str) -> Tuple[dict, str]:
    """
    Charge un marché et vérifie que l'utilisateur y a un rôle.
    Returns: (marche, role effectif)
    """
    marche = await db.marches.find_one({"id": marche_id}, {"_id": 0})
    if not marche:
        raise HTTPException(status_code=404, detail="Marché non trouvé")

    role = await get_marche_role(user, marche)
    if role is None:
        logger.warning(
            f"[ACCESS_DENIED] user={user.get('email')} marche={marche_id}"
        )
        raise HTTPException(status_code=403, detail="Accès au marché non autorisé")

    return marche, role


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_permission(permission_key: str):
    """
    FastAPI dependency factory.
    Usage: user: dict = Depends(require_permission("documents.view"))
    """
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if not user_has_permission(user, permission_key):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} "
                f"key={permission_key} role={user.get('role_global')}"
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permission requise: {permission_key}"
            )
        return user

    return _check
