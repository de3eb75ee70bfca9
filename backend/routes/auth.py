"""
Routes Auth

Sessions par token Bearer (collection `sessions`, durée SESSION_DAYS).
- POST /auth/login, POST /auth/logout
- GET  /auth/me: profil, permissions et rôle sur chaque marché
- PUT  /auth/password

Les dépendances get_current_user / require_admin sont utilisées par toutes
les autres routes.
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from datetime import datetime, timezone, timedelta
from typing import Optional
import logging

from models.auth import UserLogin, PasswordChange
from config import db, hash_password, generate_token, now_iso, SESSION_DAYS
from services.activity_logger import log_activity
from services.permissions import get_preset_permissions, list_user_marches

router = APIRouter(prefix="/auth", tags=["Auth"])
bearer = HTTPBearer(auto_error=False)
logger = logging.getLogger("auth")


async def _session_user(token: str) -> Optional[dict]:
    session = await db.sessions.find_one(
        {"token": token, "expires_at": {"$gt": now_iso()}},
        {"_id": 0, "user_id": 1}
    )
    if not session:
        return None
    return await db.users.find_one({"id": session["user_id"]}, {"_id": 0, "password": 0})


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer)):
    if not credentials:
        raise HTTPException(status_code=401, detail="Non authentifié")

    user = await _session_user(credentials.credentials)
    if not user:
        raise HTTPException(status_code=401, detail="Session expirée")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    # Comptes sans permissions explicites: preset du rôle global
    if not user.get("permissions"):
        user["permissions"] = get_preset_permissions(user.get("role_global", "STANDARD"))
    return user


async def require_admin(user: dict = Depends(get_current_user)):
    if user.get("role_global") != "ADMIN":
        raise HTTPException(status_code=403, detail="Accès admin requis")
    return user


def public_profile(user: dict) -> dict:
    """Profil exposé par l'API (jamais le hash du mot de passe)"""
    role = user.get("role_global", "STANDARD")
    return {
        "id": user["id"],
        "email": user["email"],
        "nom": user.get("nom", ""),
        "prenom": user.get("prenom", ""),
        "entreprise": user.get("entreprise", ""),
        "role_global": role,
        "permissions": user.get("permissions") or get_preset_permissions(role),
        "is_active": user.get("is_active", True),
    }


@router.post("/login")
async def login(data: UserLogin, request: Request):
    email = data.email.strip().lower()
    user = await db.users.find_one({"email": email}, {"_id": 0})

    if not user or user.get("password") != hash_password(data.password):
        logger.warning(f"[AUTH] Échec de connexion pour {email}")
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    token = generate_token()
    await db.sessions.insert_one({
        "token": token,
        "user_id": user["id"],
        "created_at": now_iso(),
        "expires_at": (datetime.now(timezone.utc) + timedelta(days=SESSION_DAYS)).isoformat(),
    })

    await log_activity(
        user=user,
        action="login",
        entity_type="user",
        entity_id=user["id"],
        ip_address=request.client.host if request.client else None
    )

    return {"token": token, "user": public_profile(user)}


@router.post("/logout")
async def logout(
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(bearer)
):
    await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    """Profil + marchés de l'utilisateur avec son rôle sur chacun"""
    return {**public_profile(user), "marches": await list_user_marches(user)}


@router.put("/password")
async def change_password(
    data: PasswordChange,
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(bearer)
):
    """Change le mot de passe et ferme les autres sessions du compte"""
    stored = await db.users.find_one({"id": user["id"]}, {"_id": 0, "password": 1})
    if not stored or stored.get("password") != hash_password(data.ancien_mot_de_passe):
        raise HTTPException(status_code=400, detail="Ancien mot de passe incorrect")

    await db.users.update_one(
        {"id": user["id"]},
        {"$set": {"password": hash_password(data.nouveau_mot_de_passe), "updated_at": now_iso()}}
    )
    closed = await db.sessions.delete_many(
        {"user_id": user["id"], "token": {"$ne": credentials.credentials}}
    )

    await log_activity(user=user, action="change_password", entity_type="user", entity_id=user["id"])
    return {"success": True, "sessions_closed": closed.deleted_count}
