"""
Modèles Comptes & Sessions

Le rôle global (ADMIN / MOE / MANDATAIRE / STANDARD) ne fait que proposer un
jeu de permissions par défaut. Ce qu'un compte peut faire sur un marché dépend
de son rôle sur ce marché (voir models/marche.py).
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict


VALID_GLOBAL_ROLES = ["ADMIN", "MOE", "MANDATAIRE", "STANDARD"]


def _normalize_global_role(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    role = v.strip().upper()
    if role not in VALID_GLOBAL_ROLES:
        raise ValueError(f"Rôle global invalide: {v}. Valides: {VALID_GLOBAL_ROLES}")
    return role


class UserLogin(BaseModel):
    email: str
    password: str


class PasswordChange(BaseModel):
    ancien_mot_de_passe: str
    nouveau_mot_de_passe: str = Field(..., min_length=8)


class CollaborateurCreate(BaseModel):
    """Compte créé par un administrateur pour un intervenant de chantier"""
    email: str
    password: str = Field(..., min_length=8)
    nom: str
    prenom: Optional[str] = ""
    entreprise: Optional[str] = ""
    role_global: str = "STANDARD"

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Email invalide")
        return v

    @field_validator("role_global")
    @classmethod
    def validate_role(cls, v):
        return _normalize_global_role(v)


class CollaborateurUpdate(BaseModel):
    nom: Optional[str] = None
    prenom: Optional[str] = None
    entreprise: Optional[str] = None
    role_global: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None
    is_active: Optional[bool] = None

    @field_validator("role_global")
    @classmethod
    def validate_role(cls, v):
        return _normalize_global_role(v)
