"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Modèle Marché (contrat de travaux publics)                                  ║
║                                                                              ║
║  Un marché regroupe documents, versions et visas.                            ║
║  RÈGLE: le créateur d'un marché est MOE par défaut sur ce marché             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional
from pydantic import BaseModel, field_validator
from enum import Enum


class MarcheStatus(str, Enum):
    EN_COURS = "En cours"
    TERMINE = "Terminé"
    SUSPENDU = "Suspendu"


class MarcheRole(str, Enum):
    """Rôle spécifique d'un utilisateur sur un marché"""
    MOE = "MOE"                   # Maître d'oeuvre: vise les documents
    MANDATAIRE = "MANDATAIRE"     # Diffuse les documents
    OBSERVATEUR = "OBSERVATEUR"   # Lecture seule


VALID_MARCHE_ROLES = [r.value for r in MarcheRole]


class MarcheCreate(BaseModel):
    titre: str
    description: Optional[str] = ""
    client: Optional[str] = ""
    statut: MarcheStatus = MarcheStatus.EN_COURS
    budget: Optional[str] = ""
    datecreation: Optional[str] = None

    @field_validator("titre")
    @classmethod
    def validate_titre(cls, v):
        if not v or not v.strip():
            raise ValueError("Le titre du marché est requis")
        return v.strip()


class MarcheUpdate(BaseModel):
    titre: Optional[str] = None
    description: Optional[str] = None
    client: Optional[str] = None
    statut: Optional[MarcheStatus] = None
    budget: Optional[str] = None


class DroitAssign(BaseModel):
    """Attribution d'un rôle sur un marché"""
    user_id: str
    role_specifique: MarcheRole
