"""
Modèles Document / Version / Visa (requêtes API)
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator


class DocumentCreate(BaseModel):
    """
    Création d'un document dans un marché.
    La version initiale "A" est créée automatiquement (En attente de diffusion).
    """
    nom: str
    type: str
    description: Optional[str] = ""
    fascicule_id: Optional[str] = None
    numero: Optional[str] = ""
    emetteur: Optional[str] = ""
    phase: Optional[str] = ""

    @field_validator("nom", "type")
    @classmethod
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Champ requis")
        return v.strip()


class DocumentUpdate(BaseModel):
    """Mise à jour des métadonnées (jamais du statut ni de la version)"""
    nom: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    fascicule_id: Optional[str] = None
    numero: Optional[str] = None
    emetteur: Optional[str] = None
    phase: Optional[str] = None


class VisaSettingsUpdate(BaseModel):
    """Paramètres du workflow de visa"""
    min_comment_length: Optional[int] = Field(None, ge=0, le=500)
    echeance_jours: Optional[int] = Field(None, ge=0, le=365)
