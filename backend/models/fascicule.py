"""
Modèle Fascicule

Un fascicule regroupe des documents d'un marché (un lot, un corps d'état).
Son avancement est la part de ses documents au statut Validé.
"""

from typing import Optional
from pydantic import BaseModel, field_validator


class FasciculeCreate(BaseModel):
    marche_id: str
    nom: str
    description: Optional[str] = ""

    @field_validator("nom")
    @classmethod
    def validate_nom(cls, v):
        if not v or not v.strip():
            raise ValueError("Le nom du fascicule est requis")
        return v.strip()


class FasciculeUpdate(BaseModel):
    nom: Optional[str] = None
    description: Optional[str] = None

    @field_validator("nom")
    @classmethod
    def validate_nom(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Le nom du fascicule ne peut pas être vide")
        return v.strip() if v else v
