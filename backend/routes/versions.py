"""
Routes Versions

- Liste des versions d'un marché / d'un document
- Dépôt d'une nouvelle version (révision après refus)
- Diffusion d'une version pour visa
- Téléchargement du fichier
- Annulation d'une version non diffusée
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from fastapi.responses import FileResponse
from typing import Optional, Tuple
import logging

from config import db
from routes.auth import get_current_user
from services.activity_logger import log_activity
from services.permissions import require_marche_access
from services.visa_state_machine import (
    VisaWorkflowError,
    to_http_exception,
    create_revision,
    diffuse_version,
    cancel_version,
)
from services import storage

router = APIRouter(prefix="/versions", tags=["Versions"])
logger = logging.getLogger("versions")


# ---- Helpers (partagés avec documents / visas) ----

def version_bucket(version: dict) -> str:
    """La version initiale partage le fichier du document (bucket documents)"""
    return "documents" if not version.get("version_precedente_id") else "versions"


async def store_upload(
    bucket: str,
    marche_id: str,
    file: Optional[UploadFile]
) -> Tuple[Optional[str], Optional[str]]:
    """Enregistre un fichier uploadé. Returns: (chemin, taille lisible) ou (None, None)"""
    if file is None or not file.filename:
        return None, None

    content = await file.read()
    try:
        path = storage.save_file(bucket, marche_id, file.filename, content)
    except storage.StorageError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return path, storage.format_size(len(content))


def discard_upload(bucket: str, path: Optional[str]):
    """Supprime un fichier uploadé quand la transition a été refusée"""
    if path:
        try:
            storage.delete_file(bucket, path)
        except storage.StorageError as e:
            logger.warning(f"[UPLOAD] {e}")


async def get_version_or_404(version_id: str) -> dict:
    version = await db.versions.find_one({"id": version_id}, {"_id": 0})
    if not version:
        raise HTTPException(status_code=404, detail="Version non trouvée")
    return version


# ---- Endpoints ----

@router.get("")
async def list_versions(
    marche_id: Optional[str] = None,
    document_id: Optional[str] = None,
    statut: Optional[str] = None,
    user: dict = Depends(get_current_user)
):
    """Liste les versions d'un marché ou d'un document"""
    if document_id:
        document = await db.documents.find_one({"id": document_id}, {"_id": 0, "marche_id": 1})
        if not document:
            raise HTTPException(status_code=404, detail="Document non trouvé")
        await require_marche_access(user, document["marche_id"])
        query = {"document_id": document_id}
    elif marche_id:
        await require_marche_access(user, marche_id)
        query = {"marche_id": marche_id}
    else:
        raise HTTPException(status_code=400, detail="marche_id ou document_id requis")

    if statut:
        query["statut"] = statut

    versions = await db.versions.find(query, {"_id": 0}).sort("version", 1).to_list(1000)
    return {"versions": versions, "count": len(versions)}


@router.get("/{version_id}")
async def get_version(version_id: str, user: dict = Depends(get_current_user)):
    version = await get_version_or_404(version_id)
    await require_marche_access(user, version["marche_id"])

    visas = await db.visas.find({"version_id": version_id}, {"_id": 0}) \
        .sort("date_demande", -1).to_list(100)
    return {**version, "visas": visas}


@router.post("")
async def upload_revision(
    document_id: str = Form(...),
    commentaire: str = Form(""),
    file: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user)
):
    """
    Dépose une nouvelle version d'un document dont la version courante
    est "Refusé" ou "À remettre à jour".
    """
    document = await db.documents.find_one({"id": document_id}, {"_id": 0})
    if not document:
        raise HTTPException(status_code=404, detail="Document non trouvé")

    _, role = await require_marche_access(user, document["marche_id"])

    file_path, taille = await store_upload("versions", document["marche_id"], file)

    try:
        result = await create_revision(document_id, user, role, commentaire, file_path, taille)
    except VisaWorkflowError as e:
        discard_upload("versions", file_path)
        raise to_http_exception(e)

    await log_activity(
        user=user,
        action="create_version",
        entity_type="version",
        entity_id=result["version"]["id"],
        entity_name=f"{document.get('nom')} ({result['version']['version']})",
        marche_id=document["marche_id"]
    )

    return {"success": True, **result}


@router.post("/{version_id}/diffuse")
async def diffuse(
    version_id: str,
    commentaire: str = Form(""),
    file: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user)
):
    """
    Diffuse une version pour visa (MANDATAIRE).
    Un fichier peut être joint au moment de la diffusion.
    """
    version = await get_version_or_404(version_id)
    _, role = await require_marche_access(user, version["marche_id"])

    bucket = version_bucket(version)
    file_path, taille = await store_upload(bucket, version["marche_id"], file)

    try:
        result = await diffuse_version(version_id, user, role, commentaire, file_path, taille)
    except VisaWorkflowError as e:
        discard_upload(bucket, file_path)
        raise to_http_exception(e)

    if file_path and version.get("file_path") and version["file_path"] != file_path:
        discard_upload(bucket, version["file_path"])

    await log_activity(
        user=user,
        action="diffuse_version",
        entity_type="version",
        entity_id=version_id,
        entity_name=version.get("version"),
        marche_id=version["marche_id"],
        details={"visa_id": result["visa"]["id"]}
    )

    return {"success": True, **result}


@router.get("/{version_id}/file")
async def download_version_file(version_id: str, user: dict = Depends(get_current_user)):
    version = await get_version_or_404(version_id)
    await require_marche_access(user, version["marche_id"])

    if not version.get("file_path"):
        raise HTTPException(status_code=404, detail="Aucun fichier pour cette version")

    try:
        path = storage.get_file_path(version_bucket(version), version["file_path"])
    except storage.StorageError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return FileResponse(
        path,
        media_type=storage.guess_mime_type(version["file_path"]),
        filename=path.name.split("_", 1)[-1]
    )


@router.delete("/{version_id}")
async def delete_version(version_id: str, user: dict = Depends(get_current_user)):
    """Annule une version non encore diffusée (la version précédente redevient courante)"""
    version = await get_version_or_404(version_id)
    _, role = await require_marche_access(user, version["marche_id"])

    try:
        result = await cancel_version(version_id, user, role)
    except VisaWorkflowError as e:
        raise to_http_exception(e)

    discard_upload(version_bucket(version), version.get("file_path"))

    await log_activity(
        user=user,
        action="cancel_version",
        entity_type="version",
        entity_id=version_id,
        entity_name=version.get("version"),
        marche_id=version["marche_id"]
    )

    return {"success": True, **result}
