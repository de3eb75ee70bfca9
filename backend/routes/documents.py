"""
Routes Documents

Un document appartient à un marché et porte une suite de versions (A, B, C...).
Le statut et la version courante ne sont jamais modifiés ici:
voir services/visa_state_machine.py
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from fastapi.responses import FileResponse
from pydantic import ValidationError
from typing import Optional
import logging

from config import db, now_iso
from models.document import DocumentCreate, DocumentUpdate
from routes.auth import get_current_user
from routes.versions import version_bucket, store_upload, discard_upload
from services.activity_logger import log_activity
from services.event_logger import get_events
from services.fascicules import get_fascicule_in_marche
from services.permissions import (
    require_permission,
    require_marche_access,
    DOCUMENT_EDIT_ROLES,
)
from services.visa_state_machine import (
    VisaWorkflowError,
    to_http_exception,
    create_document,
    parse_visa_type,
)
from services import storage

router = APIRouter(prefix="/documents", tags=["Documents"])
logger = logging.getLogger("documents")


async def _get_document_or_404(document_id: str) -> dict:
    document = await db.documents.find_one({"id": document_id}, {"_id": 0})
    if not document:
        raise HTTPException(status_code=404, detail="Document non trouvé")
    return document


async def _check_fascicule(fascicule_id: Optional[str], marche_id: str):
    if fascicule_id and not await get_fascicule_in_marche(fascicule_id, marche_id):
        raise HTTPException(status_code=400, detail="Fascicule inconnu sur ce marché")


@router.get("")
async def list_documents(
    marche_id: str,
    statut: Optional[str] = None,
    type: Optional[str] = None,
    fascicule_id: Optional[str] = None,
    search: Optional[str] = None,
    user: dict = Depends(require_permission("documents.view"))
):
    """Liste les documents d'un marché (filtres: statut, type, fascicule, recherche sur le nom)"""
    await require_marche_access(user, marche_id)

    query = {"marche_id": marche_id}
    if statut:
        query["statut"] = statut
    if type:
        query["type"] = type
    if fascicule_id:
        query["fascicule_id"] = fascicule_id
    if search:
        query["nom"] = {"$regex": search, "$options": "i"}

    documents = await db.documents.find(query, {"_id": 0}).sort("created_at", -1).to_list(1000)
    return {"documents": documents, "count": len(documents)}


@router.get("/{document_id}")
async def get_document(document_id: str, user: dict = Depends(require_permission("documents.view"))):
    """Document + historique des versions, visas et évènements"""
    document = await _get_document_or_404(document_id)
    _, role = await require_marche_access(user, document["marche_id"])

    versions = await db.versions.find({"document_id": document_id}, {"_id": 0}) \
        .sort("version", 1).to_list(100)
    visas = await db.visas.find({"document_id": document_id}, {"_id": 0}) \
        .sort("date_demande", -1).to_list(200)
    for v in visas:
        if not v.get("type_visa"):
            v["type_visa"] = parse_visa_type(v.get("commentaire"))

    events = await get_events(entity_id=document_id, limit=200)

    return {
        **document,
        "role": role,
        "versions": versions,
        "visas": visas,
        "events": events,
    }


@router.post("")
async def create_document_endpoint(
    marche_id: str = Form(...),
    nom: str = Form(...),
    type: str = Form(...),
    description: str = Form(""),
    fascicule_id: Optional[str] = Form(None),
    numero: str = Form(""),
    emetteur: str = Form(""),
    phase: str = Form(""),
    file: Optional[UploadFile] = File(None),
    user: dict = Depends(require_permission("documents.create"))
):
    """
    Crée un document (multipart). La version "A" est créée automatiquement
    avec le fichier éventuel, en attente de diffusion.
    """
    _, role = await require_marche_access(user, marche_id)
    if role not in DOCUMENT_EDIT_ROLES:
        raise HTTPException(status_code=403, detail="Rôle insuffisant pour ajouter un document")

    try:
        data = DocumentCreate(
            nom=nom, type=type, description=description, fascicule_id=fascicule_id or None,
            numero=numero, emetteur=emetteur, phase=phase
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Données invalides: {e.errors()[0].get('msg')}")
    await _check_fascicule(data.fascicule_id, marche_id)

    file_path, taille = await store_upload("documents", marche_id, file)

    try:
        result = await create_document(marche_id, data.model_dump(), user, file_path, taille)
    except VisaWorkflowError as e:
        discard_upload("documents", file_path)
        raise to_http_exception(e)

    await log_activity(
        user=user,
        action="create",
        entity_type="document",
        entity_id=result["document"]["id"],
        entity_name=data.nom,
        marche_id=marche_id
    )

    return {"success": True, **result}


@router.put("/{document_id}")
async def update_document(
    document_id: str,
    data: DocumentUpdate,
    user: dict = Depends(require_permission("documents.edit"))
):
    """Met à jour les métadonnées d'un document"""
    document = await _get_document_or_404(document_id)
    _, role = await require_marche_access(user, document["marche_id"])
    if role not in DOCUMENT_EDIT_ROLES:
        raise HTTPException(status_code=403, detail="Rôle insuffisant pour modifier un document")

    update_data = {k: v for k, v in data.model_dump().items() if v is not None}
    for key in ("nom", "type"):
        if key in update_data:
            update_data[key] = update_data[key].strip()
            if not update_data[key]:
                raise HTTPException(status_code=400, detail=f"Le champ {key} ne peut pas être vide")
    if "fascicule_id" in update_data:
        # "" détache le document de son fascicule
        update_data["fascicule_id"] = update_data["fascicule_id"] or None
        await _check_fascicule(update_data["fascicule_id"], document["marche_id"])

    if update_data:
        update_data["updated_at"] = now_iso()
        await db.documents.update_one({"id": document_id}, {"$set": update_data})

        await log_activity(
            user=user,
            action="update",
            entity_type="document",
            entity_id=document_id,
            entity_name=document.get("nom"),
            marche_id=document["marche_id"],
            details={k: v for k, v in update_data.items() if k != "updated_at"}
        )

    updated = await db.documents.find_one({"id": document_id}, {"_id": 0})
    return {"success": True, "document": updated}


@router.get("/{document_id}/file")
async def download_document_file(document_id: str, user: dict = Depends(require_permission("documents.view"))):
    """Fichier de la version courante"""
    document = await _get_document_or_404(document_id)
    await require_marche_access(user, document["marche_id"])

    version = await db.versions.find_one({"id": document.get("current_version_id")}, {"_id": 0})
    if not version or not version.get("file_path"):
        raise HTTPException(status_code=404, detail="Aucun fichier pour ce document")

    try:
        path = storage.get_file_path(version_bucket(version), version["file_path"])
    except storage.StorageError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return FileResponse(
        path,
        media_type=storage.guess_mime_type(version["file_path"]),
        filename=path.name.split("_", 1)[-1]
    )


@router.delete("/{document_id}")
async def delete_document(document_id: str, user: dict = Depends(require_permission("documents.delete"))):
    """Supprime un document, ses versions, ses visas et leurs fichiers"""
    document = await _get_document_or_404(document_id)
    _, role = await require_marche_access(user, document["marche_id"])
    if role not in DOCUMENT_EDIT_ROLES:
        raise HTTPException(status_code=403, detail="Rôle insuffisant pour supprimer un document")

    versions = await db.versions.find({"document_id": document_id}, {"_id": 0}).to_list(100)
    visas = await db.visas.find({"document_id": document_id}, {"_id": 0}).to_list(500)

    for v in versions:
        discard_upload(version_bucket(v), v.get("file_path"))
    for v in visas:
        discard_upload("visas", v.get("attachment_path"))
    if document.get("file_path") and not any(v.get("file_path") == document["file_path"] for v in versions):
        discard_upload("documents", document["file_path"])

    deleted_visas = (await db.visas.delete_many({"document_id": document_id})).deleted_count
    deleted_versions = (await db.versions.delete_many({"document_id": document_id})).deleted_count
    await db.documents.delete_one({"id": document_id})

    await log_activity(
        user=user,
        action="delete",
        entity_type="document",
        entity_id=document_id,
        entity_name=document.get("nom"),
        marche_id=document["marche_id"],
        details={"versions": deleted_versions, "visas": deleted_visas}
    )

    logger.info(f"[DOCUMENT_DELETE] {document_id}: {deleted_versions} versions, {deleted_visas} visas")
    return {"success": True, "deleted": {"versions": deleted_versions, "visas": deleted_visas}}
