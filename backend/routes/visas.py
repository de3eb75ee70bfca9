"""
Routes Visas

- Liste des visas (marché / document, filtre statut)
- Traitement d'un visa par le MOE: VSO / VAO / Refusé (+ pièce jointe)
- Pièce jointe
- Synthèse des visas en attente d'un marché
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from fastapi.responses import FileResponse
from typing import Optional
import logging

from config import db, now_iso
from models.workflow import VisaStatus
from routes.auth import get_current_user
from routes.versions import store_upload, discard_upload
from services.activity_logger import log_activity
from services.permissions import require_marche_access
from services.visa_state_machine import (
    VisaWorkflowError,
    to_http_exception,
    process_visa,
    parse_visa_type,
)
from services import storage

router = APIRouter(prefix="/visas", tags=["Visas"])
logger = logging.getLogger("visas")


def _with_type(visa: dict) -> dict:
    # Anciens visas: le type n'est connu que par le préfixe du commentaire
    if not visa.get("type_visa"):
        visa["type_visa"] = parse_visa_type(visa.get("commentaire"))
    return visa


async def _get_visa_or_404(visa_id: str) -> dict:
    visa = await db.visas.find_one({"id": visa_id}, {"_id": 0})
    if not visa:
        raise HTTPException(status_code=404, detail="Visa non trouvé")
    return visa


@router.get("")
async def list_visas(
    marche_id: Optional[str] = None,
    document_id: Optional[str] = None,
    statut: Optional[str] = None,
    user: dict = Depends(get_current_user)
):
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

    visas = await db.visas.find(query, {"_id": 0}).sort("date_demande", -1).to_list(1000)
    return {"visas": [_with_type(v) for v in visas], "count": len(visas)}


@router.get("/pending")
async def pending_summary(marche_id: str, user: dict = Depends(get_current_user)):
    """Visas en attente d'un marché, avec les visas en retard (échéance dépassée)"""
    await require_marche_access(user, marche_id)

    pending = await db.visas.find(
        {"marche_id": marche_id, "statut": VisaStatus.EN_ATTENTE.value}, {"_id": 0}
    ).sort("echeance", 1).to_list(1000)

    now = now_iso()
    overdue = [v for v in pending if v.get("echeance") and v["echeance"] < now]

    doc_ids = list({v["document_id"] for v in pending})
    documents = await db.documents.find(
        {"id": {"$in": doc_ids}}, {"_id": 0, "id": 1, "nom": 1, "numero": 1}
    ).to_list(1000)
    by_id = {d["id"]: d for d in documents}
    for v in pending:
        v["document_nom"] = by_id.get(v["document_id"], {}).get("nom")
        v["document_numero"] = by_id.get(v["document_id"], {}).get("numero")

    return {
        "marche_id": marche_id,
        "count": len(pending),
        "overdue": len(overdue),
        "visas": pending,
    }


@router.get("/{visa_id}")
async def get_visa(visa_id: str, user: dict = Depends(get_current_user)):
    visa = await _get_visa_or_404(visa_id)
    await require_marche_access(user, visa["marche_id"])
    return _with_type(visa)


@router.post("/{visa_id}/process")
async def process_visa_endpoint(
    visa_id: str,
    type_visa: str = Form(...),
    commentaire: str = Form(""),
    file: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user)
):
    """
    Décision du MOE sur un visa en attente.
    - VSO: version BPE, document Validé
    - VAO: version à remettre à jour, nouvelle version créée (commentaire requis)
    - Refusé: version refusée (commentaire requis)
    """
    visa = await _get_visa_or_404(visa_id)
    _, role = await require_marche_access(user, visa["marche_id"])

    attachment_path, _ = await store_upload("visas", visa["marche_id"], file)

    try:
        result = await process_visa(visa_id, type_visa, commentaire, user, role, attachment_path)
    except VisaWorkflowError as e:
        discard_upload("visas", attachment_path)
        raise to_http_exception(e)

    await log_activity(
        user=user,
        action="process_visa",
        entity_type="visa",
        entity_id=visa_id,
        entity_name=f"{result['visa'].get('type_visa')} version {visa.get('version')}",
        marche_id=visa["marche_id"],
        details={
            "document_id": result["document_id"],
            "document_status": result["document_status"],
            "version_status": result["version_status"],
        }
    )

    return {"success": True, **result}


@router.get("/{visa_id}/attachment")
async def download_attachment(visa_id: str, user: dict = Depends(get_current_user)):
    visa = await _get_visa_or_404(visa_id)
    await require_marche_access(user, visa["marche_id"])

    if not visa.get("attachment_path"):
        raise HTTPException(status_code=404, detail="Aucune pièce jointe")

    try:
        path = storage.get_file_path("visas", visa["attachment_path"])
    except storage.StorageError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return FileResponse(
        path,
        media_type=storage.guess_mime_type(visa["attachment_path"]),
        filename=path.name.split("_", 1)[-1]
    )
