"""
Routes Questions / Réponses

Échanges entre les intervenants d'un marché. Tout membre du marché (y compris
OBSERVATEUR) peut poser une question et y répondre.
- Une question peut viser un document et / ou un fascicule du marché
- Pièces jointes: bucket "questions" / bucket "reponses"
- Nouvelle question -> notification aux MOE; réponse -> notification à l'auteur
"""

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from fastapi.responses import FileResponse
from typing import Optional, List
import logging
import uuid

from config import db, now_iso
from models.question import QuestionStatus, clean_content
from routes.auth import get_current_user
from routes.versions import store_upload, discard_upload
from services.activity_logger import log_activity
from services.fascicules import get_fascicule_in_marche
from services.notifications import create_notification, notify_marche_role
from services.permissions import require_marche_access, DROITS_MANAGE_ROLES
from services import storage

router = APIRouter(prefix="/questions", tags=["Questions"])
logger = logging.getLogger("questions")

AUTHOR_FIELDS = {"_id": 0, "id": 1, "nom": 1, "prenom": 1, "entreprise": 1}


def _content_or_400(content: str) -> str:
    try:
        return clean_content(content)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def _get_question_or_404(question_id: str) -> dict:
    question = await db.questions.find_one({"id": question_id}, {"_id": 0})
    if not question:
        raise HTTPException(status_code=404, detail="Question non trouvée")
    return question


async def _get_reponse_or_404(reponse_id: str) -> dict:
    reponse = await db.reponses.find_one({"id": reponse_id}, {"_id": 0})
    if not reponse:
        raise HTTPException(status_code=404, detail="Réponse non trouvée")
    return reponse


def _attachment_response(bucket: str, path: Optional[str]) -> FileResponse:
    if not path:
        raise HTTPException(status_code=404, detail="Aucune pièce jointe")
    try:
        full = storage.get_file_path(bucket, path)
    except storage.StorageError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return FileResponse(full, media_type=storage.guess_mime_type(path), filename=full.name.split("_", 1)[-1])


async def _with_details(questions: List[dict]) -> List[dict]:
    """Ajoute réponses, auteurs, nom du document et du fascicule"""
    if not questions:
        return questions

    question_ids = [q["id"] for q in questions]
    reponses = await db.reponses.find(
        {"question_id": {"$in": question_ids}}, {"_id": 0}
    ).sort("date_creation", 1).to_list(5000)

    user_ids = list({q.get("user_id") for q in questions} | {r.get("user_id") for r in reponses})
    users = await db.users.find({"id": {"$in": user_ids}}, AUTHOR_FIELDS).to_list(1000)
    authors = {u["id"]: u for u in users}

    doc_ids = [q["document_id"] for q in questions if q.get("document_id")]
    fasc_ids = [q["fascicule_id"] for q in questions if q.get("fascicule_id")]
    documents = await db.documents.find({"id": {"$in": doc_ids}}, {"_id": 0, "id": 1, "nom": 1}).to_list(1000)
    fascicules = await db.fascicules.find({"id": {"$in": fasc_ids}}, {"_id": 0, "id": 1, "nom": 1}).to_list(1000)
    doc_names = {d["id"]: d["nom"] for d in documents}
    fasc_names = {f["id"]: f["nom"] for f in fascicules}

    by_question = {qid: [] for qid in question_ids}
    for r in reponses:
        r["auteur"] = authors.get(r.get("user_id"))
        by_question[r["question_id"]].append(r)

    for q in questions:
        q["auteur"] = authors.get(q.get("user_id"))
        q["document_nom"] = doc_names.get(q.get("document_id"))
        q["fascicule_nom"] = fasc_names.get(q.get("fascicule_id"))
        q["reponses"] = by_question[q["id"]]
    return questions


@router.get("")
async def list_questions(
    marche_id: str,
    statut: Optional[str] = None,
    document_id: Optional[str] = None,
    fascicule_id: Optional[str] = None,
    user: dict = Depends(get_current_user)
):
    await require_marche_access(user, marche_id)

    query = {"marche_id": marche_id}
    if statut:
        query["statut"] = statut
    if document_id:
        query["document_id"] = document_id
    if fascicule_id:
        query["fascicule_id"] = fascicule_id

    questions = await db.questions.find(query, {"_id": 0}).sort("date_creation", -1).to_list(1000)
    en_attente = await db.questions.count_documents(
        {"marche_id": marche_id, "statut": QuestionStatus.EN_ATTENTE.value}
    )
    return {"questions": await _with_details(questions), "count": len(questions), "en_attente": en_attente}


@router.get("/{question_id}")
async def get_question(question_id: str, user: dict = Depends(get_current_user)):
    question = await _get_question_or_404(question_id)
    await require_marche_access(user, question["marche_id"])
    return (await _with_details([question]))[0]


@router.post("")
async def ask_question(
    marche_id: str = Form(...),
    content: str = Form(...),
    document_id: Optional[str] = Form(None),
    fascicule_id: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user)
):
    await require_marche_access(user, marche_id)
    content = _content_or_400(content)

    document = None
    if document_id:
        document = await db.documents.find_one(
            {"id": document_id, "marche_id": marche_id}, {"_id": 0, "id": 1, "nom": 1}
        )
        if not document:
            raise HTTPException(status_code=400, detail="Document inconnu sur ce marché")
    if fascicule_id and not await get_fascicule_in_marche(fascicule_id, marche_id):
        raise HTTPException(status_code=400, detail="Fascicule inconnu sur ce marché")

    attachment_path, _ = await store_upload("questions", marche_id, file)

    question = {
        "id": str(uuid.uuid4()),
        "marche_id": marche_id,
        "content": content,
        "document_id": document_id or None,
        "fascicule_id": fascicule_id or None,
        "attachment_path": attachment_path,
        "user_id": user["id"],
        "statut": QuestionStatus.EN_ATTENTE.value,
        "date_creation": now_iso(),
    }
    await db.questions.insert_one(question)
    question.pop("_id", None)

    sujet = f" sur {document['nom']}" if document else ""
    await notify_marche_role(
        marche_id,
        "MOE",
        type="question",
        titre="Nouvelle question",
        message=f"{user.get('prenom', '')} {user.get('nom', '')} a posé une question{sujet}".strip(),
        objet_type="question",
        objet_id=question["id"],
        exclude_user_id=user["id"]
    )

    await log_activity(
        user=user,
        action="ask_question",
        entity_type="question",
        entity_id=question["id"],
        entity_name=content[:80],
        marche_id=marche_id
    )

    return {"success": True, "question": question}


@router.post("/{question_id}/reponses")
async def answer_question(
    question_id: str,
    content: str = Form(...),
    file: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user)
):
    question = await _get_question_or_404(question_id)
    await require_marche_access(user, question["marche_id"])
    content = _content_or_400(content)

    attachment_path, _ = await store_upload("reponses", question["marche_id"], file)

    reponse = {
        "id": str(uuid.uuid4()),
        "question_id": question_id,
        "marche_id": question["marche_id"],
        "content": content,
        "attachment_path": attachment_path,
        "user_id": user["id"],
        "date_creation": now_iso(),
    }
    await db.reponses.insert_one(reponse)
    reponse.pop("_id", None)

    await db.questions.update_one(
        {"id": question_id},
        {"$set": {"statut": QuestionStatus.REPONDU.value, "updated_at": now_iso()}}
    )

    if question.get("user_id") and question["user_id"] != user["id"]:
        await create_notification(
            question["user_id"],
            question["marche_id"],
            "reponse",
            "Réponse à votre question",
            f"{user.get('prenom', '')} {user.get('nom', '')} a répondu à votre question".strip(),
            "question",
            question_id
        )

    await log_activity(
        user=user,
        action="answer_question",
        entity_type="question",
        entity_id=question_id,
        entity_name=question.get("content", "")[:80],
        marche_id=question["marche_id"]
    )

    return {"success": True, "reponse": reponse}


@router.get("/{question_id}/attachment")
async def download_question_attachment(question_id: str, user: dict = Depends(get_current_user)):
    question = await _get_question_or_404(question_id)
    await require_marche_access(user, question["marche_id"])
    return _attachment_response("questions", question.get("attachment_path"))


@router.get("/reponses/{reponse_id}/attachment")
async def download_reponse_attachment(reponse_id: str, user: dict = Depends(get_current_user)):
    reponse = await _get_reponse_or_404(reponse_id)
    await require_marche_access(user, reponse["marche_id"])
    return _attachment_response("reponses", reponse.get("attachment_path"))


@router.delete("/{question_id}")
async def delete_question(question_id: str, user: dict = Depends(get_current_user)):
    """Supprime une question et ses réponses (auteur de la question ou MOE)"""
    question = await _get_question_or_404(question_id)
    _, role = await require_marche_access(user, question["marche_id"])
    if question.get("user_id") != user["id"] and role not in DROITS_MANAGE_ROLES:
        raise HTTPException(status_code=403, detail="Seul l'auteur ou le MOE peut supprimer cette question")

    reponses = await db.reponses.find({"question_id": question_id}, {"_id": 0, "attachment_path": 1}).to_list(1000)
    for r in reponses:
        discard_upload("reponses", r.get("attachment_path"))
    discard_upload("questions", question.get("attachment_path"))

    deleted = (await db.reponses.delete_many({"question_id": question_id})).deleted_count
    await db.questions.delete_one({"id": question_id})

    await log_activity(
        user=user,
        action="delete_question",
        entity_type="question",
        entity_id=question_id,
        marche_id=question["marche_id"],
        details={"reponses": deleted}
    )
    return {"success": True, "deleted": {"reponses": deleted}}


@router.delete("/reponses/{reponse_id}")
async def delete_reponse(reponse_id: str, user: dict = Depends(get_current_user)):
    """Supprime une réponse; la question repasse En attente s'il n'en reste aucune"""
    reponse = await _get_reponse_or_404(reponse_id)
    _, role = await require_marche_access(user, reponse["marche_id"])
    if reponse.get("user_id") != user["id"] and role not in DROITS_MANAGE_ROLES:
        raise HTTPException(status_code=403, detail="Seul l'auteur ou le MOE peut supprimer cette réponse")

    discard_upload("reponses", reponse.get("attachment_path"))
    await db.reponses.delete_one({"id": reponse_id})

    remaining = await db.reponses.count_documents({"question_id": reponse["question_id"]})
    if remaining == 0:
        await db.questions.update_one(
            {"id": reponse["question_id"]},
            {"$set": {"statut": QuestionStatus.EN_ATTENTE.value, "updated_at": now_iso()}}
        )

    return {"success": True, "reponses_restantes": remaining}
