"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Visa State Machine                                                          ║
║                                                                              ║
║  RÈGLES STRICTES DE TRANSITION DE STATUT (document / version / visa)         ║
║                                                                              ║
║  SEUL CE MODULE peut modifier document.statut, version.statut, visa.statut   ║
║  SEUL CE MODULE crée des versions (initiale, VAO, révision)                  ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - un document a exactement une version courante (current_version_id)        ║
║  - un visa référence un couple document + version existant                   ║
║  - les libellés de version sont des lettres croissantes (A, B, C...)         ║
║  - au plus un visa "En attente" par version                                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any

from fastapi import HTTPException

from config import db, now_iso
from models.workflow import (
    DocumentStatus,
    VersionStatus,
    VisaStatus,
    VisaType,
    VALID_VERSION_TRANSITIONS,
    VALID_DOCUMENT_TRANSITIONS,
    VALID_VISA_TRANSITIONS,
)
from services.permissions import DIFFUSION_ROLES, VISA_ROLES, REVISION_ROLES
from services.settings import get_visa_settings, DEFAULT_VISA_SETTINGS
from services.event_logger import log_event
from services.notifications import create_notification, notify_marche_role

logger = logging.getLogger("visa_state_machine")

FIRST_VERSION_LABEL = "A"

# Statuts de la version courante permettant de déposer une révision
REVISABLE_STATUSES = (VersionStatus.REFUSE.value, VersionStatus.A_REMETTRE_A_JOUR.value)


# ════════════════════════════════════════════════════════════════════════════
# ERRORS
# ════════════════════════════════════════════════════════════════════════════

class VisaWorkflowError(Exception):
    """Transition refusée ou donnée invalide"""
    pass


class WorkflowPermissionError(VisaWorkflowError):
    """Rôle insuffisant pour l'action"""
    pass


class WorkflowNotFoundError(VisaWorkflowError):
    """Document, version ou visa introuvable"""
    pass


class WorkflowConflictError(VisaWorkflowError):
    """Le statut a changé entre la lecture et l'écriture"""
    pass


class VersionLabelError(VisaWorkflowError):
    """Libellé de version non incrémentable"""
    pass


def to_http_exception(error: VisaWorkflowError) -> HTTPException:
    """Traduit une erreur du workflow en réponse HTTP (message affiché à l'utilisateur)"""
    if isinstance(error, WorkflowPermissionError):
        status = 403
    elif isinstance(error, WorkflowNotFoundError):
        status = 404
    elif isinstance(error, WorkflowConflictError):
        status = 409
    else:
        status = 400
    logger.warning(f"[STATE_MACHINE] Transition refusée ({status}): {error}")
    return HTTPException(status_code=status, detail=str(error))


# ════════════════════════════════════════════════════════════════════════════
# PURE RULES
# ════════════════════════════════════════════════════════════════════════════

def next_version_label(label: str) -> str:
    """
    Lettre suivante: A -> B, B -> C ...
    Lève VersionLabelError si le libellé n'est pas une lettre ASCII unique, ou après Z.
    """
    if not isinstance(label, str) or len(label) != 1 or not label.isascii() or not label.isalpha():
        raise VersionLabelError(f"Libellé de version invalide: {label!r} (une lettre attendue)")

    label = label.upper()
    if label == "Z":
        raise VersionLabelError("Nombre maximal de versions atteint (Z)")

    return chr(ord(label) + 1)


def normalize_visa_type(value: str) -> VisaType:
    """Accepte VSO / VAO / Refusé (insensible à la casse, avec ou sans accent)"""
    if isinstance(value, VisaType):
        return value
    key = (value or "").strip().upper()
    if key == "VSO":
        return VisaType.VSO
    if key == "VAO":
        return VisaType.VAO
    if key in ("REFUSÉ", "REFUSE"):
        return VisaType.REFUSE
    raise VisaWorkflowError(f"Type de visa invalide: {value!r}. Valides: VSO, VAO, Refusé")


def format_visa_comment(visa_type: VisaType, comment: Optional[str]) -> str:
    """Commentaire stocké avec son préfixe de type: "VAO: reprendre le carnet" """
    comment = (comment or "").strip()
    prefix = f"{visa_type.value}:"
    return f"{prefix} {comment}" if comment else prefix


def parse_visa_type(commentaire: Optional[str]) -> Optional[str]:
    """Retrouve le type de visa depuis le préfixe du commentaire"""
    if not commentaire:
        return None
    if "VSO:" in commentaire:
        return VisaType.VSO.value
    if "VAO:" in commentaire:
        return VisaType.VAO.value
    if "refusé:" in commentaire.lower():
        return VisaType.REFUSE.value
    return None


def validate_visa_comment(visa_type: VisaType, comment: Optional[str], min_length: int) -> str:
    """VAO et Refusé exigent un commentaire d'au moins min_length caractères"""
    comment = (comment or "").strip()
    if visa_type == VisaType.VSO:
        return comment

    if not comment:
        raise VisaWorkflowError(
            f"Commentaire requis pour un visa {visa_type.value} afin de justifier la décision"
        )
    if len(comment) < min_length:
        raise VisaWorkflowError(
            f"Commentaire trop court pour un visa {visa_type.value} "
            f"({len(comment)} caractères, minimum {min_length})"
        )
    return comment


def validate_version_transition(version_id: str, from_status: str, to_status: str) -> bool:
    valid_next = VALID_VERSION_TRANSITIONS.get(from_status, [])
    if to_status not in valid_next:
        raise VisaWorkflowError(
            f"Transition invalide: la version {version_id} ne peut pas passer de "
            f"'{from_status}' à '{to_status}'"
        )
    return True


def validate_document_transition(document_id: str, from_status: str, to_status: str) -> bool:
    valid_next = VALID_DOCUMENT_TRANSITIONS.get(from_status, [])
    if to_status not in valid_next:
        raise VisaWorkflowError(
            f"Transition invalide: le document {document_id} ne peut pas passer de "
            f"'{from_status}' à '{to_status}'"
        )
    return True


def validate_visa_transition(visa_id: str, from_status: str, to_status: str) -> bool:
    valid_next = VALID_VISA_TRANSITIONS.get(from_status, [])
    if to_status not in valid_next:
        raise VisaWorkflowError(
            f"Transition invalide: le visa {visa_id} ne peut pas passer de "
            f"'{from_status}' à '{to_status}'"
        )
    return True


def check_diffusion_allowed(role: Optional[str], version_status: str, document_status: str) -> bool:
    if role not in DIFFUSION_ROLES:
        raise WorkflowPermissionError("Seul le MANDATAIRE peut diffuser les documents")

    if version_status != VersionStatus.EN_ATTENTE_DIFFUSION.value:
        raise VisaWorkflowError(
            f"Diffusion impossible: la version est '{version_status}' "
            f"(attendu: '{VersionStatus.EN_ATTENTE_DIFFUSION.value}')"
        )

    if document_status != DocumentStatus.EN_ATTENTE_DIFFUSION.value:
        raise VisaWorkflowError(
            f"Diffusion impossible: le document est '{document_status}' "
            f"(attendu: '{DocumentStatus.EN_ATTENTE_DIFFUSION.value}')"
        )
    return True


def check_visa_allowed(
    role: Optional[str],
    version_status: str,
    document_status: str,
    visa_status: str = VisaStatus.EN_ATTENTE.value
) -> bool:
    if role not in VISA_ROLES:
        raise WorkflowPermissionError("Seul le MOE peut traiter les visas")

    if visa_status != VisaStatus.EN_ATTENTE.value:
        raise VisaWorkflowError(f"Visa déjà traité (statut: '{visa_status}')")

    if version_status != VersionStatus.EN_ATTENTE_VISA.value:
        raise VisaWorkflowError(
            f"Visa impossible: la version est '{version_status}' "
            f"(attendu: '{VersionStatus.EN_ATTENTE_VISA.value}')"
        )

    if document_status != DocumentStatus.EN_ATTENTE_VALIDATION.value:
        raise VisaWorkflowError(
            f"Visa impossible: le document est '{document_status}' "
            f"(attendu: '{DocumentStatus.EN_ATTENTE_VALIDATION.value}')"
        )
    return True


def compute_diffusion_transition(version_status: str, document_status: str) -> Dict[str, str]:
    validate_version_transition("-", version_status, VersionStatus.EN_ATTENTE_VISA.value)
    validate_document_transition("-", document_status, DocumentStatus.EN_ATTENTE_VALIDATION.value)
    return {
        "version_status": VersionStatus.EN_ATTENTE_VISA.value,
        "document_status": DocumentStatus.EN_ATTENTE_VALIDATION.value,
        "visa_status": VisaStatus.EN_ATTENTE.value,
    }


def compute_visa_transition(
    version_status: str,
    visa_type,
    version_label: str,
    comment: Optional[str] = "",
    min_comment_length: int = DEFAULT_VISA_SETTINGS["min_comment_length"]
) -> Dict[str, Any]:
    """
    Calcule l'effet d'une décision de visa sur une version "En attente de visa".

    | Décision | Version           | Document                | Visa     | Nouvelle version |
    |----------|-------------------|-------------------------|----------|------------------|
    | VSO      | BPE               | Validé                  | Approuvé | -                |
    | VAO      | À remettre à jour | En attente de diffusion | Approuvé | lettre suivante  |
    | Refusé   | Refusé            | En attente de diffusion | Rejeté   | -                |
    """
    visa_type = normalize_visa_type(visa_type)

    if version_status != VersionStatus.EN_ATTENTE_VISA.value:
        raise VisaWorkflowError(
            f"Décision impossible: la version est '{version_status}' "
            f"(attendu: '{VersionStatus.EN_ATTENTE_VISA.value}')"
        )

    comment = validate_visa_comment(visa_type, comment, min_comment_length)

    if visa_type == VisaType.VSO:
        result = {
            "version_status": VersionStatus.BPE.value,
            "document_status": DocumentStatus.VALIDE.value,
            "visa_status": VisaStatus.APPROUVE.value,
            "new_version_label": None,
        }
    elif visa_type == VisaType.VAO:
        result = {
            "version_status": VersionStatus.A_REMETTRE_A_JOUR.value,
            "document_status": DocumentStatus.EN_ATTENTE_DIFFUSION.value,
            "visa_status": VisaStatus.APPROUVE.value,
            "new_version_label": next_version_label(version_label),
        }
    else:
        result = {
            "version_status": VersionStatus.REFUSE.value,
            "document_status": DocumentStatus.EN_ATTENTE_DIFFUSION.value,
            "visa_status": VisaStatus.REJETE.value,
            "new_version_label": None,
        }

    result["visa_type"] = visa_type.value
    result["commentaire"] = format_visa_comment(visa_type, comment)
    if result["new_version_label"]:
        result["new_version_status"] = VersionStatus.EN_ATTENTE_DIFFUSION.value
    return result


def compute_echeance(delay_days: int, start: Optional[datetime] = None) -> str:
    start = start or datetime.now(timezone.utc)
    return (start + timedelta(days=delay_days)).isoformat()


# ════════════════════════════════════════════════════════════════════════════
# STORE HELPERS
# ════════════════════════════════════════════════════════════════════════════

async def _get_or_raise(collection, entity_id: str, label: str) -> dict:
    doc = await collection.find_one({"id": entity_id}, {"_id": 0})
    if not doc:
        raise WorkflowNotFoundError(f"{label} {entity_id} non trouvé")
    return doc


def _new_version_doc(
    document: dict,
    label: str,
    user: dict,
    commentaire: str = "",
    file_path: Optional[str] = None,
    taille: Optional[str] = None,
    previous_id: Optional[str] = None
) -> dict:
    now = now_iso()
    return {
        "id": str(uuid.uuid4()),
        "document_id": document["id"],
        "marche_id": document["marche_id"],
        "version": label,
        "statut": VersionStatus.EN_ATTENTE_DIFFUSION.value,
        "cree_par": user.get("email", "system"),
        "date_creation": now,
        "commentaire": commentaire or "",
        "file_path": file_path,
        "taille": taille,
        "version_precedente_id": previous_id,
        "created_at": now,
    }


# ════════════════════════════════════════════════════════════════════════════
# SAFE STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

async def create_document(
    marche_id: str,
    data: Dict[str, Any],
    user: dict,
    file_path: Optional[str] = None,
    taille: Optional[str] = None
) -> Dict[str, Any]:
    """
    Crée un document et sa version initiale "A" (En attente de diffusion).
    """
    now = now_iso()
    document = {
        "id": str(uuid.uuid4()),
        "marche_id": marche_id,
        "nom": data["nom"],
        "type": data["type"],
        "description": data.get("description", ""),
        "fascicule_id": data.get("fascicule_id"),
        "numero": data.get("numero", ""),
        "emetteur": data.get("emetteur", ""),
        "phase": data.get("phase", ""),
        "statut": DocumentStatus.EN_ATTENTE_DIFFUSION.value,
        "version": FIRST_VERSION_LABEL,
        "current_version_id": None,
        "file_path": file_path,
        "taille": taille,
        "date_diffusion": None,
        "date_bpe": None,
        "dateupload": now,
        "created_by": user.get("id"),
        "created_at": now,
        "updated_at": now,
    }

    version = _new_version_doc(document, FIRST_VERSION_LABEL, user, file_path=file_path, taille=taille)
    document["current_version_id"] = version["id"]

    await db.documents.insert_one(document)
    await db.versions.insert_one(version)
    document.pop("_id", None)
    version.pop("_id", None)

    await log_event(
        action="create_document",
        entity_type="document",
        entity_id=document["id"],
        user=user.get("email", "system"),
        marche_id=marche_id,
        details={"version": FIRST_VERSION_LABEL},
        related={"version_id": version["id"]}
    )

    logger.info(f"[STATE_MACHINE] Document {document['id']} créé | version A -> {version['statut']}")

    return {"document": document, "version": version}


async def diffuse_version(
    version_id: str,
    user: dict,
    role: Optional[str],
    commentaire: str = "",
    file_path: Optional[str] = None,
    taille: Optional[str] = None
) -> Dict[str, Any]:
    """
    🔒 Diffuse une version pour visa.

    version: En attente de diffusion -> En attente de visa
    document: En attente de diffusion -> En attente de validation
    + création automatique d'un visa "En attente"
    """
    version = await _get_or_raise(db.versions, version_id, "Version")
    document = await _get_or_raise(db.documents, version["document_id"], "Document")

    check_diffusion_allowed(role, version.get("statut"), document.get("statut"))

    if document.get("current_version_id") != version_id:
        raise VisaWorkflowError(
            f"Seule la version courante ({document.get('version')}) peut être diffusée"
        )

    transition = compute_diffusion_transition(version["statut"], document["statut"])
    settings = await get_visa_settings()
    now = now_iso()

    update_version = {
        "statut": transition["version_status"],
        "date_diffusion": now,
        "diffuse_par": user.get("email"),
        "updated_at": now,
    }
    if commentaire:
        update_version["commentaire"] = commentaire
    if file_path:
        update_version["file_path"] = file_path
        update_version["taille"] = taille

    result = await db.versions.update_one(
        {"id": version_id, "statut": VersionStatus.EN_ATTENTE_DIFFUSION.value},
        {"$set": update_version}
    )
    if result.modified_count == 0:
        raise WorkflowConflictError(f"La version {version_id} a déjà été diffusée")

    update_document = {
        "statut": transition["document_status"],
        "date_diffusion": now,
        "updated_at": now,
    }
    if file_path and not version.get("version_precedente_id"):
        update_document["file_path"] = file_path
        update_document["taille"] = taille

    await db.documents.update_one({"id": document["id"]}, {"$set": update_document})

    visa = {
        "id": str(uuid.uuid4()),
        "document_id": document["id"],
        "marche_id": document["marche_id"],
        "version": version["version"],
        "version_id": version_id,
        "demande_par": user.get("email"),
        "demande_par_id": user.get("id"),
        "date_demande": now,
        "echeance": compute_echeance(int(settings["echeance_jours"])),
        "statut": transition["visa_status"],
        "type_visa": None,
        "commentaire": None,
        "attachment_path": None,
        "created_at": now,
    }
    await db.visas.insert_one(visa)
    visa.pop("_id", None)

    await log_event(
        action="diffuse_version",
        entity_type="version",
        entity_id=version_id,
        user=user.get("email", "system"),
        marche_id=document["marche_id"],
        details={
            "from_status": version["statut"],
            "to_status": transition["version_status"],
            "version": version["version"],
        },
        related={"document_id": document["id"], "visa_id": visa["id"]}
    )

    await notify_marche_role(
        marche_id=document["marche_id"],
        role="MOE",
        type="visa_demande",
        titre="Visa à traiter",
        message=f"Le document {document.get('nom')} (version {version['version']}) est en attente de visa",
        objet_type="visa",
        objet_id=visa["id"],
        exclude_user_id=user.get("id")
    )

    logger.info(
        f"[STATE_MACHINE] Version {version_id} -> {transition['version_status']} | "
        f"Document {document['id']} -> {transition['document_status']} | visa={visa['id']}"
    )

    updated = await db.versions.find_one({"id": version_id}, {"_id": 0})
    return {
        "document_id": document["id"],
        "document_status": transition["document_status"],
        "version": updated,
        "visa": visa,
    }


async def process_visa(
    visa_id: str,
    visa_type,
    comment: str,
    user: dict,
    role: Optional[str],
    attachment_path: Optional[str] = None
) -> Dict[str, Any]:
    """
    🔒 SEULE FONCTION AUTORISÉE pour traiter un visa (VSO / VAO / Refusé).

    Applique compute_visa_transition au visa, à la version et au document,
    et crée la version suivante en cas de VAO.
    """
    visa_type = normalize_visa_type(visa_type)

    visa = await _get_or_raise(db.visas, visa_id, "Visa")

    if visa.get("version_id"):
        version = await _get_or_raise(db.versions, visa["version_id"], "Version")
    else:
        version = await db.versions.find_one(
            {"document_id": visa.get("document_id"), "version": visa.get("version")},
            {"_id": 0}
        )
        if not version:
            raise WorkflowNotFoundError(
                f"Version {visa.get('version')} du document {visa.get('document_id')} non trouvée"
            )

    document = await _get_or_raise(db.documents, version["document_id"], "Document")

    check_visa_allowed(role, version.get("statut"), document.get("statut"), visa.get("statut"))

    settings = await get_visa_settings()
    transition = compute_visa_transition(
        version["statut"],
        visa_type,
        version["version"],
        comment,
        int(settings["min_comment_length"])
    )
    validate_visa_transition(visa_id, visa.get("statut"), transition["visa_status"])
    now = now_iso()

    # 1. Visa (garde: encore "En attente")
    visa_update = {
        "statut": transition["visa_status"],
        "type_visa": transition["visa_type"],
        "commentaire": transition["commentaire"],
        "traite_par": user.get("email"),
        "date_visa": now,
    }
    if attachment_path:
        visa_update["attachment_path"] = attachment_path

    result = await db.visas.update_one(
        {"id": visa_id, "statut": VisaStatus.EN_ATTENTE.value},
        {"$set": visa_update}
    )
    if result.modified_count == 0:
        raise WorkflowConflictError(f"Le visa {visa_id} a déjà été traité")

    # 2. Version (garde: encore "En attente de visa")
    result = await db.versions.update_one(
        {"id": version["id"], "statut": VersionStatus.EN_ATTENTE_VISA.value},
        {"$set": {"statut": transition["version_status"], "updated_at": now}}
    )
    if result.modified_count == 0:
        logger.error(f"[STATE_MACHINE] Version {version['id']} modifiée pendant le traitement du visa {visa_id}")
        await db.visas.update_one(
            {"id": visa_id, "statut": transition["visa_status"]},
            {
                "$set": {
                    "statut": VisaStatus.EN_ATTENTE.value,
                    "type_visa": visa.get("type_visa"),
                    "commentaire": visa.get("commentaire"),
                    "attachment_path": visa.get("attachment_path"),
                },
                "$unset": {"traite_par": "", "date_visa": ""},
            }
        )
        raise WorkflowConflictError(f"La version {version['version']} a changé de statut")

    # 3. Document (+ nouvelle version si VAO)
    document_update = {"statut": transition["document_status"], "updated_at": now}
    if transition["document_status"] == DocumentStatus.VALIDE.value:
        document_update["date_bpe"] = now

    new_version = None
    if transition["new_version_label"]:
        new_version = _new_version_doc(
            document,
            transition["new_version_label"],
            user,
            commentaire=f"Créée suite au visa VAO de la version {version['version']}",
            previous_id=version["id"]
        )
        await db.versions.insert_one(new_version)
        new_version.pop("_id", None)
        document_update["version"] = new_version["version"]
        document_update["current_version_id"] = new_version["id"]

    await db.documents.update_one({"id": document["id"]}, {"$set": document_update})

    await log_event(
        action="process_visa",
        entity_type="visa",
        entity_id=visa_id,
        user=user.get("email", "system"),
        marche_id=document["marche_id"],
        details={
            "visa_type": transition["visa_type"],
            "version": version["version"],
            "version_status": transition["version_status"],
            "document_status": transition["document_status"],
            "new_version": transition["new_version_label"],
        },
        related={
            "document_id": document["id"],
            "version_id": version["id"],
            "new_version_id": new_version["id"] if new_version else None,
        }
    )

    if visa.get("demande_par_id"):
        await create_notification(
            user_id=visa["demande_par_id"],
            marche_id=document["marche_id"],
            type="visa_traite",
            titre=f"Visa {transition['visa_type']}",
            message=(
                f"Le document {document.get('nom')} (version {version['version']}) "
                f"a reçu un visa {transition['visa_type']}"
            ),
            objet_type="visa",
            objet_id=visa_id
        )

    logger.info(
        f"[STATE_MACHINE] Visa {visa_id} -> {transition['visa_status']} ({transition['visa_type']}) | "
        f"Version {version['id']} -> {transition['version_status']} | "
        f"Document {document['id']} -> {transition['document_status']}"
        + (f" | nouvelle version {new_version['version']}" if new_version else "")
    )

    updated_visa = await db.visas.find_one({"id": visa_id}, {"_id": 0})
    return {
        "visa": updated_visa,
        "version_id": version["id"],
        "version_status": transition["version_status"],
        "document_id": document["id"],
        "document_status": transition["document_status"],
        "new_version": new_version,
    }


async def create_revision(
    document_id: str,
    user: dict,
    role: Optional[str],
    commentaire: str = "",
    file_path: Optional[str] = None,
    taille: Optional[str] = None
) -> Dict[str, Any]:
    """
    🔒 Dépose une nouvelle version après un refus (ou remplace la version
    créée automatiquement par un VAO si elle a été annulée).
    """
    if role not in REVISION_ROLES:
        raise WorkflowPermissionError("Seul le MANDATAIRE peut déposer une nouvelle version")

    document = await _get_or_raise(db.documents, document_id, "Document")
    current = await _get_or_raise(db.versions, document.get("current_version_id"), "Version")

    if current.get("statut") not in REVISABLE_STATUSES:
        raise VisaWorkflowError(
            f"Nouvelle version impossible: la version courante {current.get('version')} "
            f"est '{current.get('statut')}'"
        )

    label = next_version_label(current["version"])
    new_version = _new_version_doc(
        document, label, user,
        commentaire=commentaire, file_path=file_path, taille=taille,
        previous_id=current["id"]
    )
    await db.versions.insert_one(new_version)
    new_version.pop("_id", None)

    result = await db.documents.update_one(
        {"id": document_id, "current_version_id": current["id"]},
        {"$set": {
            "version": label,
            "current_version_id": new_version["id"],
            "statut": DocumentStatus.EN_ATTENTE_DIFFUSION.value,
            "updated_at": now_iso(),
        }}
    )
    if result.modified_count == 0:
        await db.versions.delete_one({"id": new_version["id"]})
        raise WorkflowConflictError(f"Une autre version du document {document_id} vient d'être créée")

    await log_event(
        action="create_version",
        entity_type="version",
        entity_id=new_version["id"],
        user=user.get("email", "system"),
        marche_id=document["marche_id"],
        details={"version": label, "previous": current["version"]},
        related={"document_id": document_id, "previous_version_id": current["id"]}
    )

    logger.info(f"[STATE_MACHINE] Document {document_id} -> nouvelle version {label}")

    return {"document_id": document_id, "version": new_version}


async def cancel_version(version_id: str, user: dict, role: Optional[str]) -> Dict[str, Any]:
    """
    🔒 Annule une version non diffusée (autre que A): la version précédente
    redevient courante.
    """
    if role not in REVISION_ROLES:
        raise WorkflowPermissionError("Seul le MANDATAIRE peut annuler une version")

    version = await _get_or_raise(db.versions, version_id, "Version")
    if version.get("statut") != VersionStatus.EN_ATTENTE_DIFFUSION.value:
        raise VisaWorkflowError(
            f"Seule une version '{VersionStatus.EN_ATTENTE_DIFFUSION.value}' peut être annulée"
        )
    if not version.get("version_precedente_id"):
        raise VisaWorkflowError("La version initiale ne peut pas être annulée, supprimez le document")

    document = await _get_or_raise(db.documents, version["document_id"], "Document")
    previous = await _get_or_raise(db.versions, version["version_precedente_id"], "Version")

    result = await db.documents.update_one(
        {"id": document["id"], "current_version_id": version_id},
        {"$set": {
            "version": previous["version"],
            "current_version_id": previous["id"],
            "updated_at": now_iso(),
        }}
    )
    if result.modified_count == 0:
        raise WorkflowConflictError(f"La version {version['version']} n'est plus la version courante")

    await db.versions.delete_one({"id": version_id})

    await log_event(
        action="cancel_version",
        entity_type="version",
        entity_id=version_id,
        user=user.get("email", "system"),
        marche_id=document["marche_id"],
        details={"version": version["version"], "restored": previous["version"]},
        related={"document_id": document["id"], "previous_version_id": previous["id"]}
    )

    logger.info(
        f"[STATE_MACHINE] Version {version_id} ({version['version']}) annulée | "
        f"courante -> {previous['version']}"
    )

    return {"document_id": document["id"], "cancelled": version, "current_version": previous}
