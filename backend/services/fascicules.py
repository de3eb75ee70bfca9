"""
Service Fascicules

Avancement d'un fascicule = documents au statut Validé / documents du fascicule.
Les compteurs sont recalculés à chaque lecture depuis la collection documents;
rien n'est dénormalisé sur le fascicule.
"""

from typing import List, Dict, Optional

from config import db
from models.workflow import DocumentStatus


def compute_fascicule_progress(documents: List[dict]) -> dict:
    """
    Returns:
        nombredocuments, documents_valides, progression (pourcentage, 1 décimale),
        par_statut {statut: nombre}, datemaj (dernière modification d'un document)
    """
    par_statut: Dict[str, int] = {s.value: 0 for s in DocumentStatus}
    for d in documents:
        statut = d.get("statut")
        par_statut[statut] = par_statut.get(statut, 0) + 1

    total = len(documents)
    valides = par_statut[DocumentStatus.VALIDE.value]
    dates = [d.get("updated_at") or d.get("created_at") for d in documents]
    dates = [x for x in dates if x]

    return {
        "nombredocuments": total,
        "documents_valides": valides,
        "progression": round(100 * valides / total, 1) if total else 0.0,
        "par_statut": par_statut,
        "datemaj": max(dates) if dates else None,
    }


async def list_fascicules_with_progress(marche_id: str) -> List[dict]:
    fascicules = await db.fascicules.find({"marche_id": marche_id}, {"_id": 0}) \
        .sort("nom", 1).to_list(500)
    if not fascicules:
        return []

    documents = await db.documents.find(
        {"marche_id": marche_id, "fascicule_id": {"$in": [f["id"] for f in fascicules]}},
        {"_id": 0, "fascicule_id": 1, "statut": 1, "created_at": 1, "updated_at": 1}
    ).to_list(10000)

    grouped: Dict[str, List[dict]] = {f["id"]: [] for f in fascicules}
    for d in documents:
        grouped[d["fascicule_id"]].append(d)

    return [{**f, **compute_fascicule_progress(grouped[f["id"]])} for f in fascicules]


async def get_fascicule_in_marche(fascicule_id: Optional[str], marche_id: str) -> Optional[dict]:
    """Fascicule s'il existe et appartient au marché, sinon None"""
    if not fascicule_id:
        return None
    return await db.fascicules.find_one({"id": fascicule_id, "marche_id": marche_id}, {"_id": 0})
