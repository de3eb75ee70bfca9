"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Fascicules - regroupement des documents et avancement                       ║
║                                                                              ║
║  Avancement = documents Validé / documents du fascicule                      ║
║  Suppression d'un fascicule = documents détachés, jamais supprimés           ║
╚══════════════════════════════════════════════════════════════════════════════╝
Run: cd backend && pytest tests/test_fascicules.py -v
"""

import uuid

import pytest

from tests.conftest import _db_op, make_user, make_marche, auth_h
from services.fascicules import compute_fascicule_progress


def _doc(statut, updated_at="2026-03-01T08:00:00+00:00"):
    return {"statut": statut, "created_at": "2026-01-01T08:00:00+00:00", "updated_at": updated_at}


class TestComputeProgress:
    def test_empty(self):
        progress = compute_fascicule_progress([])
        assert progress["nombredocuments"] == 0
        assert progress["progression"] == 0.0
        assert progress["datemaj"] is None

    def test_ratio_of_validated(self):
        docs = [
            _doc("Validé"),
            _doc("Validé", "2026-04-02T10:00:00+00:00"),
            _doc("En attente de validation"),
        ]
        progress = compute_fascicule_progress(docs)
        assert progress["nombredocuments"] == 3
        assert progress["documents_valides"] == 2
        assert progress["progression"] == 66.7
        assert progress["datemaj"] == "2026-04-02T10:00:00+00:00"
        assert progress["par_statut"]["En attente de validation"] == 1
        assert progress["par_statut"]["En attente de diffusion"] == 0

    def test_all_validated(self):
        assert compute_fascicule_progress([_doc("Validé")] * 4)["progression"] == 100.0


@pytest.fixture
def actors(mock_db):
    moe, moe_token = make_user(mock_db, "MOE")
    mand, mand_token = make_user(mock_db, "MANDATAIRE")
    obs, obs_token = make_user(mock_db, "STANDARD")
    outsider, outsider_token = make_user(mock_db, "STANDARD")
    marche = make_marche(mock_db, moe, droits=[(mand, "MANDATAIRE"), (obs, "OBSERVATEUR")])
    return {
        "db": mock_db,
        "marche": marche,
        "moe": auth_h(moe_token),
        "mand": auth_h(mand_token),
        "obs": auth_h(obs_token),
        "outsider": auth_h(outsider_token),
    }


def _create_fascicule(api, actors, nom="Lot 02 - Gros oeuvre"):
    r = api.post(
        "/api/fascicules",
        json={"marche_id": actors["marche"]["id"], "nom": nom, "description": "Structure béton"},
        headers=actors["mand"]
    )
    assert r.status_code == 200, r.text
    return r.json()["fascicule"]


def _upload(api, actors, fascicule_id, nom="Plan de fondations"):
    r = api.post(
        "/api/documents",
        data={"marche_id": actors["marche"]["id"], "nom": nom, "type": "Plan", "fascicule_id": fascicule_id},
        files={"file": ("fondations.pdf", b"%PDF-1.4", "application/pdf")},
        headers=actors["mand"]
    )
    assert r.status_code == 200, r.text
    return r.json()


class TestFasciculesApi:
    def test_create_and_list(self, api, actors):
        fascicule = _create_fascicule(api, actors)
        assert fascicule["progression"] == 0.0

        data = api.get(f"/api/fascicules?marche_id={actors['marche']['id']}", headers=actors["obs"]).json()
        assert data["count"] == 1
        assert data["fascicules"][0]["nom"] == "Lot 02 - Gros oeuvre"

    def test_observateur_cannot_create(self, api, actors):
        r = api.post(
            "/api/fascicules",
            json={"marche_id": actors["marche"]["id"], "nom": "Lot 05"},
            headers=actors["obs"]
        )
        assert r.status_code == 403

    def test_outsider_cannot_list(self, api, actors):
        r = api.get(f"/api/fascicules?marche_id={actors['marche']['id']}", headers=actors["outsider"])
        assert r.status_code == 403

    def test_blank_name(self, api, actors):
        r = api.post("/api/fascicules", json={"marche_id": actors["marche"]["id"], "nom": " "}, headers=actors["mand"])
        assert r.status_code == 422

    def test_duplicate_name_case_insensitive(self, api, actors):
        _create_fascicule(api, actors)
        r = api.post(
            "/api/fascicules",
            json={"marche_id": actors["marche"]["id"], "nom": "lot 02 - gros oeuvre"},
            headers=actors["mand"]
        )
        assert r.status_code == 400

    def test_progress_follows_visas(self, api, actors):
        fascicule = _create_fascicule(api, actors)
        first = _upload(api, actors, fascicule["id"])
        _upload(api, actors, fascicule["id"], nom="Coupe AA")
        _upload(api, actors, "", nom="Notice sécurité")

        visa_id = api.post(
            f"/api/versions/{first['version']['id']}/diffuse", headers=actors["mand"]
        ).json()["visa"]["id"]
        r = api.post(f"/api/visas/{visa_id}/process", data={"type_visa": "VSO"}, headers=actors["moe"])
        assert r.status_code == 200

        data = api.get(f"/api/fascicules?marche_id={actors['marche']['id']}", headers=actors["moe"]).json()
        progress = data["fascicules"][0]
        assert progress["nombredocuments"] == 2
        assert progress["documents_valides"] == 1
        assert progress["progression"] == 50.0
        assert data["documents_sans_fascicule"] == 1

        detail = api.get(f"/api/fascicules/{fascicule['id']}", headers=actors["obs"]).json()
        assert sorted(d["nom"] for d in detail["documents"]) == ["Coupe AA", "Plan de fondations"]

        docs = api.get(
            f"/api/documents?marche_id={actors['marche']['id']}&fascicule_id={fascicule['id']}",
            headers=actors["obs"]
        ).json()
        assert docs["count"] == 2

    def test_document_with_foreign_fascicule_rejected(self, api, actors, mock_db):
        other = make_marche(mock_db, make_user(mock_db, "MOE")[0])
        foreign_id = str(uuid.uuid4())
        _db_op(mock_db.fascicules.insert_one({"id": foreign_id, "marche_id": other["id"], "nom": "Lot étranger"}))

        r = api.post(
            "/api/documents",
            data={"marche_id": actors["marche"]["id"], "nom": "Plan", "type": "Plan", "fascicule_id": foreign_id},
            headers=actors["mand"]
        )
        assert r.status_code == 400
        assert _db_op(mock_db.documents.count_documents({})) == 0

    def test_move_document_between_fascicules(self, api, actors):
        lot_a = _create_fascicule(api, actors, "Lot A")
        lot_b = _create_fascicule(api, actors, "Lot B")
        document_id = _upload(api, actors, lot_a["id"])["document"]["id"]

        r = api.put(f"/api/documents/{document_id}", json={"fascicule_id": lot_b["id"]}, headers=actors["mand"])
        assert r.json()["document"]["fascicule_id"] == lot_b["id"]

        r = api.put(f"/api/documents/{document_id}", json={"fascicule_id": ""}, headers=actors["mand"])
        assert r.json()["document"]["fascicule_id"] is None

        r = api.put(f"/api/documents/{document_id}", json={"fascicule_id": "inconnu"}, headers=actors["mand"])
        assert r.status_code == 400

    def test_delete_detaches_documents(self, api, actors):
        fascicule = _create_fascicule(api, actors)
        document_id = _upload(api, actors, fascicule["id"])["document"]["id"]

        assert api.delete(f"/api/fascicules/{fascicule['id']}", headers=actors["mand"]).status_code == 403

        r = api.delete(f"/api/fascicules/{fascicule['id']}", headers=actors["moe"])
        assert r.status_code == 200
        assert r.json()["documents_detaches"] == 1

        document = api.get(f"/api/documents/{document_id}", headers=actors["moe"]).json()
        assert document["fascicule_id"] is None
        assert api.get(f"/api/fascicules/{fascicule['id']}", headers=actors["moe"]).status_code == 404

    def test_rename(self, api, actors):
        fascicule = _create_fascicule(api, actors)
        r = api.put(f"/api/fascicules/{fascicule['id']}", json={"nom": "Lot 02 - Structure"}, headers=actors["moe"])
        assert r.status_code == 200
        assert r.json()["fascicule"]["nom"] == "Lot 02 - Structure"

        r = api.put(f"/api/fascicules/{fascicule['id']}", json={}, headers=actors["moe"])
        assert r.status_code == 400
