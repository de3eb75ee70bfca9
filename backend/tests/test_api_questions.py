"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  API - Questions / Réponses d'un marché                                      ║
║                                                                              ║
║  Question (+ pièce jointe) -> notification MOE -> réponse -> Répondu         ║
║  -> notification à l'auteur -> suppressions et cascade marché                ║
╚══════════════════════════════════════════════════════════════════════════════╝
Run: cd backend && pytest tests/test_api_questions.py -v
"""

import pytest

from tests.conftest import _db_op, make_user, make_marche, auth_h


@pytest.fixture
def actors(mock_db):
    moe, moe_token = make_user(mock_db, "MOE")
    mand, mand_token = make_user(mock_db, "MANDATAIRE")
    obs, obs_token = make_user(mock_db, "STANDARD")
    _, outsider_token = make_user(mock_db, "STANDARD")
    marche = make_marche(mock_db, moe, droits=[(mand, "MANDATAIRE"), (obs, "OBSERVATEUR")])
    return {
        "marche": marche,
        "moe": auth_h(moe_token),
        "mand": auth_h(mand_token),
        "obs": auth_h(obs_token),
        "outsider": auth_h(outsider_token),
    }


def _ask(api, actors, headers=None, **extra):
    data = {"marche_id": actors["marche"]["id"], "content": "Quelle classe de béton pour les voiles ?"}
    data.update(extra)
    r = api.post("/api/questions", data=data, headers=headers or actors["mand"])
    assert r.status_code == 200, r.text
    return r.json()["question"]


class TestAsk:
    def test_question_notifies_moe(self, api, actors):
        question = _ask(api, actors)
        assert question["statut"] == "En attente"

        notifs = api.get("/api/notifications", headers=actors["moe"]).json()
        assert notifs["notifications"][0]["type"] == "question"
        assert notifs["notifications"][0]["objet_id"] == question["id"]

        # L'auteur n'est pas notifié de sa propre question
        assert api.get("/api/notifications", headers=actors["mand"]).json()["unread"] == 0

    def test_observateur_can_ask(self, api, actors):
        assert _ask(api, actors, headers=actors["obs"])["statut"] == "En attente"

    def test_outsider_cannot_ask(self, api, actors):
        r = api.post(
            "/api/questions",
            data={"marche_id": actors["marche"]["id"], "content": "Bonjour"},
            headers=actors["outsider"]
        )
        assert r.status_code == 403

    def test_empty_content(self, api, actors):
        r = api.post(
            "/api/questions", data={"marche_id": actors["marche"]["id"], "content": "   "}, headers=actors["mand"]
        )
        assert r.status_code == 400

    def test_unknown_document(self, api, actors):
        r = api.post(
            "/api/questions",
            data={"marche_id": actors["marche"]["id"], "content": "Cote ?", "document_id": "inconnu"},
            headers=actors["mand"]
        )
        assert r.status_code == 400

    def test_question_on_document_and_attachment(self, api, actors):
        created = api.post(
            "/api/documents",
            data={"marche_id": actors["marche"]["id"], "nom": "CCTP Lot 02", "type": "CCTP"},
            headers=actors["mand"]
        ).json()
        r = api.post(
            "/api/questions",
            data={
                "marche_id": actors["marche"]["id"],
                "content": "Article 3.2 à préciser",
                "document_id": created["document"]["id"],
            },
            files={"file": ("extrait cctp.pdf", b"%PDF-1.4 extrait", "application/pdf")},
            headers=actors["obs"]
        )
        assert r.status_code == 200, r.text
        question_id = r.json()["question"]["id"]

        listed = api.get(f"/api/questions?marche_id={actors['marche']['id']}", headers=actors["moe"]).json()
        assert listed["questions"][0]["document_nom"] == "CCTP Lot 02"
        assert listed["questions"][0]["auteur"]["nom"] == "Standard"

        r = api.get(f"/api/questions/{question_id}/attachment", headers=actors["mand"])
        assert r.status_code == 200
        assert r.content == b"%PDF-1.4 extrait"

    def test_bad_attachment_extension(self, api, actors):
        r = api.post(
            "/api/questions",
            data={"marche_id": actors["marche"]["id"], "content": "Voir script"},
            files={"file": ("macro.exe", b"MZ", "application/octet-stream")},
            headers=actors["mand"]
        )
        assert r.status_code == 400


class TestAnswer:
    def test_answer_marks_question_and_notifies_author(self, api, actors):
        question = _ask(api, actors)

        r = api.post(
            f"/api/questions/{question['id']}/reponses",
            data={"content": "C30/37 XC1, voir note de calcul"},
            headers=actors["moe"]
        )
        assert r.status_code == 200, r.text

        detail = api.get(f"/api/questions/{question['id']}", headers=actors["obs"]).json()
        assert detail["statut"] == "Répondu"
        assert [rep["content"] for rep in detail["reponses"]] == ["C30/37 XC1, voir note de calcul"]
        assert detail["reponses"][0]["auteur"]["nom"] == "Moe"

        notifs = api.get("/api/notifications", headers=actors["mand"]).json()
        assert notifs["notifications"][0]["type"] == "reponse"

        listed = api.get(
            "/api/questions",
            params={"marche_id": actors["marche"]["id"], "statut": "En attente"},
            headers=actors["moe"]
        ).json()
        assert listed["count"] == 0
        assert listed["en_attente"] == 0

    def test_deleting_last_answer_reopens_question(self, api, actors):
        question = _ask(api, actors)
        reponse_id = api.post(
            f"/api/questions/{question['id']}/reponses", data={"content": "Voir CCTP"}, headers=actors["obs"]
        ).json()["reponse"]["id"]

        # Ni auteur de la réponse, ni MOE
        assert api.delete(f"/api/questions/reponses/{reponse_id}", headers=actors["mand"]).status_code == 403

        r = api.delete(f"/api/questions/reponses/{reponse_id}", headers=actors["obs"])
        assert r.json()["reponses_restantes"] == 0
        assert api.get(f"/api/questions/{question['id']}", headers=actors["moe"]).json()["statut"] == "En attente"


class TestDelete:
    def test_only_author_or_moe(self, api, actors):
        question = _ask(api, actors)
        assert api.delete(f"/api/questions/{question['id']}", headers=actors["obs"]).status_code == 403

        api.post(f"/api/questions/{question['id']}/reponses", data={"content": "Réponse"}, headers=actors["moe"])
        r = api.delete(f"/api/questions/{question['id']}", headers=actors["moe"])
        assert r.status_code == 200
        assert r.json()["deleted"] == {"reponses": 1}
        assert api.get(f"/api/questions/{question['id']}", headers=actors["moe"]).status_code == 404

    def test_marche_delete_cascades(self, api, actors, mock_db):
        question = _ask(api, actors)
        api.post(f"/api/questions/{question['id']}/reponses", data={"content": "Réponse"}, headers=actors["moe"])
        api.post(
            "/api/fascicules",
            json={"marche_id": actors["marche"]["id"], "nom": "Lot 01"},
            headers=actors["moe"]
        )

        admin_token = make_user(mock_db, "ADMIN")[1]
        r = api.delete(f"/api/marches/{actors['marche']['id']}", headers=auth_h(admin_token))
        assert r.status_code == 200
        deleted = r.json()["deleted"]
        assert deleted["questions"] == 1
        assert deleted["reponses"] == 1
        assert deleted["fascicules"] == 1
        assert _db_op(mock_db.questions.count_documents({})) == 0
