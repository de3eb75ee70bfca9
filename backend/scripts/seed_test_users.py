"""
Marchés - Seed Test Users (dev/staging only)
Crée 4 comptes de test (un par rôle global) et un marché de démonstration
où le MOE et le mandataire ont leurs droits.
Run: python scripts/seed_test_users.py
Reset: python scripts/seed_test_users.py --reset
"""

import asyncio
import sys
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import client, db, hash_password, now_iso
from services.permissions import get_preset_permissions

TEST_PASSWORD = "MarchesTest2026!"

TEST_USERS = [
    {"email": "admin@test.local",      "nom": "Admin",      "role_global": "ADMIN"},
    {"email": "moe@test.local",        "nom": "MOE",        "role_global": "MOE"},
    {"email": "mandataire@test.local", "nom": "Mandataire", "role_global": "MANDATAIRE"},
    {"email": "lecteur@test.local",    "nom": "Lecteur",    "role_global": "STANDARD"},
]

DEMO_MARCHE_TITRE = "Marché de démonstration"


async def reset():
    """Supprime les users test.local, leurs sessions et le marché de démo"""
    users = await db.users.find({"email": {"$regex": "@test\\.local$"}}, {"_id": 0, "id": 1}).to_list(100)
    ids = [u["id"] for u in users]
    await db.sessions.delete_many({"user_id": {"$in": ids}})
    result = await db.users.delete_many({"id": {"$in": ids}})

    marche = await db.marches.find_one({"titre": DEMO_MARCHE_TITRE}, {"_id": 0, "id": 1})
    if marche:
        await db.droits_marche.delete_many({"marche_id": marche["id"]})
        await db.marches.delete_one({"id": marche["id"]})

    print(f"Deleted {result.deleted_count} test users")


async def seed():
    by_role = {}
    for u in TEST_USERS:
        doc = {
            "id": str(uuid.uuid4()),
            "email": u["email"],
            "password": hash_password(TEST_PASSWORD),
            "nom": u["nom"],
            "prenom": "Test",
            "role_global": u["role_global"],
            "permissions": get_preset_permissions(u["role_global"]),
            "is_active": True,
            "created_at": now_iso(),
        }
        await db.users.insert_one(doc)
        by_role[u["role_global"]] = doc["id"]
        print(f"  Created: {u['email']} ({u['role_global']})")

    marche_id = str(uuid.uuid4())
    await db.marches.insert_one({
        "id": marche_id,
        "titre": DEMO_MARCHE_TITRE,
        "description": "Réhabilitation d'un groupe scolaire",
        "client": "Commune de démonstration",
        "statut": "En cours",
        "budget": "",
        "datecreation": now_iso(),
        "image": None,
        "logo": None,
        "user_id": by_role["MOE"],
        "created_at": now_iso(),
    })
    for role in ("MOE", "MANDATAIRE"):
        await db.droits_marche.insert_one({
            "id": str(uuid.uuid4()),
            "user_id": by_role[role],
            "marche_id": marche_id,
            "role_specifique": role,
            "created_at": now_iso(),
        })
    await db.droits_marche.insert_one({
        "id": str(uuid.uuid4()),
        "user_id": by_role["STANDARD"],
        "marche_id": marche_id,
        "role_specifique": "OBSERVATEUR",
        "created_at": now_iso(),
    })
    print(f"  Created: {DEMO_MARCHE_TITRE} ({marche_id})")


async def main():
    await reset()
    if "--reset" in sys.argv:
        print("Reset complete. Run without --reset to re-seed.")
    else:
        await seed()
        print(f"\n{len(TEST_USERS)} test users seeded. Password for all: {TEST_PASSWORD}")
        print("Reset: python scripts/seed_test_users.py --reset")

    client.close()


if __name__ == "__main__":
    asyncio.run(main())
