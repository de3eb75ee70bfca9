"""
Fixtures partagées: base MongoDB en mémoire (mongomock-motor) injectée dans
tous les modules qui importent `db`, stockage fichiers dans tmp_path.
"""

import asyncio
import importlib
import uuid
from datetime import datetime, timezone, timedelta

import pytest
from mongomock_motor import AsyncMongoMockClient

import config
from config import hash_password, now_iso
from services.permissions import get_preset_permissions

PASSWORD = "MarchesTest2026!"

DB_MODULES = [
    "config",
    "routes.auth",
    "routes.users",
    "routes.marches",
    "routes.fascicules",
    "routes.questions",
    "routes.documents",
    "routes.versions",
    "routes.visas",
    "routes.notifications",
    "routes.settings",
    "routes.event_log",
    "services.activity_logger",
    "services.event_logger",
    "services.fascicules",
    "services.notifications",
    "services.permissions",
    "services.settings",
    "services.visa_state_machine",
]


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def mock_db(monkeypatch, tmp_path):
    db = AsyncMongoMockClient()[f"test_{uuid.uuid4().hex[:8]}"]
    for name in DB_MODULES:
        monkeypatch.setattr(importlib.import_module(name), "db", db)

    monkeypatch.setattr(config, "STORAGE_ROOT", tmp_path / "storage")
    from services.storage import ensure_buckets
    ensure_buckets()
    return db


def make_user(db, role_global="STANDARD", email=None):
    """Insère un utilisateur + une session. Returns: (user, token)"""
    user = {
        "id": str(uuid.uuid4()),
        "email": email or f"{role_global.lower()}_{uuid.uuid4().hex[:6]}@test.local",
        "password": hash_password(PASSWORD),
        "nom": role_global.title(),
        "prenom": "Test",
        "role_global": role_global,
        "permissions": get_preset_permissions(role_global),
        "is_active": True,
        "created_at": now_iso(),
    }
    token = uuid.uuid4().hex
    expires_at = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()

    async def insert():
        await db.users.insert_one(dict(user))
        await db.sessions.insert_one({"token": token, "user_id": user["id"], "expires_at": expires_at})

    _db_op(insert())
    public = {k: v for k, v in user.items() if k != "password"}
    return public, token


def make_marche(db, creator, droits=None):
    """Marché créé par `creator` (MOE implicite) + droits [(user, role)]"""
    marche = {
        "id": str(uuid.uuid4()),
        "titre": "Groupe scolaire Jean Jaurès",
        "description": "",
        "client": "Ville de Test",
        "statut": "En cours",
        "user_id": creator["id"],
        "created_at": now_iso(),
    }

    async def insert():
        await db.marches.insert_one(dict(marche))
        for user, role in droits or []:
            await db.droits_marche.insert_one({
                "id": str(uuid.uuid4()),
                "user_id": user["id"],
                "marche_id": marche["id"],
                "role_specifique": role,
            })

    _db_op(insert())
    return marche


def auth_h(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api(mock_db):
    from fastapi.testclient import TestClient
    from server import app
    return TestClient(app)
