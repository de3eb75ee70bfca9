"""
Marchés - API Backend
Gestion documentaire des marchés de travaux (diffusion / visa)

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config import client, CORS_ORIGINS

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("marches_api")

app = FastAPI(
    title="Marchés API",
    description="Documents, versions et visas des marchés de travaux",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== IMPORT DES ROUTES ====================

from routes import (
    auth, users, activity, marches, fascicules, documents, versions, visas,
    questions, notifications, settings, event_log,
)

app.include_router(auth.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(activity.router, prefix="/api")
app.include_router(marches.router, prefix="/api")
app.include_router(fascicules.router, prefix="/api")
app.include_router(documents.router, prefix="/api")
app.include_router(versions.router, prefix="/api")
app.include_router(visas.router, prefix="/api")
app.include_router(questions.router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
app.include_router(settings.router, prefix="/api")
app.include_router(event_log.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "Marchés API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    from config import db
    from services.storage import ensure_buckets

    ensure_buckets()

    await db.users.create_index("email", unique=True)
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.marches.create_index("user_id")
    await db.droits_marche.create_index([("marche_id", 1), ("user_id", 1)], unique=True)
    await db.documents.create_index("marche_id")
    await db.documents.create_index("fascicule_id")
    await db.fascicules.create_index("marche_id")
    await db.questions.create_index([("marche_id", 1), ("statut", 1)])
    await db.reponses.create_index("question_id")
    await db.versions.create_index("document_id")
    await db.visas.create_index([("marche_id", 1), ("statut", 1)])
    await db.visas.create_index("version_id")
    await db.notifications.create_index([("user_id", 1), ("lue", 1)])
    await db.event_log.create_index("created_at")
    await db.activity_logs.create_index("created_at")

    logger.info("✅ Buckets et index MongoDB prêts")


@app.on_event("shutdown")
async def shutdown():
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
