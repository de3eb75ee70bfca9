"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import secrets
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'marches_db')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Stockage fichiers (un sous-dossier par bucket)
STORAGE_ROOT = Path(os.environ.get('STORAGE_ROOT', str(ROOT_DIR / 'storage')))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Durée de validité d'une session
SESSION_DAYS = int(os.environ.get('SESSION_DAYS', '7'))


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()
