"""
Service de stockage des fichiers (buckets)

Un bucket = un sous-dossier de STORAGE_ROOT.
Chemin stocké en base: "<marche_id>/<timestamp>_<nom_fichier>" (relatif au bucket).
"""

import logging
import time
from pathlib import Path
from typing import Optional

import config

logger = logging.getLogger("storage")

BUCKETS = ("documents", "versions", "visas", "covers", "logos", "questions", "reponses")

ALLOWED_EXTENSIONS = {
    "documents": {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".dwg", ".zip"},
    "versions": {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".dwg", ".zip"},
    "visas": {".pdf", ".doc", ".docx", ".jpg", ".jpeg", ".png"},
    "covers": {".jpg", ".jpeg", ".png", ".gif", ".webp"},
    "logos": {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg"},
    "questions": {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".jpg", ".jpeg", ".png"},
    "reponses": {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".jpg", ".jpeg", ".png"},
}
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".zip": "application/zip",
}


class StorageError(Exception):
    """Raised when a file cannot be stored or retrieved"""
    pass


def ensure_buckets():
    """Crée les dossiers des buckets s'ils n'existent pas"""
    for bucket in BUCKETS:
        (config.STORAGE_ROOT / bucket).mkdir(parents=True, exist_ok=True)


def _bucket_dir(bucket: str) -> Path:
    if bucket not in BUCKETS:
        raise StorageError(f"Bucket inconnu: {bucket}")
    return config.STORAGE_ROOT / bucket


def _resolve(bucket: str, path: str) -> Path:
    base = _bucket_dir(bucket).resolve()
    full = (base / path).resolve()
    if base not in full.parents:
        raise StorageError(f"Chemin invalide: {path}")
    return full


def validate_upload(bucket: str, filename: str, size: int):
    ext = Path(filename or "").suffix.lower()
    allowed = ALLOWED_EXTENSIONS.get(bucket, set())
    if ext not in allowed:
        raise StorageError(
            f"Extension non autorisée. Extensions valides: {', '.join(sorted(allowed))}"
        )
    if size > MAX_FILE_SIZE:
        raise StorageError(
            f"Fichier trop volumineux. Maximum: {MAX_FILE_SIZE // 1024 // 1024} MB"
        )


def save_file(bucket: str, marche_id: str, filename: str, content: bytes) -> str:
    """
    Enregistre un fichier dans un bucket.
    Returns: chemin relatif à stocker en base
    """
    validate_upload(bucket, filename, len(content))

    safe_name = Path(filename).name.replace(" ", "_")
    rel_path = f"{marche_id}/{int(time.time() * 1000)}_{safe_name}"
    full = _resolve(bucket, rel_path)
    full.parent.mkdir(parents=True, exist_ok=True)

    with open(full, "wb") as f:
        f.write(content)

    logger.info(f"[STORAGE] {bucket}/{rel_path} ({len(content)} octets)")
    return rel_path


def get_file_path(bucket: str, path: str) -> Path:
    """Chemin absolu d'un fichier existant"""
    full = _resolve(bucket, path)
    if not full.exists():
        raise StorageError(f"Fichier non trouvé: {path}")
    return full


def delete_file(bucket: str, path: Optional[str]) -> bool:
    """Supprime un fichier; retourne False s'il n'existait pas"""
    if not path:
        return False
    full = _resolve(bucket, path)
    if not full.exists():
        logger.warning(f"[STORAGE] Suppression ignorée, fichier absent: {bucket}/{path}")
        return False
    full.unlink()
    logger.info(f"[STORAGE] Supprimé: {bucket}/{path}")
    return True


def guess_mime_type(path: str) -> str:
    return MIME_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def format_size(size: int) -> str:
    """Taille lisible (ex: "1.25 MB")"""
    if size < 1024:
        return f"{size} o"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / 1024 / 1024:.2f} MB"
