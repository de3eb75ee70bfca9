"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Questions / Réponses d'un marché                                            ║
║                                                                              ║
║  Un membre du marché pose une question (éventuellement sur un document ou    ║
║  un fascicule). Toute réponse passe la question au statut Répondu.           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum


class QuestionStatus(str, Enum):
    EN_ATTENTE = "En attente"
    REPONDU = "Répondu"


VALID_QUESTION_STATUSES = [s.value for s in QuestionStatus]

# Longueur maximale d'une question ou d'une réponse
MAX_CONTENT_LENGTH = 5000


def clean_content(content: str) -> str:
    """Texte d'une question / réponse: requis, borné en longueur"""
    text = (content or "").strip()
    if not text:
        raise ValueError("Le contenu est requis")
    if len(text) > MAX_CONTENT_LENGTH:
        raise ValueError(f"Le contenu ne peut pas dépasser {MAX_CONTENT_LENGTH} caractères")
    return text
