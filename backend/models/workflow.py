"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Statuts du workflow documentaire                                            ║
║                                                                              ║
║  VERSION:  En attente de diffusion → En attente de visa                      ║
║            → BPE | À remettre à jour | Refusé                                ║
║  DOCUMENT: En attente de diffusion ⇄ En attente de validation → Validé       ║
║  VISA:     En attente → Approuvé | Rejeté                                    ║
║                                                                              ║
║  RÈGLE: seul services/visa_state_machine.py modifie ces statuts              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum


class DocumentStatus(str, Enum):
    EN_ATTENTE_DIFFUSION = "En attente de diffusion"
    EN_ATTENTE_VALIDATION = "En attente de validation"
    VALIDE = "Validé"
    REFUSE = "Refusé"  # Statut historique, accepté en lecture / filtre


class VersionStatus(str, Enum):
    EN_ATTENTE_DIFFUSION = "En attente de diffusion"
    EN_ATTENTE_VISA = "En attente de visa"
    BPE = "BPE"                           # Bon Pour Exécution (terminal)
    A_REMETTRE_A_JOUR = "À remettre à jour"  # Terminal, une nouvelle version existe
    REFUSE = "Refusé"                     # Terminal, révision manuelle attendue


class VisaStatus(str, Enum):
    EN_ATTENTE = "En attente"   # pending
    APPROUVE = "Approuvé"       # approved (VSO ou VAO)
    REJETE = "Rejeté"           # rejected


class VisaType(str, Enum):
    """Décision du MOE sur une version"""
    VSO = "VSO"       # Visa Sans Observation
    VAO = "VAO"       # Visa Avec Observation
    REFUSE = "Refusé"


VALID_VERSION_TRANSITIONS = {
    "En attente de diffusion": ["En attente de visa"],
    "En attente de visa": ["BPE", "À remettre à jour", "Refusé"],
    "BPE": [],
    "À remettre à jour": [],
    "Refusé": [],
}

VALID_DOCUMENT_TRANSITIONS = {
    "En attente de diffusion": ["En attente de validation"],
    "En attente de validation": ["Validé", "En attente de diffusion"],
    "Validé": [],
    "Refusé": ["En attente de diffusion"],
}

VALID_VISA_TRANSITIONS = {
    "En attente": ["Approuvé", "Rejeté"],
    "Approuvé": [],
    "Rejeté": [],
}
