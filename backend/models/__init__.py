"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Marchés - Models Package                                                    ║
║                                                                              ║
║  Exporte tous les modèles pour import facile                                 ║
║  from models import MarcheCreate, DocumentCreate, VersionStatus, etc.        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from .auth import (
    VALID_GLOBAL_ROLES,
    UserLogin,
    PasswordChange,
    CollaborateurCreate,
    CollaborateurUpdate,
)

from .marche import (
    MarcheStatus,
    MarcheRole,
    VALID_MARCHE_ROLES,
    MarcheCreate,
    MarcheUpdate,
    DroitAssign,
)

from .document import (
    DocumentCreate,
    DocumentUpdate,
    VisaSettingsUpdate,
)

from .workflow import (
    DocumentStatus,
    VersionStatus,
    VisaStatus,
    VisaType,
    VALID_VERSION_TRANSITIONS,
    VALID_DOCUMENT_TRANSITIONS,
    VALID_VISA_TRANSITIONS,
)

from .fascicule import (
    FasciculeCreate,
    FasciculeUpdate,
)

from .question import (
    QuestionStatus,
    VALID_QUESTION_STATUSES,
    MAX_CONTENT_LENGTH,
    clean_content,
)
