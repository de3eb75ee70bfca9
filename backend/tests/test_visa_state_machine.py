"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Visa State Machine - Règles pures (sans base)                               ║
║                                                                              ║
║  1. Libellés de version (A -> B -> C ...)                                    ║
║  2. Types de visa et commentaires préfixés                                   ║
║  3. Décisions VSO / VAO / Refusé                                             ║
║  4. Diffusion et rôles                                                       ║
╚══════════════════════════════════════════════════════════════════════════════╝
Run: cd backend && pytest tests/test_visa_state_machine.py -v
"""

import string
from datetime import datetime, timezone

import pytest

from models.workflow import (
    DocumentStatus,
    VersionStatus,
    VisaStatus,
    VisaType,
    VALID_VERSION_TRANSITIONS,
    VALID_DOCUMENT_TRANSITIONS,
)
from services.visa_state_machine import (
    VisaWorkflowError,
    WorkflowPermissionError,
    WorkflowConflictError,
    WorkflowNotFoundError,
    VersionLabelError,
    to_http_exception,
    next_version_label,
    normalize_visa_type,
    format_visa_comment,
    parse_visa_type,
    validate_visa_comment,
    validate_version_transition,
    validate_document_transition,
    validate_visa_transition,
    check_diffusion_allowed,
    check_visa_allowed,
    compute_diffusion_transition,
    compute_visa_transition,
    compute_echeance,
)

EN_ATTENTE_VISA = VersionStatus.EN_ATTENTE_VISA.value


# ═══════════════════════════════════════════════════════════════
# 1. LIBELLÉS DE VERSION
# ═══════════════════════════════════════════════════════════════

class TestNextVersionLabel:
    def test_a_to_b(self):
        assert next_version_label("A") == "B"

    def test_b_to_c(self):
        assert next_version_label("B") == "C"

    def test_monotonic_over_alphabet(self):
        letters = string.ascii_uppercase[:-1]
        for letter in letters:
            nxt = next_version_label(letter)
            assert ord(nxt) == ord(letter) + 1

    def test_lowercase_is_uppercased(self):
        assert next_version_label("c") == "D"

    def test_overflow_after_z(self):
        with pytest.raises(VersionLabelError):
            next_version_label("Z")

    @pytest.mark.parametrize("label", ["", "AB", "1", "é", None])
    def test_invalid_labels(self, label):
        with pytest.raises(VersionLabelError):
            next_version_label(label)


# ═══════════════════════════════════════════════════════════════
# 2. TYPES DE VISA / COMMENTAIRES
# ═══════════════════════════════════════════════════════════════

class TestVisaType:
    @pytest.mark.parametrize("value,expected", [
        ("VSO", VisaType.VSO),
        ("vao", VisaType.VAO),
        ("Refusé", VisaType.REFUSE),
        ("REFUSE", VisaType.REFUSE),
        (" vso ", VisaType.VSO),
    ])
    def test_normalize(self, value, expected):
        assert normalize_visa_type(value) == expected

    def test_normalize_rejects_unknown(self):
        with pytest.raises(VisaWorkflowError):
            normalize_visa_type("OK")

    def test_format_with_comment(self):
        assert format_visa_comment(VisaType.VAO, " reprendre le carnet ") == "VAO: reprendre le carnet"

    def test_format_empty_comment(self):
        assert format_visa_comment(VisaType.VSO, "") == "VSO:"

    def test_parse_prefixes(self):
        assert parse_visa_type("VSO:") == "VSO"
        assert parse_visa_type("VAO: cotes à reprendre") == "VAO"
        assert parse_visa_type("Refusé: plan incomplet") == "Refusé"
        assert parse_visa_type("commentaire libre") is None
        assert parse_visa_type(None) is None


class TestVisaComment:
    def test_vso_accepts_empty(self):
        assert validate_visa_comment(VisaType.VSO, "", 3) == ""

    @pytest.mark.parametrize("visa_type", [VisaType.VAO, VisaType.REFUSE])
    def test_vao_and_refuse_require_comment(self, visa_type):
        with pytest.raises(VisaWorkflowError):
            validate_visa_comment(visa_type, "   ", 3)

    def test_too_short(self):
        with pytest.raises(VisaWorkflowError, match="trop court"):
            validate_visa_comment(VisaType.VAO, "ok", 3)

    def test_stripped(self):
        assert validate_visa_comment(VisaType.REFUSE, "  non conforme  ", 3) == "non conforme"


# ═══════════════════════════════════════════════════════════════
# 3. DÉCISIONS
# ═══════════════════════════════════════════════════════════════

class TestComputeVisaTransition:
    def test_vso(self):
        result = compute_visa_transition(EN_ATTENTE_VISA, "VSO", "A")
        assert result["version_status"] == VersionStatus.BPE.value
        assert result["document_status"] == DocumentStatus.VALIDE.value
        assert result["visa_status"] == VisaStatus.APPROUVE.value
        assert result["new_version_label"] is None
        assert result["commentaire"] == "VSO:"

    def test_vao_creates_next_label(self):
        result = compute_visa_transition(EN_ATTENTE_VISA, "VAO", "B", "reprendre les cotes")
        assert result["version_status"] == VersionStatus.A_REMETTRE_A_JOUR.value
        assert result["document_status"] == DocumentStatus.EN_ATTENTE_DIFFUSION.value
        assert result["visa_status"] == VisaStatus.APPROUVE.value
        assert result["new_version_label"] == "C"
        assert result["new_version_status"] == VersionStatus.EN_ATTENTE_DIFFUSION.value
        assert result["commentaire"] == "VAO: reprendre les cotes"

    def test_refuse(self):
        result = compute_visa_transition(EN_ATTENTE_VISA, VisaType.REFUSE, "A", "non conforme")
        assert result["version_status"] == VersionStatus.REFUSE.value
        assert result["document_status"] == DocumentStatus.EN_ATTENTE_DIFFUSION.value
        assert result["visa_status"] == VisaStatus.REJETE.value
        assert result["new_version_label"] is None
        assert "new_version_status" not in result

    @pytest.mark.parametrize("visa_type", ["VAO", "Refusé"])
    def test_empty_comment_rejected(self, visa_type):
        with pytest.raises(VisaWorkflowError):
            compute_visa_transition(EN_ATTENTE_VISA, visa_type, "A", "")

    def test_min_length_is_configurable(self):
        with pytest.raises(VisaWorkflowError):
            compute_visa_transition(EN_ATTENTE_VISA, "VAO", "A", "trop court", min_comment_length=20)

    @pytest.mark.parametrize("status", [
        VersionStatus.EN_ATTENTE_DIFFUSION.value,
        VersionStatus.BPE.value,
        VersionStatus.REFUSE.value,
        VersionStatus.A_REMETTRE_A_JOUR.value,
    ])
    def test_only_pending_versions(self, status):
        with pytest.raises(VisaWorkflowError):
            compute_visa_transition(status, "VSO", "A")

    def test_vao_on_z_overflows(self):
        with pytest.raises(VersionLabelError):
            compute_visa_transition(EN_ATTENTE_VISA, "VAO", "Z", "dernière reprise")

    def test_results_respect_transition_maps(self):
        for visa_type, comment in (("VSO", ""), ("VAO", "à reprendre"), ("Refusé", "non conforme")):
            result = compute_visa_transition(EN_ATTENTE_VISA, visa_type, "A", comment)
            assert result["version_status"] in VALID_VERSION_TRANSITIONS[EN_ATTENTE_VISA]
            assert result["document_status"] in \
                VALID_DOCUMENT_TRANSITIONS[DocumentStatus.EN_ATTENTE_VALIDATION.value]


# ═══════════════════════════════════════════════════════════════
# 4. DIFFUSION / RÔLES
# ═══════════════════════════════════════════════════════════════

class TestDiffusion:
    def test_compute(self):
        result = compute_diffusion_transition(
            VersionStatus.EN_ATTENTE_DIFFUSION.value, DocumentStatus.EN_ATTENTE_DIFFUSION.value
        )
        assert result == {
            "version_status": EN_ATTENTE_VISA,
            "document_status": DocumentStatus.EN_ATTENTE_VALIDATION.value,
            "visa_status": VisaStatus.EN_ATTENTE.value,
        }

    @pytest.mark.parametrize("status", [
        EN_ATTENTE_VISA, VersionStatus.BPE.value, VersionStatus.REFUSE.value,
    ])
    def test_rejects_non_pending_version(self, status):
        with pytest.raises(VisaWorkflowError):
            compute_diffusion_transition(status, DocumentStatus.EN_ATTENTE_DIFFUSION.value)
        with pytest.raises(VisaWorkflowError):
            check_diffusion_allowed("MANDATAIRE", status, DocumentStatus.EN_ATTENTE_DIFFUSION.value)

    @pytest.mark.parametrize("role", ["MANDATAIRE", "ADMIN"])
    def test_allowed_roles(self, role):
        assert check_diffusion_allowed(
            role, VersionStatus.EN_ATTENTE_DIFFUSION.value, DocumentStatus.EN_ATTENTE_DIFFUSION.value
        )

    @pytest.mark.parametrize("role", ["MOE", "OBSERVATEUR", None])
    def test_forbidden_roles(self, role):
        with pytest.raises(WorkflowPermissionError):
            check_diffusion_allowed(
                role, VersionStatus.EN_ATTENTE_DIFFUSION.value, DocumentStatus.EN_ATTENTE_DIFFUSION.value
            )

    def test_document_must_await_diffusion(self):
        with pytest.raises(VisaWorkflowError):
            check_diffusion_allowed(
                "MANDATAIRE", VersionStatus.EN_ATTENTE_DIFFUSION.value, DocumentStatus.VALIDE.value
            )


class TestVisaAllowed:
    def test_moe_allowed(self):
        assert check_visa_allowed("MOE", EN_ATTENTE_VISA, DocumentStatus.EN_ATTENTE_VALIDATION.value)

    @pytest.mark.parametrize("role", ["MANDATAIRE", "OBSERVATEUR", None])
    def test_other_roles_forbidden(self, role):
        with pytest.raises(WorkflowPermissionError):
            check_visa_allowed(role, EN_ATTENTE_VISA, DocumentStatus.EN_ATTENTE_VALIDATION.value)

    def test_already_processed(self):
        with pytest.raises(VisaWorkflowError, match="déjà traité"):
            check_visa_allowed(
                "MOE", EN_ATTENTE_VISA, DocumentStatus.EN_ATTENTE_VALIDATION.value,
                VisaStatus.APPROUVE.value
            )


class TestTransitionsAndErrors:
    def test_terminal_version_statuses(self):
        for status in (VersionStatus.BPE, VersionStatus.A_REMETTRE_A_JOUR, VersionStatus.REFUSE):
            assert VALID_VERSION_TRANSITIONS[status.value] == []

    def test_invalid_version_transition(self):
        with pytest.raises(VisaWorkflowError):
            validate_version_transition("v1", VersionStatus.BPE.value, EN_ATTENTE_VISA)

    def test_invalid_document_transition(self):
        with pytest.raises(VisaWorkflowError):
            validate_document_transition("d1", DocumentStatus.VALIDE.value, DocumentStatus.EN_ATTENTE_DIFFUSION.value)

    def test_visa_transitions(self):
        assert validate_visa_transition("s1", VisaStatus.EN_ATTENTE.value, VisaStatus.APPROUVE.value)
        assert validate_visa_transition("s1", VisaStatus.EN_ATTENTE.value, VisaStatus.REJETE.value)
        with pytest.raises(VisaWorkflowError, match="ne peut pas passer"):
            validate_visa_transition("s1", VisaStatus.APPROUVE.value, VisaStatus.REJETE.value)
        with pytest.raises(VisaWorkflowError):
            validate_visa_transition("s1", VisaStatus.REJETE.value, VisaStatus.EN_ATTENTE.value)

    @pytest.mark.parametrize("error,status", [
        (WorkflowPermissionError("x"), 403),
        (WorkflowNotFoundError("x"), 404),
        (WorkflowConflictError("x"), 409),
        (VersionLabelError("x"), 400),
        (VisaWorkflowError("x"), 400),
    ])
    def test_http_mapping(self, error, status):
        exc = to_http_exception(error)
        assert exc.status_code == status
        assert exc.detail == "x"

    def test_echeance(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert compute_echeance(15, start).startswith("2026-01-16")
