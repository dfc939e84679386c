"""
Tests for the result classifier (courtbot/common/classifier.py)
"""
import pytest

from courtbot.common.classifier import classify, extract_result_text, normalize, status_icon
from courtbot.common.models import ClaimStatus

SUCCESS_TEXT = "Su reservación se ha realizado con éxito y ya se encuentra aprobada."
TAKEN_TEXT = (
    "Su reservación excede la cantidad máxima de personas permitidas, "
    "ya existen otras reservaciones en este horario."
)
LIMIT_TEXT = "No es posible ingresar la reservación, usted ya há sobrepasado el limite permitido"
NOT_YET_TEXT = (
    "Esta fecha aún no está disponible para reservación. "
    "Las reservaciones serán habilitadas 8 días antes."
)


class TestNormalize:

    def test_strips_accents_and_case(self):
        assert normalize("Reservación ÉXITO") == "reservacion exito"

    def test_collapses_whitespace(self):
        assert normalize("  se   ha\n\trealizado  ") == "se ha realizado"


class TestClassify:

    def test_success(self):
        outcome = classify(SUCCESS_TEXT)
        assert outcome.status == ClaimStatus.SUCCESS
        assert outcome.is_success
        assert outcome.raw_message == SUCCESS_TEXT

    def test_success_without_accents_or_case(self):
        outcome = classify("SU RESERVACION SE HA REALIZADO CON EXITO")
        assert outcome.status == ClaimStatus.SUCCESS

    def test_slot_taken(self):
        outcome = classify(TAKEN_TEXT)
        assert outcome.status == ClaimStatus.SLOT_TAKEN
        assert "already taken" in outcome.message

    def test_limit_exceeded(self):
        outcome = classify(LIMIT_TEXT)
        assert outcome.status == ClaimStatus.LIMIT_EXCEEDED

    def test_not_yet_available_extracts_days(self):
        outcome = classify(NOT_YET_TEXT)
        assert outcome.status == ClaimStatus.NOT_YET_AVAILABLE
        assert outcome.days == "8"
        assert outcome.message == "Date not available yet - reservations open 8 days before"

    def test_not_yet_available_needs_reservation_wording(self):
        outcome = classify("La fecha no se encuentra habilitada")
        assert outcome.status == ClaimStatus.UNKNOWN

    def test_unknown_keeps_raw_text(self):
        outcome = classify("Error inesperado del servidor")
        assert outcome.status == ClaimStatus.UNKNOWN
        assert outcome.raw_message == "Error inesperado del servidor"
        assert "Error inesperado del servidor" in outcome.message

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_input(self, raw):
        outcome = classify(raw)
        assert outcome.status == ClaimStatus.UNKNOWN
        assert outcome.message == "No response content found"

    def test_source_is_recorded(self):
        outcome = classify(SUCCESS_TEXT, source="https://portal.test/add_reservation.php")
        assert outcome.source == "https://portal.test/add_reservation.php"

    def test_same_input_same_result(self):
        assert classify(TAKEN_TEXT) == classify(TAKEN_TEXT)


class TestExtractResultText:

    def test_prefers_app_marker(self):
        html = f"<html><!--APP::{SUCCESS_TEXT}::APP--><body>Otro texto</body></html>"
        assert extract_result_text(html, "Otro texto") == SUCCESS_TEXT

    def test_falls_back_to_visible_text(self):
        assert extract_result_text("<html><body></body></html>", "  Texto visible ") == "Texto visible"

    def test_nothing_at_all(self):
        assert extract_result_text(None, None) == ""


def test_status_icon():
    assert status_icon(ClaimStatus.SUCCESS) == "✅"
    assert status_icon(ClaimStatus.UNKNOWN) == "❓"
