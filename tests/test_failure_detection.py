"""
Test euristica parole chiave di fallimento.
"""
import pytest

from procedures.failure_detection import FAILURE_KEYWORDS, looks_like_failure


class TestLooksLikeFailure:
    """Test looks_like_failure."""

    @pytest.mark.parametrize("text", [
        "ERROR 1062: duplicate",
        "Import failed",
        "Unhandled Exception in step 3",
        "transaction rolled back",
        "오류가 발생하여 모든 작업이 롤백되었습니다.",
        "처리 실패",
        "예외 발생",
    ])
    def test_detects_keywords(self, text):
        """Ogni parola chiave viene rilevata, senza distinzione maiuscole."""
        assert looks_like_failure(text) is True

    @pytest.mark.parametrize("text", [
        "",
        "✅ Procedura sp_MergePacking completata: 3 step eseguiti, 42 righe elaborate",
        "✅ Procedura InvoiceSplit01 completata (nessun dettaglio restituito)",
        "처리 완료",
    ])
    def test_success_texts(self, text):
        """Testi di successo non vengono segnalati."""
        assert looks_like_failure(text) is False

    def test_custom_keywords(self):
        """L'elenco parole chiave è sostituibile."""
        assert looks_like_failure("stato: KO", keywords=("ko",)) is True
        assert looks_like_failure("error", keywords=("ko",)) is False

    def test_keyword_list_covers_korean_terms(self):
        assert {"오류", "실패", "롤백"} <= set(FAILURE_KEYWORDS)
