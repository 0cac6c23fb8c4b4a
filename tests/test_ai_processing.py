"""
Tests for Bill of Lading pallet analysis.
"""

import pytest

from pallet_tracking_backend.ai_processing import FALLBACK_ANALYSIS, PalletAnalyzer

from conftest import make_openai_client


class TestPalletAnalyzer:
    """Tests for PalletAnalyzer."""

    def test_parses_camel_case_answer(self):
        """The model's camelCase JSON is accepted."""
        client = make_openai_client(
            '{"palletCount": 7, "confidence": 0.82, "reasoning": "Qty 7 PLT", "additionalNotes": "smudged"}'
        )
        analysis = PalletAnalyzer(client).analyze("https://cdn.example.com/bol.jpg")
        assert analysis.pallet_count == 7
        assert analysis.confidence == pytest.approx(0.82)
        assert analysis.additional_notes == "smudged"

    def test_request_shape(self):
        """One user message with the prompt and the image, JSON mode."""
        client = make_openai_client('{"palletCount": 1, "confidence": 1, "reasoning": "one"}')
        PalletAnalyzer(client, model="gpt-4o-mini").analyze("https://cdn.example.com/bol.jpg")

        call = client.calls[0]
        assert call["model"] == "gpt-4o-mini"
        assert call["response_format"] == {"type": "json_object"}
        content = call["messages"][0]["content"]
        assert "count the number of pallets" in content[0]["text"]
        assert content[1] == {"type": "image_url", "image_url": {"url": "https://cdn.example.com/bol.jpg"}}

    def test_unconfigured_returns_fallback(self):
        """No API key means the manual-verification fallback."""
        analyzer = PalletAnalyzer.from_config({"api_key": "", "model": "gpt-4o"})
        assert analyzer.is_configured is False
        assert analyzer.analyze("https://cdn.example.com/bol.jpg") == FALLBACK_ANALYSIS

    def test_malformed_answer_returns_fallback(self):
        client = make_openai_client("this is not json")
        assert PalletAnalyzer(client).analyze("https://cdn.example.com/bol.jpg") == FALLBACK_ANALYSIS

    def test_out_of_range_answer_returns_fallback(self):
        """A negative count fails validation."""
        client = make_openai_client('{"palletCount": -2, "confidence": 0.5, "reasoning": "?"}')
        assert PalletAnalyzer(client).analyze("https://cdn.example.com/bol.jpg") == FALLBACK_ANALYSIS

    @pytest.mark.parametrize("count, expected", [(2.5, 3), (2.4, 2), (7.0, 7)])
    def test_fractional_count_rounds_half_up(self, count, expected):
        client = make_openai_client(f'{{"palletCount": {count}, "confidence": 0.6, "reasoning": "partial skid"}}')
        analysis = PalletAnalyzer(client).analyze("https://cdn.example.com/bol.jpg")
        assert analysis.pallet_count == expected
        assert analysis.confidence == pytest.approx(0.6)

    def test_transport_error_returns_fallback(self):
        client = make_openai_client(ConnectionError("connection reset"))
        analysis = PalletAnalyzer(client).analyze("https://cdn.example.com/bol.jpg")
        assert analysis.pallet_count == 1
        assert analysis.confidence == pytest.approx(0.1)

    def test_fallback_is_a_copy(self):
        """Callers can modify the result without touching the constant."""
        analysis = PalletAnalyzer().analyze("https://cdn.example.com/bol.jpg")
        analysis.pallet_count = 40
        assert FALLBACK_ANALYSIS.pallet_count == 1
