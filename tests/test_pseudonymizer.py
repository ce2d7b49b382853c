"""
Tests for PHI pseudonymization and rehydration.
"""

import random
import re
from concurrent.futures import ThreadPoolExecutor

import pytest

from phiguard.phi.patterns import is_medical_eponym
from phiguard.phi.pseudonymizer import (
    PseudonymizationEngine,
    pseudonymize,
    redaction_stats,
    rehydrate,
    validate_redaction,
)
from phiguard.phi.types import PHIToken, PHIType, TokenMap, validate_token_map

# ============================================
# Detection Tests
# ============================================


class TestDetection:
    """Tests for individual PHI shapes."""

    @pytest.mark.unit
    def test_example_transform(self):
        text, token_map = pseudonymize("Patient DOB 1985-06-10, phone 555-123-4567")
        assert text.count("[DATE:1]") == 1
        assert text.count("[PHONE:1]") == 1
        assert token_map == {"DATE:1": "1985-06-10", "PHONE:1": "555-123-4567"}

    @pytest.mark.unit
    def test_email(self):
        text, token_map = pseudonymize("Email: patient@email.com")
        assert text == "Email: [EMAIL:1]"
        assert token_map["EMAIL:1"] == "patient@email.com"

    @pytest.mark.unit
    def test_mrn_keeps_label(self):
        text, token_map = pseudonymize("MRN: ABC123456 on file")
        assert text == "MRN: [MRN:1] on file"
        assert token_map["MRN:1"] == "ABC123456"

    @pytest.mark.unit
    def test_chart_review_is_not_a_record_number(self):
        text, token_map = pseudonymize("Chart review completed today")
        assert text == "Chart review completed today"
        assert len(token_map) == 0

    @pytest.mark.unit
    def test_health_number(self):
        text, token_map = pseudonymize("PHN 9876543210")
        assert text == "PHN [HCN:1]"
        assert token_map["HCN:1"] == "9876543210"

    @pytest.mark.unit
    def test_ssn(self):
        text, _ = pseudonymize("SSN 123-45-6789")
        assert text == "SSN [SSN:1]"

    @pytest.mark.unit
    def test_sin(self):
        text, _ = pseudonymize("SIN 123 456 789")
        assert text == "SIN [SIN:1]"

    @pytest.mark.unit
    def test_address_and_postal(self):
        text, token_map = pseudonymize("Lives at 123 Main Street, Vancouver V5K 1A1")
        assert "[ADDRESS:1]" in text
        assert "[POSTAL:1]" in text
        assert token_map["ADDRESS:1"] == "123 Main Street"
        assert token_map["POSTAL:1"] == "V5K 1A1"

    @pytest.mark.unit
    def test_name_after_title(self):
        text, token_map = pseudonymize("Seen by Dr. Sarah Williams today")
        assert text == "Seen by Dr. [NAME:1] today"
        assert token_map["NAME:1"] == "Sarah Williams"

    @pytest.mark.unit
    def test_self_introduction(self):
        text, token_map = pseudonymize("Hi, my name is John Smith.")
        assert text == "Hi, my name is [NAME:1]."
        assert token_map["NAME:1"] == "John Smith"

    @pytest.mark.unit
    def test_single_word_after_marker_is_not_a_name(self):
        text, token_map = pseudonymize("Patient Smith was seen")
        assert text == "Patient Smith was seen"
        assert len(token_map) == 0

    @pytest.mark.unit
    def test_no_phi_passes_through(self):
        text, token_map = pseudonymize("Lungs clear bilaterally. No acute distress.")
        assert text == "Lungs clear bilaterally. No acute distress."
        assert len(token_map) == 0

    @pytest.mark.unit
    def test_empty_text(self):
        text, token_map = pseudonymize("")
        assert text == ""
        assert len(token_map) == 0


# ============================================
# Medical Eponym Stoplist Tests
# ============================================


class TestMedicalStoplist:
    """Disease names must never become NAME tokens."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "text",
        [
            "Patient Parkinson Disease progression noted",
            "Dr. Graves Disease follow up",
            "Patient Guillain Barre",
            "Patient Hodgkin Lymphoma in remission",
        ],
    )
    def test_eponym_not_tokenized(self, text):
        result, token_map = pseudonymize(text)
        assert "[NAME:" not in result
        assert "NAME" not in token_map.stats()

    @pytest.mark.unit
    def test_eponym_word_in_real_name_is_kept(self):
        assert is_medical_eponym("Sarah Williams") is False

    @pytest.mark.unit
    def test_stoplist_is_case_insensitive(self):
        assert is_medical_eponym("PARKINSON DISEASE".title()) is True
        assert is_medical_eponym("crohn's disease") is True


# ============================================
# TokenMap Invariants
# ============================================


class TestTokenMap:
    """Tests for token allocation and reuse."""

    @pytest.mark.unit
    def test_repeated_value_reuses_token(self):
        text, token_map = pseudonymize("Call 555-123-4567, again 555-123-4567")
        assert text == "Call [PHONE:1], again [PHONE:1]"
        assert len(token_map) == 1

    @pytest.mark.unit
    def test_indices_are_sequential_per_type(self):
        _, token_map = pseudonymize(
            "Call 555-123-4567 or 555-987-6543 or 555-111-2222, email a@b.com"
        )
        phone_indices = sorted(
            PHIToken.parse(k).index for k in token_map if k.startswith("PHONE:")
        )
        assert phone_indices == [1, 2, 3]
        assert "EMAIL:1" in token_map

    @pytest.mark.unit
    def test_concurrent_tokenize_allocates_gap_free(self):
        token_map = TokenMap()
        values = [f"555-000-{i:04d}" for i in range(200)]

        def worker(seed: int) -> dict[str, str]:
            order = values[:]
            random.Random(seed).shuffle(order)
            return {v: str(token_map.tokenize(PHIType.PHONE, v)) for v in order}

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(worker, range(8)))

        assert len(token_map) == 200
        indices = sorted(PHIToken.parse(k).index for k in token_map)
        assert indices == list(range(1, 201))
        # Every thread saw the same token for the same value
        assert all(r == results[0] for r in results)
        assert all(token_map[results[0][v]] == v for v in values)

    @pytest.mark.unit
    def test_existing_map_continues_numbering(self, sample_token_map):
        _, token_map = pseudonymize("Also 555-000-1111", sample_token_map)
        assert token_map["PHONE:2"] == "555-000-1111"
        assert token_map["PHONE:1"] == "555-123-4567"

    @pytest.mark.unit
    def test_known_value_keeps_its_token_across_calls(self, sample_token_map):
        text, token_map = pseudonymize("Dr. John Smith called", sample_token_map)
        assert text == "Dr. [NAME:1] called"
        assert len(token_map) == 3

    @pytest.mark.unit
    def test_tokenize_directly(self):
        token_map = TokenMap()
        first = token_map.tokenize(PHIType.NAME, "Jane Doe")
        second = token_map.tokenize("NAME", "John Roe")
        again = token_map.tokenize(PHIType.NAME, "Jane Doe")
        assert str(first) == "NAME:1"
        assert second.bracketed == "[NAME:2]"
        assert again == first

    @pytest.mark.unit
    def test_reloaded_map_allocates_after_highest_index(self):
        token_map = TokenMap({"NAME:1": "A B", "NAME:3": "C D"})
        assert str(token_map.tokenize(PHIType.NAME, "E F")) == "NAME:4"

    @pytest.mark.unit
    def test_invalid_entries_rejected(self):
        with pytest.raises(ValueError):
            TokenMap({"name-1": "x"})
        assert validate_token_map({"NAME:1": ""}) == ["Invalid value for token NAME:1"]
        assert validate_token_map({"NAME:1": "ok", "bad": "x"}) == ["Invalid token format: bad"]

    @pytest.mark.unit
    def test_repr_hides_values(self, sample_token_map):
        assert "John Smith" not in repr(sample_token_map)
        assert "NAME:1" in repr(sample_token_map)

    @pytest.mark.unit
    def test_stats(self, sample_token_map):
        assert redaction_stats(sample_token_map) == {"NAME": 1, "DATE": 1, "PHONE": 1}


# ============================================
# Rehydration Tests
# ============================================


class TestRehydration:
    """Tests for restoring tokens."""

    @pytest.mark.unit
    def test_round_trip(self, sample_transcript):
        text, token_map = pseudonymize(sample_transcript)
        for value in token_map.to_dict().values():
            assert value not in text
        assert rehydrate(text, token_map) == sample_transcript

    @pytest.mark.unit
    def test_unknown_token_left_untouched(self, sample_token_map):
        result = rehydrate("[NAME:1] and [NAME:9] and [NAME:10]", sample_token_map)
        assert result == "John Smith and [NAME:9] and [NAME:10]"

    @pytest.mark.unit
    def test_idempotent_without_tokens(self, sample_token_map):
        once = rehydrate("[NAME:1] seen", sample_token_map)
        assert rehydrate(once, sample_token_map) == once

    @pytest.mark.unit
    def test_restored_values_not_rescanned(self):
        token_map = TokenMap({"NAME:1": "[NAME:2]", "NAME:2": "Jane Doe"})
        assert rehydrate("[NAME:1]", token_map) == "[NAME:2]"

    @pytest.mark.unit
    def test_plain_dict_map(self):
        assert rehydrate("DOB [DATE:1]", {"DATE:1": "1985-06-10"}) == "DOB 1985-06-10"

    @pytest.mark.unit
    def test_tokens_not_retokenized(self):
        engine = PseudonymizationEngine()
        first, token_map = engine.pseudonymize("Dr. Sarah Williams called 555-123-4567")
        second, token_map = engine.pseudonymize(first, token_map)
        assert second == first
        assert len(token_map) == 2


# ============================================
# Redaction Validator Tests
# ============================================


class TestRedactionValidator:
    """Tests for residual PHI detection."""

    @pytest.mark.unit
    def test_clean_text_is_valid(self):
        result = validate_redaction("Patient [NAME:1], phone [PHONE:1]")
        assert result.valid is True
        assert result.warnings == []

    @pytest.mark.unit
    def test_residual_shapes_flagged(self):
        result = validate_redaction("call 555 123 4567, x@y.org, 2024/01/02")
        assert result.valid is False
        assert len(result.warnings) == 3
        assert any(re.search("phone", w) for w in result.warnings)
