"""
Identifier normalization tests.

Every scan path keys caches and queues by normalize_identifier, so the
different encodings of one batch must collapse to one key.
"""

import pytest

from trashdrop.services.identifier_service import (
    extract_batch_code,
    is_uuid,
    normalize_identifier,
)


UUID = "3f2b8c1e-9a4d-4b7e-8f10-2c5d6e7f8a9b"


class TestNormalizeIdentifier:
    def test_empty_input(self):
        assert normalize_identifier(None) == ""
        assert normalize_identifier("") == ""
        assert normalize_identifier("   ") == ""

    def test_bare_code_is_trimmed(self):
        assert normalize_identifier("  BATCH-ABC123 \n") == "BATCH-ABC123"

    def test_bare_uuid(self):
        assert normalize_identifier(UUID) == UUID

    @pytest.mark.parametrize("raw", [
        "BATCH-ABC123",
        "https://trashdrop.app/scan?code=BATCH-ABC123",
        "trashdrop://scan?batch_id=BATCH-ABC123",
        "https://trashdrop.app/batch/BATCH-ABC123",
        "BATCH%2DABC123",
    ])
    def test_encodings_of_one_batch_agree(self, raw):
        assert normalize_identifier(raw) == "BATCH-ABC123"

    def test_query_param_priority(self):
        raw = "https://trashdrop.app/scan?id=OTHER&code=BATCH-FIRST"
        assert normalize_identifier(raw) == "BATCH-FIRST"

    def test_blank_param_is_skipped(self):
        raw = "https://trashdrop.app/scan?code=&batch=BATCH-XYZ"
        assert normalize_identifier(raw) == "BATCH-XYZ"

    def test_uuid_in_path_segment(self):
        assert normalize_identifier(f"https://trashdrop.app/b/{UUID}/") == UUID

    def test_url_without_usable_parts_falls_back_to_text(self):
        assert normalize_identifier("https://trashdrop.app") == "https://trashdrop.app"

    def test_code_inside_free_text(self):
        assert normalize_identifier("Scan result: BATCH-77Q ok") == "BATCH-77Q"

    def test_first_token_without_trailing_punctuation(self):
        assert normalize_identifier("PACK42. extra words") == "PACK42"

    def test_bad_percent_encoding_does_not_raise(self):
        assert normalize_identifier("%E0%A4%A") == "%E0%A4%A"

    def test_non_string_input(self):
        assert normalize_identifier(12345) == "12345"

    def test_idempotent(self):
        for raw in ["trashdrop://scan?batch_id=BATCH-ABC123", UUID, "PACK42."]:
            once = normalize_identifier(raw)
            assert normalize_identifier(once) == once


class TestHelpers:
    def test_is_uuid(self):
        assert is_uuid(UUID)
        assert is_uuid(UUID.upper())
        assert not is_uuid("BATCH-ABC123")
        assert not is_uuid(None)
        assert not is_uuid(UUID + "0")

    def test_extract_prefers_batch_code(self):
        assert extract_batch_code(f"{UUID} BATCH-1") == "BATCH-1"
        assert extract_batch_code("nothing here") is None
