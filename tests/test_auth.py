"""
Tests for phiguard API authentication and request models
"""

from datetime import timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from phiguard.api.auth import create_access_token, require_user, user_id_of, verify_token
from phiguard.api.schemas import (
    ConfirmRequest,
    InsertRequest,
    ObserveRequest,
    PseudonymizeRequest,
)


class TestJWTAuth:
    """Tests for JWT token creation and verification."""

    @pytest.mark.unit
    def test_verify_valid_token(self):
        token = create_access_token({"sub": "user123"})
        payload = verify_token(token)
        assert payload["sub"] == "user123"
        assert user_id_of(payload) == "user123"

    @pytest.mark.unit
    def test_verify_expired_token(self):
        token = create_access_token({"sub": "user123"}, expires_delta=timedelta(seconds=-1))
        with pytest.raises(HTTPException) as exc_info:
            verify_token(token)
        assert exc_info.value.status_code == 401

    @pytest.mark.unit
    def test_verify_invalid_token(self):
        with pytest.raises(HTTPException):
            verify_token("invalid.token.string")

    @pytest.mark.unit
    def test_anonymous_user(self):
        assert user_id_of(None) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_require_user_rejects_anonymous(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_user(None)
        assert exc_info.value.status_code == 401

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_require_user_passes_payload(self):
        assert await require_user({"sub": "dr-1"}) == {"sub": "dr-1"}


class TestRequestModels:
    """Tests for request validation."""

    @pytest.mark.unit
    def test_encounter_id_trimmed(self):
        request = PseudonymizeRequest(encounter_id="  enc-1 ", text="hello")
        assert request.encounter_id == "enc-1"

    @pytest.mark.unit
    @pytest.mark.parametrize("encounter_id", ["", "a/b", "x" * 129, "enc 1"])
    def test_bad_encounter_ids(self, encounter_id):
        with pytest.raises(ValidationError):
            PseudonymizeRequest(encounter_id=encounter_id, text="hello")

    @pytest.mark.unit
    def test_null_bytes_removed(self):
        assert PseudonymizeRequest(encounter_id="e", text="a\x00b").text == "ab"

    @pytest.mark.unit
    def test_fingerprint_is_opaque(self):
        assert ObserveRequest(fp=" fp-e2e ").fp == "fp-e2e"
        assert ConfirmRequest(fp="a" * 64).fp == "a" * 64

    @pytest.mark.unit
    @pytest.mark.parametrize("fp", ["", "has space", "x" * 129, "fp/1"])
    def test_bad_fingerprints(self, fp):
        with pytest.raises(ValidationError):
            ConfirmRequest(fp=fp)

    @pytest.mark.unit
    def test_empty_sections_rejected(self):
        with pytest.raises(ValidationError):
            InsertRequest(encounter_id="enc-1", sections={})
