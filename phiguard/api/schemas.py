"""
Request models for the phiguard API.

Identifiers are validated up front so they can be used safely as storage
keys and ledger fields.
"""

import re

from pydantic import BaseModel, field_validator

ENCOUNTER_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")
CONTEXT_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,64}$")
MAX_TEXT_LENGTH = 200_000
# Opaque; derived fingerprints are 64 lowercase hex chars
FINGERPRINT_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")


def validate_encounter_id(v: str) -> str:
    v = v.strip()
    if not ENCOUNTER_ID_RE.match(v):
        raise ValueError("encounter_id must be 1-128 characters of [A-Za-z0-9_.:-]")
    return v


class PseudonymizeRequest(BaseModel):
    """Transcript text to tokenize into an encounter's map."""

    encounter_id: str
    text: str

    @field_validator("encounter_id")
    @classmethod
    def validate_encounter(cls, v: str) -> str:
        return validate_encounter_id(v)

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        # Remove null bytes
        v = v.replace("\x00", "")
        if len(v) > MAX_TEXT_LENGTH:
            raise ValueError(f"text must be at most {MAX_TEXT_LENGTH} characters")
        return v


class RehydrateRequest(PseudonymizeRequest):
    """Tokenized text (e.g. a composed note) to restore."""


class ObserveRequest(BaseModel):
    """Patient context currently shown to the operator.

    Either ``fp`` or ``page_text`` must be given; with ``page_text`` the
    fingerprint is derived from the chart demographics.
    """

    fp: str | None = None
    preview: str | None = None
    page_text: str | None = None
    context_id: str = "default"

    @field_validator("fp")
    @classmethod
    def validate_fp(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not FINGERPRINT_RE.match(v):
            raise ValueError("fp must be 1-128 characters of [A-Za-z0-9_.:-]")
        return v

    @field_validator("context_id")
    @classmethod
    def validate_context(cls, v: str) -> str:
        if not CONTEXT_ID_RE.match(v):
            raise ValueError("context_id must be 1-64 characters of [A-Za-z0-9_.:-]")
        return v


class ConfirmRequest(BaseModel):
    fp: str
    preview: str | None = None

    @field_validator("fp")
    @classmethod
    def validate_fp(cls, v: str) -> str:
        v = v.strip()
        if not FINGERPRINT_RE.match(v):
            raise ValueError("fp must be 1-128 characters of [A-Za-z0-9_.:-]")
        return v


class InsertRequest(BaseModel):
    """A composed note about to be written into the chart."""

    encounter_id: str
    sections: dict[str, str]

    @field_validator("encounter_id")
    @classmethod
    def validate_encounter(cls, v: str) -> str:
        return validate_encounter_id(v)

    @field_validator("sections")
    @classmethod
    def validate_sections(cls, v: dict[str, str]) -> dict[str, str]:
        if not v:
            raise ValueError("sections must not be empty")
        return v
