"""
phiguard Crypto Module

- AES-256-GCM map cipher and SealedMap wire format
- In-memory per-encounter key manager
- Patient fingerprint derivation
"""

from phiguard.crypto.cipher import MapCipher, SealedMap, generate_key, open_sealed, seal
from phiguard.crypto.fingerprint import (
    Demographics,
    PatientFingerprint,
    extract_demographics,
    fingerprint_patient,
)
from phiguard.crypto.keys import KeyManager

__all__ = [
    "Demographics",
    "KeyManager",
    "MapCipher",
    "PatientFingerprint",
    "SealedMap",
    "extract_demographics",
    "fingerprint_patient",
    "generate_key",
    "open_sealed",
    "seal",
]
