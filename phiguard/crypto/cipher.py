"""
Map Cipher

AES-256-GCM sealing of TokenMaps for storage or transport.

Wire format: ``{"encrypted": base64(ciphertext || tag), "iv": base64(nonce)}``
with a fresh 96-bit random nonce per seal. Any authentication failure or
malformed payload raises DecryptionError; nothing partial is returned.
"""

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from phiguard.errors import DecryptionError
from phiguard.phi.types import TokenMap

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12


def generate_key() -> bytes:
    """Create a new random 256-bit key."""
    return AESGCM.generate_key(bit_length=KEY_BYTES * 8)


def _aead(key: bytes) -> AESGCM:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_BYTES:
        raise ValueError("Map cipher key must be 256 bits")
    return AESGCM(bytes(key))


@dataclass(frozen=True)
class SealedMap:
    """Encrypted serialization of a TokenMap. Never holds plaintext."""

    ciphertext: bytes
    iv: bytes

    def to_wire(self) -> dict[str, str]:
        return {
            "encrypted": base64.b64encode(self.ciphertext).decode("ascii"),
            "iv": base64.b64encode(self.iv).decode("ascii"),
        }

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> "SealedMap":
        """Decode the JSON storage form. Malformed payloads are DecryptionErrors."""
        try:
            ciphertext = base64.b64decode(payload["encrypted"], validate=True)
            iv = base64.b64decode(payload["iv"], validate=True)
        except (KeyError, TypeError, binascii.Error) as e:
            raise DecryptionError("Malformed sealed map payload") from e
        if len(iv) != NONCE_BYTES:
            raise DecryptionError("Sealed map nonce must be 12 bytes")
        return cls(ciphertext=ciphertext, iv=iv)


class MapCipher:
    """Seals and opens TokenMaps with an authenticated symmetric cipher."""

    def seal(self, token_map: TokenMap, key: bytes) -> SealedMap:
        aead = _aead(key)
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = aead.encrypt(nonce, token_map.to_canonical_bytes(), None)
        logger.debug("Sealed token map with %d entries", len(token_map))
        return SealedMap(ciphertext=ciphertext, iv=nonce)

    def open(self, sealed: SealedMap, key: bytes) -> TokenMap:
        aead = _aead(key)
        if len(sealed.iv) != NONCE_BYTES:
            raise DecryptionError("Sealed map nonce must be 12 bytes")
        try:
            plaintext = aead.decrypt(sealed.iv, sealed.ciphertext, None)
        except InvalidTag as e:
            raise DecryptionError(
                "Sealed map failed authentication (wrong key or corrupted data)"
            ) from e

        try:
            entries = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecryptionError("Sealed map plaintext is not a token map") from e
        if not isinstance(entries, dict):
            raise DecryptionError("Sealed map plaintext is not a token map")
        try:
            return TokenMap.from_dict(entries)
        except ValueError as e:
            raise DecryptionError("Sealed map contains invalid tokens") from e


_default_cipher = MapCipher()


def seal(token_map: TokenMap, key: bytes) -> SealedMap:
    return _default_cipher.seal(token_map, key)


def open_sealed(sealed: SealedMap, key: bytes) -> TokenMap:
    return _default_cipher.open(sealed, key)
