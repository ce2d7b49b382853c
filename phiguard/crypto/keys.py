"""
Per-encounter key management.

Keys live only in this object's memory and are never persisted. Each
process (or test) constructs its own manager and passes it explicitly.
"""

import logging
import threading

from phiguard.crypto.cipher import generate_key
from phiguard.errors import KeyNotFoundError

logger = logging.getLogger(__name__)


class KeyManager:
    """Holds one AES-256 key per encounter id."""

    def __init__(self) -> None:
        self._keys: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get_or_create(self, encounter_id: str) -> bytes:
        with self._lock:
            key = self._keys.get(encounter_id)
            if key is None:
                key = generate_key()
                self._keys[encounter_id] = key
                logger.info("Generated map key for encounter %s", encounter_id)
            return key

    def require(self, encounter_id: str) -> bytes:
        """Return the existing key or raise KeyNotFoundError."""
        with self._lock:
            key = self._keys.get(encounter_id)
        if key is None:
            raise KeyNotFoundError(f"No key for encounter {encounter_id}")
        return key

    def discard(self, encounter_id: str) -> bool:
        with self._lock:
            removed = self._keys.pop(encounter_id, None) is not None
        if removed:
            logger.info("Discarded map key for encounter %s", encounter_id)
        return removed

    def clear(self) -> None:
        """Drop every key (session teardown)."""
        with self._lock:
            count = len(self._keys)
            self._keys.clear()
        logger.info("Discarded %d map key(s) on teardown", count)

    def __contains__(self, encounter_id: object) -> bool:
        return encounter_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)
