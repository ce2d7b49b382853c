"""
Error taxonomy for phiguard.

Only conditions that must stop the current operation are exceptions.
Detection gaps, ledger write failures (outside strict mode), integrity
violations and guard refusals are returned as values.
"""


class PHIGuardError(Exception):
    """Base class for all phiguard errors."""


class DecryptionError(PHIGuardError):
    """A sealed token map could not be authenticated or decoded.

    Raised for a wrong key, corrupted ciphertext, a nonce mismatch or a
    malformed payload. Never carries partially decoded data.
    """


class LedgerWriteError(PHIGuardError):
    """An audit entry could not be written (strict mode only)."""


class KeyNotFoundError(PHIGuardError):
    """No in-memory key exists for the encounter."""


class StorageError(PHIGuardError):
    """The key-value backend failed."""
