"""
Encounter sessions: the PHI data flow for one clinical encounter.

raw transcript -> pseudonymize (TokenMap grows) -> audit phi_redacted
-> seal TokenMap with the encounter key -> persist SealedMap.

Each session serializes its own work with an asyncio.Lock, so ending an
encounter waits for any in-flight redaction/seal to finish before the key
is discarded and the stored map is deleted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from phiguard.audit.events import (
    AuditEventType,
    log_encounter_end,
    log_encounter_start,
    log_phi_redaction,
)
from phiguard.audit.ledger import AuditLedger
from phiguard.crypto.cipher import MapCipher
from phiguard.crypto.keys import KeyManager
from phiguard.errors import KeyNotFoundError
from phiguard.observability.metrics import record_redaction
from phiguard.phi.pseudonymizer import (
    PseudonymizationEngine,
    RehydrationEngine,
    validate_redaction,
)
from phiguard.phi.types import TokenMap
from phiguard.storage.kv import SealedMapStore

logger = logging.getLogger(__name__)


@dataclass
class RedactionOutcome:
    """Tokenized text plus everything a caller may need to escalate."""

    text: str
    token_map: TokenMap
    new_tokens: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class EncounterSession:
    """Holds one encounter's TokenMap and key reference."""

    def __init__(
        self,
        encounter_id: str,
        registry: "EncounterRegistry",
        token_map: TokenMap | None = None,
        user_id: str | None = None,
    ) -> None:
        self.encounter_id = encounter_id
        self.user_id = user_id
        self.token_map = token_map if token_map is not None else TokenMap()
        self.started_at = time.monotonic()
        self.closed = False
        self._registry = registry
        self._lock = asyncio.Lock()

    async def redact(self, text: str) -> RedactionOutcome:
        """Pseudonymize ``text`` into this encounter's map and persist it sealed."""
        async with self._lock:
            self._ensure_open()
            before = self.token_map.stats()
            tokenized, _ = self._registry.engine.pseudonymize(text, self.token_map)
            after = self.token_map.stats()
            new_tokens = {t: n - before.get(t, 0) for t, n in after.items() if n > before.get(t, 0)}
            record_redaction(new_tokens)

            warnings = list(validate_redaction(tokenized).warnings)
            if new_tokens:
                await self._persist()
            result = await log_phi_redaction(
                self._registry.ledger, self.encounter_id, after, user_id=self.user_id
            )
            if result.warning:
                warnings.append(result.warning)
            return RedactionOutcome(
                text=tokenized,
                token_map=self.token_map,
                new_tokens=new_tokens,
                warnings=warnings,
            )

    async def rehydrate(self, text: str) -> str:
        async with self._lock:
            self._ensure_open()
            restored = self._registry.rehydrator.rehydrate(text, self.token_map)
        await self._registry.ledger.append(
            AuditEventType.PHI_REHYDRATED,
            encounter_id=self.encounter_id,
            user_id=self.user_id,
            metadata={"tokens": len(self.token_map)},
        )
        return restored

    async def _persist(self) -> None:
        key = self._registry.keys.require(self.encounter_id)
        sealed = self._registry.cipher.seal(self.token_map, key)
        await self._registry.map_store.store(self.encounter_id, sealed)
        await self._registry.ledger.append(
            AuditEventType.PHI_ENCRYPTED,
            encounter_id=self.encounter_id,
            metadata={"tokens": len(self.token_map)},
        )

    def _ensure_open(self) -> None:
        if self.closed:
            raise KeyNotFoundError(f"Encounter {self.encounter_id} has ended")

    async def close(self) -> int:
        """Wait for in-flight work, then discard key and stored map.

        Returns:
            Encounter duration in milliseconds.
        """
        async with self._lock:
            if self.closed:
                return 0
            self.closed = True
            await self._registry.map_store.delete(self.encounter_id)
            self._registry.keys.discard(self.encounter_id)
            self.token_map = TokenMap()
        return int((time.monotonic() - self.started_at) * 1000)


class EncounterRegistry:
    """Creates, resumes and tears down encounter sessions."""

    def __init__(
        self,
        ledger: AuditLedger,
        map_store: SealedMapStore,
        keys: KeyManager | None = None,
        cipher: MapCipher | None = None,
        engine: PseudonymizationEngine | None = None,
        rehydrator: RehydrationEngine | None = None,
    ) -> None:
        self.ledger = ledger
        self.map_store = map_store
        self.keys = keys or KeyManager()
        self.cipher = cipher or MapCipher()
        self.engine = engine or PseudonymizationEngine()
        self.rehydrator = rehydrator or RehydrationEngine()
        self._sessions: dict[str, EncounterSession] = {}
        self._lock = asyncio.Lock()

    async def open(
        self,
        encounter_id: str,
        user_id: str | None = None,
        ip_address: str | None = None,
    ) -> EncounterSession:
        """Return the active session, resuming a stored map if its key is alive.

        Raises:
            DecryptionError: the stored map does not open with the live key.
        """
        async with self._lock:
            session = self._sessions.get(encounter_id)
            if session is not None:
                return session

            token_map = await self._load_map(encounter_id)
            self.keys.get_or_create(encounter_id)
            session = EncounterSession(encounter_id, self, token_map, user_id=user_id)
            self._sessions[encounter_id] = session

        await log_encounter_start(
            self.ledger, encounter_id, user_id=user_id, ip_address=ip_address
        )
        return session

    async def _load_map(self, encounter_id: str) -> TokenMap:
        sealed = await self.map_store.load(encounter_id)
        if sealed is None:
            return TokenMap()
        if encounter_id not in self.keys:
            # Key died with a previous process; the map is unrecoverable
            logger.warning("Dropping sealed map for %s: no key in memory", encounter_id)
            await self.map_store.delete(encounter_id)
            return TokenMap()
        token_map = self.cipher.open(sealed, self.keys.require(encounter_id))
        await self.ledger.append(
            AuditEventType.PHI_DECRYPTED,
            encounter_id=encounter_id,
            metadata={"tokens": len(token_map)},
        )
        return token_map

    def get(self, encounter_id: str) -> EncounterSession:
        session = self._sessions.get(encounter_id)
        if session is None:
            raise KeyNotFoundError(f"Encounter {encounter_id} is not active")
        return session

    async def end(self, encounter_id: str, user_id: str | None = None) -> bool:
        """Close the session and destroy its key and stored map.

        The registry lock is held until the map is gone, so a concurrent
        open() of the same id starts a fresh encounter.
        """
        async with self._lock:
            session = self._sessions.pop(encounter_id, None)
            if session is None:
                return False
            duration_ms = await session.close()
        await log_encounter_end(
            self.ledger, encounter_id, user_id=user_id or session.user_id, duration_ms=duration_ms
        )
        return True

    async def teardown(self) -> None:
        """End every encounter and drop all keys."""
        for encounter_id in list(self._sessions):
            await self.end(encounter_id)
        self.keys.clear()

    def __contains__(self, encounter_id: object) -> bool:
        return encounter_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
