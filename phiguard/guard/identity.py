"""
Identity Guard

Interlock that refuses any PHI-writing action unless the patient context
currently on screen has been explicitly confirmed by the operator.

State is derived from two stores on every check:
- session store: most recently observed ``{fp, preview}`` (per context)
- durable store: the single ``{fp, preview, confirmedAt}`` confirmation

    Missing      nothing observed this session
    Unconfirmed  observed, nothing confirmed
    Mismatch     confirmed fingerprint differs from the observed one
    Confirmed    observed == confirmed  -> the only state that allows writes

Refusals are returned as values, not raised. Callers must call
check_before_write() immediately before each write, not only when a write
flow starts, because the observed context can change in between.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum

from phiguard.audit.events import AuditEventType
from phiguard.audit.ledger import AuditLedger
from phiguard.errors import LedgerWriteError, StorageError
from phiguard.observability.metrics import record_guard_decision
from phiguard.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

CONFIRM_KEY = "ASSIST_CONFIRMED_FP"
OBSERVED_KEY = "ASSIST_OBSERVED_FP"
CONTEXT_KEY_PREFIX = "FP_"
DEFAULT_CONTEXT = "default"


class GuardState(str, Enum):
    MISSING = "missing"
    UNCONFIRMED = "unconfirmed"
    MISMATCH = "mismatch"
    CONFIRMED = "confirmed"
    # Refusal reason only, when the stores cannot be read; state() never returns it
    ERROR = "error"


@dataclass(frozen=True)
class GuardDecision:
    """Result of check_before_write().

    ``reason`` is None when allowed, otherwise the GuardState that refused
    (MISSING, UNCONFIRMED, MISMATCH or ERROR). ``fingerprint`` and
    ``preview`` describe the observed context so the caller can prompt for
    confirmation.
    """

    allowed: bool
    reason: GuardState | None = None
    fingerprint: str | None = None
    preview: str | None = None

    @property
    def outcome(self) -> str:
        if self.allowed:
            return "allow"
        return (self.reason or GuardState.ERROR).value

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "fp": self.fingerprint,
            "preview": self.preview,
        }


class IdentityGuard:
    """Gates writes on an operator-confirmed patient fingerprint."""

    def __init__(
        self,
        session_store: KeyValueStore,
        durable_store: KeyValueStore,
        ledger: AuditLedger | None = None,
    ) -> None:
        self._session = session_store
        self._durable = durable_store
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def observe(
        self, fp: str, preview: str | None = None, context_id: str = DEFAULT_CONTEXT
    ) -> GuardState:
        """Record the patient context currently displayed in ``context_id``."""
        record = {
            "fp": fp,
            "preview": preview,
            "contextId": context_id,
            "observedAt": int(time.time() * 1000),
        }
        await self._session.set(f"{CONTEXT_KEY_PREFIX}{context_id}", record)
        await self._session.set(OBSERVED_KEY, record)
        state = await self.state()
        logger.info("Observed patient %s... in %s -> %s", fp[:8], context_id, state.value)
        return state

    async def forget_context(self, context_id: str) -> None:
        """Drop an observation, e.g. when its page or tab goes away."""
        await self._session.remove(f"{CONTEXT_KEY_PREFIX}{context_id}")
        latest = await self._session.get(OBSERVED_KEY)
        if latest and latest.get("contextId") == context_id:
            await self._session.remove(OBSERVED_KEY)

    async def confirm(self, fp: str, preview: str | None = None) -> GuardState:
        """Operator attests that ``fp`` is the patient on screen.

        Always ends in Confirmed: if a different context was observed, the
        confirmed fingerprint becomes the observed one too. A later
        observe() of another patient moves the guard to Mismatch.
        """
        now = int(time.time() * 1000)
        await self._durable.set(CONFIRM_KEY, {"fp": fp, "preview": preview, "confirmedAt": now})

        observed = await self._session.get(OBSERVED_KEY)
        replaced = bool(observed) and observed.get("fp") != fp
        if not observed or replaced:
            if replaced:
                logger.warning(
                    "Confirmation %s... differs from observed %s...; adopting confirmation",
                    fp[:8],
                    str(observed.get("fp", ""))[:8],
                )
            context_id = observed.get("contextId", DEFAULT_CONTEXT) if observed else DEFAULT_CONTEXT
            await self.observe(fp, preview, context_id)

        if self._ledger is not None:
            await self._ledger.append(
                AuditEventType.PATIENT_CONFIRMED,
                patient_fingerprint=fp,
                metadata={"replacedObserved": replaced},
            )
        return GuardState.CONFIRMED

    async def clear(self) -> GuardState:
        """Forget the confirmation. Ends in Unconfirmed or Missing."""
        await self._durable.remove(CONFIRM_KEY)
        if self._ledger is not None:
            await self._ledger.append(AuditEventType.PATIENT_CONFIRMATION_CLEARED)
        return await self.state()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _snapshot(self) -> tuple[GuardState, dict | None]:
        observed = await self._session.get(OBSERVED_KEY)
        if not observed or not observed.get("fp"):
            return GuardState.MISSING, None
        confirmed = await self._durable.get(CONFIRM_KEY)
        if not confirmed or not confirmed.get("fp"):
            return GuardState.UNCONFIRMED, observed
        if confirmed["fp"] != observed["fp"]:
            return GuardState.MISMATCH, observed
        return GuardState.CONFIRMED, observed

    async def state(self) -> GuardState:
        state, _ = await self._snapshot()
        return state

    async def check_before_write(self) -> GuardDecision:
        """Decide whether a PHI write may proceed right now.

        Never raises: a storage failure yields an ``error`` refusal.
        """
        try:
            state, observed = await self._snapshot()
        except (StorageError, OSError) as e:
            logger.error("Identity guard storage failure: %s", e)
            decision = GuardDecision(allowed=False, reason=GuardState.ERROR)
            record_guard_decision(decision.outcome)
            return decision

        fp = observed.get("fp") if observed else None
        preview = observed.get("preview") if observed else None
        if state is GuardState.CONFIRMED:
            decision = GuardDecision(allowed=True, fingerprint=fp, preview=preview)
        else:
            decision = GuardDecision(
                allowed=False, reason=state, fingerprint=fp, preview=preview
            )
            if self._ledger is not None:
                try:
                    await self._ledger.append(
                        AuditEventType.PATIENT_GUARD_REFUSED,
                        patient_fingerprint=fp,
                        metadata={"reason": state.value},
                    )
                except LedgerWriteError as e:
                    logger.error("Could not audit guard refusal: %s", e)

        record_guard_decision(decision.outcome)
        return decision
