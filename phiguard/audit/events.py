"""
Audit event catalogue and convenience loggers.

Metadata passed here must never contain PHI values: use counts, token
types, section names and fingerprint prefixes.
"""

from enum import Enum
from typing import Any

from phiguard.audit.ledger import AppendResult, AuditLedger


class AuditEventType(str, Enum):
    # Authentication & authorization
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    PERMISSION_DENIED = "permission_denied"

    # PHI access
    PHI_VIEWED = "phi_viewed"
    PHI_CREATED = "phi_created"
    PHI_UPDATED = "phi_updated"
    PHI_DELETED = "phi_deleted"
    PHI_EXPORTED = "phi_exported"

    # Encounter operations
    ENCOUNTER_STARTED = "encounter_started"
    ENCOUNTER_ENDED = "encounter_ended"
    ENCOUNTER_TRANSCRIBED = "encounter_transcribed"
    ENCOUNTER_NOTE_COMPOSED = "encounter_note_composed"
    ENCOUNTER_NOTE_INSERTED = "encounter_note_inserted"

    # PHI protection
    PHI_REDACTED = "phi_redacted"
    PHI_REHYDRATED = "phi_rehydrated"
    PHI_ENCRYPTED = "phi_encrypted"
    PHI_DECRYPTED = "phi_decrypted"

    # Identity guard
    PATIENT_OBSERVED = "patient_observed"
    PATIENT_CONFIRMED = "patient_confirmed"
    PATIENT_CONFIRMATION_CLEARED = "patient_confirmation_cleared"
    PATIENT_GUARD_REFUSED = "patient_guard_refused"

    # Clinical actions
    NOTE_VIEWED = "note_viewed"
    NOTE_EDITED = "note_edited"
    NOTE_SIGNED = "note_signed"
    PRESCRIPTION_CREATED = "prescription_created"

    # System events
    SYSTEM_ERROR = "system_error"
    API_CALL_FAILED = "api_call_failed"
    SECURITY_ALERT = "security_alert"


async def log_encounter_start(
    ledger: AuditLedger,
    encounter_id: str,
    user_id: str | None = None,
    patient_fingerprint: str | None = None,
    ip_address: str | None = None,
) -> AppendResult:
    return await ledger.append(
        AuditEventType.ENCOUNTER_STARTED,
        encounter_id=encounter_id,
        user_id=user_id,
        patient_fingerprint=patient_fingerprint,
        ip_address=ip_address,
        metadata={"action": "start_recording"},
    )


async def log_encounter_end(
    ledger: AuditLedger,
    encounter_id: str,
    user_id: str | None = None,
    duration_ms: int | None = None,
) -> AppendResult:
    return await ledger.append(
        AuditEventType.ENCOUNTER_ENDED,
        encounter_id=encounter_id,
        user_id=user_id,
        metadata={"durationMs": duration_ms},
    )


async def log_phi_redaction(
    ledger: AuditLedger,
    encounter_id: str,
    phi_types_count: dict[str, int],
    user_id: str | None = None,
) -> AppendResult:
    return await ledger.append(
        AuditEventType.PHI_REDACTED,
        encounter_id=encounter_id,
        user_id=user_id,
        metadata={"phiTypesCount": phi_types_count},
    )


async def log_note_composition(
    ledger: AuditLedger,
    encounter_id: str,
    note_format: str,
    model_used: str | None = None,
) -> AppendResult:
    return await ledger.append(
        AuditEventType.ENCOUNTER_NOTE_COMPOSED,
        encounter_id=encounter_id,
        metadata={"noteFormat": note_format, "modelUsed": model_used},
    )


async def log_note_insertion(
    ledger: AuditLedger,
    encounter_id: str,
    sections: list[str],
    user_id: str | None = None,
    patient_fingerprint: str | None = None,
) -> AppendResult:
    return await ledger.append(
        AuditEventType.ENCOUNTER_NOTE_INSERTED,
        encounter_id=encounter_id,
        user_id=user_id,
        patient_fingerprint=patient_fingerprint,
        metadata={"sections": sections},
    )


async def log_security_alert(
    ledger: AuditLedger,
    message: str,
    severity: str,
    metadata: dict[str, Any] | None = None,
) -> AppendResult:
    return await ledger.append(
        AuditEventType.SECURITY_ALERT,
        metadata={"message": message, "severity": severity, **(metadata or {})},
    )


async def log_api_failure(
    ledger: AuditLedger,
    api_name: str,
    error_message: str,
    encounter_id: str | None = None,
) -> AppendResult:
    return await ledger.append(
        AuditEventType.API_CALL_FAILED,
        encounter_id=encounter_id,
        metadata={"apiName": api_name, "errorMessage": error_message},
    )
