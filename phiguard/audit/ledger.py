"""
Audit Ledger

Append-only JSON-lines log of PHI-relevant events. Every line carries an
HMAC-SHA256 signature over the canonical JSON of its other fields, so any
edit to a line is detectable by anyone holding the secret. Lines are not
chained: each entry verifies on its own.

Write failures never propagate to the clinical action being recorded
(unless strict mode is configured); they are logged to the
``phiguard.audit`` logger and returned as a warning result.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import os
import socket
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from phiguard import config
from phiguard.errors import LedgerWriteError
from phiguard.observability.metrics import (
    record_audit_write_failure,
    record_integrity_check,
)

logger = logging.getLogger("phiguard.audit")

# Fingerprint characters kept in ledger lines
FINGERPRINT_PREFIX_LEN = 16
DEFAULT_QUERY_LIMIT = 1000


class AuditEntry(BaseModel):
    """One signed ledger line."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: str
    event_type: str = Field(alias="eventType")
    encounter_id: str | None = Field(default=None, alias="encounterId")
    user_id: str | None = Field(default=None, alias="userId")
    patient_fingerprint: str | None = Field(default=None, alias="patientFingerprint")
    ip_address: str | None = Field(default=None, alias="ipAddress")
    metadata: dict[str, Any] = Field(default_factory=dict)
    pid: int
    hostname: str
    signature: str

    @property
    def recorded_at(self) -> datetime:
        return parse_timestamp(self.timestamp)


@dataclass
class AppendResult:
    """Outcome of append(). ``ok`` is False when the line was not written."""

    ok: bool
    entry: AuditEntry | None = None
    warning: str | None = None


@dataclass
class IntegrityReport:
    valid: int = 0
    invalid: int = 0
    total: int = 0
    invalid_lines: list[int] = field(default_factory=list)


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def canonical_json(fields: dict[str, Any]) -> str:
    """Serialization that signing and verification both use."""
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_signature(fields: dict[str, Any], secret: str | bytes) -> str:
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    return hmac.new(key, canonical_json(fields).encode("utf-8"), hashlib.sha256).hexdigest()


class AuditLedger:
    """Signed, append-only audit log backed by one file."""

    def __init__(
        self,
        path: str | Path | None = None,
        secret: str | bytes | None = None,
        strict: bool | None = None,
        hostname: str | None = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            path: Ledger file. If None, uses PHI_AUDIT_LOG.
            secret: HMAC secret. If None, uses AUDIT_HMAC_SECRET.
            strict: Raise LedgerWriteError on write failure instead of
                returning a warning. If None, uses AUDIT_STRICT_WRITES.
            hostname: Host recorded in entries. Defaults to $HOSTNAME.
        """
        self.path = Path(path or config.PHI_AUDIT_LOG)
        self._secret = secret if secret is not None else config.AUDIT_HMAC_SECRET
        self.strict = config.AUDIT_STRICT_WRITES if strict is None else strict
        self._hostname = hostname or os.environ.get("HOSTNAME") or socket.gethostname() or "unknown"
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def _build_entry(
        self,
        event_type: str,
        encounter_id: str | None,
        user_id: str | None,
        patient_fingerprint: str | None,
        ip_address: str | None,
        metadata: dict[str, Any] | None,
    ) -> dict[str, Any]:
        fields = {
            "timestamp": _utc_now_iso(),
            "eventType": str(getattr(event_type, "value", event_type)),
            "encounterId": encounter_id,
            "userId": user_id,
            "patientFingerprint": (
                patient_fingerprint[:FINGERPRINT_PREFIX_LEN] if patient_fingerprint else None
            ),
            "ipAddress": ip_address,
            "metadata": metadata or {},
            "pid": os.getpid(),
            "hostname": self._hostname,
        }
        # Normalize through JSON so the signed form equals the stored form
        return json.loads(json.dumps(fields, default=str))

    def _write_line(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
        try:
            # One write() per line so concurrent appenders never interleave
            written = os.write(fd, data)
            if written != len(data):
                raise OSError(f"Short write to audit ledger ({written}/{len(data)} bytes)")
        finally:
            os.close(fd)

    async def append(
        self,
        event_type: str,
        encounter_id: str | None = None,
        user_id: str | None = None,
        patient_fingerprint: str | None = None,
        ip_address: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AppendResult:
        """Sign and append one entry.

        Returns:
            AppendResult with ok=False and a warning if the write failed.

        Raises:
            LedgerWriteError: only when the ledger is in strict mode.
        """
        fields = self._build_entry(
            event_type, encounter_id, user_id, patient_fingerprint, ip_address, metadata
        )
        fields["signature"] = compute_signature(fields, self._secret)
        entry = AuditEntry.model_validate(fields)
        # Escaped form keeps line separators like U+2028 out of the raw file
        line = (json.dumps(fields) + "\n").encode("utf-8")

        try:
            async with self._write_lock:
                await asyncio.to_thread(self._write_line, line)
        except OSError as e:
            record_audit_write_failure()
            # Best-effort side channel: never include metadata, it may describe PHI
            logger.error(
                "Failed to write audit entry %s (encounter=%s) to %s: %s",
                fields["eventType"],
                encounter_id,
                self.path,
                e,
            )
            if self.strict:
                raise LedgerWriteError(f"Audit ledger write failed: {e}") from e
            return AppendResult(ok=False, entry=entry, warning=f"audit_write_failed: {e}")

        logger.debug("Audit %s encounter=%s", fields["eventType"], encounter_id)
        return AppendResult(ok=True, entry=entry)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def _read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        with open(self.path, "rb") as fh:
            raw = fh.read()
        # Undecodable bytes become U+FFFD, so the line fails to parse or verify
        lines = (chunk.decode("utf-8", errors="replace") for chunk in raw.split(b"\n"))
        return [line for line in lines if line.strip()]

    async def query(
        self,
        encounter_id: str | None = None,
        event_type: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> list[AuditEntry]:
        """Return matching entries, newest first, at most ``limit``.

        Malformed lines are skipped rather than failing the query.
        """
        try:
            lines = await asyncio.to_thread(self._read_lines)
        except OSError as e:
            logger.error("Failed to read audit ledger %s: %s", self.path, e)
            return []
        if event_type is not None:
            event_type = str(getattr(event_type, "value", event_type))
        start = _as_aware(start_date)
        end = _as_aware(end_date)

        entries: list[AuditEntry] = []
        skipped = 0
        for line in lines:
            try:
                entry = AuditEntry.model_validate_json(line)
                recorded_at = entry.recorded_at
            except (ValidationError, ValueError):
                skipped += 1
                continue
            if encounter_id and entry.encounter_id != encounter_id:
                continue
            if event_type and entry.event_type != event_type:
                continue
            if start and recorded_at < start:
                continue
            if end and recorded_at > end:
                continue
            entries.append(entry)

        if skipped:
            logger.warning("Skipped %d malformed audit line(s) in %s", skipped, self.path)

        entries.sort(key=lambda e: e.recorded_at, reverse=True)
        return entries[: max(limit, 0)]

    async def verify_integrity(self) -> IntegrityReport:
        """Recompute every line's signature and count mismatches.

        A bad line is reported and counted; the scan always completes.
        """
        lines = await asyncio.to_thread(self._read_lines)
        report = IntegrityReport(total=len(lines))

        for line_no, line in enumerate(lines, start=1):
            if self._line_is_valid(line):
                report.valid += 1
            else:
                report.invalid += 1
                report.invalid_lines.append(line_no)
                logger.warning("Integrity check failed for audit line %d", line_no)

        record_integrity_check(report.total, report.invalid)
        return report

    def _line_is_valid(self, line: str) -> bool:
        try:
            fields = json.loads(line)
        except json.JSONDecodeError:
            return False
        if not isinstance(fields, dict):
            return False
        signature = fields.pop("signature", None)
        if not isinstance(signature, str):
            return False
        expected = compute_signature(fields, self._secret)
        return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
