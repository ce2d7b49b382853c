"""
Patient fingerprints for the identity guard.

A fingerprint is a one-way digest of normalized demographics
(``LAST,FIRST|DOB|last4(MRN)``) plus a preview the operator can check
without the full PHI being displayed (``J. Doe · 1985-06-10 · MRN••56``).
"""

import hashlib
import hmac
import re
from dataclasses import dataclass

# Chart-page heuristics
_DOB_ISO_RE = re.compile(r"\b(?:19|20)\d{2}[-/](?:0[1-9]|1[0-2])[-/](?:0[1-9]|[12]\d|3[01])\b")
_DOB_LONG_RE = re.compile(r"\bDOB[:\s]+([A-Za-z]{3,9}\s+\d{1,2},\s+\d{4})", re.IGNORECASE)
_NAME_RE = re.compile(r"\bName[:\s]+([A-Z][A-Za-z' -]+(?:, [A-Z][A-Za-z' -]+)?)", re.IGNORECASE)
_MRN_RE = re.compile(r"\b(?:MRN|PHN|Chart\s*(?:No|#))[:\s]+([A-Z0-9-]+)", re.IGNORECASE)


@dataclass(frozen=True)
class Demographics:
    name: str = ""
    dob: str = ""
    mrn: str = ""


@dataclass(frozen=True)
class PatientFingerprint:
    fp: str
    preview: str

    @property
    def prefix(self) -> str:
        return self.fp[:16]


def extract_demographics(page_text: str) -> Demographics:
    """Pull name, date of birth and record number from chart text."""
    text = page_text or ""
    name_match = _NAME_RE.search(text)
    # Stop the name at the end of its line
    name = name_match.group(1).splitlines()[0].strip() if name_match else ""
    dob_match = _DOB_ISO_RE.search(text)
    if dob_match:
        dob = dob_match.group(0)
    else:
        long_match = _DOB_LONG_RE.search(text)
        dob = long_match.group(1) if long_match else ""
    mrn_match = _MRN_RE.search(text)
    return Demographics(name=name, dob=dob, mrn=mrn_match.group(1) if mrn_match else "")


def split_name(name: str) -> tuple[str, str]:
    """Return (first, last) for "First Last" or "Last, First"."""
    name = (name or "").strip()
    if "," in name:
        last, _, first = name.partition(",")
        first_words = first.split()
        return (first_words[0] if first_words else ""), last.strip()
    words = name.split()
    if not words:
        return "", ""
    return words[0], (words[-1] if len(words) > 1 else "")


def fingerprint_patient(
    demographics: Demographics,
    secret: str | bytes | None = None,
) -> PatientFingerprint:
    """
    Derive the guard fingerprint for a patient context.

    Args:
        demographics: Name, DOB and record number as shown on the chart.
        secret: Optional key; when given the digest is HMAC-SHA256 so
            fingerprints cannot be brute-forced from demographics alone.
    """
    first, last = split_name(demographics.name)
    dob = demographics.dob.strip()
    mrn = demographics.mrn.strip()
    raw = f"{last.upper()},{first.upper()}|{dob}|{mrn[-4:]}".encode("utf-8")

    if secret is not None:
        key = secret.encode("utf-8") if isinstance(secret, str) else secret
        digest = hmac.new(key, raw, hashlib.sha256).hexdigest()
    else:
        digest = hashlib.sha256(raw).hexdigest()

    initial = f"{first[0]}." if first else ""
    preview = f"{initial} {last}".strip() or "Unknown"
    preview = f"{preview} · {dob or '—'} · MRN••{mrn[-2:]}"
    return PatientFingerprint(fp=digest, preview=preview)
