"""
phiguard - PHI Protection Pipeline for Clinical Transcription

Keeps protected health information out of untrusted processing paths
while an encounter is transcribed and its note is inserted into a
third-party record system.

Features:
- Pattern-based PHI detection with reversible [TYPE:N] tokens
- Rehydration of tokenized text
- AES-256-GCM sealing of token maps with per-encounter keys
- HMAC-signed, append-only audit ledger with integrity verification
- Identity guard that gates writes on an operator-confirmed patient
"""

__version__ = "0.1.0"
__author__ = "phiguard Team"
