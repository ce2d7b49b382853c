#!/usr/bin/env python
"""
Verify Audit Ledger Integrity

Recomputes the HMAC signature of every ledger line.

Usage: python scripts/verify_audit.py [LEDGER_PATH]

Exit codes: 0 all valid, 2 invalid entries found, 1 verification failed.
"""

import asyncio
import logging
import sys

from phiguard.audit.ledger import AuditLedger

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    ledger = AuditLedger(path=args[0] if args else None)

    try:
        report = asyncio.run(ledger.verify_integrity())
    except OSError as e:
        print(f"Verification failed: {e}")
        return 1

    print(f"valid={report.valid} invalid={report.invalid} total={report.total}")
    if report.invalid:
        print(f"Invalid lines: {', '.join(str(n) for n in report.invalid_lines)}")
        return 2
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    sys.exit(main())
