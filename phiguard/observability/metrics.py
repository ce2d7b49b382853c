"""
Prometheus Metrics for phiguard

Tracks:
- phi_tokens_total: Counter of tokens allocated, by PHI type
- guard_decisions_total: Counter of identity-guard decisions, by outcome
- audit_write_failures_total: Counter of ledger writes that degraded
- audit_integrity_invalid: Gauge of invalid entries in the last verification
"""

import logging
import threading

logger = logging.getLogger(__name__)

# Thread-safe metrics storage
_lock = threading.Lock()

_metrics: dict[str, float] = {
    "pseudonymize_calls": 0,
    "audit_write_failures": 0,
    "audit_integrity_checked": 0,
    "audit_integrity_invalid": 0,
}

_phi_tokens: dict[str, int] = {}
_guard_decisions: dict[str, int] = {}


def record_redaction(new_tokens: dict[str, int]) -> None:
    """Record one pseudonymize call and the tokens it allocated per type."""
    with _lock:
        _metrics["pseudonymize_calls"] += 1
        for phi_type, count in new_tokens.items():
            if count > 0:
                _phi_tokens[phi_type] = _phi_tokens.get(phi_type, 0) + count


def record_guard_decision(outcome: str) -> None:
    with _lock:
        _guard_decisions[outcome] = _guard_decisions.get(outcome, 0) + 1


def record_audit_write_failure() -> None:
    with _lock:
        _metrics["audit_write_failures"] += 1


def record_integrity_check(total: int, invalid: int) -> None:
    with _lock:
        _metrics["audit_integrity_checked"] = total
        _metrics["audit_integrity_invalid"] = invalid


def get_metrics_text() -> str:
    """Generate Prometheus-compatible metrics text."""
    with _lock:
        lines = [
            "# HELP pseudonymize_calls_total Total pseudonymize calls",
            "# TYPE pseudonymize_calls_total counter",
            f'pseudonymize_calls_total {int(_metrics["pseudonymize_calls"])}',
            "",
            "# HELP phi_tokens_total Tokens allocated by PHI type",
            "# TYPE phi_tokens_total counter",
        ]
        for phi_type in sorted(_phi_tokens):
            lines.append(f'phi_tokens_total{{type="{phi_type}"}} {_phi_tokens[phi_type]}')
        lines += [
            "",
            "# HELP guard_decisions_total Identity guard decisions by outcome",
            "# TYPE guard_decisions_total counter",
        ]
        for outcome in sorted(_guard_decisions):
            lines.append(
                f'guard_decisions_total{{outcome="{outcome}"}} {_guard_decisions[outcome]}'
            )
        lines += [
            "",
            "# HELP audit_write_failures_total Ledger writes that failed",
            "# TYPE audit_write_failures_total counter",
            f'audit_write_failures_total {int(_metrics["audit_write_failures"])}',
            "",
            "# HELP audit_integrity_invalid Invalid entries in the last verification",
            "# TYPE audit_integrity_invalid gauge",
            f'audit_integrity_invalid {int(_metrics["audit_integrity_invalid"])}',
            "",
            "# HELP audit_integrity_checked Entries scanned in the last verification",
            "# TYPE audit_integrity_checked gauge",
            f'audit_integrity_checked {int(_metrics["audit_integrity_checked"])}',
        ]

        return "\n".join(lines) + "\n"


def reset_metrics() -> None:
    """Reset all metrics to zero."""
    with _lock:
        for key in _metrics:
            _metrics[key] = 0
        _phi_tokens.clear()
        _guard_decisions.clear()
