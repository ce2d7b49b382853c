"""
phiguard PHI Module

- Pattern catalog and medical-eponym stoplist
- Pseudonymization ([TYPE:N] tokens) and rehydration
- Post-hoc redaction validator
"""

from phiguard.phi.pseudonymizer import (
    Pseudonymized,
    PseudonymizationEngine,
    RedactionValidation,
    RehydrationEngine,
    pseudonymize,
    redaction_stats,
    rehydrate,
    validate_redaction,
)
from phiguard.phi.types import PHIToken, PHIType, TokenMap, validate_token_map

__all__ = [
    "PHIToken",
    "PHIType",
    "Pseudonymized",
    "PseudonymizationEngine",
    "RedactionValidation",
    "RehydrationEngine",
    "TokenMap",
    "pseudonymize",
    "redaction_stats",
    "rehydrate",
    "validate_redaction",
    "validate_token_map",
]
