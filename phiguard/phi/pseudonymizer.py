"""
Pseudonymization and Rehydration Engines

Replaces detected PHI with stable ``[TYPE:N]`` tokens and restores it.

Both directions are pure text transforms: they never raise on content.
Anything a pattern misses passes through untouched; validate_redaction()
re-scans the output for residual PHI shapes and reports warnings.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import NamedTuple

from phiguard.phi.patterns import (
    NAME_CONTEXTS,
    PHI_PATTERNS,
    PHIPattern,
    is_medical_eponym,
)
from phiguard.phi.types import BRACKETED_TOKEN_RE, PHIType, TokenMap

logger = logging.getLogger(__name__)

# Shapes that should never survive pseudonymization
RESIDUAL_CHECKS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(r"\b\d{3}[-\s]\d{3}[-\s]\d{4}\b"),
        "Possible phone number detected in pseudonymized text",
    ),
    (
        re.compile(r"@[a-z0-9.-]+\.[a-z]{2,}", re.IGNORECASE),
        "Possible email detected in pseudonymized text",
    ),
    (
        re.compile(r"\b\d{4}[-/]\d{2}[-/]\d{2}\b"),
        "Possible date detected in pseudonymized text",
    ),
]


class Pseudonymized(NamedTuple):
    """Result of pseudonymize(): the tokenized text and the (extended) map."""

    text: str
    token_map: TokenMap


@dataclass
class RedactionValidation:
    valid: bool
    warnings: list[str] = field(default_factory=list)


def _token_spans(text: str) -> list[tuple[int, int]]:
    return [m.span() for m in BRACKETED_TOKEN_RE.finditer(text)]


def _overlaps(span: tuple[int, int], protected: list[tuple[int, int]]) -> bool:
    start, end = span
    return any(start < p_end and p_start < end for p_start, p_end in protected)


def _splice(match: re.Match[str], group: int, replacement: str) -> str:
    """Replace one capture group inside a match, keeping the rest verbatim."""
    whole = match.group(0)
    offset = match.start(0)
    return (
        whole[: match.start(group) - offset]
        + replacement
        + whole[match.end(group) - offset :]
    )


class PseudonymizationEngine:
    """Scans text against the pattern catalog and the name detector."""

    def __init__(
        self,
        patterns: tuple[PHIPattern, ...] = PHI_PATTERNS,
        name_contexts: tuple[re.Pattern[str], ...] = NAME_CONTEXTS,
    ) -> None:
        self._patterns = patterns
        self._name_contexts = name_contexts

    def pseudonymize(self, text: str, token_map: TokenMap | None = None) -> Pseudonymized:
        """
        Replace every detected PHI span with its token.

        Args:
            text: Raw transcript text.
            token_map: Encounter map to extend. A new map is created if None.

        Returns:
            (tokenized text, token_map). The map passed in is mutated.
        """
        if token_map is None:
            token_map = TokenMap()
        if not text:
            return Pseudonymized(text or "", token_map)

        result = text
        for pattern in self._patterns:
            result = self._apply_pattern(result, pattern, token_map)

        for context in self._name_contexts:
            result = self._apply_name_context(result, context, token_map)

        logger.debug("Pseudonymized %d chars, map now holds %d tokens", len(text), len(token_map))
        return Pseudonymized(result, token_map)

    def _apply_pattern(self, text: str, pattern: PHIPattern, token_map: TokenMap) -> str:
        protected = _token_spans(text)

        def replace(match: re.Match[str]) -> str:
            if _overlaps(match.span(), protected):
                return match.group(0)
            value = match.group(pattern.value_group)
            token = token_map.tokenize(pattern.phi_type, value)
            if pattern.value_group == 0:
                return token.bracketed
            return _splice(match, pattern.value_group, token.bracketed)

        return pattern.regex.sub(replace, text)

    def _apply_name_context(
        self, text: str, context: re.Pattern[str], token_map: TokenMap
    ) -> str:
        protected = _token_spans(text)

        def replace(match: re.Match[str]) -> str:
            name = match.group(1)
            if _overlaps(match.span(1), protected):
                return match.group(0)
            # Single capitalized words are too ambiguous ("Patient Smith" vs "Doctor Says")
            if len(name.split()) < 2:
                return match.group(0)
            if is_medical_eponym(name):
                return match.group(0)
            token = token_map.tokenize(PHIType.NAME, name)
            return _splice(match, 1, token.bracketed)

        return context.sub(replace, text)


class RehydrationEngine:
    """Inverse of pseudonymization: swaps tokens back for their values."""

    def rehydrate(self, text: str, token_map: TokenMap | dict[str, str]) -> str:
        """
        Replace every bracketed token present in the map with its value.

        Tokens missing from the map are left exactly as they are. Replacement
        is a single left-to-right pass, so restored values are never
        rescanned for tokens.
        """
        if not text:
            return text or ""
        lookup = token_map.to_dict() if isinstance(token_map, TokenMap) else token_map

        def replace(match: re.Match[str]) -> str:
            value = lookup.get(match.group(1))
            return value if value is not None else match.group(0)

        return BRACKETED_TOKEN_RE.sub(replace, text)


_default_engine = PseudonymizationEngine()
_default_rehydrator = RehydrationEngine()


def pseudonymize(text: str, token_map: TokenMap | None = None) -> Pseudonymized:
    """Pseudonymize with the default catalog."""
    return _default_engine.pseudonymize(text, token_map)


def rehydrate(text: str, token_map: TokenMap | dict[str, str]) -> str:
    return _default_rehydrator.rehydrate(text, token_map)


def validate_redaction(text: str) -> RedactionValidation:
    """Report residual phone/email/date shapes in pseudonymized text.

    Never blocks: the caller decides whether to escalate.
    """
    warnings = [message for pattern, message in RESIDUAL_CHECKS if pattern.search(text or "")]
    if warnings:
        logger.warning("Redaction validator flagged %d residual PHI shape(s)", len(warnings))
    return RedactionValidation(valid=not warnings, warnings=warnings)


def redaction_stats(token_map: TokenMap) -> dict[str, int]:
    """Token counts per PHI type (for audit metadata, never values)."""
    return token_map.stats()
