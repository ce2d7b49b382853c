"""
PHI Pattern Catalog

Fixed, ordered set of regex detectors for structured identifiers plus
the context-aware personal-name detector and the medical-eponym stoplist.

Order matters: label-anchored identifiers (health numbers, record numbers)
run before the free-form numeric shapes that could otherwise claim the
same digits, and names always run last.

The marker and stoplist vocabularies are English-only.
"""

import re
from dataclasses import dataclass

from phiguard.phi.types import PHIType


@dataclass(frozen=True)
class PHIPattern:
    """One structured-identifier detector.

    ``value_group`` names the capture group holding the canonical value;
    text outside it (e.g. an ``MRN:`` label) is kept verbatim.
    """

    phi_type: PHIType
    regex: re.Pattern[str]
    value_group: int = 0
    examples: tuple[str, ...] = ()


PHI_PATTERNS: tuple[PHIPattern, ...] = (
    # Canadian provincial health numbers, label-anchored
    PHIPattern(
        PHIType.HCN,
        re.compile(r"\b(?:PHN|HCN|Health\s*Number)[:\s]*(\d{10})\b", re.IGNORECASE),
        value_group=1,
        examples=("PHN 9876543210", "HCN: 1234567890"),
    ),
    # Medical record / chart numbers, label-anchored; value needs a digit
    # so "Chart review" is not a record number
    PHIPattern(
        PHIType.MRN,
        re.compile(
            r"\b(?:MRN|Chart\s*(?:No\.?|#)?)[:\s#]*"
            r"((?=[A-Z-]*\d)[A-Z0-9][A-Z0-9-]{5,})\b",
            re.IGNORECASE,
        ),
        value_group=1,
        examples=("MRN ABC-123456", "Chart # 789-XYZ"),
    ),
    PHIPattern(
        PHIType.EMAIL,
        re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE),
        examples=("patient@email.com",),
    ),
    # ISO (1985-06-10, 1985/06/10) and US (06/10/1985) dates
    PHIPattern(
        PHIType.DATE,
        re.compile(
            r"\b(?:(?:19|20)\d{2}[-/](?:0?[1-9]|1[0-2])[-/](?:0?[1-9]|[12]\d|3[01])"
            r"|(?:0?[1-9]|1[0-2])/(?:0?[1-9]|[12]\d|3[01])/(?:19|20)\d{2})\b"
        ),
        examples=("2024-03-15", "1985/06/10", "06/10/1985"),
    ),
    # North American phone numbers
    PHIPattern(
        PHIType.PHONE,
        re.compile(
            r"(?:\+?\b1[-.\s]?)?(?:\(\d{3}\)|\b\d{3})[-.\s]?\d{3}[-.\s]?\d{4}\b"
        ),
        examples=("555-123-4567", "(555) 123-4567", "+1 555 123 4567"),
    ),
    # US Social Security Number
    PHIPattern(
        PHIType.SSN,
        re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
        examples=("123-45-6789",),
    ),
    # Canadian Social Insurance Number
    PHIPattern(
        PHIType.SIN,
        re.compile(r"\b\d{3}[-\s]?\d{3}[-\s]?\d{3}\b"),
        examples=("123-456-789", "123 456 789"),
    ),
    PHIPattern(
        PHIType.ADDRESS,
        re.compile(
            r"\b\d{1,5}\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\s+"
            r"(?i:Street|St|Avenue|Ave|Road|Rd|Drive|Dr|Lane|Ln|Boulevard|Blvd)\b"
        ),
        examples=("123 Main Street", "456 Oak Avenue"),
    ),
    # Canadian postal codes
    PHIPattern(
        PHIType.POSTAL,
        re.compile(r"\b[A-Z]\d[A-Z]\s?\d[A-Z]\d\b", re.IGNORECASE),
        examples=("V5K 1A1", "M5H2N2"),
    ),
)


# Disease and sign names that look like surnames
MEDICAL_STOPLIST: frozenset[str] = frozenset(
    {
        "parkinson", "parkinsons", "hodgkin", "hodgkins", "crohn", "crohns",
        "alzheimer", "alzheimers", "addison", "addisons", "graves", "cushing",
        "cushings", "sjogren", "sjogrens", "raynaud", "raynauds", "weber",
        "guillain", "barre", "marfan", "marfans", "turner", "turners", "down",
        "downs", "williams", "prader", "willi", "bell", "bells", "huntington",
        "huntingtons", "wilson", "wilsons", "kawasaki", "tourette", "tourettes",
        "hashimoto", "hashimotos", "meniere", "menieres", "paget", "pagets",
    }
)

# Head nouns that turn an eponym into a condition name ("Graves Disease")
EPONYM_HEADS: frozenset[str] = frozenset(
    {
        "disease", "diseases", "syndrome", "disorder", "palsy", "lymphoma",
        "sign", "phenomenon", "sarcoma", "chorea", "anomaly", "thyroiditis",
    }
)

# Context markers preceding a personal name. Markers are case-insensitive,
# the name itself must be capitalized words on the same line.
_NAME_WORDS = r"([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)*)"

NAME_CONTEXTS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\b(?i:Dr|Doctor|Mr|Mrs|Ms|Miss|Patient|Patient's)\.?[ \t]+" + _NAME_WORDS
    ),
    re.compile(r"\b(?i:this is|my name is|I'm|I am)[ \t]+" + _NAME_WORDS),
)


def _normalize_word(word: str) -> str:
    word = word.lower()
    for suffix in ("'s", "’s"):
        if word.endswith(suffix):
            return word[: -len(suffix)]
    return word


def is_medical_eponym(candidate: str) -> bool:
    """Return True if a capitalized span names a condition, not a person.

    A span is rejected when it is itself a stoplist entry, when every word
    is a stoplist entry ("Guillain Barre"), or when it pairs a stoplist
    word with a condition head noun ("Parkinson Disease"). A stoplist word
    alone inside a longer span ("Sarah Williams") is still a name.
    """
    words = [_normalize_word(w) for w in candidate.split()]
    if not words:
        return False
    if " ".join(words) in MEDICAL_STOPLIST:
        return True
    eponyms = [w for w in words if w in MEDICAL_STOPLIST]
    if not eponyms:
        return False
    if len(eponyms) == len(words):
        return True
    return any(w in EPONYM_HEADS for w in words)

