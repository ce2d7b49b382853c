"""
PHI token types and the per-encounter TokenMap.

A token is serialized as ``TYPE:INDEX`` and appears in text in its
bracketed form ``[TYPE:INDEX]``. The bracket syntax is reserved: no
detection pattern matches it.
"""

import json
import re
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum


class PHIType(str, Enum):
    """Categories of detected PHI, in catalog priority order."""

    HCN = "HCN"
    MRN = "MRN"
    EMAIL = "EMAIL"
    DATE = "DATE"
    PHONE = "PHONE"
    SSN = "SSN"
    SIN = "SIN"
    ADDRESS = "ADDRESS"
    POSTAL = "POSTAL"
    NAME = "NAME"


# "NAME:1"
TOKEN_KEY_RE = re.compile(r"^([A-Z]+):(\d+)$")
# "[NAME:1]" inside free text
BRACKETED_TOKEN_RE = re.compile(r"\[([A-Z]+:\d+)\]")


@dataclass(frozen=True)
class PHIToken:
    """A reversible placeholder for one PHI value."""

    type: str
    index: int

    def __str__(self) -> str:
        return f"{self.type}:{self.index}"

    @property
    def bracketed(self) -> str:
        return f"[{self}]"

    @classmethod
    def parse(cls, key: str) -> "PHIToken":
        match = TOKEN_KEY_RE.match(key)
        if not match:
            raise ValueError(f"Invalid token format: {key!r}")
        return cls(type=match.group(1), index=int(match.group(2)))


def validate_token_map(entries: Mapping[str, object]) -> list[str]:
    """Return a list of problems with a raw token mapping (empty if valid)."""
    errors: list[str] = []
    for token, value in entries.items():
        if not isinstance(token, str) or not TOKEN_KEY_RE.match(token):
            errors.append(f"Invalid token format: {token}")
            continue
        if not isinstance(value, str) or not value:
            errors.append(f"Invalid value for token {token}")
    return errors


class TokenMap:
    """Ordered token -> original value mapping scoped to one encounter.

    Invariants:
    - no two distinct values share a token
    - an identical value always reuses its existing token
    - indices are 1-based and increase per type with no gaps

    The next index per type is cached and rebuilt from the existing
    tokens whenever a map is constructed (e.g. after reload from storage),
    which yields the same allocation as rescanning on every call.
    """

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries: dict[str, str] = {}
        self._by_value: dict[str, str] = {}
        self._next_index: dict[str, int] = {}
        self._lock = threading.Lock()
        if entries:
            errors = validate_token_map(entries)
            if errors:
                raise ValueError("; ".join(errors))
            for key, value in entries.items():
                self._insert(PHIToken.parse(key), value)

    def _insert(self, token: PHIToken, value: str) -> None:
        key = str(token)
        self._entries[key] = value
        self._by_value.setdefault(value, key)
        if token.index >= self._next_index.get(token.type, 1):
            self._next_index[token.type] = token.index + 1

    def tokenize(self, phi_type: PHIType | str, value: str) -> PHIToken:
        """Return the token for ``value``, allocating one if it is new.

        Lookup and allocation happen under one lock so concurrent callers
        never allocate two tokens for the same value or reuse an index.
        """
        type_name = phi_type.value if isinstance(phi_type, PHIType) else str(phi_type)
        with self._lock:
            existing = self._by_value.get(value)
            if existing is not None:
                return PHIToken.parse(existing)
            token = PHIToken(type=type_name, index=self._next_index.get(type_name, 1))
            self._insert(token, value)
            return token

    def token_for(self, value: str) -> PHIToken | None:
        key = self._by_value.get(value)
        return PHIToken.parse(key) if key else None

    def get(self, token: PHIToken | str) -> str | None:
        return self._entries.get(str(token))

    def items(self):
        return self._entries.items()

    def to_dict(self) -> dict[str, str]:
        return dict(self._entries)

    def to_canonical_bytes(self) -> bytes:
        """Compact UTF-8 JSON of the entries in insertion order."""
        return json.dumps(
            self._entries, ensure_ascii=False, separators=(",", ":")
        ).encode("utf-8")

    @classmethod
    def from_dict(cls, entries: Mapping[str, str] | None) -> "TokenMap":
        return cls(entries or {})

    def stats(self) -> dict[str, int]:
        """Number of tokens per PHI type."""
        counts: dict[str, int] = {}
        for key in self._entries:
            phi_type = key.split(":", 1)[0]
            counts[phi_type] = counts.get(phi_type, 0) + 1
        return counts

    def __getitem__(self, token: PHIToken | str) -> str:
        return self._entries[str(token)]

    def __contains__(self, token: object) -> bool:
        return str(token) in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TokenMap):
            return self._entries == other._entries
        if isinstance(other, Mapping):
            return self._entries == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        # Values are PHI; only show the token keys
        return f"TokenMap(tokens={list(self._entries)})"
