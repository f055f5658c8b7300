"""
State normalization for order addresses.

Maps the free-form province/state strings and codes Shopify stores carry
to a canonical (state, state_code) pair using an immutable reference table.
"""

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

BUNDLED_STATES_PATH = Path(__file__).parent.parent / "data" / "indian_states.json"


@dataclass(frozen=True)
class CanonicalState:
    """Authoritative name/code pair a raw value normalizes to."""

    name: str
    code: Optional[str] = None


@dataclass(frozen=True)
class NormalizedState:
    state: Optional[str]
    state_code: Optional[str]


class StateTable:
    """
    Read-only lookup from a lowercase raw state name, code or alias to its
    canonical entry. Built once and passed to whoever needs to normalize.
    """

    def __init__(self, entries: Mapping[str, CanonicalState]):
        self._entries = MappingProxyType(
            {key.strip().lower(): value for key, value in entries.items()}
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.strip().lower() in self._entries

    def lookup(self, raw: Any) -> Optional[CanonicalState]:
        """Return the canonical entry for a raw value, or None if unknown."""
        if raw is None:
            return None
        return self._entries.get(str(raw).strip().lower())

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "StateTable":
        """
        Build a table from records shaped like {"name", "code", "aliases"}.

        The name, the code and every alias become lookup keys.

        Raises:
            ValueError: If two records claim the same key.
        """
        entries: Dict[str, CanonicalState] = {}
        for record in records:
            canonical = CanonicalState(name=record["name"], code=record.get("code"))
            keys = [record["name"], *(record.get("aliases") or [])]
            if canonical.code:
                keys.append(canonical.code)
            for key in keys:
                key = key.strip().lower()
                existing = entries.get(key)
                if existing is not None and existing != canonical:
                    raise ValueError(
                        f"State key '{key}' maps to both {existing.name} and {canonical.name}"
                    )
                entries[key] = canonical
        return cls(entries)

    @classmethod
    def from_json(cls, path: Path) -> "StateTable":
        """Load a table from a JSON file with a top-level "states" list."""
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        return cls.from_records(payload["states"])


@lru_cache(maxsize=None)
def load_state_table(path: Optional[Path] = None) -> StateTable:
    """
    Load the state reference table once per process.

    Args:
        path: Optional override file; the bundled Indian states list is used otherwise.

    Returns:
        StateTable: Shared immutable table.
    """
    return StateTable.from_json(path or BUNDLED_STATES_PATH)


def _title_case(value: str) -> str:
    return " ".join(word[0].upper() + word[1:].lower() for word in value.split())


def normalize_state(
    table: StateTable,
    raw_state: Any = None,
    raw_code: Any = None,
    pincode: Any = None,
) -> NormalizedState:
    """
    Normalize a raw state name and/or code to canonical form.

    Precedence: a known code, then a known name, then a title-cased copy
    of the raw name with the raw code upper-cased. Without a raw name the
    result is empty. Never raises.

    Args:
        table: Reference table to resolve against.
        raw_state: Province/state text from the address.
        raw_code: Province/state code from the address.
        pincode: Accepted for a future postal-prefix fallback; unused.

    Returns:
        NormalizedState: Canonical name and code, either of which may be None.
    """
    if raw_code:
        entry = table.lookup(raw_code)
        if entry is not None:
            return NormalizedState(entry.name, entry.code)

    if not raw_state:
        return NormalizedState(None, None)

    entry = table.lookup(raw_state)
    if entry is not None:
        return NormalizedState(entry.name, entry.code)

    state = _title_case(str(raw_state).strip()) or None
    code = str(raw_code).strip().upper() if raw_code else None
    return NormalizedState(state, code or None)
