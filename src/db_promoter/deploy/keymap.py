"""Old-key -> new-key bookkeeping shared by both deployers.

Keys are scalars for single-column keys and ``{column: value}`` dicts for
composite keys.  Dicts are unhashable, so entries are indexed by a frozen
form of the old key while the original value is kept for reporting.
"""

from collections.abc import Hashable, Iterator
from typing import Any

from db_promoter.deploy.models import KeyMappingEntry, MappingAction


def extract_key(row: dict[str, Any], key_columns: list[str]) -> Any:
    """Return the key of *row*: a scalar for one column, a dict otherwise.

    Example:
        >>> extract_key({"id": 1, "name": "A"}, ["id"])
        1
        >>> extract_key({"a": 1, "b": 2}, ["a", "b"])
        {'a': 1, 'b': 2}
    """
    if len(key_columns) == 1:
        return row.get(key_columns[0])
    return {col: row.get(col) for col in key_columns}


def key_filters(key: Any, key_columns: list[str]) -> dict[str, Any]:
    """Turn a key back into ``{column: value}`` equality filters."""
    if isinstance(key, dict):
        return dict(key)
    return {key_columns[0]: key}


def is_missing_key(key: Any) -> bool:
    """True when a key carries no value (scalar ``None`` or all-``None`` dict)."""
    if isinstance(key, dict):
        return not key or all(v is None for v in key.values())
    return key is None


def freeze_key(key: Any) -> Hashable | None:
    """Hashable form of a key, or ``None`` for a missing key."""
    if is_missing_key(key):
        return None
    if isinstance(key, dict):
        return tuple(sorted((k, freeze_key(v)) for k, v in key.items()))
    if isinstance(key, list):
        return tuple(freeze_key(v) for v in key)
    return key


class KeyMap:
    """Mapping of old keys to new keys for one table or collection.

    Each old key is recorded once; recording it again replaces the entry.
    Rows without a key value are still counted, each as its own entry.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, KeyMappingEntry] = {}
        self._unkeyed: list[KeyMappingEntry] = []

    def record(self, old_key: Any, new_key: Any, action: MappingAction) -> None:
        entry = KeyMappingEntry(old_key=old_key, new_key=new_key, action=action)
        frozen = freeze_key(old_key)
        if frozen is None:
            self._unkeyed.append(entry)
        else:
            self._entries[frozen] = entry

    def get(self, old_key: Any, default: Any = None) -> Any:
        """Return the new key recorded for *old_key*."""
        frozen = freeze_key(old_key)
        if frozen is None or frozen not in self._entries:
            return default
        return self._entries[frozen].new_key

    def entry(self, old_key: Any) -> KeyMappingEntry | None:
        """Return the full entry recorded for *old_key*."""
        frozen = freeze_key(old_key)
        if frozen is None:
            return None
        return self._entries.get(frozen)

    def __contains__(self, old_key: Any) -> bool:
        frozen = freeze_key(old_key)
        return frozen is not None and frozen in self._entries

    def __len__(self) -> int:
        return len(self._entries) + len(self._unkeyed)

    def __iter__(self) -> Iterator[KeyMappingEntry]:
        yield from self._entries.values()
        yield from self._unkeyed

    def entries(self) -> list[KeyMappingEntry]:
        return list(self)
