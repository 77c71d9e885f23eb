"""In-batch duplicate detection."""

from __future__ import annotations

from typing import Dict, Optional

from app.ledger.models import NormalizedKey


class DuplicateDetector:
    """
    Remembers which keys one batch has already claimed.

    The first row carrying a key wins; every later row with the same key is a
    duplicate even when its amount or currency differ. One instance per
    import; it is dropped when the import finishes.
    """

    def __init__(self) -> None:
        self._first_seen: Dict[NormalizedKey, int] = {}

    def observe(self, key: NormalizedKey, index: int = -1) -> bool:
        """
        Record `key` if unseen.

        Returns:
            True if the key is new in this batch, False for a repeat (state
            is left untouched)
        """
        if key in self._first_seen:
            return False
        self._first_seen[key] = index
        return True

    def first_index(self, key: NormalizedKey) -> Optional[int]:
        """Row index that claimed `key`, if any."""
        return self._first_seen.get(key)

    def __len__(self) -> int:
        return len(self._first_seen)
