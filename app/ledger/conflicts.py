"""Batched lookup of keys that already exist in the store."""

from __future__ import annotations

from typing import Iterable, Protocol, Set

import structlog

from app.ledger.models import NormalizedKey

logger = structlog.get_logger(__name__)


class KeyStore(Protocol):
    """Store-side contract: which of these keys belong to non-deleted records."""

    async def existing_keys(self, keys: Iterable[NormalizedKey]) -> Set[NormalizedKey]: ...


class PersistedConflictChecker:
    """
    Finds which candidate keys already belong to a non-deleted record.

    One call issues exactly one store query, whatever the batch size, and no
    query at all for an empty key set.
    """

    def __init__(self, store: KeyStore):
        self.store = store
        self.queries_issued = 0

    async def find_existing(self, keys: Iterable[NormalizedKey]) -> Set[NormalizedKey]:
        requested = set(keys)
        if not requested:
            return set()

        self.queries_issued += 1
        existing = await self.store.existing_keys(requested)
        found = existing & requested

        logger.debug(
            "conflicts.checked", requested=len(requested), existing=len(found)
        )
        return found
