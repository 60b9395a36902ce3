from __future__ import annotations

from typing import Iterable

from schemas import TransactionRecord


class TransactionLedger:
    """Single owner of the in-memory transaction list.

    Only the fetch controller and the mutation paths write here. Every write
    swaps in a new tuple and bumps ``version``, so readers can memoise derived
    views on the version and never see a list change under them.
    """

    def __init__(self, rows: Iterable[TransactionRecord] = ()) -> None:
        self._rows: tuple[TransactionRecord, ...] = tuple(rows)
        self.version = 0

    @property
    def rows(self) -> tuple[TransactionRecord, ...]:
        return self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def replace(self, rows: Iterable[TransactionRecord]) -> None:
        self._rows = tuple(rows)
        self.version += 1

    def extend(self, rows: Iterable[TransactionRecord]) -> None:
        self._rows = self._rows + tuple(rows)
        self.version += 1

    def clear(self) -> None:
        self.replace(())

    def merge(self, updated: Iterable[TransactionRecord]) -> int:
        """Swap in returned rows by id. Ids not present locally are ignored."""
        by_id = {txn.id: txn for txn in updated}
        if not by_id:
            return 0
        merged = 0
        rows = []
        for txn in self._rows:
            replacement = by_id.get(txn.id)
            if replacement is not None:
                rows.append(replacement)
                merged += 1
            else:
                rows.append(txn)
        if merged:
            self._rows = tuple(rows)
            self.version += 1
        return merged

    def select(self, ids: Iterable[str]) -> list[TransactionRecord]:
        wanted = set(ids)
        return [txn for txn in self._rows if txn.id in wanted]
