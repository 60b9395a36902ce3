from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from categories import category_label
from csv_utils import export_transactions
from filters import SelectionModel
from ledger import TransactionLedger
from models import ReviewStatus
from schemas import BulkAction, TransactionRecord
from store import StoreError, TransactionStore

logger = logging.getLogger(__name__)

SavedHook = Callable[[list[TransactionRecord]], Awaitable[None]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BulkOperationInProgress(RuntimeError):
    pass


@dataclass(frozen=True)
class BulkMutation:
    action: BulkAction
    category: Optional[str] = None

    def __post_init__(self) -> None:
        if self.action == BulkAction.categorize and not (self.category or "").strip():
            raise ValueError("Categorize requires a category")

    @classmethod
    def categorize(cls, category: str) -> "BulkMutation":
        return cls(BulkAction.categorize, category)

    @classmethod
    def flag(cls) -> "BulkMutation":
        return cls(BulkAction.flag)

    @classmethod
    def approve(cls) -> "BulkMutation":
        return cls(BulkAction.approve)

    @classmethod
    def export(cls) -> "BulkMutation":
        return cls(BulkAction.export)

    def fields(self, now: datetime) -> dict[str, object]:
        if self.action == BulkAction.categorize:
            return {
                "coa_keywords": category_label(self.category),
                "categorization_source": "manual_bulk",
                "categorized_at": now,
            }
        if self.action == BulkAction.flag:
            return {"review_status": ReviewStatus.flagged, "reviewed_at": now}
        if self.action == BulkAction.approve:
            return {"review_status": ReviewStatus.approved, "reviewed_at": now}
        raise ValueError(f"{self.action.value} does not write to the store")


@dataclass
class BulkResult:
    action: BulkAction
    requested: int
    updated: int = 0
    stored: list[TransactionRecord] = field(default_factory=list)
    error: Optional[str] = None
    export: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SideChannel:
    """Runs best-effort notifications after a save without waiting on them."""

    def __init__(self, hook: Optional[SavedHook] = None) -> None:
        self.hook = hook
        self._pending: set[asyncio.Task] = set()

    def notify(self, rows: list[TransactionRecord]) -> None:
        if self.hook is None or not rows:
            return
        task = asyncio.ensure_future(self.hook(rows))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"side_channel_failed: error={exc}")

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class BulkMutationCoordinator:
    """Applies one mutation to the selected rows, one batch at a time.

    A second ``apply`` while one is pending raises
    :class:`BulkOperationInProgress`. The selection is released when the
    batch settles, whether it succeeded or not.
    """

    def __init__(
        self,
        store: TransactionStore,
        ledger: TransactionLedger,
        selection: SelectionModel,
        *,
        on_saved: Optional[SavedHook] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.selection = selection
        self.side_channel = SideChannel(on_saved)
        self.clock = clock
        self._processing = False

    @property
    def is_processing(self) -> bool:
        return self._processing

    def cancel(self) -> None:
        self.selection.clear()

    async def apply(
        self,
        mutation: BulkMutation,
        selection_ids: Optional[Iterable[str]] = None,
    ) -> BulkResult:
        if self._processing:
            raise BulkOperationInProgress("A bulk action is already running")

        ids = sorted(
            set(selection_ids) if selection_ids is not None else self.selection.selected_ids
        )
        result = BulkResult(action=mutation.action, requested=len(ids))

        if mutation.action == BulkAction.export:
            result.export = export_transactions(self.ledger.select(ids))
            self.selection.clear()
            return result

        if not ids:
            self.selection.clear()
            return result

        self._processing = True
        try:
            updated = await self.store.update_transactions(
                ids, mutation.fields(self.clock())
            )
            result.stored = list(updated)
            result.updated = self.ledger.merge(updated)
            self.side_channel.notify(updated)
            logger.info(
                f"bulk_applied: action={mutation.action.value} requested={len(ids)} "
                f"returned={len(updated)} merged={result.updated}"
            )
        except StoreError as exc:
            logger.error(
                f"bulk_failed: action={mutation.action.value} requested={len(ids)} "
                f"error={exc}"
            )
            result.error = str(exc) or f"Failed to {mutation.action.value} transactions"
        finally:
            self._processing = False
            self.selection.clear()
        return result


async def _update_one(
    store: TransactionStore,
    ledger: TransactionLedger,
    transaction_id: str,
    fields: dict[str, object],
    side_channel: Optional[SideChannel],
) -> Optional[TransactionRecord]:
    try:
        updated: Sequence[TransactionRecord] = await store.update_transactions(
            [transaction_id], fields
        )
    except StoreError as exc:
        logger.error(
            f"row_update_failed: id={transaction_id} "
            f"fields={','.join(sorted(fields))} error={exc}"
        )
        raise
    ledger.merge(updated)
    if side_channel is not None:
        side_channel.notify(list(updated))
    for txn in updated:
        if txn.id == transaction_id:
            return txn
    return None


async def update_category(
    store: TransactionStore,
    ledger: TransactionLedger,
    transaction_id: str,
    category: str,
    *,
    clock: Clock = _utcnow,
    side_channel: Optional[SideChannel] = None,
) -> Optional[TransactionRecord]:
    """Inline single-row recategorisation, merged back by id."""
    fields = {
        "coa_keywords": category_label(category),
        "categorization_source": "manual",
        "categorized_at": clock(),
    }
    return await _update_one(store, ledger, transaction_id, fields, side_channel)


async def update_review(
    store: TransactionStore,
    ledger: TransactionLedger,
    transaction_id: str,
    status: ReviewStatus,
    notes: Optional[str] = None,
    *,
    reviewer: Optional[str] = None,
    clock: Clock = _utcnow,
    side_channel: Optional[SideChannel] = None,
) -> Optional[TransactionRecord]:
    fields: dict[str, object] = {
        "review_status": ReviewStatus(status),
        "review_notes": (notes or "").strip() or None,
        "reviewed_at": clock(),
    }
    if reviewer:
        fields["reviewed_by"] = reviewer
    return await _update_one(store, ledger, transaction_id, fields, side_channel)
