import asyncio
import json
import logging
from typing import Optional, Sequence
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import get_settings
from schemas import TransactionRecord

logger = logging.getLogger(__name__)


class NotesSyncClient:
    """Pushes review notes to the sync worker after a save.

    Used as the coordinator's ``on_saved`` hook, so it runs in the background
    and any failure is only logged.
    """

    def __init__(
        self, worker_url: Optional[str] = None, timeout: Optional[float] = None
    ) -> None:
        settings = get_settings()
        self.worker_url = (worker_url or settings.worker_url).rstrip("/")
        self.timeout = timeout or settings.worker_timeout_secs

    def _post(self, plaid_transaction_id: str, notes: str) -> None:
        body = json.dumps(
            {"transaction_id": plaid_transaction_id, "review_notes": notes}
        ).encode("utf-8")
        req = Request(
            f"{self.worker_url}/api/sync-notes-to-airtable",
            data=body,
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                resp.read()
        except (URLError, TimeoutError) as exc:
            raise RuntimeError(f"Notes sync failed: {exc}") from exc

    async def __call__(self, rows: Sequence[TransactionRecord]) -> None:
        for txn in rows:
            if not txn.review_notes or not txn.plaid_transaction_id:
                continue
            await asyncio.to_thread(
                self._post, txn.plaid_transaction_id, txn.review_notes
            )
            logger.info(f"notes_synced: plaid_transaction_id={txn.plaid_transaction_id}")
