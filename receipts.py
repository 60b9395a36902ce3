from __future__ import annotations

import json
import logging
import uuid
from typing import Iterable, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import ValidationError

from config import get_settings
from schemas import ReceiptMatch

logger = logging.getLogger(__name__)


class ReceiptUploadError(RuntimeError):
    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


def encode_multipart(
    fields: dict[str, str],
    filename: str,
    content: bytes,
    content_type: str,
    *,
    boundary: Optional[str] = None,
) -> tuple[bytes, str]:
    boundary = boundary or uuid.uuid4().hex
    lines: list[bytes] = []
    for name, value in fields.items():
        lines.append(f"--{boundary}".encode())
        lines.append(f'Content-Disposition: form-data; name="{name}"'.encode())
        lines.append(b"")
        lines.append(value.encode("utf-8"))
    safe_name = filename.replace('"', "")
    lines.append(f"--{boundary}".encode())
    lines.append(
        f'Content-Disposition: form-data; name="file"; filename="{safe_name}"'.encode()
    )
    lines.append(f"Content-Type: {content_type}".encode())
    lines.append(b"")
    lines.append(content)
    lines.append(f"--{boundary}--".encode())
    lines.append(b"")
    return b"\r\n".join(lines), f"multipart/form-data; boundary={boundary}"


class ReceiptUploadClient:
    """Forwards a receipt image to the matching worker and parses its answer."""

    def __init__(
        self, worker_url: Optional[str] = None, timeout: Optional[float] = None
    ) -> None:
        settings = get_settings()
        self.worker_url = (worker_url or settings.worker_url).rstrip("/")
        self.timeout = timeout or settings.worker_timeout_secs

    def upload(
        self,
        *,
        filename: str,
        content: bytes,
        content_type: str,
        entity_id: str,
        tenant_id: str,
        token: str,
    ) -> ReceiptMatch:
        if not entity_id or not tenant_id:
            raise ValueError("Missing entity_id or tenant_id")
        body, multipart_type = encode_multipart(
            {"entity_id": entity_id, "tenant_id": tenant_id},
            filename,
            content,
            content_type,
        )
        req = Request(
            f"{self.worker_url}/api/receipts/upload",
            data=body,
            method="POST",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": multipart_type,
                "Accept": "application/json",
            },
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            detail = _error_detail(exc)
            logger.warning(f"receipt_upload_rejected: status={exc.code} detail={detail}")
            raise ReceiptUploadError(detail or "Upload failed", exc.code) from exc
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise ReceiptUploadError("Receipt worker unavailable") from exc

        return parse_match(payload)


def _error_detail(exc: HTTPError) -> str:
    try:
        data = json.loads(exc.read().decode("utf-8"))
    except (ValueError, OSError):
        return ""
    if isinstance(data, dict):
        return str(data.get("detail") or "")
    return ""


def parse_match(payload: object) -> ReceiptMatch:
    if isinstance(payload, dict) and isinstance(payload.get("receipt"), dict):
        payload = payload["receipt"]
    try:
        return ReceiptMatch.model_validate(payload)
    except ValidationError as exc:
        raise ReceiptUploadError("Unexpected receipt worker response") from exc


def receipts_by_transaction(
    receipts: Iterable[ReceiptMatch],
) -> dict[str, list[ReceiptMatch]]:
    mapping: dict[str, list[ReceiptMatch]] = {}
    for receipt in receipts:
        if receipt.matched_transaction_id:
            mapping.setdefault(receipt.matched_transaction_id, []).append(receipt)
    return mapping
