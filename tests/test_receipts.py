import io
import json
from urllib.error import HTTPError, URLError

import pytest

import receipts
from receipts import (
    ReceiptUploadClient,
    ReceiptUploadError,
    encode_multipart,
    parse_match,
    receipts_by_transaction,
)
from schemas import ReceiptMatch


class _Response(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_upload_posts_multipart_with_bearer_token(monkeypatch) -> None:
    captured = {}

    def fake_urlopen(req, timeout):
        captured["url"] = req.full_url
        captured["headers"] = dict(req.header_items())
        captured["body"] = req.data
        captured["timeout"] = timeout
        payload = {
            "id": "r-1",
            "vendor": "Office Depot",
            "amount": 80.0,
            "date": "2024-02-01",
            "match_status": "matched",
            "match_confidence": 0.93,
            "ocr_confidence": 0.88,
            "matched_transaction_id": "t2",
        }
        return _Response(json.dumps(payload).encode())

    monkeypatch.setattr(receipts, "urlopen", fake_urlopen)
    client = ReceiptUploadClient("http://worker.test/", timeout=5)

    match = client.upload(
        filename="receipt.jpg",
        content=b"\xff\xd8jpeg",
        content_type="image/jpeg",
        entity_id="ent-1",
        tenant_id="ten-1",
        token="abc123",
    )

    assert captured["url"] == "http://worker.test/api/receipts/upload"
    assert captured["headers"]["Authorization"] == "Bearer abc123"
    assert captured["headers"]["Content-type"].startswith("multipart/form-data; boundary=")
    assert b'name="entity_id"\r\n\r\nent-1' in captured["body"]
    assert b'filename="receipt.jpg"' in captured["body"]
    assert captured["timeout"] == 5
    assert match.matched_transaction_id == "t2"
    assert match.match_status == "matched"


def test_worker_rejection_carries_status_and_detail(monkeypatch) -> None:
    def fake_urlopen(req, timeout):
        body = io.BytesIO(json.dumps({"detail": "Unsupported file type"}).encode())
        raise HTTPError(req.full_url, 415, "Unsupported", {}, body)

    monkeypatch.setattr(receipts, "urlopen", fake_urlopen)
    client = ReceiptUploadClient("http://worker.test", timeout=5)

    with pytest.raises(ReceiptUploadError) as excinfo:
        client.upload(
            filename="notes.txt",
            content=b"hi",
            content_type="text/plain",
            entity_id="ent-1",
            tenant_id="ten-1",
            token="abc123",
        )

    assert excinfo.value.status_code == 415
    assert str(excinfo.value) == "Unsupported file type"


def test_unreachable_worker_is_a_502(monkeypatch) -> None:
    def fake_urlopen(req, timeout):
        raise URLError("connection refused")

    monkeypatch.setattr(receipts, "urlopen", fake_urlopen)
    client = ReceiptUploadClient("http://worker.test", timeout=5)

    with pytest.raises(ReceiptUploadError) as excinfo:
        client.upload(
            filename="r.png",
            content=b"png",
            content_type="image/png",
            entity_id="ent-1",
            tenant_id="ten-1",
            token="abc123",
        )

    assert excinfo.value.status_code == 502


def test_missing_ids_are_rejected_before_sending() -> None:
    client = ReceiptUploadClient("http://worker.test", timeout=5)

    with pytest.raises(ValueError):
        client.upload(
            filename="r.png",
            content=b"png",
            content_type="image/png",
            entity_id="",
            tenant_id="ten-1",
            token="abc123",
        )


def test_parse_match_accepts_wrapped_payload() -> None:
    match = parse_match({"receipt": {"vendor": "Lyft", "match_status": "pending"}})

    assert match.vendor == "Lyft"
    assert match.matched_transaction_id is None
    with pytest.raises(ReceiptUploadError):
        parse_match({"match_confidence": "very"})


def test_receipts_join_by_matched_transaction() -> None:
    matches = [
        ReceiptMatch(id="r1", matched_transaction_id="t1"),
        ReceiptMatch(id="r2", matched_transaction_id="t1"),
        ReceiptMatch(id="r3", matched_transaction_id="t2"),
        ReceiptMatch(id="r4"),
    ]

    joined = receipts_by_transaction(matches)

    assert {k: [r.id for r in v] for k, v in joined.items()} == {
        "t1": ["r1", "r2"],
        "t2": ["r3"],
    }


def test_multipart_body_layout() -> None:
    body, content_type = encode_multipart(
        {"entity_id": "e"}, 'a"b.pdf', b"%PDF", "application/pdf", boundary="XYZ"
    )

    assert content_type == "multipart/form-data; boundary=XYZ"
    assert body.startswith(b"--XYZ\r\n")
    assert b'filename="ab.pdf"' in body
    assert body.endswith(b"--XYZ--\r\n")
