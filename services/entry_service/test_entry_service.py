"""Unit tests for the Entry Service."""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from shared.db_operations import RemoteEntryOperations
from services.entry_service import main
from services.entry_service.s3_client import S3Client


@pytest.fixture
def mock_s3():
    s3 = Mock(spec=S3Client)
    s3.put_attachment.side_effect = lambda key, data, content_type: key
    s3.generate_presigned_url.return_value = "https://bucket.s3.amazonaws.com/attachments/a1?sig"
    return s3


@pytest.fixture
def client(tmp_path, mock_s3):
    db_ops = RemoteEntryOperations(database_url=f"sqlite:///{tmp_path / 'remote.db'}")
    db_ops.create_tables()
    main.db_ops = db_ops
    main.s3_client = mock_s3
    with TestClient(main.app) as test_client:
        yield test_client
    main.db_ops = None
    main.s3_client = None


def commit_payload(entry_id="e1", **overrides):
    payload = {
        "entryId": entry_id,
        "rootId": entry_id,
        "parentId": None,
        "text": "hello",
        "attachments": [],
    }
    payload.update(overrides)
    return payload


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["dependencies"]["database"] == "up"


def test_upload_stores_payload_under_key(client, mock_s3):
    response = client.post(
        "/upload",
        params={"key": "a1", "type": "image/png"},
        content=b"png bytes",
    )

    assert response.status_code == 200
    assert response.json() == {"key": "a1", "size": 9}
    mock_s3.put_attachment.assert_called_once_with("a1", b"png bytes", "image/png")


def test_upload_is_idempotent_by_key(client, mock_s3):
    for _ in range(2):
        response = client.post("/upload", params={"key": "a1", "type": "image/png"}, content=b"x")
        assert response.json()["key"] == "a1"

    assert mock_s3.put_attachment.call_count == 2


def test_upload_rejects_empty_body(client):
    response = client.post("/upload", params={"key": "a1"}, content=b"")

    assert response.status_code == 400


def test_upload_rejects_oversized_body(client, monkeypatch):
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "4")

    response = client.post("/upload", params={"key": "a1"}, content=b"12345")

    assert response.status_code == 413


def test_upload_storage_failure_is_unavailable(client, mock_s3):
    mock_s3.put_attachment.side_effect = ClientError(
        {"Error": {"Code": "SlowDown", "Message": "slow down"}}, "PutObject"
    )

    response = client.post("/upload", params={"key": "a1"}, content=b"x")

    assert response.status_code == 503


def test_attachment_url(client, mock_s3):
    response = client.get("/internal/attachments/a1/url")

    assert response.status_code == 200
    assert response.json()["url"].startswith("https://")
    mock_s3.generate_presigned_url.assert_called_once_with("a1", expiration=3600)


def test_create_entry_is_idempotent(client):
    """Two commits with the same entryId yield one logical record."""
    attachments = [{"id": "a1", "key": "a1", "type": "image", "mimeType": "image/png", "name": "a.png"}]

    first = client.post("/internal/entries", json=commit_payload(attachments=attachments))
    second = client.post("/internal/entries", json=commit_payload(attachments=attachments))

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json() == second.json()
    assert main.db_ops.count_entries() == 1


def test_repeated_commit_does_not_overwrite(client):
    client.post("/internal/entries", json=commit_payload(text="original"))

    client.post("/internal/entries", json=commit_payload(text="changed"))

    assert client.get("/internal/entries/e1").json()["text"] == "original"


def test_create_entry_defaults_root_id(client):
    response = client.post("/internal/entries", json={"entryId": "e9", "text": "top level"})

    assert response.status_code == 201
    assert response.json()["rootId"] == "e9"


def test_create_entry_rejects_unresolved_attachment(client):
    attachments = [{"id": "a1", "key": None, "type": "file", "mimeType": "text/plain", "name": "a.txt"}]

    response = client.post("/internal/entries", json=commit_payload(attachments=attachments))

    assert response.status_code == 400


def test_recent_entries_newest_first(client):
    for entry_id in ("e1", "e2", "e3"):
        client.post("/internal/entries", json=commit_payload(entry_id))

    response = client.get("/internal/entries/recent", params={"limit": 2})

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 2
    created = [entry["createdAt"] for entry in data["entries"]]
    assert created == sorted(created, reverse=True)


def test_recent_entries_limit_bounds(client):
    assert client.get("/internal/entries/recent", params={"limit": 0}).status_code == 422
    assert client.get("/internal/entries/recent", params={"limit": 101}).status_code == 422


def test_get_missing_entry(client):
    assert client.get("/internal/entries/missing").status_code == 404
