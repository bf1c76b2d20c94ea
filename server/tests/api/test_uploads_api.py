import pytest

from atelier.core.config import settings
from atelier.main import app
from atelier.utils.storage import build_object_key, get_storage

from conftest import ALICE


class FakeStorage:

    def __init__(self):
        self.stored = []

    def store_attachment(self, owner_id, file_name, data, mime_type):
        self.stored.append((owner_id, file_name, data, mime_type))
        return {
            "attachment_url": f"https://cdn.example.com/messages/{owner_id}/{file_name}",
            "attachment_type": mime_type,
            "attachment_name": file_name,
        }


@pytest.fixture
def storage(client):
    fake = FakeStorage()
    app.dependency_overrides[get_storage] = lambda: fake
    return fake


def test_upload_returns_attachment_fields(client, storage, auth_headers):
    files = {"file": ("wall.png", b"\x89PNG fake", "image/png")}

    resp = client.post("/uploads", files=files, headers=auth_headers(ALICE))

    assert resp.status_code == 201
    assert resp.json() == {
        "attachment_url": f"https://cdn.example.com/messages/{ALICE['_id']}/wall.png",
        "attachment_type": "image/png",
        "attachment_name": "wall.png",
    }
    assert storage.stored[0][0] == ALICE["_id"]


def test_upload_rejects_disallowed_type(client, storage, auth_headers):
    files = {"file": ("run.sh", b"#!/bin/sh", "application/x-sh")}

    resp = client.post("/uploads", files=files, headers=auth_headers(ALICE))

    assert resp.status_code == 422
    assert storage.stored == []


def test_upload_rejects_oversized_and_empty_files(client, storage, auth_headers, monkeypatch):
    empty = client.post("/uploads", files={"file": ("a.pdf", b"", "application/pdf")}, headers=auth_headers(ALICE))
    assert empty.status_code == 422

    monkeypatch.setattr(settings, "MAX_ATTACHMENT_MB", 0)
    big = client.post("/uploads", files={"file": ("a.pdf", b"%PDF", "application/pdf")}, headers=auth_headers(ALICE))
    assert big.status_code == 422
    assert storage.stored == []


def test_object_keys_are_sanitized_and_unique():
    first = build_object_key("messages/u1", "my quote (final).pdf")
    second = build_object_key("messages/u1", "my quote (final).pdf")

    assert first.startswith("messages/u1/")
    assert first.endswith("-my_quote_final_.pdf")
    assert first != second
