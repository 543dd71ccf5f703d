import json

import pytest
import requests

from vaultsync.providers.anythingllm import client as client_module
from vaultsync.providers.anythingllm.client import AnythingLLMClient, AnythingLLMError


class _FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str | None = None):
        self.status_code = status_code
        self._payload = payload
        if text is not None:
            self.text = text
        else:
            self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _install(monkeypatch, *responses):
    calls: list[dict] = []
    queue = list(responses)

    def _fake_request(method, url, **kwargs):
        calls.append({"method": method, "url": url, **kwargs})
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(client_module.requests, "request", _fake_request)
    return calls


def _client() -> AnythingLLMClient:
    return AnythingLLMClient("http://llm.local:3001/api/", "secret", timeout=7)


def test_requests_carry_bearer_token_and_timeout(monkeypatch):
    calls = _install(monkeypatch, _FakeResponse(200, {"workspaces": [{"name": "Notes", "slug": "notes"}, {"name": "x"}]}))

    items = _client().list_workspaces()

    assert items == [{"name": "Notes", "slug": "notes"}]
    assert calls[0]["method"] == "GET"
    assert calls[0]["url"] == "http://llm.local:3001/api/v1/workspaces"
    assert calls[0]["headers"]["Authorization"] == "Bearer secret"
    assert calls[0]["timeout"] == 7


def test_missing_api_key_fails_before_any_request(monkeypatch):
    calls = _install(monkeypatch)

    with pytest.raises(AnythingLLMError) as err:
        AnythingLLMClient("http://llm.local/api", "").list_workspaces()

    assert err.value.code == "no_api_key"
    assert calls == []


def test_test_auth_reports_rejected_key(monkeypatch):
    _install(monkeypatch, _FakeResponse(403, {"error": "Invalid API Key"}))

    result = _client().test_auth()

    assert result == {"authenticated": False, "message": "Invalid API Key"}


def test_create_folder_treats_existing_folder_as_success(monkeypatch):
    calls = _install(
        monkeypatch,
        _FakeResponse(200, {"success": True, "message": None}),
        _FakeResponse(500, {"success": False, "message": "Folder by that name already exists"}),
    )
    client = _client()

    assert client.create_folder("Obsidian Vault") is True
    assert client.create_folder("Obsidian Vault") is False
    assert calls[0]["json"] == {"name": "Obsidian Vault"}


def test_list_folder_missing_returns_none(monkeypatch):
    calls = _install(monkeypatch, _FakeResponse(404, {"success": False, "message": "Folder not found"}))

    assert _client().list_folder("Obsidian Vault") is None
    assert calls[0]["url"].endswith("/v1/documents/folder/Obsidian%20Vault")


def test_list_folder_server_error_raises(monkeypatch):
    _install(monkeypatch, _FakeResponse(500, None, text="Internal Server Error"))

    with pytest.raises(AnythingLLMError) as err:
        _client().list_folder("Obsidian Vault")

    assert err.value.code == "list_folder_failed"
    assert err.value.status_code == 500


def test_transport_error_is_wrapped(monkeypatch):
    _install(monkeypatch, requests.ConnectionError("refused"))

    with pytest.raises(AnythingLLMError) as err:
        _client().list_folder("Obsidian Vault")

    assert err.value.code == "transport_error"


def test_upload_sends_multipart_and_returns_documents(monkeypatch):
    doc = {"name": "x.md-abc.json", "location": "Obsidian Vault/x.md-abc.json", "title": "x.md"}
    calls = _install(monkeypatch, _FakeResponse(200, {"success": True, "documents": [doc]}))

    result = _client().upload_document("Obsidian Vault", "Projects::x.md", b"body")

    assert result == {"success": True, "documents": [doc]}
    assert calls[0]["url"].endswith("/v1/document/upload/Obsidian%20Vault")
    assert calls[0]["files"]["file"][0] == "Projects::x.md"
    assert calls[0]["files"]["file"][1] == b"body"
    assert "Content-Type" not in calls[0]["headers"]


def test_upload_without_documents_raises(monkeypatch):
    _install(monkeypatch, _FakeResponse(200, {"success": True, "documents": []}))

    with pytest.raises(AnythingLLMError) as err:
        _client().upload_document("Obsidian Vault", "x.md", b"body")

    assert err.value.code == "upload_no_documents"


def test_success_false_is_an_error(monkeypatch):
    _install(monkeypatch, _FakeResponse(200, {"success": False, "message": "move failed"}))

    with pytest.raises(AnythingLLMError) as err:
        _client().move_documents([{"from": "a/x.json", "to": "b/x.json"}])

    assert err.value.code == "move_failed"
    assert err.value.message == "move failed"


def test_remove_folder_missing_returns_false(monkeypatch):
    _install(
        monkeypatch,
        _FakeResponse(404, {"success": False, "message": "Folder not found"}),
        _FakeResponse(200, {"success": True, "message": "Folder removed"}),
    )
    client = _client()

    assert client.remove_folder("obsidian-archive") is False
    assert client.remove_folder("obsidian-archive") is True


def test_update_embeddings_sends_only_present_lists(monkeypatch):
    calls = _install(monkeypatch, _FakeResponse(200, {"workspace": {}}))

    _client().update_workspace_embeddings("my ws", deletes=["Obsidian Vault/x.json"])

    assert calls[0]["url"].endswith("/v1/workspace/my%20ws/update-embeddings")
    assert calls[0]["json"] == {"deletes": ["Obsidian Vault/x.json"]}
