from typing import Any
from urllib.parse import quote

import requests

DEFAULT_BASE = "http://localhost:3001/api"


class AnythingLLMError(RuntimeError):
    """Non-success response from the AnythingLLM developer API."""

    def __init__(self, code: str, status_code: int | None = None, message: str = ""):
        detail = f"{code}: status={status_code} msg={message}" if status_code is not None else code
        super().__init__(detail)
        self.code = code
        self.status_code = status_code
        self.message = message


def _message_of(payload: Any, fallback: str = "") -> str:
    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


class AnythingLLMClient:
    """Thin wrapper over the AnythingLLM `/v1` document and workspace endpoints.

    No retries: every call maps one HTTP request to a return value or an
    ``AnythingLLMError``. The idempotent folder operations report "already
    done" through their return value instead of raising.
    """

    def __init__(self, base_url: str, api_key: str, timeout: int = 30):
        self.base_url = (base_url or DEFAULT_BASE).rstrip("/")
        self.api_key = api_key or ""
        self.timeout = timeout

    def _headers(self, content_type: str | None = "application/json") -> dict[str, str]:
        if not self.api_key:
            raise AnythingLLMError("no_api_key")
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        content_type: str | None = "application/json",
        **kwargs: Any,
    ) -> tuple[int, Any]:
        try:
            res = requests.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(content_type),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise AnythingLLMError("transport_error", None, str(e)) from e

        text = (res.text or "").strip()
        try:
            payload = res.json() if text else {}
        except ValueError:
            payload = {"message": text[:200]}
        return res.status_code, payload

    def _check(self, code: str, status: int, payload: Any) -> dict[str, Any]:
        if status >= 400:
            raise AnythingLLMError(code, status, _message_of(payload))
        if not isinstance(payload, dict):
            raise AnythingLLMError("invalid_response", status)
        if payload.get("success") is False:
            raise AnythingLLMError(code, status, _message_of(payload))
        return payload

    def test_auth(self) -> dict[str, Any]:
        status, payload = self._request("GET", "/v1/auth")
        if status in (401, 403):
            return {"authenticated": False, "message": _message_of(payload)}
        data = self._check("auth_check_failed", status, payload)
        return {"authenticated": bool(data.get("authenticated"))}

    def list_workspaces(self) -> list[dict[str, str]]:
        status, payload = self._request("GET", "/v1/workspaces")
        data = self._check("list_workspaces_failed", status, payload)
        items = data.get("workspaces") or []
        return [
            {"name": str(ws.get("name") or ""), "slug": str(ws.get("slug") or "")}
            for ws in items
            if isinstance(ws, dict) and ws.get("slug")
        ]

    def create_folder(self, name: str) -> bool:
        """Return True when created, False when the folder already existed."""
        status, payload = self._request("POST", "/v1/document/create-folder", json={"name": name})
        if "already exists" in _message_of(payload).lower():
            return False
        self._check("create_folder_failed", status, payload)
        return True

    def list_folder(self, name: str) -> list[dict[str, Any]] | None:
        """Documents stored in folder ``name``; None when the folder does not exist."""
        status, payload = self._request("GET", f"/v1/documents/folder/{quote(name, safe='')}")
        if status == 404:
            return None
        data = self._check("list_folder_failed", status, payload)
        docs = data.get("documents") or []
        return [doc for doc in docs if isinstance(doc, dict)]

    def upload_document(self, folder: str, file_name: str, content: bytes) -> dict[str, Any]:
        files = {"file": (file_name, content, "application/octet-stream")}
        status, payload = self._request(
            "POST",
            f"/v1/document/upload/{quote(folder, safe='')}",
            content_type=None,
            files=files,
        )
        data = self._check("upload_failed", status, payload)
        documents = [doc for doc in (data.get("documents") or []) if isinstance(doc, dict)]
        if not documents:
            raise AnythingLLMError("upload_no_documents", status, _message_of(data))
        return {"success": True, "documents": documents}

    def move_documents(self, moves: list[dict[str, str]]) -> None:
        status, payload = self._request("POST", "/v1/document/move-files", json={"files": moves})
        self._check("move_failed", status, payload)

    def remove_folder(self, name: str) -> bool:
        """Return True when removed, False when there was nothing to remove."""
        status, payload = self._request("DELETE", "/v1/document/remove-folder", json={"name": name})
        if status == 404 or "not found" in _message_of(payload).lower():
            return False
        self._check("remove_folder_failed", status, payload)
        return True

    def update_workspace_embeddings(
        self,
        workspace_slug: str,
        adds: list[str] | None = None,
        deletes: list[str] | None = None,
    ) -> None:
        body: dict[str, list[str]] = {}
        if adds:
            body["adds"] = list(adds)
        if deletes:
            body["deletes"] = list(deletes)
        status, payload = self._request(
            "POST",
            f"/v1/workspace/{quote(workspace_slug, safe='')}/update-embeddings",
            json=body,
        )
        self._check("update_embeddings_failed", status, payload)
