"""Shared fixtures: an in-memory document API behind httpx.MockTransport."""

from __future__ import annotations

import copy
import json
from typing import Any

import httpx
import pytest

from sessionstore.remote import RemoteSessionStore


def _set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


class FakeDocumentStore:
    """Just enough of the document API for the remote session store."""

    def __init__(self) -> None:
        self.documents: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_status: int | None = None
        self.raise_error: Exception | None = None
        self._rev = 0

    def _next_rev(self) -> str:
        self._rev += 1
        return f"rev-{self._rev}"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": {"description": "unavailable"}})

        parts = request.url.path.strip("/").split("/")
        if request.method == "GET" and parts[1:3] == ["data", "doc"]:
            doc = self.documents.get(parts[4])
            return httpx.Response(200, json={"documents": [doc] if doc else []})

        if request.method == "POST" and parts[1:3] == ["data", "mutate"]:
            body = json.loads(request.content)
            results = []
            for mutation in body["mutations"]:
                if "createIfNotExists" in mutation:
                    doc = self.documents.get(mutation["createIfNotExists"]["_id"])
                    if doc is not None:
                        continue
                    doc = copy.deepcopy(mutation["createIfNotExists"])
                    doc["_rev"] = self._next_rev()
                    self.documents[doc["_id"]] = doc
                elif "createOrReplace" in mutation:
                    doc = copy.deepcopy(mutation["createOrReplace"])
                    doc["_rev"] = self._next_rev()
                    self.documents[doc["_id"]] = doc
                elif "patch" in mutation:
                    patch = mutation["patch"]
                    doc = self.documents.get(patch["id"])
                    if doc is None:
                        return httpx.Response(404, json={"error": {"description": "Document not found"}})
                    if patch.get("ifRevisionID") and patch["ifRevisionID"] != doc["_rev"]:
                        return httpx.Response(
                            409, json={"error": {"type": "conflict", "description": "Revision mismatch"}}
                        )
                    for path, value in patch.get("set", {}).items():
                        _set_path(doc, path, copy.deepcopy(value))
                    doc["_rev"] = self._next_rev()
                else:
                    return httpx.Response(400, json={"error": {"description": "Unsupported mutation"}})
                results.append({"id": doc["_id"], "operation": "update", "document": copy.deepcopy(doc)})
            return httpx.Response(200, json={"transactionId": f"tx-{self._rev}", "results": results})

        return httpx.Response(404, json={"error": {"description": "Not found"}})


@pytest.fixture
def docstore() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def make_remote_store(docstore: FakeDocumentStore):
    """Factory, so the client is created inside the test's event loop."""

    def _make() -> RemoteSessionStore:
        return RemoteSessionStore(
            project_id="test",
            dataset="production",
            token="secret-token",
            transport=httpx.MockTransport(docstore.handler),
        )

    return _make
