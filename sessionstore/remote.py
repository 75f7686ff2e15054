"""Multi-tenant session store backed by a hosted document API.

Speaks the Sanity HTTP API: documents are read from ``/data/doc`` and
written through ``/data/mutate``. Full writes with a known revision and
narrow patches both go out as ``patch`` mutations so the server can
enforce ``ifRevisionID``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

import httpx

from progression.session import Session

from .base import (
    BackendUnavailableError,
    ConflictError,
    SessionNotFoundError,
    SessionStore,
    StorageError,
    check_session_id,
)
from .documents import to_remote_document, to_remote_fields

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-01-01"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error_message(body: dict, status_code: int) -> str:
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("description") or error.get("type") or f"HTTP {status_code}"
    if error:
        return str(error)
    return body.get("message", f"HTTP {status_code}")


class RemoteSessionStore(SessionStore):
    """Async session store over the document API.

    Usage::

        async with RemoteSessionStore("abc123", "production", token) as store:
            session = await store.read_session("family-42")
    """

    def __init__(
        self,
        project_id: str,
        dataset: str,
        token: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 15.0,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not token:
            raise StorageError("Remote session store requires an API token")
        base_url = base_url or f"https://{project_id}.api.sanity.io/v{api_version}"
        self._dataset = dataset
        # Only ever send the token to the configured API host
        self._allowed_host = httpx.URL(base_url).host
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ── Request helpers ─────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        def _json_or_empty(resp: httpx.Response) -> dict[str, Any]:
            if not resp.content:
                return {}
            try:
                data = resp.json()
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}

        url = self._client.build_request(method, path).url
        if url.host != self._allowed_host:
            raise StorageError(f"Refusing to send credentials to {url.host}")

        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Document store unreachable: {e}") from e

        body = _json_or_empty(resp)
        if resp.status_code == 409:
            raise ConflictError(_error_message(body, 409))
        if resp.status_code == 429 or resp.status_code >= 500:
            raise BackendUnavailableError(
                _error_message(body, resp.status_code), status_code=resp.status_code
            )
        if resp.status_code >= 400:
            raise StorageError(_error_message(body, resp.status_code), status_code=resp.status_code)
        return body

    async def _mutate(self, mutations: list[dict]) -> str | None:
        body = await self._request(
            "POST",
            f"/data/mutate/{self._dataset}",
            params={"returnDocuments": "true", "visibility": "sync"},
            json={"mutations": mutations},
        )
        for result in body.get("results", []):
            document = result.get("document") or {}
            if document.get("_rev"):
                return document["_rev"]
        return body.get("transactionId")

    # ── SessionStore ────────────────────────────────────────────

    async def read_session(self, session_id: str) -> Session | None:
        check_session_id(session_id)
        try:
            body = await self._request("GET", f"/data/doc/{self._dataset}/{session_id}")
        except StorageError as e:
            if e.status_code == 404:
                return None
            raise
        documents = [d for d in body.get("documents", []) if isinstance(d, dict)]
        if not documents:
            logger.debug("No remote session %s", session_id)
            return None
        return Session.from_document(documents[0], session_id=session_id)

    async def create_session(self, session_id: str, session: Session) -> None:
        check_session_id(session_id)
        await self._mutate([{"createIfNotExists": to_remote_document(session, session_id)}])
        logger.debug("Created remote session %s if missing", session_id)

    async def write_session(
        self,
        session_id: str,
        session: Session,
        *,
        expected_revision: str | None = None,
    ) -> str | None:
        check_session_id(session_id)
        doc = to_remote_document(session, session_id)
        if expected_revision is None:
            mutation = {"createOrReplace": doc}
        else:
            fields = {k: v for k, v in doc.items() if not k.startswith("_")}
            mutation = {"patch": {"id": session_id, "ifRevisionID": expected_revision, "set": fields}}
        try:
            revision = await self._mutate([mutation])
        except ConflictError as e:
            raise ConflictError(str(e), session_id=session_id) from e
        logger.debug("Wrote remote session %s (rev %s)", session_id, revision)
        return revision

    async def patch_session_fields(
        self,
        session_id: str,
        fields: Mapping[str, Any],
        *,
        expected_revision: str | None = None,
    ) -> str | None:
        check_session_id(session_id)
        to_set = to_remote_fields(fields)
        to_set.setdefault("lastUpdated", _now_iso())
        patch: dict[str, Any] = {"id": session_id, "set": to_set}
        if expected_revision is not None:
            patch["ifRevisionID"] = expected_revision
        try:
            revision = await self._mutate([{"patch": patch}])
        except ConflictError as e:
            raise ConflictError(str(e), session_id=session_id) from e
        except StorageError as e:
            if e.status_code == 404:
                raise SessionNotFoundError(session_id) from e
            raise
        logger.debug("Patched remote session %s: %s", session_id, sorted(fields))
        return revision
