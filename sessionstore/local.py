"""Single-tenant session store: one JSON file per session on local disk."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from progression.session import Session

from .base import (
    BackendUnavailableError,
    SessionNotFoundError,
    SessionStore,
    StorageError,
    check_session_id,
    set_path,
)

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalSessionStore(SessionStore):
    """Sessions as ``<data_dir>/<session_id>.json``.

    There is only one writer on a device, so revision preconditions are
    not enforced; a counter is still kept so callers see a revision.
    """

    def __init__(self, data_dir: str | Path):
        self._dir = Path(data_dir)

    def _path(self, session_id: str) -> Path:
        return self._dir / f"{check_session_id(session_id)}.json"

    def _load_raw(self, session_id: str) -> dict | None:
        path = self._path(session_id)
        try:
            if not path.exists():
                return None
            raw = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise BackendUnavailableError(f"Could not read {path}: {e}") from e
        except ValueError as e:
            raise StorageError(f"Corrupt session file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise StorageError(f"Corrupt session file {path}: not an object")
        return raw

    def _save_raw(self, session_id: str, doc: dict) -> str:
        path = self._path(session_id)
        try:
            previous = int(doc.get("_rev") or 0)
        except (TypeError, ValueError):
            previous = 0  # file copied from the remote store
        doc["_rev"] = str(previous + 1)
        tmp = path.with_suffix(".json.tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(doc, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise BackendUnavailableError(f"Could not write {path}: {e}") from e
        logger.debug("Saved session %s (rev %s)", session_id, doc["_rev"])
        return doc["_rev"]

    async def read_session(self, session_id: str) -> Session | None:
        raw = self._load_raw(session_id)
        if raw is None:
            return None
        return Session.from_document(raw, session_id=session_id)

    async def create_session(self, session_id: str, session: Session) -> None:
        if self._load_raw(session_id) is not None:
            logger.debug("Session %s already exists", session_id)
            return
        doc = session.to_document()
        doc["sessionId"] = session_id
        self._save_raw(session_id, doc)

    async def write_session(
        self,
        session_id: str,
        session: Session,
        *,
        expected_revision: str | None = None,
    ) -> str | None:
        existing = self._load_raw(session_id) or {}
        doc = session.to_document()
        doc["sessionId"] = session_id
        doc["_rev"] = existing.get("_rev")
        return self._save_raw(session_id, doc)

    async def patch_session_fields(
        self,
        session_id: str,
        fields: Mapping[str, Any],
        *,
        expected_revision: str | None = None,
    ) -> str | None:
        doc = self._load_raw(session_id)
        if doc is None:
            raise SessionNotFoundError(session_id)
        for path, value in fields.items():
            set_path(doc, path, value)
        if "lastUpdated" not in fields:
            doc["lastUpdated"] = _now_iso()
        return self._save_raw(session_id, doc)
