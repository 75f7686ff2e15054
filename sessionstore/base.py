"""Session store contract shared by the local and remote backends."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Mapping

from progression.session import Session

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class StorageError(Exception):
    """Raised when a session store cannot complete an operation."""

    def __init__(self, message: str, retryable: bool = False, status_code: int = 0):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class SessionNotFoundError(StorageError):
    """No session exists for the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}", status_code=404)


class BackendUnavailableError(StorageError):
    """Transient I/O failure; the caller may retry."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message, retryable=True, status_code=status_code)


class ConflictError(StorageError):
    """Revision precondition failed; re-read the session and retry."""

    def __init__(self, message: str, session_id: str = ""):
        self.session_id = session_id
        super().__init__(message, retryable=True, status_code=409)


def check_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not _SESSION_ID_RE.match(session_id):
        raise StorageError(f"Invalid session id: {session_id!r}")
    return session_id


class SessionStore(ABC):
    """Key-addressed session documents.

    ``create_session`` never overwrites. ``write_session`` replaces the whole document. ``patch_session_fields``
    sets only the given document fields (dotted paths such as
    ``crisisStatus.antenna`` address nested keys) plus ``lastUpdated``.
    Both return the new revision when the backend tracks one.
    """

    @abstractmethod
    async def read_session(self, session_id: str) -> Session | None:
        ...

    @abstractmethod
    async def create_session(self, session_id: str, session: Session) -> None:
        """Store ``session`` unless a document for ``session_id`` already exists."""

    @abstractmethod
    async def write_session(
        self,
        session_id: str,
        session: Session,
        *,
        expected_revision: str | None = None,
    ) -> str | None:
        ...

    @abstractmethod
    async def patch_session_fields(
        self,
        session_id: str,
        fields: Mapping[str, Any],
        *,
        expected_revision: str | None = None,
    ) -> str | None:
        ...

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> SessionStore:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()


def set_path(doc: dict, path: str, value: Any) -> None:
    """Set ``value`` at a dotted path, creating intermediate objects."""
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        nested = target.get(part)
        if isinstance(nested, str):
            # Older clients stored some objects as JSON text
            try:
                nested = json.loads(nested)
            except ValueError:
                nested = None
            if isinstance(nested, dict):
                target[part] = nested
        if not isinstance(nested, dict):
            nested = {}
            target[part] = nested
        target = nested
    target[parts[-1]] = value
