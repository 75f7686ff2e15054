"""Session persistence: one contract, a local and a remote backend."""

from __future__ import annotations

import logging
from pathlib import Path

from .base import (
    BackendUnavailableError,
    ConflictError,
    SessionNotFoundError,
    SessionStore,
    StorageError,
)
from .local import LocalSessionStore
from .remote import RemoteSessionStore

logger = logging.getLogger(__name__)

__all__ = [
    "BackendUnavailableError",
    "ConflictError",
    "LocalSessionStore",
    "RemoteSessionStore",
    "SessionNotFoundError",
    "SessionStore",
    "StorageError",
    "create_session_store",
]


def create_session_store(cfg: dict) -> SessionStore:
    """Pick the configured backend. Called once at start-up."""
    storage_cfg = cfg.get("storage", {}) or {}
    backend = storage_cfg.get("backend", "local")

    if backend == "local":
        data_dir = (storage_cfg.get("local", {}) or {}).get("data_dir", "data/sessions")
        logger.debug("Using local session store at %s", data_dir)
        return LocalSessionStore(Path(data_dir))

    if backend == "remote":
        remote_cfg = storage_cfg.get("remote", {}) or {}
        token = cfg.get("_secrets", {}).get("docstore_api_token", "")
        logger.debug("Using remote session store (dataset %s)", remote_cfg.get("dataset"))
        return RemoteSessionStore(
            project_id=remote_cfg.get("project_id", ""),
            dataset=remote_cfg.get("dataset", "production"),
            token=token,
            api_version=str(remote_cfg.get("api_version", "2024-01-01")),
            timeout=float(remote_cfg.get("timeout", 15.0)),
        )

    raise StorageError(f"Unknown storage backend: {backend!r}")
