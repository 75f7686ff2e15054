"""Family credentials: access codes mapped to sessions (SQLite)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from progression.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_KID_NAMES = 4
MAX_FAMILY_NAME = 50
MAX_EVENT_TEXT = 50


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_code(code: str) -> str:
    return (code or "").strip().upper()


@dataclass
class CalendarEvent:
    day: int
    event: str


@dataclass
class Credential:
    session_id: str
    kid_code: str
    parent_code: str
    family_name: str = ""
    kid_names: list[str] = field(default_factory=list)
    parent_email: str = ""
    email_subscription: bool = False
    created_at: str = ""
    calendar_events: list[CalendarEvent] = field(default_factory=list)

    def validate(self) -> None:
        kid_names = [n.strip() for n in self.kid_names if n and n.strip()]
        if not 1 <= len(kid_names) <= MAX_KID_NAMES:
            raise ValidationError(
                f"Between 1 and {MAX_KID_NAMES} kid names required", field="kid_names"
            )
        if len(self.family_name) > MAX_FAMILY_NAME:
            raise ValidationError(
                f"Family name longer than {MAX_FAMILY_NAME} characters", field="family_name"
            )
        kid, parent = _normalize_code(self.kid_code), _normalize_code(self.parent_code)
        if not kid or not parent:
            raise ValidationError("Both access codes are required", field="codes")
        if kid == parent:
            raise ValidationError("Kid and parent codes must differ", field="codes")
        for event in self.calendar_events:
            if not 1 <= event.day <= 24:
                raise ValidationError(f"Calendar event day {event.day} outside 1..24", field="calendar_events")
            if not event.event.strip() or len(event.event) > MAX_EVENT_TEXT:
                raise ValidationError(
                    f"Calendar event text must be 1..{MAX_EVENT_TEXT} characters", field="calendar_events"
                )


_SCHEMA = """
CREATE TABLE IF NOT EXISTS credentials (
    session_id TEXT PRIMARY KEY,
    kid_code TEXT UNIQUE,
    parent_code TEXT UNIQUE,
    family_name TEXT,
    kid_names TEXT,           -- JSON list
    parent_email TEXT,
    email_subscription INTEGER DEFAULT 0,
    created_at TEXT,
    calendar_events TEXT      -- JSON list of {day, event}
);
"""


class CredentialDirectory:
    """Lookup of sessions by access code."""

    def __init__(self, db_path: str | Path):
        self._path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        logger.debug("Credential DB ready at %s", self._path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> CredentialDirectory:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @staticmethod
    def _row_to_credential(row: dict) -> Credential:
        events = json.loads(row.get("calendar_events") or "[]")
        return Credential(
            session_id=row["session_id"],
            kid_code=row["kid_code"],
            parent_code=row["parent_code"],
            family_name=row.get("family_name") or "",
            kid_names=json.loads(row.get("kid_names") or "[]"),
            parent_email=row.get("parent_email") or "",
            email_subscription=bool(row.get("email_subscription")),
            created_at=row.get("created_at") or "",
            calendar_events=[CalendarEvent(day=int(e["day"]), event=e["event"]) for e in events],
        )

    async def _fetch(self, query: str, params: tuple = ()) -> list[dict]:
        cursor = await self._db.execute(query, params)
        rows = await cursor.fetchall()
        cols = [d[0] for d in cursor.description]
        return [dict(zip(cols, row)) for row in rows]

    async def register(self, credential: Credential) -> Credential:
        credential.validate()
        credential.kid_code = _normalize_code(credential.kid_code)
        credential.parent_code = _normalize_code(credential.parent_code)
        credential.kid_names = [n.strip() for n in credential.kid_names if n and n.strip()]
        credential.created_at = credential.created_at or _now_iso()

        # Codes must not collide with any other family's codes, in either role
        clashes = await self._fetch(
            "SELECT session_id FROM credentials WHERE session_id != ? AND "
            "(kid_code IN (?, ?) OR parent_code IN (?, ?))",
            (
                credential.session_id,
                credential.kid_code,
                credential.parent_code,
                credential.kid_code,
                credential.parent_code,
            ),
        )
        if clashes:
            raise ValidationError("Access code already in use", field="codes")

        await self._db.execute(
            "INSERT INTO credentials (session_id, kid_code, parent_code, family_name, kid_names, "
            "parent_email, email_subscription, created_at, calendar_events) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(session_id) DO UPDATE SET "
            "kid_code = excluded.kid_code, parent_code = excluded.parent_code, "
            "family_name = excluded.family_name, kid_names = excluded.kid_names, "
            "parent_email = excluded.parent_email, email_subscription = excluded.email_subscription, "
            "calendar_events = excluded.calendar_events",
            (
                credential.session_id,
                credential.kid_code,
                credential.parent_code,
                credential.family_name,
                json.dumps(credential.kid_names, ensure_ascii=False),
                credential.parent_email,
                int(credential.email_subscription),
                credential.created_at,
                json.dumps(
                    [{"day": e.day, "event": e.event} for e in credential.calendar_events],
                    ensure_ascii=False,
                ),
            ),
        )
        await self._db.commit()
        logger.info("Registered credentials for session %s", credential.session_id)
        return credential

    async def find_session_id_by_access_code(self, code: str) -> str | None:
        wanted = _normalize_code(code)
        if not wanted:
            return None
        rows = await self._fetch(
            "SELECT session_id FROM credentials WHERE kid_code = ? OR parent_code = ? LIMIT 1",
            (wanted, wanted),
        )
        return rows[0]["session_id"] if rows else None

    async def get(self, session_id: str) -> Credential | None:
        rows = await self._fetch("SELECT * FROM credentials WHERE session_id = ?", (session_id,))
        return self._row_to_credential(rows[0]) if rows else None

    async def list_subscribed(self) -> list[Credential]:
        rows = await self._fetch(
            "SELECT * FROM credentials WHERE email_subscription = 1 AND parent_email != '' "
            "ORDER BY created_at ASC"
        )
        return [self._row_to_credential(r) for r in rows]
