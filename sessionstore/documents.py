"""Wire shape of session documents in the remote document store.

The remote store cannot hold objects with arbitrary keys in a way its
editors and patches handle well, so maps are written as arrays of keyed
items and every object in an array carries a stable ``_key``. The read
side (``Session.from_document``) accepts both shapes.
"""

from __future__ import annotations

from typing import Any, Mapping

from progression.session import Session

DOCUMENT_TYPE = "userSession"

# field -> (item key field, item value field, _key prefix)
_KEYED_MAPS = {
    "topicUnlocks": ("topic", "day", "topic-"),
    "decryptionAttempts": ("challengeId", "attemptCount", "decrypt-"),
    "failedAttempts": ("day", "attemptCount", "failed-"),
}

# field -> item field used to build the _key
_KEYED_LISTS = {
    "earnedBadges": ("badgeId", "badge-"),
    "collectedSymbols": ("symbolId", "symbol-"),
    "bonusOppdragBadges": ("day", "bonus-"),
    "eventyrBadges": ("eventyrId", "eventyr-"),
}


def _keyed_map(value: Mapping[str, Any], key_field: str, value_field: str, prefix: str) -> list[dict]:
    items = []
    for key, count in value.items():
        item_key: Any = int(key) if key_field == "day" else key
        items.append({"_key": f"{prefix}{key}", key_field: item_key, value_field: count})
    return items


def _keyed_list(value: list, id_field: str, prefix: str) -> list[dict]:
    return [{"_key": f"{prefix}{item.get(id_field)}", **item} for item in value]


def _submitted_codes(value: list) -> list[dict]:
    # The same code may legitimately appear twice; position keeps keys unique
    return [{"_key": f"code-{i}", **item} for i, item in enumerate(value)]


def to_remote_value(field: str, value: Any) -> Any:
    if field in _KEYED_MAPS and isinstance(value, Mapping):
        return _keyed_map(value, *_KEYED_MAPS[field])
    if field in _KEYED_LISTS and isinstance(value, list):
        return _keyed_list(value, *_KEYED_LISTS[field])
    if field == "submittedCodes" and isinstance(value, list):
        return _submitted_codes(value)
    return value


def to_remote_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a patch (document field -> value) to the remote wire shape."""
    return {path: to_remote_value(path, value) for path, value in fields.items()}


def to_remote_document(session: Session, session_id: str) -> dict[str, Any]:
    doc = to_remote_fields(session.to_document())
    doc["sessionId"] = session_id
    doc["_id"] = session_id
    doc["_type"] = DOCUMENT_TYPE
    return doc
