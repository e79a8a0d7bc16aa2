"""
Bidirectional field mapping between the remote store's JSON and the models.

The server has answered with two spellings over time: snake_case columns
straight from the database (is_multitrack, active_step, user_id) and the
camelCase shape the editor expects (isMultitrack, activeStep). Reads accept
both; writes always use camelCase for track fields, which is what the
update endpoint expects inside "updates".

This is the only place field names are translated. Models and the remote
client go through from_wire()/to_wire() and never spell wire keys themselves.
"""

from typing import Any


# Wire key -> model attribute. Keys not listed pass through unchanged.
_READ_ALIASES: dict[str, str] = {
    "isMultitrack": "is_multitrack",
    "activeStep": "active_step",
    "userId": "owner_id",
    "user_id": "owner_id",
    "ownerId": "owner_id",
    "parentId": "parent",
    "parent_id": "parent",
    "createdAt": "created",
    "created_at": "created",
    "updatedAt": "modified",
    "updated_at": "modified",
}

# Model attribute -> wire key for outgoing payloads.
_WRITE_ALIASES: dict[str, str] = {
    "is_multitrack": "isMultitrack",
    "active_step": "activeStep",
}


def from_wire(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Normalize a server payload to model attribute names.

    When both spellings of a field are present the snake_case model
    name wins, since that is what the database returned most recently.

    Args:
        payload: A single track, step or folder object as sent by the server.

    Returns:
        A new dict keyed by model attribute names.

    Example:
        >>> from_wire({"id": "t1", "isMultitrack": True, "activeStep": 1})
        {'id': 't1', 'is_multitrack': True, 'active_step': 1}
    """
    normalized: dict[str, Any] = {}
    for key, value in payload.items():
        target = _READ_ALIASES.get(key, key)
        if target in normalized and target == key:
            normalized[target] = value
        elif target not in normalized:
            normalized[target] = value
    return normalized


def to_wire(fields: dict[str, Any]) -> dict[str, Any]:
    """
    Convert model attribute names to the server's field names.

    Nested values are made JSON-ready: tuples become lists, and objects
    exposing to_api() (Step, Track, Folder) are serialized through it.

    Args:
        fields: Attribute name -> value, e.g. the updates of a track.

    Returns:
        A new dict ready to be sent as JSON.
    """
    return {_WRITE_ALIASES.get(key, key): _jsonable(value) for key, value in fields.items()}


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_api"):
        return value.to_api()
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value
