from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Literal, Mapping

Action = Literal["create", "update"]


@dataclass(frozen=True)
class SignedEvent:
    """
    An externally signed social-media event, carried as an opaque bundle.

    The registry never parses, canonicalizes or verifies these fields; they are
    stored and emitted exactly as supplied.
    """

    event_id: str
    pubkey: str
    created_at: int
    kind: int
    content: str
    tags_json: str
    signature: str


@dataclass(frozen=True)
class PubEvent:
    """Audit record published once per successful create or update."""

    action: Action
    token_id: int
    uri: str
    caller: str
    event: SignedEvent
    variant: str = "multi"

    def args(self) -> tuple[Any, ...]:
        """
        The public payload of the record.

        The single-instance registry prefixes the assigned token id and its uri.
        """
        e = self.event
        fields = (
            e.event_id,
            e.pubkey,
            e.created_at,
            e.kind,
            e.content,
            e.tags_json,
            e.signature,
        )
        if self.variant == "single":
            return (self.token_id, self.uri) + fields
        return fields

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "action": self.action,
            "token_id": self.token_id,
            "uri": self.uri,
            "caller": self.caller,
            "variant": self.variant,
        }
        out.update(asdict(self.event))
        return out


def tags_to_json(tags: Any) -> str:
    """Serialize tags the way JSON.stringify does: compact, non-ASCII kept."""
    return json.dumps(tags, ensure_ascii=False, separators=(",", ":"))


def _hex_prefixed(value: str) -> str:
    s = value.strip()
    if s[:2].lower() == "0x":
        return s
    return f"0x{s}"


def _require(obj: Mapping[str, Any], key: str) -> Any:
    if key not in obj or obj[key] is None:
        raise ValueError(f"event is missing required field: {key}")
    return obj[key]


def _require_int(obj: Mapping[str, Any], key: str) -> int:
    value = _require(obj, key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"event field {key} must be an integer")
    return value


def _require_str(obj: Mapping[str, Any], key: str) -> str:
    value = _require(obj, key)
    if not isinstance(value, str):
        raise ValueError(f"event field {key} must be a string")
    return value


def signed_event_from_nostr(obj: Mapping[str, Any]) -> SignedEvent:
    """
    Build a SignedEvent from a Nostr event object (id, pubkey, created_at, kind,
    content, tags, sig).

    id and pubkey get a 0x prefix when they lack one. tags are serialized
    compactly unless they are already a string. Nothing is verified.
    """
    if not isinstance(obj, Mapping):
        raise ValueError("event must be a JSON object")

    tags = _require(obj, "tags")
    tags_json = tags if isinstance(tags, str) else tags_to_json(tags)

    return SignedEvent(
        event_id=_hex_prefixed(_require_str(obj, "id")),
        pubkey=_hex_prefixed(_require_str(obj, "pubkey")),
        created_at=_require_int(obj, "created_at"),
        kind=_require_int(obj, "kind"),
        content=_require_str(obj, "content"),
        tags_json=tags_json,
        signature=_require_str(obj, "sig"),
    )


def signed_event_from_dict(obj: Mapping[str, Any]) -> SignedEvent:
    """Rebuild a SignedEvent from its own field names, e.g. a stored row."""
    return SignedEvent(
        event_id=str(obj["event_id"]),
        pubkey=str(obj["pubkey"]),
        created_at=int(obj["created_at"]),
        kind=int(obj["kind"]),
        content=str(obj["content"]),
        tags_json=str(obj["tags_json"]),
        signature=str(obj["signature"]),
    )
