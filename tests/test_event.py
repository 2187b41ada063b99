from __future__ import annotations

import json
import unittest

from etch_registry.event import PubEvent, signed_event_from_nostr, tags_to_json

_NOSTR_EVENT = {
    "id": "d283f3979d00cb5493f2da07819695bc299fba24aa6e0bacb484fe07a2fc0ae0",
    "pubkey": "4659db3b248cae1bb6856ee63308af6c9c15239e3bb76f425fbacdd84bb15330",
    "created_at": 1736063047,
    "kind": 1,
    "content": "Hello, world!",
    "tags": [
        [
            "imeta",
            "url https://nostr.build/i/my-image.jpg",
            "m image/jpeg",
            "dim 3024x4032",
            "alt A scenic photo overlooking the coast of Costa Rica",
        ]
    ],
    "sig": "c3cea60c7e452527daae9d5eb78805f44aac272a8075eeb6779be011e572fff2",
}


class TestSignedEventFromNostr(unittest.TestCase):
    def test_prefixes_ids_and_serializes_tags(self) -> None:
        event = signed_event_from_nostr(_NOSTR_EVENT)

        self.assertEqual(event.event_id, "0x" + _NOSTR_EVENT["id"])
        self.assertEqual(event.pubkey, "0x" + _NOSTR_EVENT["pubkey"])
        self.assertEqual(event.signature, _NOSTR_EVENT["sig"])
        self.assertEqual(event.created_at, 1736063047)
        self.assertEqual(
            event.tags_json,
            '[["imeta","url https://nostr.build/i/my-image.jpg","m image/jpeg",'
            '"dim 3024x4032","alt A scenic photo overlooking the coast of Costa Rica"]]',
        )
        self.assertEqual(json.loads(event.tags_json), _NOSTR_EVENT["tags"])

    def test_keeps_existing_prefix_and_string_tags(self) -> None:
        raw = dict(_NOSTR_EVENT, id="0xabc", tags="not json at all")
        event = signed_event_from_nostr(raw)

        self.assertEqual(event.event_id, "0xabc")
        self.assertEqual(event.tags_json, "not json at all")

    def test_empty_tags(self) -> None:
        event = signed_event_from_nostr(dict(_NOSTR_EVENT, tags=[]))
        self.assertEqual(event.tags_json, "[]")

    def test_rejects_missing_or_mistyped_fields(self) -> None:
        missing = {k: v for k, v in _NOSTR_EVENT.items() if k != "sig"}
        with self.assertRaises(ValueError):
            signed_event_from_nostr(missing)
        with self.assertRaises(ValueError):
            signed_event_from_nostr(dict(_NOSTR_EVENT, kind="1"))
        with self.assertRaises(ValueError):
            signed_event_from_nostr(dict(_NOSTR_EVENT, created_at=True))
        with self.assertRaises(ValueError):
            signed_event_from_nostr(["not", "a", "mapping"])  # type: ignore[arg-type]


class TestPubEvent(unittest.TestCase):
    def test_args_and_dict(self) -> None:
        event = signed_event_from_nostr(_NOSTR_EVENT)
        multi = PubEvent(action="create", token_id=3, uri="u", caller="0xa", event=event)
        single = PubEvent(
            action="create", token_id=3, uri="u", caller="0xa", event=event, variant="single"
        )

        self.assertEqual(multi.args()[0], event.event_id)
        self.assertEqual(single.args()[:3], (3, "u", event.event_id))

        data = multi.to_dict()
        self.assertEqual(data["token_id"], 3)
        self.assertEqual(data["tags_json"], event.tags_json)
        self.assertEqual(data["signature"], event.signature)

    def test_tags_to_json_keeps_unicode(self) -> None:
        self.assertEqual(tags_to_json([["t", "café"]]), '[["t","café"]]')


if __name__ == "__main__":
    unittest.main()
