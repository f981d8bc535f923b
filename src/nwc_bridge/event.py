"""
Defines classes for handling events
"""

import hashlib
import time
import json
from typing import Optional
from coincurve import PrivateKey, PublicKeyXOnly

from .errors import MalformedEvent
from .keys import get_hex_pubkey

# EventTags and Event are adapted from
# https://github.com/monty888/monstr/blob/cb728f1710dc47c8289ab0994f15c24e844cebc4/src/monstr/event/event.py


class EventTags:
    """read-only helpers over an event's tag list"""

    def __init__(self, tags):
        self.tags = tags

    @property
    def tags(self):
        return self._tags

    @tags.setter
    def tags(self, tags):
        # relays sometimes hand tags over as a json string
        if isinstance(tags, str):
            try:
                tags = json.loads(tags)
            except json.JSONDecodeError:
                tags = None

        if tags is None:
            tags = []
        self._tags = tags

    def get_tags(self, tag_name: str):
        """every tag named tag_name, minus the name, skipping malformed entries"""
        return [t[1:] for t in self._tags
                if isinstance(t, list) and len(t) >= 2 and t[0] == tag_name]

    def get_tags_value(self, tag_name: str) -> list:
        return [t[0] for t in self.get_tags(tag_name)]

    def get_tag_value_pos(self, tag_name: str, pos: int = 0,
                          default: Optional[str] = None) -> Optional[str]:
        values = self.get_tags_value(tag_name)
        return values[pos] if len(values) > pos else default

    @property
    def e_tags(self):
        """referenced event ids of the right length"""
        return [t for t in self.get_tags_value('e')
                if isinstance(t, str) and len(t) == 64]

    @property
    def p_tags(self):
        """referenced pubkeys of the right length"""
        return [t for t in self.get_tags_value('p')
                if isinstance(t, str) and len(t) == 64]


def _is_hex(value, size: int) -> bool:
    if not isinstance(value, str) or len(value) != size:
        return False
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True


class Event:
    @staticmethod
    def from_JSON(evt_json: dict) -> "Event":
        """
        creates an event object from json as received from a relay subscription,
        it must be a full event that has an id and has been signed
        """
        if not isinstance(evt_json, dict):
            raise MalformedEvent("event must be a json object")
        try:
            event = Event(
                id=evt_json['id'],
                sig=evt_json['sig'],
                kind=evt_json['kind'],
                content=evt_json['content'],
                tags=evt_json['tags'],
                pubkey=evt_json['pubkey'],
                created_at=evt_json['created_at']
            )
        except KeyError as e:
            raise MalformedEvent(f"event missing field {e}") from e

        for name, size in (('id', 64), ('pubkey', 64), ('sig', 128)):
            if not _is_hex(evt_json[name], size):
                raise MalformedEvent(f"event {name} must be {size} hex characters")
        if not isinstance(evt_json['content'], str):
            raise MalformedEvent("event content must be a string")
        if not isinstance(event.kind, int) or not isinstance(event.created_at, int):
            raise MalformedEvent("event kind and created_at must be integers")
        if not isinstance(event.tags.tags, list):
            raise MalformedEvent("event tags must be a list")
        return event

    def __init__(self, id=None, sig=None, kind=None, content=None,
                 tags=None, pubkey=None, created_at=None):
        self._id = id
        self._sig = sig
        self._kind = kind
        self._created_at = created_at
        # normally the case when creating a new event
        if created_at is None:
            self._created_at = int(time.time())

        # content forced to str
        self._content = str(content) if content is not None else ''

        self._pubkey = pubkey

        self._tags = EventTags(tags)

    @property
    def id(self):
        return self._id

    @property
    def sig(self):
        return self._sig

    @property
    def kind(self):
        return self._kind

    @property
    def created_at(self):
        return self._created_at

    @property
    def content(self):
        return self._content

    @property
    def pubkey(self):
        return self._pubkey

    @property
    def tags(self) -> EventTags:
        return self._tags

    def serialize(self):
        """
            see https://github.com/nostr-protocol/nips/blob/master/01.md
        """
        if self._pubkey is None:
            raise ValueError(
                'Event::serialize can\'t be done unless pubkey is set')

        return json.dumps([
            0,
            self._pubkey,
            self._created_at,
            self._kind,
            self._tags.tags,
            self._content
        ], separators=(',', ':'), ensure_ascii=False)

    def compute_id(self) -> str:
        """sha256 of the serialized event"""
        evt_str = self.serialize()
        return hashlib.sha256(evt_str.encode('utf-8')).hexdigest()

    def sign(self, privkey: str):
        """
            sets the pubkey from privkey, then the id and the schnorr sig
        """
        self._pubkey = get_hex_pubkey(privkey)
        self._id = self.compute_id()

        pk = PrivateKey(bytes.fromhex(privkey))
        sig = pk.sign_schnorr(bytes.fromhex(self._id))
        self._sig = sig.hex()

        return self

    def verify(self) -> bool:
        """check that the id matches the content and the sig was made by pubkey"""
        try:
            if self._id != self.compute_id():
                return False
            pubkey = PublicKeyXOnly(bytes.fromhex(self._pubkey))
            return pubkey.verify(bytes.fromhex(self._sig), bytes.fromhex(self._id))
        except (ValueError, TypeError):
            return False

    def event_data(self):
        return {
            'id': self._id,
            'pubkey': self._pubkey,
            'created_at': self._created_at,
            'kind': self._kind,
            'tags': self._tags.tags,
            'content': self._content,
            'sig': self._sig
        }

    def __repr__(self):
        return f"Event(id={self._id}, kind={self._kind}, pubkey={self._pubkey})"
