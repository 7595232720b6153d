"""Messages of the UDP tracker protocol.

Specification: [BEP 0015]

The UDP tracker protocol is a lightweight alternative to the original HTTP-based
way of communicating with trackers. It is a simple two-step protocol built on
top of UDP, with a custom retransmission mechanism using exponential backoff.

Typical message flow:

    Us                       Tracker
     |      ConnectRequest      |
     |------------------------->|
     |     ConnectResponse      |
     |<-------------------------|
     |      ScrapeRequest       |
     |------------------------->|
     |      ScrapeResponse      |
     |<-------------------------|

Either response can be replaced by an error message, which is turned into a
`Failure` by `parse`.

[BEP 0015]: http://bittorrent.org/beps/bep_0015.html
"""

from __future__ import annotations
from typing import Callable, ClassVar, List, TypeVar

import dataclasses
import struct

from . import errors
from ._metadata import Scrape
from ..buffer import Cursor, Truncated
from ..infohash import InfoHash


PROTOCOL_ID = 0x41727101980

CONNECT = 0
SCRAPE = 2
ERROR = 3


T = TypeVar("T")


@dataclasses.dataclass
class ConnectRequest:
    value: ClassVar[int] = CONNECT
    transaction_id: int

    def to_bytes(self) -> bytes:
        return struct.pack(">QLL", PROTOCOL_ID, self.value, self.transaction_id)


@dataclasses.dataclass
class ScrapeRequest:
    value: ClassVar[int] = SCRAPE
    connection_id: int
    transaction_id: int
    info_hashes: List[InfoHash]

    def to_bytes(self) -> bytes:
        return b"".join(
            [
                struct.pack(">QLL", self.connection_id, self.value, self.transaction_id),
                *(info_hash.value for info_hash in self.info_hashes),
            ]
        )


def _check_action(cursor, expected):
    action = cursor.get_u32()
    if action != expected:
        raise errors.BadAction(expected, action)


@dataclasses.dataclass
class ConnectResponse:
    value: ClassVar[int] = CONNECT
    transaction_id: int
    connection_id: int

    @classmethod
    def from_cursor(cls, cursor: Cursor) -> ConnectResponse:
        _check_action(cursor, cls.value)
        transaction_id = cursor.get_u32()
        connection_id = cursor.get_u64()
        # Trailing bytes are allowed; clients shouldn't assume packets to be of
        # a certain size.
        return cls(transaction_id, connection_id)


@dataclasses.dataclass
class ScrapeResponse:
    value: ClassVar[int] = SCRAPE
    transaction_id: int
    scrapes: List[Scrape]

    @classmethod
    def from_cursor(cls, cursor: Cursor) -> ScrapeResponse:
        _check_action(cursor, cls.value)
        transaction_id = cursor.get_u32()
        return cls(transaction_id, cursor.get_all(Scrape.from_cursor))


def parse(data: bytes, parser: Callable[[Cursor], T]) -> T:
    """Parse `data` with `parser`, handling error messages.

    Raise `Failure` if `data` is an error message and `PacketLen` if `data`
    is too short.
    """
    try:
        cursor = Cursor(data)
        if len(data) >= 4 and int.from_bytes(data[:4], "big") == ERROR:
            cursor.get_u32()
            # The transaction ID of an error message is not checked.
            cursor.get_u32()
            raise errors.Failure(cursor.rest().decode("utf-8", errors="replace"))
        return parser(cursor)
    except Truncated as exc:
        raise errors.PacketLen() from exc
