from __future__ import annotations

import dataclasses
import re


class InfoHashError(ValueError):
    pass


@dataclasses.dataclass(frozen=True, order=True)
class InfoHash:
    """SHA-1 digest of a torrent's info dictionary."""

    LENGTH = 20

    value: bytes

    def __post_init__(self):
        if len(self.value) != self.LENGTH:
            raise InfoHashError(
                f"Info hash is {len(self.value)} bytes long, expected {self.LENGTH}."
            )

    def __str__(self):
        return self.value.hex()

    @classmethod
    def from_hex(cls, s: str) -> InfoHash:
        if re.fullmatch(r"[0-9A-Fa-f]*", s) is None:
            raise InfoHashError(f"{s!r} is not valid hexadecimal.")
        try:
            value = bytes.fromhex(s)
        except ValueError as exc:
            raise InfoHashError(f"{s!r} is not valid hexadecimal.") from exc
        return cls(value)

    @classmethod
    def from_bytes(cls, bs: bytes) -> InfoHash:
        return cls(bytes(bs))
