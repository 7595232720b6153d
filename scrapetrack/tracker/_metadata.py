from __future__ import annotations
from typing import Dict

import dataclasses

from ..buffer import Cursor
from ..infohash import InfoHash


@dataclasses.dataclass(frozen=True)
class Scrape:
    complete: int
    incomplete: int
    downloaded: int

    @classmethod
    def from_cursor(cls, cursor: Cursor) -> Scrape:
        # Wire order is seeders, completed, leechers.
        complete = cursor.get_u32()
        downloaded = cursor.get_u32()
        incomplete = cursor.get_u32()
        return cls(complete, incomplete, downloaded)


ScrapeMap = Dict[InfoHash, Scrape]
