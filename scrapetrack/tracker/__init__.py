"""Tracker scrape protocol.

This module provides `parse`, which turns a tracker URL into an `HTTPTracker`
or a `UDPTracker`, and the coroutine function `scrape`, which asks a tracker
for the statistics of a batch of torrents.
"""

from typing import Iterable, Union

import asyncio
import urllib.parse

from . import errors
from ._metadata import Scrape, ScrapeMap
from .http import HTTPTracker
from .udp import UDPTracker
from ..infohash import InfoHash


__all__ = ("HTTPTracker", "Scrape", "ScrapeMap", "Tracker", "UDPTracker", "errors", "parse", "scrape")


# Default deadline for a whole scrape, in seconds.
TIMEOUT = 30
# Trackers commonly refuse larger batches.
MAX_INFO_HASHES = 50

Tracker = Union[HTTPTracker, UDPTracker]


def parse(announce: str) -> Tracker:
    """Return the tracker with the URL `announce`.

    Raise a `TrackerURLError` if `announce` is not a usable tracker URL.
    """
    try:
        url = urllib.parse.urlparse(announce)
    except ValueError as exc:
        raise errors.BadURL(str(exc)) from exc
    # Note that `urllib.parse.urlparse` lower-cases the scheme, so exact
    # comparison is correct here (and elsewhere).
    if url.scheme in ("http", "https"):
        return HTTPTracker.from_url(url)
    if url.scheme == "udp":
        return UDPTracker.from_url(url)
    raise errors.UnsupportedScheme(url.scheme)


async def scrape(
    tracker: Tracker, info_hashes: Iterable[InfoHash], *, timeout: float = TIMEOUT
) -> ScrapeMap:
    """Return the statistics that `tracker` has for `info_hashes`.

    Info hashes that the tracker doesn't know about are missing from the
    result. Raise `Timeout` if the tracker doesn't answer within `timeout`
    seconds, and a `TrackerError` if the scrape fails otherwise.
    """
    info_hashes = list(info_hashes)
    if not info_hashes:
        return {}
    if isinstance(tracker, (HTTPTracker, UDPTracker)):
        coro = tracker.scrape(info_hashes)
    else:
        raise TypeError(type(tracker))
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError as exc:
        raise errors.Timeout() from exc
