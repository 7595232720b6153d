"""HTTP tracker client.

Scraping isn't part of BEP 3, but HTTP trackers implement a common convention
for it: the scrape URL is obtained from the announce URL by replacing
"announce" with "scrape", and the info hashes are passed as repeated
`info_hash` query parameters. The response is a bencoded dictionary that maps
info hashes to their statistics, or a dictionary with a failure reason.

Specification: [BEP 0048]

[BEP 0048]: http://bittorrent.org/beps/bep_0048.html
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, Optional

import dataclasses
import logging
import urllib.parse

import aiohttp
import yarl

from . import errors
from ._metadata import Scrape, ScrapeMap
from .. import __version__
from .. import bencoding
from ..infohash import InfoHash


HOMEPAGE = "https://github.com/scrapetrack/scrapetrack"
USER_AGENT = f"scrapetrack/{__version__} ({HOMEPAGE})"

_U32_MAX = 2 ** 32 - 1


@dataclasses.dataclass(frozen=True)
class HTTPTracker:
    url: urllib.parse.ParseResult

    def __str__(self):
        return self.url.geturl()

    @classmethod
    def from_url(cls, url: urllib.parse.ParseResult) -> HTTPTracker:
        if url.scheme not in ("http", "https"):
            raise errors.UnsupportedScheme(url.scheme)
        if not url.hostname:
            raise errors.NoHost()
        try:
            url.port
        except ValueError as exc:
            raise errors.BadURL(str(exc)) from exc
        if "announce" not in url.path:
            raise errors.NoAnnounce()
        return cls(url)

    def scrape_url(self, info_hashes: Iterable[InfoHash]) -> str:
        """Return the percent-encoded scrape URL for `info_hashes`."""
        params = [
            "info_hash=" + urllib.parse.quote_from_bytes(info_hash.value, safe="")
            for info_hash in info_hashes
        ]
        query = "&".join(([self.url.query] if self.url.query else []) + params)
        url = self.url._replace(
            path=self.url.path.replace("announce", "scrape"), query=query, fragment=""
        )
        return url.geturl()

    async def scrape(self, info_hashes: Iterable[InfoHash]) -> ScrapeMap:
        info_hashes = list(info_hashes)
        if not info_hashes:
            return {}
        # `encoded=True` keeps `yarl` from re-quoting the info hashes.
        url = yarl.URL(self.scrape_url(info_hashes), encoded=True)
        logging.debug("Sending scrape request to %s", self)
        try:
            session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
        except (RuntimeError, ValueError) as exc:
            raise errors.BuildClient() from exc
        async with session:
            try:
                response = await session.get(url)
            except aiohttp.ClientError as exc:
                raise errors.SendRequest() from exc
            async with response:
                try:
                    response.raise_for_status()
                except aiohttp.ClientResponseError as exc:
                    raise errors.HTTPStatus(exc.status) from exc
                try:
                    data = await response.read()
                except aiohttp.ClientError as exc:
                    raise errors.ReadBody() from exc
        try:
            parsed = ScrapeResponse.from_bytes(data)
        except bencoding.DecodeError as exc:
            raise errors.ParseResponse() from exc
        return parsed.result()


def _get_u32(d: Dict[bytes, Any], key: bytes) -> int:
    name = f"files.*.{key.decode()}"
    if key not in d:
        raise bencoding.MissingField(name)
    value = d[key]
    if not isinstance(value, int) or not 0 <= value <= _U32_MAX:
        raise bencoding.MalformedContent(f"Invalid value for {name!r}.")
    return value


def _parse_files(files: Any) -> ScrapeMap:
    if not isinstance(files, dict):
        raise bencoding.MalformedContent("Invalid value for 'files'.")
    result = {}
    for key, d in files.items():
        if len(key) != InfoHash.LENGTH:
            raise bencoding.MalformedContent(
                f"Key of 'files' is {len(key)} bytes long, expected {InfoHash.LENGTH}."
            )
        if not isinstance(d, dict):
            raise bencoding.MalformedContent("Invalid value for 'files.*'.")
        # Unknown keys, such as `name`, are ignored.
        result[InfoHash(key)] = Scrape(
            complete=_get_u32(d, b"complete"),
            incomplete=_get_u32(d, b"incomplete"),
            downloaded=_get_u32(d, b"downloaded"),
        )
    return result


@dataclasses.dataclass
class ScrapeResponse:
    files: Optional[ScrapeMap] = None
    failure_reason: Optional[str] = None

    @classmethod
    def from_bytes(cls, data: bytes) -> ScrapeResponse:
        """Decode the body of a scrape response.

        Raise a `bencoding.DecodeError` if `data` is invalid.
        """
        d = bencoding.decode(data)
        if not isinstance(d, dict):
            raise bencoding.MalformedContent("Expected a dictionary.")
        if b"failure reason" in d:
            reason = d[b"failure reason"]
            if not isinstance(reason, bytes):
                raise bencoding.MalformedContent("Invalid value for 'failure reason'.")
            return cls(failure_reason=reason.decode("utf-8", errors="replace"))
        if b"files" in d:
            return cls(files=_parse_files(d[b"files"]))
        raise bencoding.MissingField("files")

    def result(self) -> ScrapeMap:
        """Return the scrapes, or raise `Failure` if the tracker reported one."""
        if self.failure_reason is not None:
            raise errors.Failure(self.failure_reason)
        assert self.files is not None
        return self.files
