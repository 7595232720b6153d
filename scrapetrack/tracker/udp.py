"""UDP tracker client.

Specification: [BEP 0015]

A `Session` owns a connected datagram socket and the pseudo-connection that
the tracker hands out in reply to a `ConnectRequest`. Connection IDs are
valid for one minute; a scrape that doesn't complete in time is restarted
with a fresh connection.

Retransmission follows the schedule from the specification: the `n`-th
attempt waits `15 * 2 ** n` seconds, where `n` stops growing at 8.

[BEP 0015]: http://bittorrent.org/beps/bep_0015.html
"""

from __future__ import annotations
from typing import AsyncIterator, Iterable, Optional

import asyncio
import contextlib
import dataclasses
import logging
import secrets
import socket
import urllib.parse

from . import _udp
from . import errors
from ._metadata import ScrapeMap
from ..infohash import InfoHash


# Base retransmission timeout, in seconds.
TIMEOUT = 15
MAX_BACKOFF = 8
# Lifetime of a connection ID, in seconds.
CONNECTION_LIFETIME = 60
# Datagrams longer than this are truncated.
PACKET_LENGTH = 65535


@dataclasses.dataclass(frozen=True)
class UDPTracker:
    host: str
    port: int
    # Path and query of the URL; see BEP 41.
    urldata: str = ""

    def __str__(self):
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"udp://{host}:{self.port}{self.urldata}"

    @classmethod
    def from_url(cls, url: urllib.parse.ParseResult) -> UDPTracker:
        if url.scheme != "udp":
            raise errors.UnsupportedScheme(url.scheme)
        if not url.hostname:
            raise errors.NoHost()
        try:
            port = url.port
        except ValueError as exc:
            raise errors.BadURL(str(exc)) from exc
        if port is None:
            raise errors.NoUDPPort()
        urldata = url.path
        if url.query:
            urldata += "?" + url.query
        return cls(url.hostname, port, urldata)

    async def scrape(self, info_hashes: Iterable[InfoHash]) -> ScrapeMap:
        info_hashes = list(info_hashes)
        if not info_hashes:
            return {}
        async with open_stream(self.host, self.port) as stream:
            return await Session(self, stream).scrape(info_hashes)


class DatagramStream(asyncio.DatagramProtocol):
    def __init__(self):
        self._transport = None
        self._exception = None
        self._closed = asyncio.Event()
        self._drained = asyncio.Event()
        self._inbox = asyncio.Queue()

    ### asyncio.BaseProtocol

    def connection_made(self, transport):
        self._drained.set()
        self._transport = transport

    def connection_lost(self, exc):
        self._exception = self._exception or exc
        self._closed.set()

    def pause_writing(self):
        self._drained.clear()

    def resume_writing(self):
        self._drained.set()

    ### asyncio.DatagramProtocol

    def datagram_received(self, data, addr):
        self._inbox.put_nowait(data[:PACKET_LENGTH])

    def error_received(self, exc):
        self._exception = self._exception or exc
        # Wake up a pending `recv`.
        self._inbox.put_nowait(None)

    ### Interface

    def send(self, data: bytes) -> None:
        self._transport.sendto(data)

    async def drain(self) -> None:
        if self._exception is not None:
            raise self._exception
        await self._drained.wait()

    async def recv(self) -> bytes:
        if self._exception is not None:
            raise self._exception
        data = await self._inbox.get()
        if data is None:
            raise self._exception
        return data

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()

    async def wait_closed(self) -> None:
        await self._closed.wait()


@contextlib.asynccontextmanager
async def open_stream(host: str, port: int) -> AsyncIterator[DatagramStream]:
    """Yield a `DatagramStream` connected to `(host, port)`.

    The socket is closed on exit.
    """
    loop = asyncio.get_running_loop()
    try:
        addresses = await loop.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    except (OSError, UnicodeError) as exc:
        raise errors.Lookup(host) from exc
    if not addresses:
        raise errors.NoResolve(host)
    family, type_, proto, _, address = addresses[0]
    sock = socket.socket(family, type_, proto)
    try:
        try:
            sock.bind(("::" if family == socket.AF_INET6 else "0.0.0.0", 0))
        except OSError as exc:
            raise errors.Bind() from exc
        try:
            sock.setblocking(False)
            sock.connect(address)
        except OSError as exc:
            raise errors.Connect() from exc
        logging.debug("Connected UDP socket to %s (%s), port %d", host, address[0], port)
        _, stream = await loop.create_datagram_endpoint(DatagramStream, sock=sock)
    except BaseException:
        sock.close()
        raise
    try:
        yield stream
    finally:
        stream.close()
        await stream.wait_closed()


def make_transaction_id() -> int:
    return secrets.randbits(32)


def retransmission_timeout(n: int, base: float = TIMEOUT) -> float:
    """Return how long to wait for a reply to the `n`-th attempt."""
    return base * 2 ** min(n, MAX_BACKOFF)


@dataclasses.dataclass(frozen=True)
class Connection:
    connection_id: int
    # Deadline on the event loop's clock.
    expiration: float


class Session:
    """State machine for scraping a UDP tracker.

    Not safe for concurrent use: the cached connection is mutated by
    `scrape`.
    """

    def __init__(
        self,
        tracker: UDPTracker,
        stream: DatagramStream,
        *,
        timeout: float = TIMEOUT,
        lifetime: float = CONNECTION_LIFETIME,
    ):
        self.tracker = tracker
        self.timeout = timeout
        self.lifetime = lifetime

        self._stream = stream
        self._connection: Optional[Connection] = None

    def __repr__(self):
        cls = self.__class__.__name__
        return f"<{cls} object at {hex(id(self))} with tracker={str(self.tracker)!r}>"

    async def scrape(self, info_hashes: Iterable[InfoHash]) -> ScrapeMap:
        info_hashes = list(info_hashes)
        if not info_hashes:
            return {}
        loop = asyncio.get_running_loop()
        while True:
            connection = await self._get_connection()
            transaction_id = make_transaction_id()
            request = _udp.ScrapeRequest(
                connection.connection_id, transaction_id, info_hashes
            )
            logging.debug("Sending scrape request to %s", self.tracker)
            try:
                data = await asyncio.wait_for(
                    self._chat(request.to_bytes()), connection.expiration - loop.time()
                )
            except asyncio.TimeoutError:
                logging.debug("Connection to %s timed out; restarting", self.tracker)
                self._connection = None
                continue
            response = _udp.parse(data, _udp.ScrapeResponse.from_cursor)
            if response.transaction_id != transaction_id:
                raise errors.XactionMismatch(transaction_id, response.transaction_id)
            if len(response.scrapes) != len(info_hashes):
                raise errors.PacketLen(
                    f"Expected {len(info_hashes)} scrape records, "
                    f"got {len(response.scrapes)}."
                )
            return dict(zip(info_hashes, response.scrapes))

    async def _get_connection(self) -> Connection:
        loop = asyncio.get_running_loop()
        if self._connection is not None:
            if loop.time() < self._connection.expiration:
                return self._connection
            logging.debug("Connection to %s expired; will reconnect", self.tracker)
        self._connection = await self._connect()
        return self._connection

    async def _connect(self) -> Connection:
        logging.debug("Sending connection request to %s", self.tracker)
        transaction_id = make_transaction_id()
        data = await self._chat(_udp.ConnectRequest(transaction_id).to_bytes())
        # Unlike timeouts, invalid responses are not retried.
        response = _udp.parse(data, _udp.ConnectResponse.from_cursor)
        if response.transaction_id != transaction_id:
            raise errors.XactionMismatch(transaction_id, response.transaction_id)
        logging.debug("Connected to %s", self.tracker)
        expiration = asyncio.get_running_loop().time() + self.lifetime
        return Connection(response.connection_id, expiration)

    async def _chat(self, message: bytes) -> bytes:
        """Send `message` until the tracker replies, and return the reply."""
        n = 0
        while True:
            try:
                self._stream.send(message)
                await self._stream.drain()
            except OSError as exc:
                raise errors.Send() from exc
            try:
                return await asyncio.wait_for(
                    self._recv(), retransmission_timeout(n, self.timeout)
                )
            except asyncio.TimeoutError:
                logging.debug("%s did not reply in time; resending", self.tracker)
                n = min(n + 1, MAX_BACKOFF)

    async def _recv(self) -> bytes:
        try:
            return await self._stream.recv()
        except OSError as exc:
            raise errors.Recv() from exc
