import asyncio
import socket
import struct
import unittest
import urllib.parse

import pytest

from scrapetrack.buffer import Truncated
from scrapetrack.infohash import InfoHash
from scrapetrack.tracker import _udp
from scrapetrack.tracker import errors
from scrapetrack.tracker import udp
from scrapetrack.tracker import Scrape

from . import _tracker


A = InfoHash(b"O\xd2\xd3Y\x8a\x11\x01\xa1U\xdd\x86|\x91\x04\xfc\xd2\xd9\xe4$+")
B = InfoHash(b"\xa7\x88\x06\x8b\xeb6i~=//\x1e\xc8\x1d\xbb\x12\x023\xa58")
TRACKER = udp.UDPTracker("tracker.example.com", 6969, "/announce")


class TestMessages(unittest.TestCase):
    def test_connect_request(self):
        self.assertEqual(
            _udp.ConnectRequest(0x5C310D73).to_bytes(),
            b"\x00\x00\x04\x17'\x10\x19\x80\x00\x00\x00\x00\\1\rs",
        )

    def test_connect_response(self):
        data = b"\x00\x00\x00\x00\\1\rs\\\xcb\xdf\xdb\x15|%\xba"
        response = _udp.parse(data, _udp.ConnectResponse.from_cursor)
        self.assertEqual(response.transaction_id, 0x5C310D73)
        self.assertEqual(response.connection_id, 0x5CCBDFDB157C25BA)

    def test_connect_response_trailing_bytes(self):
        data = b"\x00\x00\x00\x00\\1\rs\\\xcb\xdf\xdb\x15|%\xbaextra"
        response = _udp.parse(data, _udp.ConnectResponse.from_cursor)
        self.assertEqual(response.connection_id, 0x5CCBDFDB157C25BA)

    def test_connect_response_truncated(self):
        for n in range(16):
            data = b"\x00\x00\x00\x00\\1\rs\\\xcb\xdf\xdb\x15|%\xba"[:n]
            with self.subTest(n):
                with self.assertRaises(errors.PacketLen):
                    _udp.parse(data, _udp.ConnectResponse.from_cursor)

    def test_connect_response_bad_action(self):
        data = b"\x00\x00\x00\x02\\1\rs\\\xcb\xdf\xdb\x15|%\xba"
        with self.assertRaises(errors.BadAction) as cm:
            _udp.parse(data, _udp.ConnectResponse.from_cursor)
        self.assertEqual((cm.exception.expected, cm.exception.got), (0, 2))

    def test_scrape_request(self):
        request = _udp.ScrapeRequest(0x5CCBDFDB157C25BA, 0x5C310D73, [A, B])
        self.assertEqual(
            request.to_bytes(),
            b"\\\xcb\xdf\xdb\x15|%\xba\x00\x00\x00\x02\\1\rs" + A.value + B.value,
        )

    def test_scrape_response(self):
        data = struct.pack(">LLLLLLLL", 2, 7, 1, 2, 3, 4, 5, 6)
        response = _udp.parse(data, _udp.ScrapeResponse.from_cursor)
        self.assertEqual(response.transaction_id, 7)
        self.assertEqual(
            response.scrapes,
            [
                Scrape(complete=1, incomplete=3, downloaded=2),
                Scrape(complete=4, incomplete=6, downloaded=5),
            ],
        )

    def test_scrape_response_partial_record(self):
        data = struct.pack(">LLLLLL", 2, 7, 1, 2, 3, 4)
        with self.assertRaises(errors.PacketLen) as cm:
            _udp.parse(data, _udp.ScrapeResponse.from_cursor)
        self.assertIsInstance(cm.exception.__cause__, Truncated)

    def test_error_response(self):
        data = struct.pack(">LL", 3, 7) + b"Torrent not registered \xff"
        for parser in [_udp.ConnectResponse.from_cursor, _udp.ScrapeResponse.from_cursor]:
            with self.subTest(parser):
                with self.assertRaises(errors.Failure) as cm:
                    _udp.parse(data, parser)
                self.assertEqual(cm.exception.message, "Torrent not registered \ufffd")

    def test_error_response_truncated(self):
        with self.assertRaises(errors.PacketLen):
            _udp.parse(b"\x00\x00\x00\x03\x00", _udp.ScrapeResponse.from_cursor)


class TestUDPTracker(unittest.TestCase):
    def _from(self, s):
        return udp.UDPTracker.from_url(urllib.parse.urlparse(s))

    def test_from_url(self):
        for s, tracker in [
            (
                "udp://tracker.opentrackr.org:1337/announce",
                udp.UDPTracker("tracker.opentrackr.org", 1337, "/announce"),
            ),
            (
                "udp://tracker.opentrackr.org:1337",
                udp.UDPTracker("tracker.opentrackr.org", 1337, ""),
            ),
            (
                "udp://tracker.example.com:80/announce?passkey=abc",
                udp.UDPTracker("tracker.example.com", 80, "/announce?passkey=abc"),
            ),
            ("udp://[::1]:6969/announce", udp.UDPTracker("::1", 6969, "/announce")),
        ]:
            with self.subTest(s):
                self.assertEqual(self._from(s), tracker)
                self.assertEqual(str(tracker), s)

    def test_invalid(self):
        for s, exc in [
            ("udp://tracker.opentrackr.org/announce", errors.NoUDPPort),
            ("udp://:1337/announce", errors.NoHost),
            ("udp://tracker.opentrackr.org:http/announce", errors.BadURL),
            ("http://tracker.opentrackr.org:1337/announce", errors.UnsupportedScheme),
        ]:
            with self.subTest(s):
                with self.assertRaises(exc):
                    self._from(s)


class TestRetransmissionTimeout(unittest.TestCase):
    def test_schedule(self):
        self.assertEqual(
            [udp.retransmission_timeout(n) for n in range(12)],
            [15, 30, 60, 120, 240, 480, 960, 1920, 3840, 3840, 3840, 3840],
        )


def _is_connect(data):
    return len(data) == 16 and data[:8] == struct.pack(">Q", _udp.PROTOCOL_ID)


@pytest.mark.asyncio
async def test_scrape():
    tracker = _tracker.UDPTracker({A.value: (5, 7, 50)})
    stream = _tracker.FakeStream(tracker)
    result = await udp.Session(TRACKER, stream).scrape([B, A])
    assert result == {
        A: Scrape(complete=5, incomplete=7, downloaded=50),
        B: Scrape(complete=0, incomplete=0, downloaded=0),
    }
    connect, scrape = stream.sent
    assert _is_connect(connect)
    assert scrape[:8] == struct.pack(">Q", _tracker.CONNECTION_ID)
    assert scrape[8:12] == struct.pack(">L", _udp.SCRAPE)
    assert scrape[16:] == B.value + A.value


@pytest.mark.asyncio
async def test_scrape_nothing():
    stream = _tracker.FakeStream(_tracker.UDPTracker())
    assert await udp.Session(TRACKER, stream).scrape([]) == {}
    assert stream.sent == []


@pytest.mark.asyncio
async def test_connection_reused():
    tracker = _tracker.UDPTracker()
    session = udp.Session(TRACKER, _tracker.FakeStream(tracker))
    await session.scrape([A])
    await session.scrape([B])
    assert tracker.connects == 1


@pytest.mark.asyncio
async def test_fresh_transaction_ids():
    stream = _tracker.FakeStream(_tracker.UDPTracker())
    session = udp.Session(TRACKER, stream)
    await session.scrape([A])
    await session.scrape([A])
    transaction_ids = {data[12:16] for data in stream.sent}
    # Random 32-bit values; a collision is practically impossible.
    assert len(transaction_ids) == 3


@pytest.mark.asyncio
async def test_connect_transaction_mismatch():
    tracker = _tracker.UDPTracker()
    tracker.on_connect = lambda transaction_id: struct.pack(
        ">LLQ", _udp.CONNECT, transaction_id ^ 1, _tracker.CONNECTION_ID
    )
    stream = _tracker.FakeStream(tracker)
    with pytest.raises(errors.XactionMismatch):
        await udp.Session(TRACKER, stream).scrape([A])
    # Not retried.
    assert len(stream.sent) == 1


@pytest.mark.asyncio
async def test_connect_bad_action():
    tracker = _tracker.UDPTracker()
    tracker.on_connect = lambda transaction_id: struct.pack(
        ">LLQ", 1, transaction_id, _tracker.CONNECTION_ID
    )
    stream = _tracker.FakeStream(tracker)
    with pytest.raises(errors.BadAction):
        await udp.Session(TRACKER, stream).scrape([A])
    assert len(stream.sent) == 1


@pytest.mark.asyncio
async def test_scrape_transaction_mismatch():
    tracker = _tracker.UDPTracker()
    tracker.on_scrape = lambda connection_id, transaction_id, info_hashes: struct.pack(
        ">LLLLL", _udp.SCRAPE, transaction_id ^ 1, 1, 2, 3
    )
    stream = _tracker.FakeStream(tracker)
    with pytest.raises(errors.XactionMismatch) as excinfo:
        await udp.Session(TRACKER, stream).scrape([A])
    assert excinfo.value.got == excinfo.value.expected ^ 1
    assert len(stream.sent) == 2


@pytest.mark.asyncio
async def test_scrape_bad_action():
    tracker = _tracker.UDPTracker()
    tracker.on_scrape = lambda connection_id, transaction_id, info_hashes: struct.pack(
        ">LLLLL", 1, transaction_id, 1, 2, 3
    )
    with pytest.raises(errors.BadAction):
        await udp.Session(TRACKER, _tracker.FakeStream(tracker)).scrape([A])


@pytest.mark.asyncio
async def test_scrape_error():
    tracker = _tracker.UDPTracker()
    tracker.on_scrape = lambda connection_id, transaction_id, info_hashes: (
        struct.pack(">LL", _udp.ERROR, transaction_id) + b"Unregistered torrent"
    )
    with pytest.raises(errors.Failure) as excinfo:
        await udp.Session(TRACKER, _tracker.FakeStream(tracker)).scrape([A])
    assert excinfo.value.message == "Unregistered torrent"


@pytest.mark.asyncio
async def test_scrape_record_count_mismatch():
    tracker = _tracker.UDPTracker()
    tracker.on_scrape = lambda connection_id, transaction_id, info_hashes: struct.pack(
        ">LLLLL", _udp.SCRAPE, transaction_id, 1, 2, 3
    )
    with pytest.raises(errors.PacketLen):
        await udp.Session(TRACKER, _tracker.FakeStream(tracker)).scrape([A, B])


@pytest.mark.asyncio
async def test_retransmission():
    tracker = _tracker.UDPTracker()
    dropped = []

    def handler(data):
        if len(dropped) < 3:
            dropped.append(data)
            return None
        return tracker(data)

    stream = _tracker.FakeStream(handler)
    result = await udp.Session(TRACKER, stream, timeout=0.01).scrape([A])
    assert result == {A: Scrape(0, 0, 0)}
    # The identical connect request is resent after every timeout.
    assert len(stream.sent) == 5
    assert len(set(stream.sent[:4])) == 1
    assert _is_connect(stream.sent[0])


@pytest.mark.asyncio
async def test_retransmission_never_gives_up():
    stream = _tracker.FakeStream(lambda data: None)
    session = udp.Session(TRACKER, stream, timeout=0.001)
    with pytest.raises(asyncio.TimeoutError):
        # 0.001 * (1 + 2 + ... + 256) is about half a second, after which the
        # timeout stays at its maximum.
        await asyncio.wait_for(session.scrape([A]), 2)
    assert len(stream.sent) > 10
    assert len(set(stream.sent)) == 1


@pytest.mark.asyncio
async def test_reconnect_after_expiry():
    first = _tracker.CONNECTION_ID
    second = first + 1
    # Only scrape requests with the second connection ID are answered.
    tracker = _tracker.UDPTracker(connection_id=second)
    connection_ids = iter([first, second])
    tracker.on_connect = lambda transaction_id: struct.pack(
        ">LLQ", _udp.CONNECT, transaction_id, next(connection_ids)
    )
    stream = _tracker.FakeStream(tracker)
    result = await udp.Session(TRACKER, stream, timeout=0.05, lifetime=0.2).scrape([A])
    assert result == {A: Scrape(0, 0, 0)}
    assert tracker.connects == 2
    assert _is_connect(stream.sent[0])
    assert _is_connect(stream.sent[-2])
    assert stream.sent[-1][:8] == struct.pack(">Q", second)


@pytest.mark.asyncio
async def test_scrape_over_udp():
    transport, port = await _tracker.serve_udp(_tracker.UDPTracker({A.value: (1, 2, 3)}))
    try:
        result = await udp.UDPTracker("127.0.0.1", port).scrape([A])
    finally:
        transport.close()
    assert result == {A: Scrape(complete=1, incomplete=2, downloaded=3)}


@pytest.mark.asyncio
async def test_lookup_failure():
    with pytest.raises((errors.Lookup, errors.NoResolve)):
        await udp.UDPTracker("tracker.invalid", 6969).scrape([A])


@pytest.mark.asyncio
async def test_stream_error_wakes_recv():
    stream = udp.DatagramStream()
    task = asyncio.ensure_future(stream.recv())
    await asyncio.sleep(0)
    stream.error_received(ConnectionRefusedError())
    with pytest.raises(ConnectionRefusedError):
        await task
    with pytest.raises(ConnectionRefusedError):
        await stream.drain()


@pytest.mark.asyncio
async def test_connection_refused():
    # Nothing listens on the port once the socket is closed, so the ICMP
    # "port unreachable" reply surfaces through `error_received`.
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    with pytest.raises(errors.Recv) as info:
        await asyncio.wait_for(udp.UDPTracker("127.0.0.1", port).scrape([A]), 5)
    assert isinstance(info.value.__cause__, ConnectionRefusedError)
