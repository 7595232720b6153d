"""Exceptions raised while talking to trackers.

`TrackerURLError`s are raised when a tracker URL is parsed; everything else
derives from `TrackerError` and is raised by a scrape. Underlying causes are
chained, so they are available as `__cause__`.
"""


class TrackerURLError(ValueError):
    pass


class BadURL(TrackerURLError):
    pass


class UnsupportedScheme(TrackerURLError):
    def __init__(self, scheme):
        super().__init__(f"Unsupported tracker URL scheme: {scheme!r}.")
        self.scheme = scheme


class NoHost(TrackerURLError):
    def __init__(self):
        super().__init__("No host in tracker URL.")


class NoAnnounce(TrackerURLError):
    def __init__(self):
        super().__init__("No 'announce' string in HTTP tracker URL path.")


class NoUDPPort(TrackerURLError):
    def __init__(self):
        super().__init__("No port in UDP tracker URL.")


class TrackerError(Exception):
    pass


class Timeout(TrackerError):
    def __init__(self):
        super().__init__("Interactions with tracker did not complete in time.")


class Failure(TrackerError):
    def __init__(self, message):
        super().__init__(f"Tracker replied with error message {message!r}.")
        self.message = message


### HTTP


class HTTPTrackerError(TrackerError):
    pass


class BuildClient(HTTPTrackerError):
    def __init__(self):
        super().__init__("Failed to build HTTP client.")


class SendRequest(HTTPTrackerError):
    def __init__(self):
        super().__init__("Failed to send request to HTTP tracker.")


class HTTPStatus(HTTPTrackerError):
    def __init__(self, status):
        super().__init__(f"HTTP tracker responded with HTTP error {status}.")
        self.status = status


class ReadBody(HTTPTrackerError):
    def __init__(self):
        super().__init__("Failed to read HTTP tracker response.")


class ParseResponse(HTTPTrackerError):
    def __init__(self):
        super().__init__("Failed to parse HTTP tracker response.")


### UDP


class UDPTrackerError(TrackerError):
    pass


class Lookup(UDPTrackerError):
    def __init__(self, host):
        super().__init__(f"Failed to resolve {host!r}.")
        self.host = host


class NoResolve(UDPTrackerError):
    def __init__(self, host):
        super().__init__(f"{host!r} did not resolve to any IP addresses.")
        self.host = host


class Bind(UDPTrackerError):
    def __init__(self):
        super().__init__("Failed to bind UDP socket.")


class Connect(UDPTrackerError):
    def __init__(self):
        super().__init__("Failed to connect UDP socket.")


class Send(UDPTrackerError):
    def __init__(self):
        super().__init__("Failed to send UDP packet.")


class Recv(UDPTrackerError):
    def __init__(self):
        super().__init__("Failed to receive UDP packet.")


class PacketLen(UDPTrackerError):
    def __init__(self, reason="UDP tracker sent response with invalid length."):
        super().__init__(reason)


class BadAction(UDPTrackerError):
    def __init__(self, expected, got):
        super().__init__(
            "UDP tracker sent response with unexpected or unsupported action; "
            f"expected {expected}, got {got}."
        )
        self.expected = expected
        self.got = got


class XactionMismatch(UDPTrackerError):
    def __init__(self, expected, got):
        super().__init__(
            "Response from UDP tracker did not contain expected transaction ID; "
            f"expected {expected:#x}, got {got:#x}."
        )
        self.expected = expected
        self.got = got
