"""Functions for converting to and from BEncoding.

Specification: [BEP 0003]

BEncoding is a serialization format that is used by HTTP trackers to encode
their responses.

This module provides the functions `decode` and `encode`, as well as the
exceptions raised by `decode` and by the parsers built on top of it.

[BEP 0003]: http://bittorrent.org/beps/bep_0003.html
"""

import io
import re


class DecodeError(ValueError):
    pass


class NoData(DecodeError):
    def __init__(self):
        super().__init__("No data in bencoded input.")


class TrailingData(DecodeError):
    def __init__(self, index):
        super().__init__(f"Trailing bytes after bencoded value at index {index}.")
        self.index = index


class MalformedContent(DecodeError):
    pass


class MissingField(DecodeError):
    def __init__(self, name):
        super().__init__(f"Missing field {name!r}.")
        self.name = name


def _peek(bs, start):
    if start >= len(bs):
        raise MalformedContent(f"Expected more input at index {start}.")
    return bs[start]


def _decode_int(bs, start):
    # More lenient than the specification: ignores leading zeros instead of
    # raising an exception.
    end = bs.find(b"e", start)
    if end == -1:
        raise MalformedContent(f"Unterminated integer at index {start}.")
    digits = bs[start + 1 : end]
    if re.fullmatch(rb"-?[0-9]+", digits) is None:
        raise MalformedContent(f"Invalid integer at index {start}.")
    return end + 1, int(digits)


def _decode_list(bs, start):
    result = []
    start += 1
    while _peek(bs, start) != ord("e"):
        start, rval = decode_from(bs, start)
        result.append(rval)
    return start + 1, result


def _decode_dict(bs, start):
    # More lenient than the specification: doesn't check that the dictionary
    # keys are sorted.
    result = {}
    start += 1
    while _peek(bs, start) != ord("e"):
        start, key = _decode_bytes(bs, start)
        start, result[key] = decode_from(bs, start)
    return start + 1, result


def _decode_bytes(bs, start):
    sep_index = bs.find(b":", start)
    if sep_index == -1 or not bs[start:sep_index].isdigit():
        raise MalformedContent(f"Invalid string length at index {start}.")
    end = sep_index + int(bs[start:sep_index]) + 1
    if end > len(bs):
        raise MalformedContent(f"String at index {start} runs past the input.")
    return end, bs[sep_index + 1 : end]


def decode_from(bs, start):
    token = _peek(bs, start)
    if token == ord("i"):
        return _decode_int(bs, start)
    if token == ord("l"):
        return _decode_list(bs, start)
    if token == ord("d"):
        return _decode_dict(bs, start)
    if ord("0") <= token <= ord("9"):
        return _decode_bytes(bs, start)
    raise MalformedContent(f"Unexpected token at index {start}.")


def decode(bs):
    """Return the Python object corresponding to `bs`.

    Raise `NoData` if `bs` is empty, `TrailingData` if there are bytes left
    after the first value and `MalformedContent` if `bs` is not valid
    BEncoding.
    """
    if not bs:
        raise NoData()
    try:
        start, rval = decode_from(bs, 0)
    except RecursionError as exc:
        raise MalformedContent("Nesting too deep.") from exc
    if start == len(bs):
        return rval
    raise TrailingData(start)


def _encode_int(n, buf):
    buf.write(b"i%de" % n)


def _encode_list(l, buf):  # noqa: E741
    buf.write(b"l")
    for obj in l:
        _encode(obj, buf)
    buf.write(b"e")


def _encode_dict(d, buf):
    buf.write(b"d")
    for key, value in sorted(d.items()):
        _encode_bytes(key, buf)
        _encode(value, buf)
    buf.write(b"e")


def _encode_bytes(bs, buf):
    buf.write(b"%d:" % len(bs))
    buf.write(bs)


def _encode(obj, buf):
    if isinstance(obj, int):
        _encode_int(obj, buf)
    elif isinstance(obj, list):
        _encode_list(obj, buf)
    elif isinstance(obj, dict):
        _encode_dict(obj, buf)
    elif isinstance(obj, bytes):
        _encode_bytes(obj, buf)
    else:
        raise TypeError(type(obj))


def encode(obj):
    """Encode `obj`.

    Raise `TypeError` if `obj` is not representable in BEncoding.
    """
    buf = io.BytesIO()
    _encode(obj, buf)
    return buf.getvalue()
