"""A small CoAP message model and helpers used by DCAF."""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from enum import IntEnum


class OptionNumber(IntEnum):
    URI_HOST = 3
    URI_PORT = 7
    URI_PATH = 11
    CONTENT_FORMAT = 12
    MAX_AGE = 14
    URI_QUERY = 15
    BLOCK2 = 23


class MessageType(IntEnum):
    CON = 0
    NON = 1
    ACK = 2
    RST = 3


class Method(IntEnum):
    GET = 1
    POST = 2
    PUT = 3
    DELETE = 4


def response_code(klass: int, detail: int) -> int:
    """Return the numeric code for a response such as 4.01."""
    return (klass << 5) | detail


def response_class(code: int) -> int:
    """Return the class (the digit before the dot) of *code*."""
    return code >> 5


CODE_CREATED = response_code(2, 1)
CODE_BAD_REQUEST = response_code(4, 0)
CODE_UNAUTHORIZED = response_code(4, 1)
CODE_FORBIDDEN = response_code(4, 3)
CODE_INTERNAL_ERROR = response_code(5, 0)

MEDIATYPE_TEXT_PLAIN = 0


def encode_uint(value: int) -> bytes:
    """Encode *value* as a CoAP variable-length unsigned integer."""
    if value < 0:
        raise ValueError("value must not be negative")
    return value.to_bytes((value.bit_length() + 7) // 8, "big")


def decode_uint(data: bytes) -> int:
    """Decode a CoAP variable-length unsigned integer."""
    return int.from_bytes(bytes(data), "big")


def _option_bytes(value: bytes | str | int) -> bytes:
    if isinstance(value, int):
        return encode_uint(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


@dataclass
class CoapPdu:
    """A CoAP message with options kept in ascending option-number order."""

    code: int = 0
    type: MessageType = MessageType.CON
    message_id: int = 0
    token: bytes = b""
    options: list[tuple[int, bytes]] = field(default_factory=list)
    payload: bytes = b""

    def add_option(self, number: int, value: bytes | str | int) -> None:
        """Add an option, keeping options sorted and repeated ones in order."""
        index = bisect.bisect_right([n for n, _ in self.options], number)
        self.options.insert(index, (int(number), _option_bytes(value)))

    def option(self, number: int) -> bytes | None:
        """Return the value of the first option *number*, or None."""
        return next((v for n, v in self.options if n == number), None)

    def options_of(self, number: int) -> list[bytes]:
        """Return the values of all options *number* in order."""
        return [v for n, v in self.options if n == number]


def get_content_format(pdu: CoapPdu | None) -> int | None:
    """Return the Content-Format of *pdu*, or None if it has none."""
    if pdu is None:
        return None
    value = pdu.option(OptionNumber.CONTENT_FORMAT)
    return None if value is None else decode_uint(value)


def get_method(pdu: CoapPdu) -> int:
    """Return the request method code of *pdu*."""
    return pdu.code & 0xFF


def get_resource_uri(pdu: CoapPdu, max_length: int) -> bytes:
    """Return the request path of *pdu*, segments joined by '/'.

    Raises ValueError if the path is longer than *max_length* bytes.
    """
    uri = b"/".join(pdu.options_of(OptionNumber.URI_PATH))
    if len(uri) > max_length:
        raise ValueError(f"resource URI longer than {max_length} bytes")
    return uri