"""Resolution of CoAP endpoint addresses."""

from __future__ import annotations

import dataclasses
import socket
from dataclasses import dataclass

# Host names longer than this are truncated before resolution.
MAX_HOST_LENGTH = 1025


class AddressError(Exception):
    """Raised when a host name cannot be resolved."""


def _check_port(port: int) -> int:
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"port out of range: {port}")
    return port


@dataclass(frozen=True)
class CoapAddress:
    """A resolved socket address for CoAP communication."""

    family: int
    host: str
    port: int
    flowinfo: int = 0
    scope_id: int = 0

    @property
    def sockaddr(self) -> tuple:
        """The address as a tuple suitable for the socket module."""
        if self.family == socket.AF_INET6:
            return (self.host, self.port, self.flowinfo, self.scope_id)
        return (self.host, self.port)

    def with_port(self, port: int) -> "CoapAddress":
        """Return a copy of this address with *port* set."""
        return dataclasses.replace(self, port=_check_port(port))


def resolve_address(host: str | bytes, port: int) -> CoapAddress:
    """Resolve *host* and *port* to the first usable datagram address."""
    _check_port(port)
    if isinstance(host, (bytes, bytearray)):
        host = bytes(host).decode("utf-8", errors="replace")
    host = host[:MAX_HOST_LENGTH]
    try:
        results = socket.getaddrinfo(
            host, str(port), socket.AF_UNSPEC, socket.SOCK_DGRAM
        )
    except (socket.gaierror, UnicodeError) as exc:
        raise AddressError(f"cannot resolve {host!r}: {exc}") from exc

    for family, _type, _proto, _name, sockaddr in results:
        if family == socket.AF_INET:
            return CoapAddress(family, sockaddr[0], sockaddr[1])
        if family == socket.AF_INET6:
            return CoapAddress(family, sockaddr[0], sockaddr[1], sockaddr[2], sockaddr[3])
    raise AddressError(f"no usable address for {host!r}")