"""The DCAF context: configuration, keys, tickets and server responses."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlsplit

import cbor2

from .address import AddressError, CoapAddress, resolve_address
from .coap import (
    CODE_BAD_REQUEST,
    CODE_UNAUTHORIZED,
    MEDIATYPE_TEXT_PLAIN,
    CoapPdu,
    OptionNumber,
    encode_uint,
)
from .errors import DcafError
from .ticket_face import parse_ticket_face
from .tickets import (
    MAX_NONCE_SIZE,
    MAX_SERVER_TIMEOUT,
    VALIDITY_TIMER,
    VALIDITY_TIMESTAMP,
    DcafKey,
    Nonce,
    aif_allowed,
)

logger = logging.getLogger(__name__)

MEDIATYPE_DCAF_CBOR = 75

REQ_SAM = 1
REQ_AUD = 5
REQ_SCOPE = 9
REQ_SNC = 39

SCOPE_AIF = "aif"

# Upper bound for the encoded AS information in an Unauthorized response.
SAM_INFO_MAX_SIZE = 64

DEFAULT_PORTS = {
    "coap": 5683,
    "coaps": 5684,
    "coap+tcp": 5683,
    "coaps+tcp": 5684,
    "coap+ws": 80,
    "coaps+ws": 443,
}

ScopeCheck = Callable[[str, object, CoapPdu], bool]


@dataclass(frozen=True)
class DcafConfig:
    """Settings for a DCAF context."""

    host: str | None = None
    coap_port: int = 0
    coaps_port: int = 0
    am_uri: str | None = None
    validity_option: int = 1

    def __post_init__(self) -> None:
        if self.validity_option not in (1, 2, 3):
            raise ValueError(f"unknown validity option {self.validity_option}")


@dataclass(frozen=True)
class AmUri:
    """A parsed URI of an authorization manager."""

    uri: str
    scheme: str
    host: str
    port: int
    path: str = ""


def parse_am_uri(uri: str | bytes) -> AmUri:
    """Parse *uri* of the form scheme://host[:port][/path].

    Raises ValueError if the URI is malformed or its scheme is not a CoAP one.
    """
    if isinstance(uri, (bytes, bytearray)):
        uri = bytes(uri).decode("utf-8")
    parts = urlsplit(uri)
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"unsupported URI scheme in {uri!r}; expected schema://host[...]")
    host = parts.hostname
    if not host:
        raise ValueError(f"no host in {uri!r}")
    port = parts.port
    if port is None:
        port = DEFAULT_PORTS[scheme]
    return AmUri(uri=uri, scheme=scheme, host=host, port=port, path=parts.path)


def _identity_to_bytes(identity: bytes) -> bytes | None:
    """Undo the UTF-8 encoding of a binary PSK identity."""
    try:
        return identity.decode("utf-8").encode("latin-1")
    except (UnicodeDecodeError, UnicodeEncodeError):
        return None


class DcafContext:
    """State shared by the DCAF client, server and authorization manager."""

    def __init__(
        self,
        config: DcafConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
        prng: Callable[[int], bytes] | None = None,
    ) -> None:
        self.config = config if config is not None else DcafConfig()
        self.clock = clock if clock is not None else (lambda: int(time.time()))
        self.prng = prng if prng is not None else os.urandom
        from .tickets import TicketStore

        self.store = TicketStore()
        self.keys: dict[bytes, DcafKey] = {}
        self.am_uri: AmUri | None = None
        self._am_address: CoapAddress | None = None
        self.get_ticket: Callable | None = None
        self.scope_check: ScopeCheck | None = None
        self.decrypt: Callable[[bytes], bytes | None] | None = None
        self.app: object = None
        self.endpoints: list[tuple[str, CoapAddress]] = []

        self._bind_endpoints()
        if self.config.am_uri:
            try:
                self.set_am_uri(self.config.am_uri)
            except (ValueError, AddressError) as exc:
                logger.critical(
                    "cannot set AM URI %s. Expected schema://host[...]: %s",
                    self.config.am_uri,
                    exc,
                )
            else:
                logger.info("AM URI is %s", self.config.am_uri)

    def _bind_endpoints(self) -> None:
        host = self.config.host or "::"
        for port, protocols in (
            (self.config.coap_port, ("udp", "tcp")),
            (self.config.coaps_port, ("dtls", "tls")),
        ):
            if not port:
                continue
            try:
                address = resolve_address(host, port)
            except AddressError as exc:
                logger.warning("cannot listen on %s:%s: %s", host, port, exc)
                continue
            for proto in protocols:
                self.endpoints.append((proto, address))
                logger.info("listen on address %s (%s)", address.sockaddr, proto.upper())

    @property
    def am_address(self) -> CoapAddress | None:
        """The resolved address of the authorization manager, if one is set."""
        return self._am_address if self.am_uri is not None else None

    def set_am_uri(self, uri: str | bytes) -> None:
        """Set the authorization manager URI and resolve its address.

        Raises ValueError for a malformed URI and AddressError if its host
        cannot be resolved; in the latter case the URI is still kept.
        """
        self.am_uri = None
        self._am_address = None
        self.am_uri = parse_am_uri(uri)
        self._am_address = resolve_address(self.am_uri.host, self.am_uri.port)

    def add_key(self, identity: bytes | str, key: DcafKey) -> None:
        """Store *key* under *identity*."""
        if isinstance(identity, str):
            identity = identity.encode("utf-8")
        self.keys[bytes(identity)] = key

    def find_key(self, identity: bytes | str) -> DcafKey | None:
        """Return the key stored under *identity*, or None."""
        if isinstance(identity, str):
            identity = identity.encode("utf-8")
        return self.keys.get(bytes(identity))

    def set_ticket_callback(self, callback: Callable | None) -> None:
        """Set the function that decides whether a ticket request is granted."""
        self.get_ticket = callback

    def set_scope_check(self, func: ScopeCheck | None) -> None:
        """Set the function that checks a request against a ticket's scope."""
        self.scope_check = func

    def is_authorized(self, session: object, pdu: CoapPdu, secure: bool) -> bool:
        """Return True if a valid ticket for *session* permits *pdu*.

        Requests over insecure sessions are never authorized.
        """
        if not secure:
            return False
        ticket = self.store.find_by_session(session)
        if ticket is None:
            logger.debug("no ticket for session %r found", session)
            return False
        if ticket.expired(self.clock()):
            return False
        check = self.scope_check or _default_scope_check
        allowed = bool(check(SCOPE_AIF, ticket.aif, pdu))
        if not allowed:
            logger.info("access denied")
        return allowed

    def set_sam_information(self, mediatype: int, response: CoapPdu) -> None:
        """Turn *response* into a 4.01 response carrying the AS information.

        Without an AM URI only the response code is set. Unless validity
        option 1 is used, a fresh server nonce is included and stored.
        """
        if self.am_uri is None:
            logger.debug("no SAM URI")
            response.code = CODE_UNAUTHORIZED
            return

        response.add_option(OptionNumber.CONTENT_FORMAT, encode_uint(mediatype))
        info: dict[int, object] = {REQ_SAM: self.am_uri.uri}
        nonce = None
        option = self.config.validity_option
        if option != 1:
            value = bytes(self.prng(MAX_NONCE_SIZE))
            if option == 2:
                nonce = Nonce(value, VALIDITY_TIMESTAMP, self.clock())
            else:
                nonce = Nonce(value, VALIDITY_TIMER, MAX_SERVER_TIMEOUT)
            info[REQ_SNC] = nonce.value

        payload = cbor2.dumps(info)
        if len(payload) <= SAM_INFO_MAX_SIZE:
            if nonce is not None:
                self.store.add_nonce(nonce)
            response.payload = payload
        else:
            logger.debug("AS information does not fit into %d bytes", SAM_INFO_MAX_SIZE)
        response.code = CODE_UNAUTHORIZED

    def set_error_response(self, response: CoapPdu) -> None:
        """Turn *response* into a 4.00 error response."""
        response.code = CODE_BAD_REQUEST
        response.add_option(OptionNumber.CONTENT_FORMAT, encode_uint(MEDIATYPE_TEXT_PLAIN))
        response.payload = b"error"

    def get_server_psk(self, identity: bytes | None, session: object) -> bytes | None:
        """Return the pre-shared key for a DTLS client presenting *identity*.

        The identity is either the name of a stored key or a UTF-8 encoded
        ticket face; a valid new ticket is stored and its key returned.
        """
        buf = b""
        if identity:
            identity = bytes(identity)
            key = self.find_key(identity)
            if key is not None:
                return key.data
            decoded = _identity_to_bytes(identity)
            if decoded is None:
                logger.warning("Cannot decode ticket face. Parsing raw data.")
                buf = identity
            else:
                buf = decoded

        try:
            ticket = parse_ticket_face(self.store, buf, session, self.clock(), self.decrypt)
        except DcafError as exc:
            logger.info("ticket face rejected: %s", exc)
            return None

        if ticket is not None:
            self.store.add(ticket)
            return ticket.key.data

        key = self.find_key(buf)
        if key is not None:
            logger.debug("found psk for %r", buf)
            return key.data
        return None


def _default_scope_check(scope_type: str, perm: object, pdu: CoapPdu) -> bool:
    if scope_type == SCOPE_AIF:
        return aif_allowed(perm, pdu)
    return False