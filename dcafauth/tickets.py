"""Access tickets, keys, permissions and the ticket store of a server."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from cbor2 import CBORTag

from .coap import CoapPdu, get_method, get_resource_uri
from .errors import DcafError, DcafResult

MAX_KID_SIZE = 16
MAX_KEY_SIZE = 32
MAX_NONCE_SIZE = 8
MAX_RESOURCE_LEN = 255
MAX_SERVER_TIMEOUT = 10

COSE_KEY_KTY = 1
COSE_KEY_KID = 2
COSE_KEY_ALG = 3
COSE_KEY_K = -1
COSE_AES_CCM_64_64_128 = 12

VALIDITY_TIMESTAMP = 2
VALIDITY_TIMER = 3


class KeyType(Enum):
    NONE = "none"
    AES_128 = "aes-128"
    KID = "kid"


@dataclass
class DcafKey:
    """Keying material: a key type, the key bytes and a key identifier."""

    type: KeyType = KeyType.NONE
    data: bytes = b""
    kid: bytes = b""


@dataclass(frozen=True)
class Permission:
    """Permission to use the methods in the bit set *methods* on *resource*."""

    resource: str
    methods: int

    def allows(self, method: int) -> bool:
        return 1 <= method <= 32 and bool(self.methods & (1 << (method - 1)))


@dataclass
class Ticket:
    """An access ticket accepted by a server."""

    seq: int = 0
    ts: int = 0
    remaining_time: int = 0
    key: DcafKey = field(default_factory=DcafKey)
    aif: list[Permission] | None = None
    session: object = None

    def expired(self, now: int) -> bool:
        """Return True if the ticket lifetime has run out at *now*."""
        return self.ts + self.remaining_time <= now


@dataclass
class DeprecatedTicket:
    """A ticket that was replaced; its sequence number stays blocked until expiry."""

    seq: int
    ts: int
    remaining_time: int

    def expired(self, now: int) -> bool:
        return self.ts + self.remaining_time <= now


@dataclass
class Nonce:
    """A server nonce with its validity information.

    For VALIDITY_TIMESTAMP, *validity_value* is the creation time; for
    VALIDITY_TIMER it is a counter advanced on every expiry check.
    """

    value: bytes
    validity_type: int = VALIDITY_TIMER
    validity_value: int = 0


def _bytes_within(value: object, limit: int) -> bytes:
    if isinstance(value, (bytes, bytearray)) and len(value) <= limit:
        return bytes(value)
    return b""


def parse_dcaf_key(cose_key: object) -> DcafKey:
    """Build a DcafKey from a decoded COSE_Key map.

    A kid or key value that is not a byte string or is too long is left
    empty; only the AES-CCM-64-64-128 algorithm sets a key type.
    """
    if isinstance(cose_key, CBORTag):
        cose_key = cose_key.value
    key = DcafKey()
    if not isinstance(cose_key, Mapping):
        return key
    if COSE_KEY_KID in cose_key:
        key.kid = _bytes_within(cose_key[COSE_KEY_KID], MAX_KID_SIZE)
    alg = cose_key.get(COSE_KEY_ALG)
    if isinstance(alg, int) and not isinstance(alg, bool) and alg == COSE_AES_CCM_64_64_128:
        key.type = KeyType.AES_128
    if COSE_KEY_K in cose_key:
        key.data = _bytes_within(cose_key[COSE_KEY_K], MAX_KEY_SIZE)
    return key


def _permission(resource: object, methods: object) -> Permission:
    if isinstance(resource, (bytes, bytearray)):
        try:
            resource = bytes(resource).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DcafError(DcafResult.BAD_REQUEST, "invalid AIF resource") from exc
    if not isinstance(resource, str) or len(resource) > MAX_RESOURCE_LEN:
        raise DcafError(DcafResult.BAD_REQUEST, "invalid AIF resource")
    if not isinstance(methods, int) or isinstance(methods, bool) or methods < 0:
        raise DcafError(DcafResult.BAD_REQUEST, "invalid AIF permission")
    return Permission(resource, methods)


def parse_aif(value: object) -> list[Permission]:
    """Parse an AIF scope given as a flat [res, perm, ...] or nested [[res, perm], ...] array."""
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes, bytearray)):
        raise DcafError(DcafResult.BAD_REQUEST, "AIF scope must be an array")
    items = list(value)
    if items and all(
        isinstance(item, Sequence) and not isinstance(item, (str, bytes, bytearray))
        for item in items
    ):
        if any(len(item) != 2 for item in items):
            raise DcafError(DcafResult.BAD_REQUEST, "AIF entries must be pairs")
        return [_permission(res, perm) for res, perm in items]
    if len(items) % 2:
        raise DcafError(DcafResult.BAD_REQUEST, "AIF array has odd length")
    return [_permission(res, perm) for res, perm in zip(items[::2], items[1::2])]


def _normalize(resource: str) -> str:
    return resource[1:] if resource.startswith("/") else resource


def aif_allowed(aif: Sequence[Permission] | None, pdu: CoapPdu) -> bool:
    """Return True if *aif* grants the method of *pdu* on its resource."""
    if not aif:
        return False
    try:
        uri = get_resource_uri(pdu, MAX_RESOURCE_LEN)
    except ValueError:
        return False
    path = uri.decode("utf-8", errors="replace")
    method = get_method(pdu)
    return any(
        _normalize(perm.resource) == path and perm.allows(method) for perm in aif
    )


class TicketStore:
    """Tickets, deprecated tickets and nonces held by a server.

    New entries are placed in front, so searches find the newest first.
    """

    def __init__(self) -> None:
        self.tickets: list[Ticket] = []
        self.deprecated: list[DeprecatedTicket] = []
        self.nonces: list[Nonce] = []

    def add(self, ticket: Ticket) -> None:
        """Store *ticket*."""
        self.tickets.insert(0, ticket)

    def remove(self, ticket: Ticket) -> None:
        """Remove *ticket* if it is stored."""
        self.tickets = [t for t in self.tickets if t is not ticket]

    def __contains__(self, ticket: object) -> bool:
        return any(t is ticket for t in self.tickets)

    def __len__(self) -> int:
        return len(self.tickets)

    def find_by_session(self, session: object) -> Ticket | None:
        """Return the ticket bound to *session*, or None."""
        return next((t for t in self.tickets if t.session == session), None)

    def find_by_seq(self, seq: int) -> Ticket | None:
        """Return the ticket with sequence number *seq*, or None."""
        return next((t for t in self.tickets if t.seq == seq), None)

    def deprecate(self, seq: int) -> DeprecatedTicket | None:
        """Replace the ticket numbered *seq* by a deprecated entry."""
        ticket = self.find_by_seq(seq)
        if ticket is None:
            return None
        dep = DeprecatedTicket(ticket.seq, ticket.ts, ticket.remaining_time)
        self.deprecated.insert(0, dep)
        self.remove(ticket)
        return dep

    def is_deprecated(self, seq: int) -> bool:
        """Return True if *seq* belongs to a deprecated ticket."""
        return any(d.seq == seq for d in self.deprecated)

    def add_nonce(self, nonce: Nonce) -> None:
        """Store *nonce*."""
        self.nonces.insert(0, nonce)

    def expire(self, now: int) -> None:
        """Drop expired tickets, deprecated tickets and nonces."""
        self.tickets = [t for t in self.tickets if not t.expired(now)]
        self.deprecated = [d for d in self.deprecated if not d.expired(now)]
        kept = []
        for nonce in self.nonces:
            if nonce.validity_type == VALIDITY_TIMESTAMP:
                if nonce.validity_value + MAX_SERVER_TIMEOUT > now:
                    kept.append(nonce)
            else:
                count = nonce.validity_value
                nonce.validity_value += 1
                if count < MAX_SERVER_TIMEOUT:
                    kept.append(nonce)
        self.nonces = kept

    def determine_offset(self, nonce: bytes, now: int) -> int | None:
        """Return the time elapsed since *nonce* was issued, or None if unknown."""
        offset = None
        for stored in self.nonces:
            if stored.value != bytes(nonce):
                continue
            if stored.validity_type == VALIDITY_TIMESTAMP:
                offset = now - stored.validity_value
            elif stored.validity_type == VALIDITY_TIMER:
                offset = stored.validity_value
        return offset