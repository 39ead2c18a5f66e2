"""Client side of DCAF: ticket requests to the AM and received ticket grants."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum

import cbor2
from cbor2 import CBORTag

from .errors import DcafError, DcafResult
from .tickets import DcafKey, parse_dcaf_key

logger = logging.getLogger(__name__)

REQ_SAM = 1
REQ_AUD = 5
REQ_SCOPE = 9
REQ_SNC = 39
ACE_MSG_PROFILE = 38

CINFO_TICKET_FACE = 1
CINFO_EXPIRES_IN = 2
CINFO_IAT = 6
CINFO_SEQ = 7
CINFO_CNF = 8

CWT_CNF_COSE_KEY = 1

# Ticket requests announce support for an ACE profile with a null value.
ACE_REQUEST_PROFILE = True

TICKET_REQUEST_MAX_SIZE = 512
COAP_DEFAULT_MAX_AGE = 60

_EPOCH_TAG = 1


class Protocol(IntEnum):
    """CoAP transport protocols; the even values above zero are secure."""

    NONE = 0
    UDP = 1
    DTLS = 2
    TCP = 3
    TLS = 4
    WS = 5
    WSS = 6

    @property
    def secured(self) -> "Protocol":
        """The secure counterpart of this protocol."""
        if self is Protocol.NONE or self.value % 2 == 0:
            return self
        return Protocol(self.value + 1)


def proto_from_scheme(scheme: str) -> Protocol:
    """Return the secure transport to use for URI *scheme*.

    Everything that is not TLS or secure WebSockets is DTLS.
    """
    scheme = scheme.lower()
    if scheme == "coaps+tcp":
        return Protocol.TLS
    if scheme == "coaps+ws":
        return Protocol.WSS
    return Protocol.DTLS


def _decode(data: bytes, message: str, result: DcafResult) -> object:
    try:
        return cbor2.loads(bytes(data))
    except (cbor2.CBORDecodeError, ValueError) as exc:
        logger.error(message)
        raise DcafError(result, message) from exc


def make_ticket_request(
    data: bytes, audience: str | bytes, resource_uri: str | bytes, method: int
) -> bytes:
    """Build a ticket request for the AM from the AS information in *data*.

    The AS URI and server nonce are copied from *data*, which must be a
    CBOR map; the scope is the requested resource and method.
    """
    info = _decode(data, "cannot create ticket request", DcafResult.BAD_REQUEST)
    if not isinstance(info, Mapping):
        logger.error("cannot create ticket request")
        raise DcafError(DcafResult.BAD_REQUEST, "AS information is not a map")

    if isinstance(audience, (bytes, bytearray)):
        audience = bytes(audience).decode("utf-8", errors="replace")
    if isinstance(resource_uri, (bytes, bytearray)):
        resource_uri = bytes(resource_uri).decode("utf-8", errors="replace")

    request: dict[int, object] = {}
    if REQ_SAM in info:
        request[REQ_SAM] = info[REQ_SAM]
    request[REQ_AUD] = audience
    request[REQ_SCOPE] = [resource_uri, int(method)]
    if ACE_REQUEST_PROFILE:
        request[ACE_MSG_PROFILE] = None
    if REQ_SNC in info:
        request[REQ_SNC] = info[REQ_SNC]

    encoded = cbor2.dumps(request)
    if len(encoded) > TICKET_REQUEST_MAX_SIZE:
        raise DcafError(DcafResult.BUFFER_TOO_SMALL, "ticket request too large")
    return encoded


@dataclass(frozen=True)
class ClientTicket:
    """A ticket received from the AM: the opaque face and the verifier key."""

    face: bytes
    key: DcafKey
    seq: int = 0
    iat: int = 0
    lifetime: int = COAP_DEFAULT_MAX_AGE

    @property
    def identity(self) -> bytes:
        """The ticket face as UTF-8 encoded PSK identity."""
        return self.face.decode("latin-1").encode("utf-8")

    @property
    def psk(self) -> bytes:
        """The pre-shared key for the DTLS session."""
        return self.key.data


def _is_uint(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _invalid(message: str) -> DcafError:
    logger.info(message)
    return DcafError(DcafResult.INVALID_TICKET, message)


def parse_ticket_grant(payload: bytes, now: int, max_age: int | None = None) -> ClientTicket:
    """Parse a ticket grant received from the AM.

    The lifetime is taken from the grant, else from *max_age*, else the
    CoAP default Max-Age. Raises DcafError if the grant is malformed or
    has already expired at *now*.
    """
    if not payload:
        raise _invalid("no ticket found in received message")
    body = _decode(payload, "cannot parse ticket", DcafResult.INVALID_TICKET)
    if not isinstance(body, Mapping):
        raise _invalid("cannot parse ticket")

    if CINFO_IAT not in body:
        raise _invalid("no iat found (validity option 1)")
    iat = body[CINFO_IAT]
    if isinstance(iat, CBORTag):
        if iat.tag != _EPOCH_TAG:
            raise _invalid("invalid value in iat")
        iat = iat.value
    if not _is_uint(iat):
        raise _invalid("invalid value in iat")

    if CINFO_EXPIRES_IN in body:
        lifetime = body[CINFO_EXPIRES_IN]
        if not _is_uint(lifetime):
            raise _invalid("invalid value in lt")
    elif max_age is not None:
        lifetime = int(max_age)
    else:
        lifetime = COAP_DEFAULT_MAX_AGE

    if now < iat or lifetime < now - iat:
        raise _invalid("ticket has already expired")

    cnf = body.get(CINFO_CNF)
    if cnf is None:
        raise _invalid("no cnf found")
    cose_key = cnf.get(CWT_CNF_COSE_KEY) if isinstance(cnf, Mapping) else None
    if cose_key is None:
        raise _invalid("no COSE_Key found")
    key = parse_dcaf_key(cose_key)

    if CINFO_TICKET_FACE not in body:
        raise _invalid("cannot find ticket face")
    face = body[CINFO_TICKET_FACE]
    if isinstance(face, (bytes, bytearray)):
        face = bytes(face)
    elif isinstance(face, Mapping):
        face = cbor2.dumps(face)
    else:
        raise _invalid("invalid ticket face")
    if not face:
        raise _invalid("invalid ticket face")

    seq = body.get(CINFO_SEQ, 0)
    if not _is_uint(seq):
        seq = 0

    return ClientTicket(face=face, key=key, seq=seq, iat=iat, lifetime=lifetime)