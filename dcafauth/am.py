"""Authorization manager: ticket requests, verifiers and ticket grants."""

from __future__ import annotations

import itertools
import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

import cbor2

from .coap import (
    CODE_CREATED,
    CODE_FORBIDDEN,
    CODE_INTERNAL_ERROR,
    CoapPdu,
    Method,
    OptionNumber,
    encode_uint,
    get_content_format,
)
from .context import MEDIATYPE_DCAF_CBOR, REQ_AUD, REQ_SAM, REQ_SCOPE, REQ_SNC, DcafContext
from .errors import DcafError, DcafResult
from .ticket_face import (
    CWT_CNF_COSE_KEY,
    TICKET_AUD,
    TICKET_CNF,
    TICKET_EXPIRES_IN,
    TICKET_IAT,
    TICKET_SCOPE,
    TICKET_SEQ,
    TICKET_SNC,
)
from .tickets import (
    COSE_KEY_K,
    COSE_KEY_KTY,
    MAX_KID_SIZE,
    MAX_NONCE_SIZE,
    DcafKey,
    KeyType,
    Permission,
    Ticket,
    parse_aif,
)

logger = logging.getLogger(__name__)

MAX_AS_HINT_SIZE = 128
MAX_AUDIENCE_SIZE = 64

ACE_MSG_PROFILE = 38
ACE_PROFILE_DTLS = 1

CINFO_TICKET_FACE = 1
CINFO_IAT = 6
CINFO_SEQ = 7
CINFO_CNF = 8

COSE_KEY_KTY_SYMMETRIC = 4

INCLUDE_PROFILE = 0x01

# All ticket requests are granted with the scope they ask for.
TEST_MODE_ACCEPT = True

TICKET_LIFETIME = 3600
GRANT_MAX_AGE = 90
GRANT_MAX_SIZE = 1024

DEFAULT_AUDIENCE = "coaps://dcaf-temp"
DEFAULT_RESOURCE = "restricted"
DEFAULT_SCOPE = ["/", int(Method.GET)]

_KEY_SIZES = {KeyType.AES_128: 16}

_ticket_seq = itertools.count(1)


@dataclass
class TicketRequest:
    """A ticket request received from a client's authorization manager."""

    as_hint: str = ""
    aud: str = ""
    aif: list[Permission] | None = None
    snc: bytes = b""
    flags: int = 0


def default_ticket_request() -> TicketRequest:
    """Return the request used when a client sends an empty ticket request."""
    return TicketRequest(
        aud=DEFAULT_AUDIENCE,
        aif=[Permission(DEFAULT_RESOURCE, int(Method.GET))],
    )


def _bad_request(message: str) -> DcafError:
    logger.warning(message)
    return DcafError(DcafResult.BAD_REQUEST, message)


def _text(value: str | bytes) -> str:
    if isinstance(value, str):
        return value
    return bytes(value).decode("utf-8", errors="replace")


def _parse_scope_string(scope: str) -> list[Permission]:
    resources = scope.split()
    if not resources:
        raise DcafError(DcafResult.BAD_REQUEST, "empty scope")
    return [Permission(resource, int(Method.GET)) for resource in resources]


def parse_ticket_request(request: CoapPdu) -> TicketRequest:
    """Parse the ticket request carried in *request*.

    An empty payload yields the default request. Raises DcafError with
    BAD_REQUEST if the request is malformed.
    """
    content_format = get_content_format(request)
    if content_format is not None and content_format != MEDIATYPE_DCAF_CBOR:
        raise _bad_request("cannot parse request as application/dcaf+cbor")

    if not request.payload:
        return default_ticket_request()

    try:
        body = cbor2.loads(request.payload)
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise _bad_request("cannot parse ticket request") from exc
    if not isinstance(body, Mapping):
        body = {}

    treq = TicketRequest()

    hint = body.get(REQ_SAM)
    if not isinstance(hint, str):
        raise _bad_request("AS creation hint is missing or invalid")
    logger.info("AS creation hint: %r", hint)
    if len(hint.encode("utf-8")) <= MAX_AS_HINT_SIZE:
        treq.as_hint = hint
    else:
        logger.warning("AS creation hint in ticket request too long")

    if REQ_AUD not in body:
        raise _bad_request("field aud is missing")
    aud = body[REQ_AUD]
    if not isinstance(aud, (str, bytes, bytearray)):
        raise _bad_request("invalid field aud")
    logger.info("aud: %r", aud)
    aud_length = len(aud.encode("utf-8")) if isinstance(aud, str) else len(aud)
    if aud_length <= MAX_AUDIENCE_SIZE:
        treq.aud = _text(aud)
    else:
        logger.warning("aud in ticket request too long")

    scope = body.get(REQ_SCOPE, DEFAULT_SCOPE)
    if isinstance(scope, str):
        treq.aif = _parse_scope_string(scope)
    else:
        treq.aif = parse_aif(scope)

    if ACE_MSG_PROFILE in body:
        treq.flags |= INCLUDE_PROFILE

    if REQ_SNC in body:
        snc = body[REQ_SNC]
        if not isinstance(snc, (str, bytes, bytearray)):
            raise _bad_request("invalid field snc")
        snc = snc.encode("utf-8") if isinstance(snc, str) else bytes(snc)
        logger.info("snc: %s", snc.hex())
        if len(snc) <= MAX_NONCE_SIZE:
            treq.snc = snc
        else:
            logger.warning("snc in ticket request too long")

    return treq


def create_verifier(ticket: Ticket) -> DcafKey:
    """Give *ticket* a fresh random key and key identifier and return the key.

    Raises DcafError with UNSUPPORTED_KEY_TYPE if no random key of the
    ticket's key type can be made.
    """
    size = _KEY_SIZES.get(ticket.key.type) if ticket.key is not None else None
    if size is None:
        ticket.key = DcafKey()
        logger.debug("create_verifier: unsupported key type")
        raise DcafError(DcafResult.UNSUPPORTED_KEY_TYPE, "unsupported key type")
    ticket.key.data = secrets.token_bytes(size)
    ticket.key.kid = secrets.token_bytes(MAX_KID_SIZE)
    logger.debug("generated key %s with kid %s", ticket.key.data.hex(), ticket.key.kid.hex())
    return ticket.key


def _make_cose_key(key: DcafKey) -> dict[int, object]:
    return {
        CWT_CNF_COSE_KEY: {
            COSE_KEY_KTY: COSE_KEY_KTY_SYMMETRIC,
            COSE_KEY_K: bytes(key.data),
        }
    }


def _aif_to_cbor(aif: list[Permission] | None) -> list[object]:
    if not aif:
        raise DcafError(DcafResult.INTERNAL_ERROR, "ticket has no permissions")
    result: list[object] = []
    for perm in aif:
        result.extend((perm.resource, perm.methods))
    return result


def make_ticket_face(
    context: DcafContext, ticket: Ticket, request: TicketRequest | None
) -> dict[int, object] | bytes:
    """Build the ticket face for *ticket*.

    If *context* has an ``encrypt`` callable and the request names an
    audience, the face is encrypted with the audience's key and the
    serialized COSE object is returned; otherwise the face map is returned.
    """
    scope = _aif_to_cbor(ticket.aif)
    face: dict[int, object] = {}
    aud = request.aud if request is not None and request.aud else None
    snc = request.snc if request is not None and request.snc else None

    if aud:
        face[TICKET_AUD] = aud
    face[TICKET_SCOPE] = scope
    face[TICKET_SEQ] = ticket.seq
    face[TICKET_EXPIRES_IN] = ticket.remaining_time
    face[TICKET_CNF] = _make_cose_key(ticket.key)
    face[TICKET_IAT] = ticket.ts
    if snc:
        face[TICKET_SNC] = bytes(snc)

    encrypt: Callable[[DcafKey, bytes], bytes | None] | None = getattr(
        context, "encrypt", None
    )
    if encrypt is None or not aud:
        return face

    rs_key = context.find_key(aud)
    if rs_key is None:
        logger.error("cannot find ticket face encryption key")
        raise DcafError(DcafResult.INTERNAL_ERROR, "no ticket face encryption key")
    sealed = encrypt(rs_key, cbor2.dumps(face))
    if sealed is None:
        logger.critical("failed to encrypt ticket face")
        raise DcafError(DcafResult.INTERNAL_ERROR, "cannot encrypt ticket face")
    return bytes(sealed)


def _client_info(now: int, ticket: Ticket, flags: int) -> dict[int, object]:
    info: dict[int, object] = {
        CINFO_IAT: now,
        CINFO_SEQ: ticket.seq,
        CINFO_CNF: _make_cose_key(ticket.key),
    }
    if flags & INCLUDE_PROFILE:
        info[ACE_MSG_PROFILE] = ACE_PROFILE_DTLS
    return info


def _internal_error(response: CoapPdu) -> None:
    response.code = CODE_INTERNAL_ERROR
    response.payload = b"internal error"


def set_ticket_grant(
    context: DcafContext, session: object, request: TicketRequest, response: CoapPdu
) -> Ticket | None:
    """Answer *request* in *response* and return the granted ticket.

    The context's ticket callback decides whether access is granted; if it
    refuses or is not set, *response* becomes 4.03 and None is returned.
    On internal failure *response* becomes 5.00 and None is returned.
    """
    decision = context.get_ticket(session, request) if context.get_ticket else None
    if not decision:
        response.code = CODE_FORBIDDEN
        response.payload = b"Forbidden"
        return None

    ticket = Ticket(
        seq=0,
        ts=context.clock(),
        remaining_time=TICKET_LIFETIME,
        key=DcafKey(KeyType.AES_128),
    )
    try:
        create_verifier(ticket)
    except DcafError:
        logger.critical("cannot create ticket")
        _internal_error(response)
        return None

    ticket.seq = next(_ticket_seq)

    if TEST_MODE_ACCEPT:
        ticket.aif = request.aif
        request.aif = None
    else:
        ticket.aif = decision if isinstance(decision, list) else None

    try:
        face = make_ticket_face(context, ticket, request)
    except DcafError:
        logger.critical("cannot create ticket grant")
        _internal_error(response)
        return None

    body: dict[int, object] = {CINFO_TICKET_FACE: face}
    body.update(_client_info(context.clock(), ticket, request.flags))
    payload = cbor2.dumps(body)
    if len(payload) > GRANT_MAX_SIZE:
        logger.critical("cannot create ticket grant")
        _internal_error(response)
        return None

    response.code = CODE_CREATED
    response.add_option(OptionNumber.CONTENT_FORMAT, encode_uint(MEDIATYPE_DCAF_CBOR))
    response.add_option(OptionNumber.MAX_AGE, encode_uint(GRANT_MAX_AGE))
    response.payload = payload
    logger.info("ticket grant is %s", payload.hex())

    context.store.add(ticket)
    return ticket