"""Parsing of access ticket faces presented to a DCAF server."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

import cbor2

from .errors import DcafError, DcafResult
from .tickets import Ticket, TicketStore, parse_aif, parse_dcaf_key

logger = logging.getLogger(__name__)

COSE_ENCRYPT0 = 16
CWT_CNF_COSE_KEY = 1

TICKET_EXPIRES_IN = 2
TICKET_AUD = 3
TICKET_IAT = 6
TICKET_SEQ = 7
TICKET_CNF = 8
TICKET_SCOPE = 9
TICKET_SNC = 39
TICKET_DSEQ = 40

_MAJOR_ARRAY = 4
_MAJOR_TAG = 6

Decryptor = Callable[[bytes], "bytes | None"]


def _major_type(initial_byte: int) -> int:
    return initial_byte >> 5


def _is_uint(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def maybe_cose(data: bytes) -> bool:
    """Return True if *data* looks like a COSE_Encrypt0 structure.

    Only an untagged array or an array tagged as COSE_Encrypt0 qualifies.
    """
    data = bytes(data)
    if data and _major_type(data[0]) == _MAJOR_TAG:
        if data[0] & 0x1F != COSE_ENCRYPT0:
            return False
        data = data[1:]
    return len(data) > 1 and _major_type(data[0]) == _MAJOR_ARRAY


def _unauthorized(message: str) -> DcafError:
    logger.info(message)
    return DcafError(DcafResult.UNAUTHORIZED, message)


def _decode(data: bytes) -> object:
    try:
        return cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise _unauthorized("cannot parse access ticket") from exc


def _check_lifetime(remaining: int) -> int:
    if remaining <= 0:
        raise _unauthorized("ticket lifetime exceeded")
    return remaining


def parse_ticket_face(
    store: TicketStore,
    data: bytes,
    session: object,
    now: int,
    decrypt: Decryptor | None = None,
) -> Ticket | None:
    """Parse the ticket face in *data* and return a new ticket bound to *session*.

    Encrypted faces are passed to *decrypt*, which returns the plaintext or
    None. Returns None if a ticket with the same sequence number is already
    stored. Raises DcafError if the face is invalid, expired or deprecated.
    The ticket is not added to *store*; a deprecated ticket named by the
    face is removed from it, though.
    """
    data = bytes(data)
    if maybe_cose(data):
        plaintext = decrypt(data) if decrypt is not None else None
        if plaintext is None:
            raise _unauthorized("cannot decrypt COSE object")
        data = bytes(plaintext)

    face = _decode(data)
    if not isinstance(face, Mapping):
        raise _unauthorized("cannot parse access ticket")

    seq = face.get(TICKET_SEQ)
    if not _is_uint(seq):
        raise _unauthorized("sequence number not found or invalid")

    if store.find_by_seq(seq) is not None:
        return None
    if store.is_deprecated(seq):
        raise DcafError(DcafResult.INVALID_TICKET, "ticket has been deprecated")

    dseq = face.get(TICKET_DSEQ)
    if _is_uint(dseq):
        store.deprecate(dseq)

    lifetime = face.get(TICKET_EXPIRES_IN)
    if not _is_uint(lifetime):
        raise _unauthorized("no valid lifetime found")

    remaining: int | None = None
    if TICKET_IAT in face:
        iat = face[TICKET_IAT]
        if not _is_uint(iat):
            raise _unauthorized("no valid iat found")
        remaining = _check_lifetime(lifetime - (now - iat))

    if remaining is None:
        snc = face.get(TICKET_SNC)
        if isinstance(snc, (bytes, bytearray)):
            offset = store.determine_offset(bytes(snc), now)
            if offset is None or offset < 0:
                raise _unauthorized("error calculating the offset")
            remaining = _check_lifetime(lifetime - offset)

    if remaining is None:
        raise _unauthorized("no validity information found")

    cnf = face.get(TICKET_CNF)
    if cnf is None:
        raise _unauthorized("no cnf found")
    cose_key = cnf.get(CWT_CNF_COSE_KEY) if isinstance(cnf, Mapping) else None
    key = parse_dcaf_key(cose_key)

    scope = face.get(TICKET_SCOPE)
    aif = parse_aif(scope) if isinstance(scope, (list, tuple)) else None

    return Ticket(
        seq=seq,
        ts=now,
        remaining_time=remaining,
        key=key,
        aif=aif,
        session=session,
    )