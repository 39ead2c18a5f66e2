import cbor2
import pytest

from dcafauth.errors import DcafError, DcafResult
from dcafauth.tickets import (
    VALIDITY_TIMESTAMP,
    KeyType,
    Nonce,
    Permission,
    Ticket,
    TicketStore,
)
from dcafauth.ticket_face import (
    CWT_CNF_COSE_KEY,
    TICKET_CNF,
    TICKET_DSEQ,
    TICKET_EXPIRES_IN,
    TICKET_IAT,
    TICKET_SCOPE,
    TICKET_SEQ,
    TICKET_SNC,
    maybe_cose,
    parse_ticket_face,
)

NOW = 5000
KEY_DATA = b"secret"


def make_face(overrides=None):
    face = {
        TICKET_SEQ: 1,
        TICKET_EXPIRES_IN: 100,
        TICKET_IAT: NOW - 10,
        TICKET_CNF: {CWT_CNF_COSE_KEY: {-1: KEY_DATA, 2: b"kid", 3: 12}},
        TICKET_SCOPE: ["restricted", 1],
    }
    for key, value in (overrides or {}).items():
        if value is None:
            face.pop(key, None)
        else:
            face[key] = value
    return face


def encode(face):
    return cbor2.dumps(face)


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"\xd0\x83\x40\xa0\x40", True),
        (b"\x83\x40\xa0\x40", True),
        (b"\xa1\x01\x02", False),
        (b"\xc1\x83\x40\xa0\x40", False),
        (b"\x83", False),
        (b"", False),
    ],
)
def test_maybe_cose(data, expected):
    assert maybe_cose(data) is expected


def test_parse_valid_face():
    store = TicketStore()
    ticket = parse_ticket_face(store, encode(make_face()), "session", NOW)
    assert ticket.seq == 1
    assert ticket.ts == NOW
    assert ticket.remaining_time == 100 - 10
    assert ticket.key.data == KEY_DATA
    assert ticket.key.kid == b"kid"
    assert ticket.key.type is KeyType.AES_128
    assert ticket.aif == [Permission("restricted", 1)]
    assert ticket.session == "session"
    assert ticket not in store


def test_known_sequence_number_returns_none():
    store = TicketStore()
    store.add(Ticket(seq=1, ts=NOW, remaining_time=50))
    assert parse_ticket_face(store, encode(make_face()), "s", NOW) is None


def test_deprecated_sequence_number_rejected():
    store = TicketStore()
    store.add(Ticket(seq=1, ts=NOW, remaining_time=50))
    store.deprecate(1)
    with pytest.raises(DcafError) as info:
        parse_ticket_face(store, encode(make_face()), "s", NOW)
    assert info.value.result is DcafResult.INVALID_TICKET


def test_dseq_deprecates_old_ticket():
    store = TicketStore()
    old = Ticket(seq=3, ts=NOW, remaining_time=50)
    store.add(old)
    ticket = parse_ticket_face(
        store, encode(make_face({TICKET_DSEQ: 3})), "s", NOW
    )
    assert ticket.seq == 1
    assert old not in store
    assert store.is_deprecated(3)


def test_expired_face_rejected():
    store = TicketStore()
    face = make_face({TICKET_IAT: NOW - 200})
    with pytest.raises(DcafError) as info:
        parse_ticket_face(store, encode(face), "s", NOW)
    assert info.value.result is DcafResult.UNAUTHORIZED


def test_nonce_validity():
    store = TicketStore()
    store.add_nonce(Nonce(b"nonce", VALIDITY_TIMESTAMP, NOW - 5))
    face = make_face({TICKET_IAT: None, TICKET_SNC: b"nonce"})
    ticket = parse_ticket_face(store, encode(face), "s", NOW)
    assert ticket.remaining_time == 100 - 5


def test_unknown_nonce_rejected():
    store = TicketStore()
    face = make_face({TICKET_IAT: None, TICKET_SNC: b"other"})
    with pytest.raises(DcafError) as info:
        parse_ticket_face(store, encode(face), "s", NOW)
    assert info.value.result is DcafResult.UNAUTHORIZED


def test_missing_validity_rejected():
    with pytest.raises(DcafError) as info:
        parse_ticket_face(
            TicketStore(), encode(make_face({TICKET_IAT: None})), "s", NOW
        )
    assert info.value.result is DcafResult.UNAUTHORIZED


@pytest.mark.parametrize(
    "overrides",
    [
        {TICKET_CNF: None},
        {TICKET_SEQ: None},
        {TICKET_SEQ: "one"},
        {TICKET_EXPIRES_IN: None},
        {TICKET_EXPIRES_IN: -3},
        {TICKET_IAT: "yesterday"},
    ],
)
def test_missing_or_invalid_fields_rejected(overrides):
    with pytest.raises(DcafError) as info:
        parse_ticket_face(TicketStore(), encode(make_face(overrides)), "s", NOW)
    assert info.value.result is DcafResult.UNAUTHORIZED


@pytest.mark.parametrize("data", [b"", b"\xff\xff", cbor2.dumps("text")])
def test_not_a_map_rejected(data):
    with pytest.raises(DcafError) as info:
        parse_ticket_face(TicketStore(), data, "s", NOW)
    assert info.value.result is DcafResult.UNAUTHORIZED


def test_invalid_scope_rejected():
    face = make_face({TICKET_SCOPE: ["restricted"]})
    with pytest.raises(DcafError) as info:
        parse_ticket_face(TicketStore(), encode(face), "s", NOW)
    assert info.value.result is DcafResult.BAD_REQUEST


def test_scope_that_is_not_an_array_is_ignored():
    face = make_face({TICKET_SCOPE: "restricted"})
    ticket = parse_ticket_face(TicketStore(), encode(face), "s", NOW)
    assert ticket.aif is None


def test_encrypted_face_is_decrypted():
    cose = b"\xd0" + cbor2.dumps([b"", {}, b"cipher"])
    seen = []

    def decrypt(data):
        seen.append(data)
        return encode(make_face({TICKET_SEQ: 9}))

    ticket = parse_ticket_face(TicketStore(), cose, "s", NOW, decrypt)
    assert seen == [cose]
    assert ticket.seq == 9


@pytest.mark.parametrize("decrypt", [None, lambda data: None])
def test_encrypted_face_without_decryption_rejected(decrypt):
    cose = b"\xd0" + cbor2.dumps([b"", {}, b"cipher"])
    with pytest.raises(DcafError) as info:
        parse_ticket_face(TicketStore(), cose, "s", NOW, decrypt)
    assert info.value.result is DcafResult.UNAUTHORIZED