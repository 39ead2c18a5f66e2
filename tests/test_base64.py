import pytest

from dcafauth.base64 import decode, encode


@pytest.mark.parametrize(
    "raw",
    [b"", b"f", b"fo", b"foo", b"foob", b"fooba", b"foobar", bytes(range(256))],
)
def test_round_trip(raw):
    assert decode(encode(raw)) == raw


def test_known_vectors():
    assert encode(b"f") == b"Zg=="
    assert encode(b"foobar") == b"Zm9vYmFy"


def test_encoded_length_is_multiple_of_four():
    for n in range(20):
        assert len(encode(bytes(n))) % 4 == 0


def test_decode_ignores_unknown_characters():
    assert decode(b"Zm9v\nYm Fy") == decode(b"Zm9vYmFy")


def test_decode_stops_at_padding():
    assert decode(b"Zg==Zm9v") == decode(b"Zg==")


def test_decode_accepts_text():
    assert decode(encode(b"secret").decode("ascii")) == b"secret"


def test_decode_without_padding():
    assert decode(encode(b"fo").rstrip(b"=")) == b"fo"


def test_single_trailing_symbol_is_dropped():
    assert decode(encode(b"abc") + b"Z") == b"abc"


def test_empty_input():
    assert decode(b"") == b""
    assert encode(b"") == b""