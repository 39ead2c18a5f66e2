import pytest

from dcafauth.coap import (
    CODE_UNAUTHORIZED,
    CoapPdu,
    Method,
    OptionNumber,
    decode_uint,
    encode_uint,
    get_content_format,
    get_method,
    get_resource_uri,
    response_class,
)


def test_encode_zero_is_empty():
    assert encode_uint(0) == b""


def test_encode_small_value():
    assert encode_uint(60) == bytes([60])


def test_encode_two_bytes():
    assert encode_uint(256) == b"\x01\x00"


@pytest.mark.parametrize("value", [0, 1, 255, 256, 65535, 90, 3600, 2**32 - 1])
def test_uint_round_trip(value):
    assert decode_uint(encode_uint(value)) == value


def test_encode_negative_rejected():
    with pytest.raises(ValueError):
        encode_uint(-1)


def test_content_format_absent():
    assert get_content_format(CoapPdu()) is None
    assert get_content_format(None) is None


def test_content_format_present():
    pdu = CoapPdu()
    pdu.add_option(OptionNumber.CONTENT_FORMAT, 60)
    assert get_content_format(pdu) == 60


def test_options_kept_sorted_and_stable():
    pdu = CoapPdu()
    pdu.add_option(OptionNumber.CONTENT_FORMAT, 0)
    pdu.add_option(OptionNumber.URI_PATH, "a")
    pdu.add_option(OptionNumber.URI_PATH, "b")
    numbers = [n for n, _ in pdu.options]
    assert numbers == sorted(numbers)
    assert pdu.options_of(OptionNumber.URI_PATH) == [b"a", b"b"]
    assert pdu.option(OptionNumber.URI_PATH) == b"a"
    assert pdu.option(OptionNumber.MAX_AGE) is None


def test_get_method():
    assert get_method(CoapPdu(code=Method.POST)) == Method.POST


def test_resource_uri_joins_segments():
    pdu = CoapPdu(code=Method.GET)
    pdu.add_option(OptionNumber.URI_PATH, "a")
    pdu.add_option(OptionNumber.URI_PATH, "b")
    assert get_resource_uri(pdu, 10) == b"a/b"


def test_resource_uri_fits_exactly():
    pdu = CoapPdu()
    pdu.add_option(OptionNumber.URI_PATH, "restricted")
    assert get_resource_uri(pdu, 10) == b"restricted"


def test_resource_uri_too_long():
    pdu = CoapPdu()
    pdu.add_option(OptionNumber.URI_PATH, "restricted")
    with pytest.raises(ValueError):
        get_resource_uri(pdu, 9)


def test_response_class_of_unauthorized():
    assert response_class(CODE_UNAUTHORIZED) == 4