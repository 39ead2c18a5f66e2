import pytest

from dcafauth.errors import DcafError, DcafResult


def test_error_carries_result_and_message():
    err = DcafError(DcafResult.INVALID_TICKET, "ticket revoked")
    assert err.result is DcafResult.INVALID_TICKET
    assert err.message == "ticket revoked"
    assert str(err) == "ticket revoked"


def test_default_message_is_derived_from_result_name():
    err = DcafError(DcafResult.BAD_REQUEST)
    assert str(err) == "bad request"


def test_integer_result_is_converted():
    err = DcafError(int(DcafResult.UNAUTHORIZED), "denied")
    assert err.result is DcafResult.UNAUTHORIZED


def test_ok_is_not_an_error():
    with pytest.raises(ValueError):
        DcafError(DcafResult.OK, "fine")


def test_error_can_be_raised_and_caught():
    err = DcafError(DcafResult.OUT_OF_MEMORY)
    with pytest.raises(DcafError) as info:
        raise err
    assert info.value is err
    assert info.value.result is DcafResult.OUT_OF_MEMORY
    assert str(info.value) == "out of memory"


def test_every_failure_result_gives_a_distinct_error():
    failures = [r for r in DcafResult if r is not DcafResult.OK]
    errors = [DcafError(r) for r in failures]
    assert [e.result for e in errors] == failures
    assert len({str(e) for e in errors}) == len(failures)