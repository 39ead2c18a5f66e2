"""Result codes and the exception that carries them."""

from __future__ import annotations

from enum import IntEnum


class DcafResult(IntEnum):
    """Outcome of a DCAF operation."""

    OK = 0
    UNAUTHORIZED = 1
    INVALID_TICKET = 2
    OUT_OF_MEMORY = 3
    INTERNAL_ERROR = 4
    BUFFER_TOO_SMALL = 5
    BAD_REQUEST = 6
    UNSUPPORTED_KEY_TYPE = 7
    UNAUTHORIZED_THRESHOLD = 8


class DcafError(Exception):
    """An error that carries the DCAF result code describing it."""

    def __init__(self, result: DcafResult, message: str | None = None) -> None:
        result = DcafResult(result)
        if result is DcafResult.OK:
            raise ValueError("DcafError requires an error result, not OK")
        self.result = result
        self.message = message if message is not None else result.name.lower().replace("_", " ")
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"DcafError({self.result.name}, {self.message!r})"