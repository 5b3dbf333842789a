from __future__ import annotations


class Day0Error(Exception):
    pass


class MalformedCandle(Day0Error, ValueError):
    """A candle field could not be parsed as a finite real number."""

    def __init__(self, position: int, field: str, value: object):
        self.position = position
        self.field = field
        self.value = value
        super().__init__(f"candle #{position}: cannot parse {field}={value!r}")


class SeriesOrderError(Day0Error, ValueError):
    pass


class IndexOutOfRange(Day0Error, IndexError):
    pass


class KiteAPIError(Day0Error):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(KiteAPIError):
    pass


class InstrumentNotFound(Day0Error, LookupError):
    pass
