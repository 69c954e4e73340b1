"""
Errors raised while fetching, caching, and parsing TLE data.

Every error carries a human-readable message so hosts can show it directly.
"""
from typing import Optional


class TLEError(Exception):
    """Base class for all TLE fetch/parse errors."""


class InvalidRequest(TLEError):
    def __init__(self, detail: str = ''):
        self.detail = detail
        msg = 'The TLE request could not be built'
        super().__init__(f'{msg}: {detail}' if detail else f'{msg}.')


class TransportFailure(TLEError):
    """The request never produced an HTTP response (DNS, timeout, reset...)."""

    def __init__(self, detail: str = ''):
        self.detail = detail
        super().__init__(f'Could not reach the TLE server: {detail}')


class BadStatus(TLEError):
    ACCESS_DENIED = 403

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f'The TLE server returned HTTP {status_code}.')

    @property
    def is_access_denied(self) -> bool:
        return self.status_code == self.ACCESS_DENIED


class EmptyBody(TLEError):
    def __init__(self):
        super().__init__('The TLE server returned an empty response.')


class MalformedRecord(TLEError):
    """A text dataset had a record that did not follow the TLE layout.

    Args:
        line: 1-based line number (counting non-blank lines) of the problem
        reason: Short description of what was expected
    """

    def __init__(self, line: int, reason: str):
        self.line = line
        self.reason = reason
        super().__init__(f'Malformed TLE at line {line}: {reason}')


class NoUsableRecords(TLEError):
    def __init__(self):
        super().__init__('The TLE response did not contain any usable TLE lines.')


class PayloadDecodeError(TLEError):
    def __init__(self, detail: str = ''):
        self.detail = detail
        super().__init__(f'The TLE response could not be decoded: {detail}')


class NotModifiedWithoutCache(TLEError):
    def __init__(self, query_key: Optional[str] = None):
        self.query_key = query_key
        super().__init__(
            'The TLE server reported no changes, but there is no cached data to reuse.')
