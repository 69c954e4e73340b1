"""
CelesTrak GP endpoint client with conditional requests and format fallback.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

import requests

from tlecache.cache import CacheMetadata
from tlecache.errors import (
    BadStatus,
    EmptyBody,
    InvalidRequest,
    NoUsableRecords,
    NotModifiedWithoutCache,
    TransportFailure,
)
from tlecache.tle import TLE, parse_json_payload, parse_payload
from tlecache.utils import say

BASE_URL = 'https://celestrak.org/NORAD/elements/gp.php'
# CelesTrak answers 403 (or an HTML page) to requests without a User-Agent
USER_AGENT = 'tle-cache/1.0 (+https://celestrak.org)'
DEFAULT_TIMEOUT = 30

JSON_FORMAT = 'json'
TEXT_FORMAT = 'tle'
JSON_ACCEPT = 'application/json'
TEXT_ACCEPT = 'text/plain'
DEFAULT_CONTENT_TYPE = 'application/json'


@dataclass(frozen=True)
class FetchResponse:
    """A fresh payload (HTTP 200)."""
    payload: bytes
    content_type: str
    source_url: str
    etag: Optional[str] = None
    last_modified: Optional[str] = None


@dataclass(frozen=True)
class NotModified:
    """The server reported the cached copy is still current (HTTP 304)."""
    etag: Optional[str]
    last_modified: Optional[str]
    source_url: str


FetchResult = Union[FetchResponse, NotModified]


class TLERemoteFetching(ABC):
    """Anything that can fetch a raw TLE payload for a query key."""

    @abstractmethod
    def fetch_tle_text(self, query_key: str,
                       cache_metadata: Optional[CacheMetadata] = None) -> FetchResult:
        """
        Fetch the payload for a query key.

        Args:
            query_key: Name filter passed to the server
            cache_metadata: Metadata of the cached copy, if any; its
                validators are replayed as conditional request headers

        Returns:
            FetchResponse with a new payload, or NotModified
        """
        pass


def _content_type(response) -> str:
    raw = response.headers.get('Content-Type')
    if not raw:
        return DEFAULT_CONTENT_TYPE
    return raw.split(';')[0].strip() or DEFAULT_CONTENT_TYPE


class CelesTrakClient(TLERemoteFetching):
    """Fetches TLEs by substring match on satellite name (e.g. 'SPACEMOBILE')."""

    def __init__(self, base_url: str = BASE_URL, timeout: float = DEFAULT_TIMEOUT,
                 user_agent: str = USER_AGENT):
        self.base_url = base_url
        self.timeout = timeout
        self.user_agent = user_agent

    def make_url(self, query_key: str, fmt: str) -> str:
        if not isinstance(query_key, str):
            raise InvalidRequest(f'query key must be a string, got {type(query_key).__name__}')

        params = {'NAME': query_key, 'FORMAT': fmt}
        try:
            return requests.Request('GET', self.base_url, params=params).prepare().url
        except (requests.exceptions.RequestException, ValueError) as e:
            raise InvalidRequest(str(e)) from e

    def fetch_tle_text(self, query_key: str,
                       cache_metadata: Optional[CacheMetadata] = None) -> FetchResult:
        json_url = self.make_url(query_key, JSON_FORMAT)

        try:
            result = self.perform_request(json_url, JSON_ACCEPT, cache_metadata)
        except BadStatus as e:
            if not e.is_access_denied:
                raise
            say(f'JSON endpoint refused {query_key!r}; falling back to TLE text')
            return self._fetch_text(query_key, cache_metadata)

        if isinstance(result, FetchResponse) and result.content_type.startswith(JSON_ACCEPT):
            # Only "no TLE lines in the JSON" triggers the text fallback;
            # other decode failures are real data errors.
            try:
                parse_json_payload(result.payload)
            except NoUsableRecords:
                say(f'JSON for {query_key!r} had no TLE lines; falling back to TLE text')
                return self._fetch_text(query_key, cache_metadata)

        return result

    def _fetch_text(self, query_key: str,
                    cache_metadata: Optional[CacheMetadata]) -> FetchResult:
        text_url = self.make_url(query_key, TEXT_FORMAT)
        return self.perform_request(text_url, TEXT_ACCEPT, cache_metadata)

    def perform_request(self, url: str, accept: str,
                        cache_metadata: Optional[CacheMetadata] = None) -> FetchResult:
        """
        Issue one GET with identity, Accept and conditional headers.

        Raises:
            TransportFailure: If no HTTP response was received (incl. timeout)
            BadStatus: For any non-2xx status other than 304
            EmptyBody: For a 2xx response without content
        """
        headers = {
            'User-Agent': self.user_agent,
            'Accept': accept,
        }
        if cache_metadata is not None:
            if cache_metadata.etag:
                headers['If-None-Match'] = cache_metadata.etag
            if cache_metadata.last_modified:
                headers['If-Modified-Since'] = cache_metadata.last_modified

        try:
            resp = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportFailure(str(e)) from e

        if resp.status_code == 304:
            return NotModified(
                etag=resp.headers.get('ETag'),
                last_modified=resp.headers.get('Last-Modified'),
                source_url=url,
            )
        if not 200 <= resp.status_code < 300:
            raise BadStatus(resp.status_code)
        if not resp.content:
            raise EmptyBody()

        return FetchResponse(
            payload=resp.content,
            content_type=_content_type(resp),
            source_url=url,
            etag=resp.headers.get('ETag'),
            last_modified=resp.headers.get('Last-Modified'),
        )

    def fetch_tles(self, query_key: str) -> list[TLE]:
        """Fetch and parse without any cache involvement."""
        result = self.fetch_tle_text(query_key)
        if isinstance(result, NotModified):
            raise NotModifiedWithoutCache(query_key)

        tles = parse_payload(result.payload, result.content_type)
        if not tles:
            raise EmptyBody()
        return tles
