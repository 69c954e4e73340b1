"""
Cache-first TLE repository.

Coordinates the cache store and a remote fetcher:

- fresh cache is returned without touching the network
- stale cache is revalidated with a conditional request, and returned as-is
  if the network fails
- concurrent requests for one query key share a single fetch
- after the server denies access (HTTP 403) the key is left alone for a
  backoff window
"""
import datetime
import enum
import functools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, NamedTuple, Optional

from tlecache.cache import CacheRecord, CacheStore
from tlecache.celestrak_client import NotModified, TLERemoteFetching
from tlecache.errors import BadStatus, NotModifiedWithoutCache, TLEError
from tlecache.policy import CachePolicy
from tlecache.tle import TLE, exclude_debris, parse_payload
from tlecache.utils import say, utcnow

DEFAULT_BACKOFF_WINDOW = datetime.timedelta(hours=2)
DEFAULT_MAX_WORKERS = 4

_GET = 'get'
_REFRESH = 'refresh'


class Source(enum.Enum):
    CACHE = 'cache'
    NETWORK = 'network'


@dataclass(frozen=True)
class RepositoryResult:
    """Parsed TLEs plus where they came from.

    fallback_error is set when cached data was returned because the network
    leg failed or was skipped during a backoff window.
    """
    tles: list[TLE]
    fetched_at: datetime.datetime
    source: Source
    fallback_error: Optional[Exception] = None


class _Cached(NamedTuple):
    result: RepositoryResult
    record: CacheRecord


class _InFlight(NamedTuple):
    future: Future
    kind: str


def decode_and_filter(payload: bytes, content_type: str) -> list[TLE]:
    """Parse a payload by content type and drop debris objects."""
    return exclude_debris(parse_payload(payload, content_type))


def _copy_outcome(target: Future, source: Future):
    error = source.exception()
    if error is not None:
        target.set_exception(error)
    else:
        target.set_result(source.result())


class TLERepository:
    """
    Serves TLEs for query keys from cache or network.

    Fetches run on an internal thread pool. Each call waits on the shared
    future for its key, so a caller that times out only abandons its own
    wait; the fetch itself finishes for everyone else.
    """

    def __init__(
        self,
        service: TLERemoteFetching,
        cache_store: CacheStore,
        policy: Optional[CachePolicy] = None,
        clock: Callable[[], datetime.datetime] = utcnow,
        backoff_window: datetime.timedelta = DEFAULT_BACKOFF_WINDOW,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        """
        Args:
            service: Remote fetcher (CelesTrakClient in production)
            cache_store: Store for raw payloads and validators
            policy: Freshness policy; defaults to 6 hours
            clock: Returns the current UTC time
            backoff_window: How long to stop fetching a key after a 403
            max_workers: Size of the fetch thread pool
        """
        self.service = service
        self.cache_store = cache_store
        self.policy = policy or CachePolicy()
        self.clock = clock
        self.backoff_window = backoff_window

        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix='tle-fetch')
        # Guards _in_flight and _blocked_until
        self._lock = threading.Lock()
        self._in_flight: dict[str, _InFlight] = {}
        self._blocked_until: dict[str, datetime.datetime] = {}

    def get_tles(self, query_key: str, timeout: Optional[float] = None) -> RepositoryResult:
        """
        Return cached data when fresh, otherwise refresh from the network.

        Args:
            query_key: Name filter, also used as the cache key
            timeout: Seconds to wait for the result; None waits forever

        Raises:
            TLEError: If there is no cached data and the fetch failed
            concurrent.futures.TimeoutError: If timeout expired first
        """
        return self._single_flight(query_key, _GET).result(timeout)

    def refresh_tles(self, query_key: str, timeout: Optional[float] = None) -> RepositoryResult:
        """Always try the network first; fall back to any cached data on failure.

        A refresh already running for the key is shared. A read already
        running is shared only if it went to the network; otherwise a network
        attempt starts once it finishes.
        """
        return self._single_flight(query_key, _REFRESH).result(timeout)

    def close(self):
        self._executor.shutdown(wait=True)

    def is_blocked(self, query_key: str) -> bool:
        """True while the key is inside a backoff window."""
        with self._lock:
            blocked = self._blocked_until.get(query_key)
        return blocked is not None and self.clock() < blocked

    def _single_flight(self, query_key: str, kind: str) -> Future:
        pending_get = None
        with self._lock:
            entry = self._in_flight.get(query_key)
            if entry is not None and (entry.kind == kind or entry.kind == _REFRESH):
                return entry.future

            if entry is not None:
                # A refresh cannot settle for a read that only hit the cache
                pending_get = entry.future
                future = Future()
            elif kind == _GET:
                future = self._executor.submit(self._get_internal, query_key)
            else:
                future = self._executor.submit(self._refresh_internal, query_key)
            self._in_flight[query_key] = _InFlight(future, kind)

        if pending_get is not None:
            pending_get.add_done_callback(
                functools.partial(self._refresh_after_get, query_key, future))
        future.add_done_callback(functools.partial(self._release, query_key))
        return future

    def _release(self, query_key: str, future: Future):
        with self._lock:
            entry = self._in_flight.get(query_key)
            if entry is not None and entry.future is future:
                del self._in_flight[query_key]

    def _refresh_after_get(self, query_key: str, future: Future, get_future: Future):
        error = get_future.exception()
        if error is not None:
            future.set_exception(error)
            return

        result = get_future.result()
        if result.source == Source.NETWORK or result.fallback_error is not None:
            future.set_result(result)
            return

        try:
            refresh = self._executor.submit(self._refresh_internal, query_key)
        except RuntimeError as e:
            # Executor already shut down
            future.set_exception(e)
            return
        refresh.add_done_callback(functools.partial(_copy_outcome, future))

    def _get_internal(self, query_key: str) -> RepositoryResult:
        cached = self._load_cached(query_key)
        if cached is None:
            say(f'No cached TLEs for {query_key!r}; fetching')
            return self._fetch_from_network(query_key, None)

        if not self.policy.is_stale(cached.result.fetched_at, self.clock()):
            return cached.result

        say(f'Cached TLEs for {query_key!r} are stale; revalidating')
        try:
            return self._fetch_from_network(query_key, cached.record)
        except Exception as e:
            say(f'Refresh of {query_key!r} failed, serving cache: {type(e).__name__}: {e}')
            return replace(cached.result, fallback_error=e)

    def _refresh_internal(self, query_key: str) -> RepositoryResult:
        cached = self._load_cached(query_key)
        try:
            return self._fetch_from_network(query_key, cached.record if cached else None)
        except Exception as e:
            if cached is None:
                raise
            say(f'Refresh of {query_key!r} failed, serving cache: {type(e).__name__}: {e}')
            return replace(cached.result, fallback_error=e)

    def _load_cached(self, query_key: str) -> Optional[_Cached]:
        record = self.cache_store.load(query_key)
        if record is None:
            return None

        try:
            tles = decode_and_filter(record.payload, record.metadata.content_type)
        except TLEError as e:
            say(f'Cached payload for {query_key!r} is unusable, ignoring it: {e}')
            return None

        result = RepositoryResult(tles=tles, fetched_at=record.metadata.fetched_at,
                                  source=Source.CACHE)
        return _Cached(result=result, record=record)

    def _check_backoff(self, query_key: str) -> bool:
        """True if the key is blocked; clears an expired block."""
        now = self.clock()
        with self._lock:
            blocked = self._blocked_until.get(query_key)
            if blocked is None:
                return False
            if now >= blocked:
                del self._blocked_until[query_key]
                return False
            return True

    def _fetch_from_network(self, query_key: str,
                            cached_record: Optional[CacheRecord]) -> RepositoryResult:
        if self._check_backoff(query_key):
            error = BadStatus(BadStatus.ACCESS_DENIED)
            if cached_record is None:
                raise error
            say(f'Skipping fetch of {query_key!r} during backoff; serving cache')
            metadata = cached_record.metadata
            return RepositoryResult(
                tles=decode_and_filter(cached_record.payload, metadata.content_type),
                fetched_at=metadata.fetched_at,
                source=Source.CACHE,
                fallback_error=error,
            )

        result = self._fetch_with_backoff(query_key, cached_record)
        fetched_at = self.clock()

        if isinstance(result, NotModified):
            if cached_record is None:
                raise NotModifiedWithoutCache(query_key)

            # Keep the old payload, but restart the staleness clock
            metadata = cached_record.metadata
            self.cache_store.save(
                query_key,
                cached_record.payload,
                source_url=result.source_url,
                fetched_at=fetched_at,
                content_type=metadata.content_type,
                etag=result.etag if result.etag is not None else metadata.etag,
                last_modified=(result.last_modified if result.last_modified is not None
                               else metadata.last_modified),
            )
            say(f'TLEs for {query_key!r} not modified')
            return RepositoryResult(
                tles=decode_and_filter(cached_record.payload, metadata.content_type),
                fetched_at=fetched_at,
                source=Source.CACHE,
            )

        # Parse before saving so a malformed payload never lands in the cache
        tles = decode_and_filter(result.payload, result.content_type)
        self.cache_store.save(
            query_key,
            result.payload,
            source_url=result.source_url,
            fetched_at=fetched_at,
            content_type=result.content_type,
            etag=result.etag,
            last_modified=result.last_modified,
        )
        say(f'Fetched {len(tles)} TLEs for {query_key!r}')
        return RepositoryResult(tles=tles, fetched_at=fetched_at, source=Source.NETWORK)

    def _fetch_with_backoff(self, query_key: str, cached_record: Optional[CacheRecord]):
        metadata = cached_record.metadata if cached_record is not None else None
        try:
            return self.service.fetch_tle_text(query_key, metadata)
        except BadStatus as e:
            if e.is_access_denied:
                until = self.clock() + self.backoff_window
                with self._lock:
                    self._blocked_until[query_key] = until
                say(f'Access denied for {query_key!r}; backing off until {until}')
            raise
