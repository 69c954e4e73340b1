"""
Durable TLE cache on top of the Storage abstraction.

Each query key owns two blobs: '<name>.json' holds metadata (when it was
fetched, from where, and the HTTP validators needed for conditional
requests) and '<name>.dat' holds the raw payload bytes. Older installs kept
the payload in '<name>.tle'; those files are migrated on first read.
"""
import datetime
import json
import re
from dataclasses import dataclass
from typing import Optional

from tlecache.storage import Storage
from tlecache.utils import parse_utc, say

DEFAULT_CONTENT_TYPE = 'text/tle'
DEFAULT_FILE_NAME = 'default'
_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_-]')


@dataclass(frozen=True)
class CacheMetadata:
    """Metadata persisted alongside a raw TLE payload."""
    query_key: str
    fetched_at: datetime.datetime
    source_url: str
    content_type: str = DEFAULT_CONTENT_TYPE
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    def to_json(self) -> bytes:
        doc = {
            'queryKey': self.query_key,
            'fetchedAt': self.fetched_at.isoformat(),
            'sourceURL': self.source_url,
            'contentType': self.content_type,
        }
        if self.etag is not None:
            doc['etag'] = self.etag
        if self.last_modified is not None:
            doc['lastModified'] = self.last_modified
        return json.dumps(doc).encode()

    @classmethod
    def from_json(cls, data: bytes) -> 'CacheMetadata':
        """
        Decode metadata written by to_json().

        Metadata from older versions may lack contentType; it defaults to TLE text.

        Raises:
            ValueError, KeyError, TypeError: If the document is corrupt
        """
        doc = json.loads(data)
        return cls(
            query_key=str(doc['queryKey']),
            fetched_at=parse_utc(doc['fetchedAt']),
            source_url=str(doc['sourceURL']),
            content_type=doc.get('contentType') or DEFAULT_CONTENT_TYPE,
            etag=doc.get('etag'),
            last_modified=doc.get('lastModified'),
        )


@dataclass(frozen=True)
class CacheRecord:
    payload: bytes
    metadata: CacheMetadata


def sanitized_file_name(query_key: str) -> str:
    """Map a query key onto a filename that cannot escape the cache directory."""
    name = _UNSAFE_CHARS.sub('_', query_key)
    return name or DEFAULT_FILE_NAME


class CacheStore:
    """
    Cache of raw TLE payloads keyed by query key.

    The payload is written before its metadata, so a reader that sees
    metadata also sees a payload. Anything unreadable is reported as a miss.
    """

    METADATA_EXT = '.json'
    PAYLOAD_EXT = '.dat'
    LEGACY_PAYLOAD_EXT = '.tle'

    def __init__(self, storage: Storage):
        """
        Args:
            storage: Storage backend holding the metadata and payload blobs
        """
        self.storage = storage

    def _filenames(self, query_key: str) -> tuple[str, str, str]:
        name = sanitized_file_name(query_key)
        return (name + self.METADATA_EXT,
                name + self.PAYLOAD_EXT,
                name + self.LEGACY_PAYLOAD_EXT)

    def load(self, query_key: str) -> Optional[CacheRecord]:
        """
        Load the cached record for a query key.

        Returns:
            The record, or None if it is missing, corrupt, or has no payload
        """
        metadata_file, payload_file, legacy_file = self._filenames(query_key)

        raw_metadata = self.storage.get(metadata_file)
        if raw_metadata is None:
            return None

        try:
            metadata = CacheMetadata.from_json(raw_metadata)
        except (ValueError, KeyError, TypeError, OverflowError) as e:
            say(f'Ignoring corrupt cache metadata for {query_key!r}: {e}')
            return None

        payload = self.storage.get(payload_file)
        if payload is None:
            payload = self._migrate_legacy_payload(payload_file, legacy_file)
        if payload is None:
            return None

        return CacheRecord(payload=payload, metadata=metadata)

    def _migrate_legacy_payload(self, payload_file: str, legacy_file: str) -> Optional[bytes]:
        legacy = self.storage.get(legacy_file)
        if legacy is None:
            return None

        say(f'Migrating legacy cache payload {legacy_file} to {payload_file}')
        self.storage.put(payload_file, legacy)
        self.storage.delete(legacy_file)
        return legacy

    def load_text_payload(self, query_key: str) -> Optional[str]:
        record = self.load(query_key)
        if record is None:
            return None
        return self.decode_text_payload(record)

    @staticmethod
    def decode_text_payload(record: CacheRecord) -> Optional[str]:
        """UTF-8 text of a record whose content type is text/*, else None."""
        if not record.metadata.content_type.startswith('text/'):
            return None
        try:
            return record.payload.decode('utf8')
        except UnicodeDecodeError:
            return None

    def save(
        self,
        query_key: str,
        payload: bytes,
        source_url: str,
        fetched_at: datetime.datetime,
        content_type: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> None:
        """Store a payload and its metadata, each written atomically."""
        metadata_file, payload_file, _ = self._filenames(query_key)
        metadata = CacheMetadata(
            query_key=query_key,
            fetched_at=fetched_at,
            source_url=source_url,
            content_type=content_type,
            etag=etag,
            last_modified=last_modified,
        )

        self.storage.put(payload_file, payload)
        self.storage.put(metadata_file, metadata.to_json())


class NoOpCacheStore(CacheStore):
    """Cache store that never caches - always fetches fresh data."""

    class _NoOpStorage(Storage):
        def get(self, filename: str):
            return None

        def put(self, filename: str, data: bytes):
            pass

        def delete(self, filename: str):
            pass

    def __init__(self):
        super().__init__(self._NoOpStorage())
