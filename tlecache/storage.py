"""
Flat blob storage used by the TLE cache.

Each backend maps a filename to a byte string. The cache store layers its
metadata/payload file pairs on top, so backends know nothing about TLEs.
"""
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Optional

import boto3
from botocore.exceptions import ClientError


class Storage(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def get(self, filename: str) -> Optional[bytes]:
        """
        Retrieve a blob.

        Args:
            filename: Name of the blob to retrieve

        Returns:
            Blob contents, or None if it doesn't exist
        """
        pass

    @abstractmethod
    def put(self, filename: str, data: bytes) -> None:
        """
        Store a blob, replacing any existing one atomically.

        Args:
            filename: Name of the blob to store
            data: Blob contents
        """
        pass

    @abstractmethod
    def delete(self, filename: str) -> None:
        """Remove a blob. Removing a blob that doesn't exist is not an error."""
        pass


class LocalFileStorage(Storage):
    """
    Stores blobs as files in a single directory.

    Writes go to a temporary file in the same directory and are renamed into
    place, so readers see either the old file or the new one, never a torn write.
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        os.makedirs(base_dir, exist_ok=True)

    def _path(self, filename: str) -> str:
        return os.path.join(self.base_dir, filename)

    def get(self, filename: str) -> Optional[bytes]:
        path = self._path(filename)
        if not os.path.isfile(path):
            return None

        with open(path, 'rb') as f:
            return f.read()

    def put(self, filename: str, data: bytes) -> None:
        path = self._path(filename)

        # The temp file must live next to the target; rename is only atomic
        # within one filesystem. A filename with a missing subdirectory fails
        # on the rename with FileNotFoundError.
        fd, temp_path = tempfile.mkstemp(dir=self.base_dir, prefix='.tmp_')

        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    def delete(self, filename: str) -> None:
        try:
            os.unlink(self._path(filename))
        except FileNotFoundError:
            pass


class S3Storage(Storage):
    """Amazon S3 storage; every blob is one object under an optional prefix."""

    def __init__(self, bucket_name: str, prefix: str = '', **kwargs):
        """
        Args:
            bucket_name: Name of the S3 bucket
            prefix: Optional prefix (folder) for all keys
            **kwargs: Passed to boto3.client() (e.g. region_name, credentials)
        """
        self.bucket_name = bucket_name
        self.prefix = prefix.rstrip('/') + '/' if prefix else ''
        self.s3_client = boto3.client('s3', **kwargs)

    def _get_key(self, filename: str) -> str:
        return self.prefix + filename

    def get(self, filename: str) -> Optional[bytes]:
        try:
            response = self.s3_client.get_object(
                Bucket=self.bucket_name, Key=self._get_key(filename))
            return response['Body'].read()
        except ClientError as e:
            if e.response['Error']['Code'] == 'NoSuchKey':
                return None
            raise

    def put(self, filename: str, data: bytes) -> None:
        """S3 PUT operations are atomic by default."""
        self.s3_client.put_object(
            Bucket=self.bucket_name, Key=self._get_key(filename), Body=data)

    def delete(self, filename: str) -> None:
        # DeleteObject succeeds for keys that don't exist
        self.s3_client.delete_object(Bucket=self.bucket_name, Key=self._get_key(filename))
