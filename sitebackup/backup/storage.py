"""
Object store clients for backup artifacts.

Supports:
- S3ObjectStore: AWS S3 or any S3-compatible endpoint
- LocalObjectStore: A directory per namespace on the local filesystem

Both expose the same capability: put, put_file, get, list, delete, exists.
Clients never retry; every transport failure raises StorageError.
"""

import os
import shutil
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from sitebackup.models import BackupClass
from .errors import BackupError


logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB

_MISSING_CODES = ('404', 'NoSuchKey', 'NotFound')


class StorageError(BackupError):
    """Raised when a storage operation fails."""

    # Set by the orchestrator when an upload fails and the artifact is kept locally
    artifact_path = None

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class NotFound(BackupError):
    """Raised when a requested object does not exist."""

    def __init__(self, key: str, namespace: str = ''):
        self.key = key
        self.namespace = namespace
        where = f" in {namespace}" if namespace else ''
        super().__init__(f"Artifact not found{where}: {key}")


@dataclass(frozen=True)
class StoredObject:
    """An object listed from the store."""

    key: str
    size_bytes: int


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3ObjectStore:
    """
    Handler for artifacts in an S3 bucket.

    With a prefix, every key is stored as {prefix}{key} and the prefix is
    stripped again when listing.
    """

    def __init__(
        self,
        bucket_name: str,
        prefix: str = '',
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize S3 object store.

        Args:
            bucket_name: S3 bucket name
            prefix: Key prefix inside the bucket (optional)
            access_key: AWS access key ID (None = boto3 credential chain)
            secret_key: AWS secret access key
            region: AWS region (default: us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services

        Raises:
            StorageError: If the client cannot be created
        """
        self.bucket_name = bucket_name
        self.prefix = prefix
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}", cause=e) from e

    @property
    def namespace(self) -> str:
        return f"s3://{self.bucket_name}/{self.prefix}"

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def put(self, key: str, data: bytes):
        """
        Store bytes under key.

        Raises:
            StorageError: If upload fails
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=self._key(key),
                Body=data
            )
        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}", cause=e) from e
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}", cause=e) from e

    def put_file(self, key: str, local_path: str):
        """
        Upload a local file under key.

        Uses a multipart upload for files larger than 100MB.

        Raises:
            StorageError: If the file is missing or upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, self._key(key))
            else:
                self._simple_upload(local_path, self._key(key))

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}", cause=e) from e
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"S3 upload failed: {e}", cause=e) from e

    def _simple_upload(self, local_path: str, s3_key: str):
        """
        Upload file using simple put_object.

        Args:
            local_path: Path to local file
            s3_key: Full S3 object key
        """
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        """
        Upload large file in 10MB parts, aborting the upload on any error.

        Args:
            local_path: Path to local file
            s3_key: Full S3 object key
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def get(self, key: str) -> bytes:
        """
        Download an object.

        Raises:
            NotFound: If the key does not exist
            StorageError: If download fails
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=self._key(key))
            return response['Body'].read()
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                raise NotFound(key, self.namespace) from e
            raise StorageError(f"S3 download failed ({_error_code(e)}): {e}", cause=e) from e
        except BotoCoreError as e:
            raise StorageError(f"S3 download failed: {e}", cause=e) from e

    def list(self, prefix: str = '') -> List[StoredObject]:
        """
        List objects whose key starts with prefix.

        Returns:
            StoredObject list ordered by key

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self._key(prefix)):
                for obj in page.get('Contents', []):
                    objects.append(StoredObject(
                        key=obj['Key'][len(self.prefix):],
                        size_bytes=obj['Size']
                    ))

            return sorted(objects, key=lambda o: o.key)

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}", cause=e) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}", cause=e) from e

    def delete(self, key: str):
        """
        Delete an object.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=self._key(key)
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_error_code(e)}): {e}", cause=e) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}", cause=e) from e

    def exists(self, key: str) -> bool:
        """
        Check whether an object exists.

        Raises:
            StorageError: On any failure other than a missing key
        """
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=self._key(key))
            return True
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            raise StorageError(f"S3 head failed ({_error_code(e)}): {e}", cause=e) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to query S3: {e}", cause=e) from e

    def verify(self):
        """
        Test S3 connection and bucket access.

        Raises:
            StorageError: If the bucket is missing or inaccessible
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}", cause=e) from e
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}", cause=e) from e
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}", cause=e) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}", cause=e) from e


class LocalObjectStore:
    """
    Handler for artifacts in a local directory.

    Objects live flat in {base_path}/{namespace}/{key}.
    """

    _PARTIAL_SUFFIX = '.partial'

    def __init__(self, base_path: str, namespace: str):
        """
        Initialize local object store.

        Args:
            base_path: Base directory for local backups
            namespace: Subdirectory for this store

        Raises:
            StorageError: If the directory cannot be created
        """
        self.base_path = Path(base_path)
        self.directory = self.base_path / namespace

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create local storage directory: {e}", cause=e) from e

    @property
    def namespace(self) -> str:
        return str(self.directory)

    def _path(self, key: str) -> Path:
        if not key or '/' in key or os.sep in key or key in ('.', '..'):
            raise StorageError(f"Invalid object key: {key!r}")
        return self.directory / key

    def put(self, key: str, data: bytes):
        """
        Store bytes under key, replacing the object atomically.

        Raises:
            StorageError: If the write fails
        """
        dest_path = self._path(key)
        partial_path = dest_path.with_name(dest_path.name + self._PARTIAL_SUFFIX)

        try:
            partial_path.write_bytes(data)
            os.replace(partial_path, dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}", cause=e) from e
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}", cause=e) from e

    def put_file(self, key: str, local_path: str):
        """
        Copy a local file under key, replacing the object atomically.

        Raises:
            StorageError: If the source is missing or the copy fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Source file not found: {local_path}")

        dest_path = self._path(key)
        partial_path = dest_path.with_name(dest_path.name + self._PARTIAL_SUFFIX)

        try:
            shutil.copyfile(local_path, partial_path)
            os.replace(partial_path, dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}", cause=e) from e
        except OSError as e:
            raise StorageError(f"Failed to store locally: {e}", cause=e) from e

    def get(self, key: str) -> bytes:
        """
        Read an object.

        Raises:
            NotFound: If the key does not exist
            StorageError: If the read fails
        """
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFound(key, self.namespace) from e
        except OSError as e:
            raise StorageError(f"Failed to read local file: {e}", cause=e) from e

    def list(self, prefix: str = '') -> List[StoredObject]:
        """
        List objects whose key starts with prefix, ordered by key.

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = [
                StoredObject(key=entry.name, size_bytes=entry.stat().st_size)
                for entry in self.directory.iterdir()
                if entry.is_file()
                and entry.name.startswith(prefix)
                and not entry.name.endswith(self._PARTIAL_SUFFIX)
            ]
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}", cause=e) from e

        return sorted(objects, key=lambda o: o.key)

    def delete(self, key: str):
        """
        Delete an object. Deleting a missing key is not an error.

        Raises:
            StorageError: If deletion fails
        """
        path = self._path(key)
        try:
            if path.exists():
                path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {path}: {e}", cause=e) from e
        except OSError as e:
            raise StorageError(f"Failed to delete local file: {e}", cause=e) from e

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def verify(self):
        if not os.access(self.directory, os.W_OK):
            raise StorageError(f"Local storage directory is not writable: {self.directory}")


def create_store(config, backup_class: BackupClass):
    """
    Factory function to create the object store for a backup class.

    Namespaces are <baseName>_<classKey>: a bucket per class for the 'bucket'
    layout, a key prefix in STORAGE_BUCKET for the 'prefix' layout, or a
    subdirectory of LOCAL_STORAGE_DIR for the local backend.

    AWS S3 rejects underscores in bucket names, so the 'bucket' layout only
    works against S3-compatible endpoints that allow them. Against AWS use
    STORAGE_LAYOUT='prefix' with a STORAGE_BUCKET.

    Raises:
        ValueError: If the backend or layout is invalid
    """
    namespace = config.namespace(backup_class)

    if config.STORAGE_BACKEND == 'local':
        return LocalObjectStore(config.LOCAL_STORAGE_DIR, namespace)

    if config.STORAGE_BACKEND != 's3':
        raise ValueError(f"Invalid storage backend: {config.STORAGE_BACKEND}")

    if config.STORAGE_LAYOUT == 'bucket':
        bucket_name, prefix = namespace, ''
    elif config.STORAGE_LAYOUT == 'prefix':
        if not config.STORAGE_BUCKET:
            raise ValueError("STORAGE_BUCKET is required for the 'prefix' storage layout")
        bucket_name, prefix = config.STORAGE_BUCKET, f"{namespace}/"
    else:
        raise ValueError(f"Invalid storage layout: {config.STORAGE_LAYOUT}")

    return S3ObjectStore(
        bucket_name=bucket_name,
        prefix=prefix,
        access_key=config.AWS_ACCESS_KEY_ID,
        secret_key=config.AWS_SECRET_ACCESS_KEY,
        region=config.AWS_REGION,
        endpoint_url=config.S3_ENDPOINT_URL
    )
