"""
Storage backends for backup artifacts.

Supports:
- LocalStorage: Store in a local directory
- S3Storage: Store in an AWS S3 (or S3-compatible) bucket
- SFTPStorage: Store in a directory on a remote host over SFTP

Every backend reports the backend's own modification time for each
artifact; retention decisions are made on that timestamp only.
"""

import os
import shutil
import logging
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator, List, Optional

import boto3
import paramiko
from botocore.exceptions import ClientError, BotoCoreError
from paramiko import SSHClient, AutoAddPolicy

from dbbackup.errors import StorageError, ArtifactNotFoundError
from dbbackup.models import Artifact


logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = '.partial'


class ArtifactStore:
    """
    Common interface of the artifact backends.

    Paths are relative, '/'-separated names inside the store.
    """

    name = 'store'

    def __init__(self, scratch_dir: Optional[str] = None):
        self.scratch_dir = scratch_dir

    def write(self, path: str, stream: BinaryIO):
        """Store the contents of a binary stream under path, replacing any existing object."""
        raise NotImplementedError

    def list(self) -> List[Artifact]:
        """List stored objects with their backend modification times."""
        raise NotImplementedError

    def delete(self, path: str):
        """Delete one object; ArtifactNotFoundError if it does not exist."""
        raise NotImplementedError

    def read(self, path: str) -> bytes:
        """Return the full contents of one object."""
        raise NotImplementedError

    def location(self, path: str) -> str:
        """Human-readable location of an object."""
        return path

    def test_connection(self) -> bool:
        """Raise StorageError if the backend cannot be reached."""
        return True

    def close(self):
        """Release any backend connections."""
        pass

    @contextmanager
    def open_sink(self, path: str) -> Iterator[BinaryIO]:
        """
        Open a writable sink for a new artifact.

        The data goes to a local scratch file first; when the block exits
        cleanly the file is streamed into the store with write(). The scratch
        file is removed in every case, including a failed write.
        """
        fd, scratch_path = tempfile.mkstemp(prefix='dbbackup_', suffix=PARTIAL_SUFFIX, dir=self.scratch_dir)
        try:
            with os.fdopen(fd, 'w+b') as scratch:
                yield scratch
                scratch.flush()
                scratch.seek(0)
                self.write(path, scratch)
        finally:
            try:
                os.remove(scratch_path)
            except FileNotFoundError:
                pass


class LocalStorage(ArtifactStore):
    """
    Handler for storing backups in local filesystem.

    Stores artifacts directly under {base_path}/{path}.
    """

    name = 'local'

    def __init__(self, base_path: str, scratch_dir: Optional[str] = None):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for local backups
            scratch_dir: Unused by this backend (sinks write beside the target)
        """
        super().__init__(scratch_dir)
        self.base_path = Path(base_path)

        # Create base directory if it doesn't exist
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def _resolve(self, path: str) -> Path:
        full_path = (self.base_path / path).resolve()
        if self.base_path.resolve() not in full_path.parents:
            raise StorageError(f"Path escapes storage directory: {path}")
        return full_path

    @staticmethod
    def _partial_path(dest_path: Path) -> Path:
        return dest_path.with_name(f".{dest_path.name}{PARTIAL_SUFFIX}")

    def write(self, path: str, stream: BinaryIO):
        """
        Copy a stream into local storage.

        Raises:
            StorageError: If storage fails
        """
        dest_path = self._resolve(path)
        partial_path = self._partial_path(dest_path)

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with open(partial_path, 'wb') as f:
                shutil.copyfileobj(stream, f)
            os.replace(partial_path, dest_path)
        except PermissionError as e:
            self._discard(partial_path)
            raise StorageError(f"Permission denied writing to {dest_path}: {e}", e.errno)
        except OSError as e:
            self._discard(partial_path)
            raise StorageError(f"Failed to store locally: {e}", e.errno)

    @contextmanager
    def open_sink(self, path: str) -> Iterator[BinaryIO]:
        """
        Write straight into a hidden partial file next to the target.

        The partial file is renamed over the target only when the block exits
        cleanly; otherwise it is removed and any previous artifact is kept.
        """
        dest_path = self._resolve(path)
        partial_path = self._partial_path(dest_path)

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            f = open(partial_path, 'wb')
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}", e.errno)
        except OSError as e:
            raise StorageError(f"Failed to open {dest_path}: {e}", e.errno)

        try:
            with f:
                yield f
            try:
                os.replace(partial_path, dest_path)
            except OSError as e:
                raise StorageError(f"Failed to store locally: {e}", e.errno)
        finally:
            self._discard(partial_path)

    @staticmethod
    def _discard(path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")

    def list(self) -> List[Artifact]:
        """
        List all stored files.

        Returns:
            Artifacts with their filesystem modification time (UTC)

        Raises:
            StorageError: If listing fails
        """
        try:
            artifacts = []

            for file_path in sorted(self.base_path.rglob('*')):
                if not file_path.is_file() or file_path.name.endswith(PARTIAL_SUFFIX):
                    continue

                stat = file_path.stat()
                artifacts.append(Artifact(
                    path=file_path.relative_to(self.base_path).as_posix(),
                    timestamp=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    size=stat.st_size
                ))

            return artifacts

        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}", e.errno)

    def delete(self, path: str):
        """
        Delete a file from local storage.

        Raises:
            ArtifactNotFoundError: If the file does not exist
            StorageError: If deletion fails
        """
        full_path = self._resolve(path)

        try:
            full_path.unlink()
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Local file not found: {full_path}")
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}", e.errno)
        except OSError as e:
            raise StorageError(f"Failed to delete local file: {e}", e.errno)

    def read(self, path: str) -> bytes:
        full_path = self._resolve(path)
        try:
            return full_path.read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Local file not found: {full_path}")
        except OSError as e:
            raise StorageError(f"Failed to read {full_path}: {e}", e.errno)

    def location(self, path: str) -> str:
        return self.get_full_path(path)

    def test_connection(self) -> bool:
        if not os.access(self.base_path, os.W_OK):
            raise StorageError(f"Storage directory is not writable: {self.base_path}")
        return True

    def get_full_path(self, relative_path: str) -> str:
        """
        Get full filesystem path from relative path.

        Args:
            relative_path: Relative path from base_path

        Returns:
            Full filesystem path
        """
        return str(self.base_path / relative_path)


class S3Storage(ArtifactStore):
    """
    Handler for storing backups in AWS S3.

    Objects are stored under {prefix}/{path}.
    """

    name = 's3'

    # 10MB chunks; streams that fit in one chunk use a single put_object
    CHUNK_SIZE = 10 * 1024 * 1024

    def __init__(self, bucket_name: str, prefix: str = '', access_key: Optional[str] = None,
                 secret_key: Optional[str] = None, region: str = 'us-east-1',
                 endpoint_url: Optional[str] = None, scratch_dir: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            prefix: Key prefix all artifacts live under
            access_key: AWS access key ID (None to use the default credential chain)
            secret_key: AWS secret access key
            region: AWS region (default: us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services
            scratch_dir: Directory for scratch files while dumping
        """
        super().__init__(scratch_dir)
        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix.strip('/') + '/' if prefix and prefix.strip('/') else ''

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def _key(self, path: str) -> str:
        return f"{self.prefix}{path}"

    @staticmethod
    def _client_error(action: str, e: ClientError) -> StorageError:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        if error_code in ('404', 'NoSuchKey', 'NotFound'):
            return ArtifactNotFoundError(f"S3 {action} failed ({error_code}): {e}", error_code)
        return StorageError(f"S3 {action} failed ({error_code}): {e}", error_code)

    def write(self, path: str, stream: BinaryIO):
        """
        Upload a stream to S3.

        Raises:
            StorageError: If upload fails
        """
        s3_key = self._key(path)

        try:
            first = stream.read(self.CHUNK_SIZE)
            second = stream.read(self.CHUNK_SIZE) if len(first) == self.CHUNK_SIZE else b''

            if not second:
                self._simple_upload(s3_key, first)
            else:
                self._multipart_upload(s3_key, stream, [first, second])

        except ClientError as e:
            raise self._client_error('upload', e)
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read upload stream: {e}", e.errno)

    def _simple_upload(self, s3_key: str, data: bytes):
        """
        Upload a small object using put_object.

        Args:
            s3_key: S3 object key
            data: Object contents
        """
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=s3_key,
            Body=data
        )

    def _multipart_upload(self, s3_key: str, stream: BinaryIO, head: List[bytes]):
        """
        Upload a large stream chunk by chunk.

        Args:
            s3_key: S3 object key
            stream: Stream positioned after the chunks in head
            head: Chunks already read from the stream
        """
        # Initiate multipart upload
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        def chunks():
            yield from head
            while True:
                data = stream.read(self.CHUNK_SIZE)
                if not data:
                    break
                yield data

        try:
            for part_number, data in enumerate(chunks(), start=1):
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

            # Complete multipart upload
            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            # Abort multipart upload on error
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload for {s3_key}: {abort_error}")
            raise

    def delete(self, path: str):
        """
        Delete an object from S3.

        S3 deletes are silent for missing keys, so existence is checked first.

        Raises:
            ArtifactNotFoundError: If the object does not exist
            StorageError: If deletion fails
        """
        s3_key = self._key(path)

        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=s3_key)
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            raise self._client_error('delete', e)
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list(self) -> List[Artifact]:
        """
        List objects under the prefix.

        Returns:
            Artifacts with S3 LastModified timestamps

        Raises:
            StorageError: If listing fails
        """
        try:
            artifacts = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.prefix):
                for obj in page.get('Contents', []):
                    artifacts.append(Artifact(
                        path=obj['Key'][len(self.prefix):],
                        timestamp=obj['LastModified'],
                        size=obj['Size']
                    ))

            return artifacts

        except ClientError as e:
            raise self._client_error('list', e)
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def read(self, path: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=self._key(path))
            return response['Body'].read()
        except ClientError as e:
            raise self._client_error('download', e)
        except BotoCoreError as e:
            raise StorageError(f"Failed to download from S3: {e}")

    def location(self, path: str) -> str:
        return f"s3://{self.bucket_name}/{self._key(path)}"

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}", error_code)
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}", error_code)
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}", error_code)
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")


class SFTPStorage(ArtifactStore):
    """
    Handler for storing backups on a remote host via SSH/SFTP.

    Artifacts live directly in {remote_path}/{path}. The connection is opened
    on first use and kept until close().
    """

    name = 'sftp'

    def __init__(self, host: str, username: str, remote_path: str, port: int = 22,
                 password: Optional[str] = None, private_key: Optional[str] = None,
                 scratch_dir: Optional[str] = None):
        """
        Initialize SFTP storage handler.

        Args:
            host: SSH hostname or IP
            username: SSH username
            remote_path: Remote directory holding the artifacts
            port: SSH port (default 22)
            password: SSH password (optional if using key)
            private_key: Path to private key file (optional)
            scratch_dir: Directory for scratch files while dumping
        """
        super().__init__(scratch_dir)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.private_key_path = private_key
        self.remote_path = remote_path.rstrip('/') or '/'

        self.ssh_client = None
        self.sftp_client = None

    def _connect(self):
        """
        Establish SSH connection.

        Raises:
            StorageError: If connection fails
        """
        if self.sftp_client is not None:
            return self.sftp_client

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

            connect_kwargs = {
                'hostname': self.host,
                'port': self.port,
                'username': self.username,
                'timeout': 30
            }

            if self.password:
                connect_kwargs['password'] = self.password
            elif self.private_key_path:
                key_path = Path(self.private_key_path).expanduser()
                if not key_path.exists():
                    raise StorageError(f"Private key not found: {self.private_key_path}")
                connect_kwargs['key_filename'] = str(key_path)
            else:
                raise StorageError("Either password or private_key must be provided")

            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()
            return self.sftp_client

        except paramiko.AuthenticationException as e:
            self.close()
            raise StorageError(f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            self.close()
            raise StorageError(f"SSH connection failed: {e}")
        except OSError as e:
            self.close()
            raise StorageError(f"Failed to connect to {self.host}: {e}", e.errno)

    def _remote(self, path: str) -> str:
        return str(PurePosixPath(self.remote_path) / path)

    def write(self, path: str, stream: BinaryIO):
        """
        Upload a stream, then rename it over the target.

        Raises:
            StorageError: If upload fails
        """
        sftp = self._connect()
        remote = self._remote(path)
        partial = f"{remote}{PARTIAL_SUFFIX}"

        try:
            sftp.putfo(stream, partial)
            sftp.posix_rename(partial, remote)
        except (OSError, paramiko.SSHException) as e:
            try:
                sftp.remove(partial)
            except (OSError, paramiko.SSHException):
                pass
            if isinstance(e, PermissionError):
                raise StorageError(f"Permission denied writing {remote}: {e}", e.errno)
            raise StorageError(f"Failed to upload {remote}: {e}", getattr(e, 'errno', None))

    def list(self) -> List[Artifact]:
        """
        List files in the remote directory.

        Raises:
            StorageError: If listing fails
        """
        sftp = self._connect()

        try:
            artifacts = []
            for item in sftp.listdir_attr(self.remote_path):
                # Skip directories (S_ISDIR) and in-flight uploads
                if item.st_mode & 0o040000 or item.filename.endswith(PARTIAL_SUFFIX):
                    continue

                artifacts.append(Artifact(
                    path=item.filename,
                    timestamp=datetime.fromtimestamp(item.st_mtime, tz=timezone.utc),
                    size=item.st_size or 0
                ))
            return artifacts

        except FileNotFoundError:
            raise StorageError(f"Remote directory not found: {self.remote_path}")
        except (OSError, paramiko.SSHException) as e:
            raise StorageError(f"Failed to list {self.remote_path}: {e}", getattr(e, 'errno', None))

    def delete(self, path: str):
        """
        Delete a remote file.

        Raises:
            ArtifactNotFoundError: If the file does not exist
            StorageError: If deletion fails
        """
        sftp = self._connect()
        remote = self._remote(path)

        try:
            sftp.remove(remote)
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Remote file not found: {remote}")
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {remote}: {e}", e.errno)
        except (OSError, paramiko.SSHException) as e:
            raise StorageError(f"Failed to delete {remote}: {e}", getattr(e, 'errno', None))

    def read(self, path: str) -> bytes:
        sftp = self._connect()
        remote = self._remote(path)

        try:
            with sftp.open(remote, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Remote file not found: {remote}")
        except (OSError, paramiko.SSHException) as e:
            raise StorageError(f"Failed to read {remote}: {e}", getattr(e, 'errno', None))

    def location(self, path: str) -> str:
        return f"sftp://{self.username}@{self.host}{self._remote(path)}"

    def test_connection(self) -> bool:
        sftp = self._connect()
        try:
            sftp.stat(self.remote_path)
            return True
        except FileNotFoundError:
            raise StorageError(f"Remote directory not found: {self.remote_path}")
        except (OSError, paramiko.SSHException) as e:
            raise StorageError(f"SFTP connection test failed: {e}")

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except (OSError, paramiko.SSHException):
                pass
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except (OSError, paramiko.SSHException):
                pass
            self.ssh_client = None


def create_storage(config) -> ArtifactStore:
    """
    Factory function to create the configured storage backend.

    Args:
        config: Config instance

    Returns:
        LocalStorage, S3Storage or SFTPStorage instance

    Raises:
        ValueError: If the backend is unknown
        StorageError: If the backend cannot be initialized
    """
    backend = config.STORAGE_BACKEND

    if backend == 'local':
        return LocalStorage(config.FILES_PATH_TO_SAVE_BACKUP)
    elif backend == 's3':
        return S3Storage(
            bucket_name=config.S3_BUCKET,
            prefix=config.S3_PREFIX,
            access_key=config.AWS_ACCESS_KEY_ID,
            secret_key=config.AWS_SECRET_ACCESS_KEY,
            region=config.S3_REGION,
            endpoint_url=config.S3_ENDPOINT_URL
        )
    elif backend == 'sftp':
        return SFTPStorage(
            host=config.SFTP_HOST,
            port=config.SFTP_PORT,
            username=config.SFTP_USER,
            password=config.SFTP_PASSWORD,
            private_key=config.SFTP_PRIVATE_KEY,
            remote_path=config.SFTP_PATH
        )
    else:
        raise ValueError(f"Invalid storage backend: {backend}")
