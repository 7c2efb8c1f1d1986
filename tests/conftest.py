"""
Shared pytest fixtures for dbbackup tests.

This module provides fixtures for:
- Configuration built from a plain dict
- In-memory and local artifact stores
- Fake dumper and catalog collaborators
- Fake mysqldump executables
- Mock fixtures for external services (S3, SSH)
"""

import os
import stat
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from dbbackup.backup.catalog import DatabaseLister
from dbbackup.backup.compression import compressed_writer
from dbbackup.backup.storage import ArtifactStore, LocalStorage
from dbbackup.config import Config
from dbbackup.errors import ArtifactNotFoundError, DumpError, StorageError
from dbbackup.models import Artifact


class MemoryStore(ArtifactStore):
    """Artifact store keeping objects in a dict, with a settable clock."""

    name = 'memory'

    def __init__(self, scratch_dir=None, clock=None):
        super().__init__(scratch_dir)
        self.objects = {}
        self.timestamps = {}
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.fail_writes = set()
        self.fail_deletes = set()
        self.unreadable = set()
        self.delete_calls = []

    def add(self, path, timestamp, data=b'-- dump'):
        self.objects[path] = data
        self.timestamps[path] = timestamp

    def write(self, path, stream):
        if path in self.fail_writes:
            raise StorageError(f"No space left writing {path}", 28)
        self.objects[path] = stream.read()
        self.timestamps[path] = self.clock()

    def list(self):
        return [
            Artifact(path=path, timestamp=self.timestamps[path], size=len(data))
            for path, data in self.objects.items()
        ]

    def delete(self, path):
        self.delete_calls.append(path)
        if path in self.fail_deletes:
            raise StorageError(f"Permission denied deleting {path}", 13)
        if path not in self.objects:
            raise ArtifactNotFoundError(f"Not found: {path}")
        del self.objects[path]
        del self.timestamps[path]

    def read(self, path):
        if path in self.unreadable or path not in self.objects:
            raise ArtifactNotFoundError(f"Not found: {path}")
        return self.objects[path]


class FakeDumper:
    """Writes a tiny SQL script per database; fails for configured names."""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []

    def dump(self, database, sink, compression='none'):
        self.calls.append(database.name)
        if database.name in self.failures:
            message, code = self.failures[database.name]
            raise DumpError(database.name, message, code)
        with compressed_writer(sink, compression) as writer:
            writer.write(f"-- dump of {database.name}\n".encode())


def make_lister(names, exclusions=''):
    """DatabaseLister over a mocked engine reporting the given names."""
    engine = MagicMock()
    connection = engine.connect.return_value.__enter__.return_value
    connection.execute.return_value.scalars.return_value.all.return_value = list(names)
    return DatabaseLister(engine, exclusions)


@pytest.fixture
def base_env(tmp_path):
    """Minimal valid environment using the local backend."""
    return {
        'DB_HOST': 'db.example.com',
        'DB_USER': 'backup',
        'DB_PASSWORD': 's3cret',
        'FILES_PATH_TO_SAVE_BACKUP': str(tmp_path / 'backups'),
        'MAIL_FROM': 'backup@example.com',
        'MAIL_TO': 'ops@example.com',
        'MAIL_SMTP_HOST': 'smtp.example.com',
    }


@pytest.fixture
def config(base_env):
    return Config(base_env)


@pytest.fixture
def memory_store(tmp_path):
    scratch = tmp_path / 'scratch'
    scratch.mkdir()
    return MemoryStore(scratch_dir=str(scratch))


@pytest.fixture
def local_store(tmp_path):
    return LocalStorage(str(tmp_path / 'backups'))


@pytest.fixture
def reporter():
    return MagicMock()


@pytest.fixture
def clean_env():
    """Run with an empty os.environ, restored afterwards."""
    with patch.dict(os.environ, {}, clear=True):
        yield os.environ


@pytest.fixture
def fake_mysqldump(tmp_path):
    """
    Factory writing an executable shell script that stands in for mysqldump.

    The script body receives the same arguments mysqldump would.
    """
    def factory(body, name='mysqldump'):
        script = tmp_path / name
        script.write_text('#!/bin/sh\n' + body + '\n')
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(script)

    return factory


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SFTP storage testing.

    Yields (ssh client class mock, sftp client mock).
    """
    with patch('dbbackup.backup.storage.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None
        yield mock_ssh, mock_sftp
