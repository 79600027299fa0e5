"""
Shared pytest fixtures for sitebackup tests.

This module provides fixtures for:
- Testing configuration rooted in a temporary directory
- A recording fake ProcessRunner
- Site tree and staging fixtures
- Object stores (local directory and moto-mocked S3)
"""

import os
import shutil
from datetime import datetime, timezone

import pytest
import boto3
from moto import mock_aws

from sitebackup.config import load_config
from sitebackup.models import RunContext
from sitebackup.backup.process import ProcessRunner, ProcessResult, SubprocessRunner
from sitebackup.backup.storage import LocalObjectStore, S3ObjectStore, StorageError


DUMP_CONTENT = '-- MySQL dump of myblog\nCREATE TABLE posts (id INT);\n'


class FakeRunner(ProcessRunner):
    """
    Recording ProcessRunner.

    Each call is recorded as (argv, env). Behavior per program name is
    scripted with ``on(program, handler)`` or ``fail(program, code)``;
    unscripted programs succeed without doing anything.
    """

    def __init__(self):
        self.calls = []
        self.handlers = {}

    def on(self, program, handler):
        self.handlers[program] = handler

    def fail(self, program, returncode=1, stderr=''):
        self.handlers[program] = lambda argv, env: ProcessResult(list(argv), returncode, stderr=stderr)

    def programs(self):
        return [argv[0] for argv, _ in self.calls]

    def run(self, argv, env=None, timeout=None):
        argv = [str(arg) for arg in argv]
        self.calls.append((argv, env or {}))
        handler = self.handlers.get(argv[0])
        if handler is None:
            return ProcessResult(argv, 0)
        return handler(argv, env or {})


def _fake_mysqldump(argv, env):
    result_file = next(arg.split('=', 1)[1] for arg in argv if arg.startswith('--result-file='))
    with open(result_file, 'w') as f:
        f.write(DUMP_CONTENT)
    return ProcessResult(argv, 0)


def _fake_cp(argv, env):
    source, dest = argv[-2], argv[-1]
    shutil.copytree(source, os.path.join(dest, os.path.basename(source)))
    return ProcessResult(argv, 0)


def _real(argv, env):
    return SubprocessRunner().run(argv, env=env)


@pytest.fixture
def dump_content():
    """Content written by the fake mysqldump."""
    return DUMP_CONTENT


@pytest.fixture
def fake_runner():
    """FakeRunner with no scripted behavior (every command succeeds)."""
    return FakeRunner()


@pytest.fixture
def working_runner():
    """
    FakeRunner that produces real staging output.

    mysqldump writes DUMP_CONTENT, cp copies the tree, tar runs for real.
    """
    runner = FakeRunner()
    runner.on('mysqldump', _fake_mysqldump)
    runner.on('cp', _fake_cp)
    runner.on('tar', _real)
    return runner


@pytest.fixture
def site_root(tmp_path):
    """
    Create a small site tree.

    Creates:
    - www/index.html
    - www/uploads/photo.jpg
    """
    root = tmp_path / 'www'
    (root / 'uploads').mkdir(parents=True)
    (root / 'index.html').write_text('<h1>My blog</h1>')
    (root / 'uploads' / 'photo.jpg').write_bytes(b'\xff\xd8\xff binary')
    return root


@pytest.fixture
def config(tmp_path, site_root):
    """Testing configuration using the local storage backend."""
    return load_config(
        'testing',
        STAGING_ROOT=str(tmp_path / 'staging'),
        LOCAL_STORAGE_DIR=str(tmp_path / 'store'),
        DB_NAME='myblog',
        DB_USER='blog',
        DB_PASSWORD='secret',
        SITE_ROOT=str(site_root)
    )


@pytest.fixture
def run_context(tmp_path):
    """RunContext for 2023-01-02 03:04:05 UTC."""
    return RunContext.create(
        str(tmp_path / 'staging'),
        now=datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    )


@pytest.fixture
def local_store(tmp_path):
    """LocalObjectStore for the myblog_db namespace."""
    return LocalObjectStore(str(tmp_path / 'store'), 'myblog_db')


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
def s3_store(mock_s3):
    """S3ObjectStore on the mocked 'test-bucket'."""
    return S3ObjectStore(
        bucket_name='test-bucket',
        access_key='test_access_key',
        secret_key='test_secret_key',
        region='us-east-1'
    )


class FlakyStore:
    """Wraps a store and fails delete/put_file for chosen keys."""

    def __init__(self, store, fail_delete=(), fail_put=False):
        self.store = store
        self.fail_delete = set(fail_delete)
        self.fail_put = fail_put
        self.put_calls = []

    @property
    def namespace(self):
        return self.store.namespace

    def put_file(self, key, local_path):
        self.put_calls.append(key)
        if self.fail_put:
            raise StorageError("S3 upload failed (AccessDenied)")
        self.store.put_file(key, local_path)

    def delete(self, key):
        if key in self.fail_delete:
            raise StorageError(f"S3 delete failed (AccessDenied): {key}")
        self.store.delete(key)

    def __getattr__(self, name):
        return getattr(self.store, name)


@pytest.fixture
def flaky_store():
    return FlakyStore


@pytest.fixture
def seed():
    """Return a helper putting one object per key into a store."""
    def _seed(store, keys, data=b"archive"):
        for key in keys:
            store.put(key, data)
    return _seed
