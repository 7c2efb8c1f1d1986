"""
Unit tests for the mysqldump wrapper (dbbackup/backup/dumper.py).

A small shell script stands in for mysqldump so the real subprocess
plumbing is exercised.
"""

import bz2
import errno
import gzip
import io
from unittest.mock import patch

import pytest

from dbbackup.backup.dumper import MysqlDumper, create_dumper
from dbbackup.errors import DumpError
from dbbackup.models import DatabaseRef


ECHO_LAST_ARG = 'for last; do :; done\necho "-- MySQL dump of $last"'


def make_dumper(binary, **kwargs):
    return MysqlDumper('db.example.com', 'backup', 's3cret', binary=binary, **kwargs)


class TestBuildCommand:
    """Test mysqldump argument construction."""

    def test_command_layout(self):
        dumper = MysqlDumper('db.example.com', 'backup', 's3cret', port=3307,
                             options=['--single-transaction', '--quick'])

        assert dumper.build_command('shop') == [
            'mysqldump',
            '--host=db.example.com',
            '--port=3307',
            '--user=backup',
            '--single-transaction',
            '--quick',
            'shop',
        ]

    def test_password_not_in_arguments(self):
        dumper = MysqlDumper('db.example.com', 'backup', 's3cret')

        assert not any('s3cret' in arg for arg in dumper.build_command('shop'))


class TestDump:
    """Test MysqlDumper.dump against a fake mysqldump."""

    def test_dump_plain(self, fake_mysqldump):
        dumper = make_dumper(fake_mysqldump(ECHO_LAST_ARG))
        sink = io.BytesIO()

        dumper.dump(DatabaseRef('shop'), sink)

        assert sink.getvalue() == b'-- MySQL dump of shop\n'

    def test_dump_gzip(self, fake_mysqldump):
        dumper = make_dumper(fake_mysqldump(ECHO_LAST_ARG))
        sink = io.BytesIO()

        dumper.dump(DatabaseRef('shop'), sink, 'gzip')

        assert gzip.decompress(sink.getvalue()) == b'-- MySQL dump of shop\n'

    def test_dump_bzip2(self, fake_mysqldump):
        dumper = make_dumper(fake_mysqldump(ECHO_LAST_ARG))
        sink = io.BytesIO()

        dumper.dump(DatabaseRef('shop'), sink, 'bzip2')

        assert bz2.decompress(sink.getvalue()) == b'-- MySQL dump of shop\n'

    def test_large_output_streamed(self, fake_mysqldump):
        # Larger than one read chunk
        dumper = make_dumper(fake_mysqldump('head -c 3000000 /dev/zero'))
        sink = io.BytesIO()

        dumper.dump(DatabaseRef('shop'), sink)

        assert len(sink.getvalue()) == 3000000

    def test_password_passed_through_environment(self, fake_mysqldump):
        dumper = make_dumper(fake_mysqldump('printf "%s" "$MYSQL_PWD"'))
        sink = io.BytesIO()

        dumper.dump(DatabaseRef('shop'), sink)

        assert sink.getvalue() == b's3cret'

    def test_non_zero_exit_raises_with_stderr(self, fake_mysqldump):
        script = fake_mysqldump(
            'echo "mysqldump: Got error: 1044: Access denied for user" >&2\nexit 2'
        )
        dumper = make_dumper(script)

        with pytest.raises(DumpError) as exc_info:
            dumper.dump(DatabaseRef('secret_db'), io.BytesIO())

        assert exc_info.value.database == 'secret_db'
        assert exc_info.value.code == 2
        assert 'Access denied' in exc_info.value.message

    def test_non_zero_exit_without_stderr(self, fake_mysqldump):
        dumper = make_dumper(fake_mysqldump('exit 3'))

        with pytest.raises(DumpError) as exc_info:
            dumper.dump(DatabaseRef('shop'), io.BytesIO())

        assert exc_info.value.code == 3
        assert 'exited with status 3' in exc_info.value.message

    def test_missing_binary(self, tmp_path):
        dumper = make_dumper(str(tmp_path / 'no-such-mysqldump'))

        with pytest.raises(DumpError) as exc_info:
            dumper.dump(DatabaseRef('shop'), io.BytesIO())

        assert exc_info.value.code == errno.ENOENT
        assert 'not found' in exc_info.value.message

    def test_timeout_kills_dump(self, fake_mysqldump):
        dumper = make_dumper(fake_mysqldump('exec sleep 5'), timeout=0.2)

        with pytest.raises(DumpError) as exc_info:
            dumper.dump(DatabaseRef('shop'), io.BytesIO())

        assert exc_info.value.code == 'TIMEOUT'

    def test_timer_firing_after_clean_exit_is_not_a_timeout(self, fake_mysqldump):
        """Test a deadline reached just as the dump finished keeps the dump."""
        class LateTimer:
            # Fires when cancelled, i.e. after the child has already exited
            def __init__(self, interval, function):
                self.function = function
                self.daemon = False

            def start(self):
                pass

            def cancel(self):
                self.function()

        dumper = make_dumper(fake_mysqldump(ECHO_LAST_ARG), timeout=30)
        sink = io.BytesIO()

        with patch('dbbackup.backup.dumper.threading.Timer', LateTimer):
            dumper.dump(DatabaseRef('shop'), sink)

        assert sink.getvalue() == b'-- MySQL dump of shop\n'

    def test_sink_write_failure(self, fake_mysqldump):
        class FullDisk(io.BytesIO):
            def write(self, data):
                raise OSError(errno.ENOSPC, 'No space left on device')

        dumper = make_dumper(fake_mysqldump(ECHO_LAST_ARG))

        with pytest.raises(DumpError) as exc_info:
            dumper.dump(DatabaseRef('shop'), FullDisk())

        assert exc_info.value.code == errno.ENOSPC


def test_create_dumper_from_config(config):
    config.DB_DUMP_TIMEOUT = 600

    dumper = create_dumper(config)

    assert dumper.host == 'db.example.com'
    assert dumper.user == 'backup'
    assert dumper.password == 's3cret'
    assert dumper.binary == 'mysqldump'
    assert dumper.options == ['--single-transaction', '--quick']
    assert dumper.timeout == 600
