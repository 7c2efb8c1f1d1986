"""
Database export via mysqldump.

The dump is streamed from the child process into the caller's sink in
fixed-size chunks, through the compressor, so no export is ever held in
memory in full.
"""

import os
import logging
import subprocess
import tempfile
import threading
from typing import BinaryIO, List, Optional

from dbbackup.errors import DumpError
from dbbackup.models import DatabaseRef
from .compression import compressed_writer, normalize_compression


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB


class MysqlDumper:
    """
    Runs mysqldump for one database at a time.

    The password is handed to the child through MYSQL_PWD so it never shows
    up in the process list.
    """

    def __init__(self, host: str, user: str, password: str, port: int = 3306,
                 binary: str = 'mysqldump', options: Optional[List[str]] = None,
                 timeout: Optional[float] = None):
        """
        Initialize the dumper.

        Args:
            host: Database server host
            user: Database user
            password: Database password
            port: Database server port
            binary: mysqldump executable (name on PATH or absolute path)
            options: Extra command-line options passed before the database name
            timeout: Seconds before a dump is killed (None or 0 for no limit)
        """
        self.host = host
        self.user = user
        self.password = password
        self.port = port
        self.binary = binary
        self.options = list(options or [])
        self.timeout = timeout or None

    def build_command(self, database: str) -> List[str]:
        return [
            self.binary,
            f'--host={self.host}',
            f'--port={self.port}',
            f'--user={self.user}',
            *self.options,
            database,
        ]

    def dump(self, database: DatabaseRef, sink: BinaryIO, compression: str = 'none'):
        """
        Export one database into a writable binary sink.

        Args:
            database: Database to export
            sink: Writable binary file-like object (left open)
            compression: 'none', 'gzip' or 'bzip2'

        Raises:
            DumpError: If the dump cannot be started, exits non-zero, times out,
                or the sink cannot be written
        """
        name = str(database)
        compression = normalize_compression(compression)
        env = dict(os.environ, MYSQL_PWD=self.password or '')

        # stderr goes to a temp file so a chatty child cannot block on a full pipe
        with tempfile.TemporaryFile() as stderr_file:
            try:
                process = subprocess.Popen(
                    self.build_command(name),
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    env=env,
                )
            except FileNotFoundError as e:
                raise DumpError(name, f"Dump utility not found: {self.binary}", e.errno)
            except PermissionError as e:
                raise DumpError(name, f"Permission denied running {self.binary}", e.errno)
            except OSError as e:
                raise DumpError(name, f"Failed to start {self.binary}: {e}", e.errno)

            timed_out = threading.Event()
            timer = None
            if self.timeout:
                def kill():
                    timed_out.set()
                    process.kill()

                timer = threading.Timer(self.timeout, kill)
                timer.daemon = True
                timer.start()

            try:
                self._stream(name, process, sink, compression)
                returncode = process.wait()
            except BaseException:
                process.kill()
                process.wait()
                raise
            finally:
                if timer:
                    timer.cancel()
                if process.stdout:
                    process.stdout.close()

            # The timer may fire just after a clean exit; only a killed child timed out
            if returncode != 0 and timed_out.is_set():
                raise DumpError(name, f"Dump timed out after {self.timeout} seconds", 'TIMEOUT')

            if returncode != 0:
                stderr_file.seek(0)
                stderr = stderr_file.read().decode('utf-8', errors='replace').strip()
                raise DumpError(name, stderr or f"{self.binary} exited with status {returncode}", returncode)

        logger.debug(f"Dump of {name} completed ({compression})")

    def _stream(self, name: str, process: subprocess.Popen, sink: BinaryIO, compression: str):
        """Copy the child's stdout into the sink through the compressor."""
        try:
            with compressed_writer(sink, compression) as writer:
                while True:
                    chunk = process.stdout.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    writer.write(chunk)
        except PermissionError as e:
            raise DumpError(name, f"Permission denied writing dump: {e}", e.errno)
        except OSError as e:
            raise DumpError(name, f"Failed to write dump: {e}", e.errno)


def create_dumper(config) -> MysqlDumper:
    """Build a MysqlDumper from configuration."""
    return MysqlDumper(
        host=config.DB_HOST,
        user=config.DB_USER,
        password=config.DB_PASSWORD,
        port=config.DB_PORT,
        binary=config.DB_DUMP_BINARY,
        options=config.DB_DUMP_OPTIONS,
        timeout=config.DB_DUMP_TIMEOUT,
    )
