"""
Compression and naming for SQL dumps.

Supports:
- none: plain .sql
- gzip: .sql.gz
- bzip2: .sql.bz2

The extension map and the writer map share the same keys, so an artifact's
name always matches the compression actually applied to it.
"""

import bz2
import gzip
from contextlib import contextmanager
from datetime import datetime
from typing import BinaryIO, Iterator


EXTENSIONS = {
    'none': 'sql',
    'gzip': 'sql.gz',
    'bzip2': 'sql.bz2',
}

CONTENT_TYPES = {
    'sql': 'application/sql',
    'sql.gz': 'application/gzip',
    'sql.bz2': 'application/x-bzip2',
}


def normalize_compression(compression: str) -> str:
    """
    Normalize a compression name ('None', 'Gzip', 'BZIP2', ...).

    Raises:
        ValueError: If the compression mode is unknown
    """
    normalized = (compression or 'none').strip().lower()
    if normalized not in EXTENSIONS:
        raise ValueError(
            f"Invalid compression: {compression}. "
            f"Valid options: {list(EXTENSIONS.keys())}"
        )
    return normalized


def get_extension(compression: str) -> str:
    return EXTENSIONS[normalize_compression(compression)]


def generate_dump_filename(database: str, timestamp: datetime, compression: str,
                           date_format: str = '%Y%m%d%H%M%S') -> str:
    """
    Generate the artifact name for one database.

    Format: {database}-{timestamp}.{ext}

    Args:
        database: Database name, used verbatim
        timestamp: Instant the run started
        compression: Compression mode
        date_format: strftime format for the timestamp

    Returns:
        Filename (without path)
    """
    return f"{database}-{timestamp.strftime(date_format)}.{get_extension(compression)}"


def is_dump_artifact(path: str) -> bool:
    """Whether a stored name carries one of the dump extensions."""
    return any(path.endswith(f".{ext}") for ext in EXTENSIONS.values())


def content_type_for(path: str) -> str:
    """MIME type for an artifact, judged by its extension."""
    # Longest extensions first so .sql.gz is not taken for .sql
    for ext in sorted(CONTENT_TYPES, key=len, reverse=True):
        if path.endswith(f".{ext}"):
            return CONTENT_TYPES[ext]
    return 'application/octet-stream'


@contextmanager
def compressed_writer(sink: BinaryIO, compression: str) -> Iterator[BinaryIO]:
    """
    Wrap a writable binary sink with the requested compressor.

    Closing the wrapper flushes the compressed trailer but leaves the sink
    itself open for the caller.
    """
    compression = normalize_compression(compression)

    if compression == 'none':
        yield sink
        return

    if compression == 'gzip':
        writer = gzip.GzipFile(fileobj=sink, mode='wb')
    else:
        writer = bz2.BZ2File(sink, mode='wb')

    try:
        yield writer
    finally:
        writer.close()
