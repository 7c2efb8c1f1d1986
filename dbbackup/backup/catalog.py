"""
Database enumeration for backup runs.

Lists the databases reported by the catalog server and removes the ones
named in the exclusion list.
"""

import logging
from typing import FrozenSet, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, URL
from sqlalchemy.exc import SQLAlchemyError

from dbbackup.errors import CatalogConnectionError
from dbbackup.models import DatabaseRef


logger = logging.getLogger(__name__)


def parse_exclusions(raw: Optional[str]) -> FrozenSet[str]:
    """
    Parse a comma-separated exclusion list.

    Whitespace around each name is stripped and empty elements are dropped,
    so '' gives an empty set and ' a , b ' gives {'a', 'b'}. A single name is
    still returned as a set.
    """
    if not raw or not raw.strip():
        return frozenset()

    return frozenset(part.strip() for part in raw.split(',') if part.strip())


def create_catalog_engine(host: str, user: str, password: str, port: int = 3306) -> Engine:
    """Build a SQLAlchemy engine for the catalog server (no default schema)."""
    url = URL.create(
        'mysql+pymysql',
        username=user,
        password=password,
        host=host,
        port=port,
        query={'charset': 'utf8mb4'},
    )
    return create_engine(url, pool_pre_ping=True, connect_args={'connect_timeout': 30})


class DatabaseLister:
    """
    Enumerates databases on the catalog server.

    Server order is kept as reported; the exclusion filter is an exact,
    case-sensitive name match.
    """

    QUERY = 'SHOW DATABASES'

    def __init__(self, engine: Engine, exclusions: Optional[str] = None):
        """
        Initialize the lister.

        Args:
            engine: SQLAlchemy engine connected to the catalog server
            exclusions: Raw comma-separated list of database names to skip
        """
        self.engine = engine
        self._exclusions = parse_exclusions(exclusions)

    def exclusions(self) -> FrozenSet[str]:
        return self._exclusions

    def list(self) -> List[DatabaseRef]:
        """
        List every database on the server.

        Returns:
            DatabaseRefs in server-reported order

        Raises:
            CatalogConnectionError: If the server is unreachable or rejects the credentials
        """
        try:
            with self.engine.connect() as connection:
                names = connection.execute(text(self.QUERY)).scalars().all()
        except SQLAlchemyError as e:
            raise CatalogConnectionError(f"Cannot list databases: {e}")

        logger.debug(f"Catalog reported {len(names)} databases")
        return [DatabaseRef(name) for name in names]

    def targets(self) -> List[DatabaseRef]:
        """
        List the databases to back up (server order, exclusions removed).

        Raises:
            CatalogConnectionError: If the server cannot be queried
        """
        excluded = self.exclusions()
        return [database for database in self.list() if database.name not in excluded]

    def close(self):
        """Release pooled catalog connections."""
        self.engine.dispose()


def create_lister(config) -> DatabaseLister:
    """Build a DatabaseLister from configuration."""
    engine = create_catalog_engine(
        host=config.DB_HOST,
        user=config.DB_USER,
        password=config.DB_PASSWORD,
        port=config.DB_PORT,
    )
    return DatabaseLister(engine, config.DB_EXCLUDE_DATABASES)
