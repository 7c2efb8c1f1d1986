"""
Backup module for dbbackup.

This module handles the core backup functionality including:
- Database enumeration and exclusion
- Dumping (mysqldump, optional compression)
- Storage (local, S3 and SFTP)
- Run orchestration
- Retention policy enforcement
"""

from .executor import BackupOrchestrator, RunState, build_orchestrator, execute_backup_run
from .catalog import DatabaseLister, parse_exclusions
from .dumper import MysqlDumper
from .storage import ArtifactStore, LocalStorage, S3Storage, SFTPStorage, create_storage
from .retention import RetentionSweeper

__all__ = [
    'BackupOrchestrator',
    'RunState',
    'build_orchestrator',
    'execute_backup_run',
    'DatabaseLister',
    'parse_exclusions',
    'MysqlDumper',
    'ArtifactStore',
    'LocalStorage',
    'S3Storage',
    'SFTPStorage',
    'create_storage',
    'RetentionSweeper'
]
