"""Command-line entry point."""

import logging
import sys

import click

from dbbackup import EXIT_FAILURES, EXIT_FATAL, EXIT_OK, configure_logging, console
from dbbackup.config import load_config
from dbbackup.errors import BackupError, CatalogConnectionError, ConfigError, StorageError


logger = logging.getLogger(__name__)


@click.group()
@click.option('--env-file', type=click.Path(dir_okay=False), default=None,
              help='Load settings from this .env file (default: .env in the working directory).')
@click.option('--log-level', default=None, help='Override LOG_LEVEL.')
@click.pass_context
def cli(ctx, env_file, log_level):
    """Back up every database on a MySQL server."""
    try:
        config = load_config(env_file)
    except ConfigError as e:
        console.status(f"Configuration error: {e}", 'error')
        sys.exit(EXIT_FATAL)

    configure_logging(log_level or config.LOG_LEVEL, config.LOG_FILE)
    ctx.obj = config


@cli.command()
@click.option('--schedule', 'cron', default=None,
              help='Crontab expression (UTC); keep running and back up on every tick. '
                   'Defaults to BACKUP_SCHEDULE when --periodic is given.')
@click.option('--periodic', is_flag=True, help='Use BACKUP_SCHEDULE from the configuration.')
@click.pass_obj
def run(config, cron, periodic):
    """Dump, store and sweep once (or on a schedule)."""
    from dbbackup.backup.executor import execute_backup_run

    if periodic and not cron:
        cron = config.BACKUP_SCHEDULE
        if not cron:
            console.status("Configuration error: BACKUP_SCHEDULE is not set", 'error')
            sys.exit(EXIT_FATAL)

    if cron:
        from dbbackup.scheduler import run_scheduler
        try:
            run_scheduler(config, cron)
        except ValueError as e:
            console.status(f"Invalid schedule {cron!r}: {e}", 'error')
            sys.exit(EXIT_FATAL)
        sys.exit(EXIT_OK)

    try:
        summary = execute_backup_run(config)
    except CatalogConnectionError as e:
        logger.error(f"Backup aborted: {e}")
        sys.exit(EXIT_FATAL)
    except BackupError as e:
        console.status(f"Backup aborted: {e}", 'error')
        sys.exit(EXIT_FATAL)

    sys.exit(summary.exit_status)


@cli.command()
@click.option('--days', type=int, default=None, help='Override FILES_DAYS_HISTORY.')
@click.pass_obj
def sweep(config, days):
    """Delete artifacts older than the retention window."""
    from dbbackup.backup.retention import RetentionSweeper
    from dbbackup.backup.storage import create_storage

    max_age = config.FILES_DAYS_HISTORY if days is None else days

    try:
        store = create_storage(config)
    except StorageError as e:
        console.status(str(e), 'error')
        sys.exit(EXIT_FATAL)

    try:
        result = RetentionSweeper(store).sweep(max_age)
    finally:
        store.close()

    for path in result.deleted:
        console.status(f"Deleted {path}", 'info')
    for error in result.errors:
        console.status(error, 'warning')

    console.status(f"{len(result.deleted)} artifact(s) removed", 'success')
    sys.exit(EXIT_FAILURES if result.errors else EXIT_OK)


@cli.command('list')
@click.pass_obj
def list_databases(config):
    """Show the databases a run would back up."""
    from dbbackup.backup.catalog import create_lister

    lister = create_lister(config)
    try:
        databases = lister.list()
    except CatalogConnectionError as e:
        console.status(str(e), 'error')
        sys.exit(EXIT_FATAL)
    finally:
        lister.close()

    excluded = lister.exclusions()
    for database in databases:
        if database.name in excluded:
            console.status(f"{database.name} (excluded)", 'warning')
        else:
            console.status(database.name, 'info')


@cli.command()
@click.pass_obj
def check(config):
    """Verify the catalog and storage connections."""
    from dbbackup.backup.catalog import create_lister
    from dbbackup.backup.storage import create_storage

    ok = True

    lister = create_lister(config)
    try:
        count = len(lister.targets())
        console.status(f"Catalog {config.DB_HOST}: {count} database(s) to back up", 'success')
    except CatalogConnectionError as e:
        console.status(f"Catalog {config.DB_HOST}: {e}", 'error')
        ok = False
    finally:
        lister.close()

    try:
        store = create_storage(config)
        try:
            store.test_connection()
        finally:
            store.close()
        console.status(f"Storage ({config.STORAGE_BACKEND}): ok", 'success')
    except StorageError as e:
        console.status(f"Storage ({config.STORAGE_BACKEND}): {e}", 'error')
        ok = False

    sys.exit(EXIT_OK if ok else EXIT_FATAL)


def main():
    cli(prog_name='dbbackup')


if __name__ == '__main__':
    main()
