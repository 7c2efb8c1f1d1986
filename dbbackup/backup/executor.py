"""
Backup orchestrator - drives one complete backup run.

Workflow:
1. List target databases (fatal on failure)
2. For each database: dump into a store sink, record Success or Failure
3. Sweep expired artifacts (once, after every dump has finished)
4. Send one notification with the run summary
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Set

from dbbackup import console
from dbbackup.errors import BackupError, CatalogConnectionError, DumpError, StorageError
from dbbackup.i18n import Translator
from dbbackup.models import DatabaseRef, DumpJob, DumpResult, Failure, RunSummary, Success, SweepResult
from .catalog import DatabaseLister, create_lister
from .compression import generate_dump_filename, normalize_compression
from .dumper import MysqlDumper, create_dumper
from .retention import RetentionSweeper
from .storage import ArtifactStore, create_storage


logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = 'idle'
    LISTING = 'listing'
    DUMPING = 'dumping'
    SWEEPING = 'sweeping'
    NOTIFYING = 'notifying'
    DONE = 'done'
    FAILED = 'failed'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupOrchestrator:
    """
    Orchestrates one backup run over every target database.

    Collaborators are injected; an instance is meant to live for one run.
    """

    def __init__(self, lister: DatabaseLister, dumper: MysqlDumper, store: ArtifactStore,
                 sweeper: RetentionSweeper, notifier, compression: str = 'none',
                 retention_days: int = 0, date_format: str = '%Y%m%d%H%M%S', workers: int = 1,
                 translate: Optional[Translator] = None,
                 reporter: Optional[Callable[[str, str], None]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize backup orchestrator.

        Args:
            lister: Enumerates target databases
            dumper: Exports one database into a sink
            store: Where artifacts are written
            sweeper: Retention sweeper for the same store
            notifier: Receives the run summary
            compression: 'none', 'gzip' or 'bzip2'
            retention_days: Maximum artifact age; zero or less disables the sweep
            date_format: strftime format of the timestamp in artifact names
            workers: Databases dumped concurrently (1 = sequential)
            translate: Operator-facing message lookup
            reporter: Receives (message, level) status lines
            clock: Returns the current aware datetime
        """
        self.lister = lister
        self.dumper = dumper
        self.store = store
        self.sweeper = sweeper
        self.notifier = notifier
        self.compression = normalize_compression(compression)
        self.retention_days = retention_days
        self.date_format = date_format
        self.workers = max(1, workers)
        self._ = translate or Translator()
        self.reporter = reporter or console.status
        self.clock = clock or utcnow

        self.state = RunState.IDLE
        self.summary: Optional[RunSummary] = None
        self.sweep_result: Optional[SweepResult] = None
        self.logs: List[str] = []
        self._existing: Set[str] = set()

    def run(self) -> RunSummary:
        """
        Execute the backup run.

        Returns:
            RunSummary with one result per attempted database, in listing order

        Raises:
            CatalogConnectionError: If the databases cannot be listed; a failure
                notification is attempted first and nothing is swept
        """
        started_at = self.clock()
        self.summary = RunSummary(started_at=started_at)
        self._log(f"Starting backup run at {started_at.isoformat()}")

        # Step 1: List databases
        self.state = RunState.LISTING
        try:
            targets = self.lister.targets()
        except CatalogConnectionError as e:
            self.state = RunState.FAILED
            self._log(f"Listing databases failed: {e}", logging.ERROR)
            self.reporter(self._('status.fatal', error=e), 'error')
            try:
                self.notifier.notify_fatal(e)
            except Exception:
                logger.exception("Failure notification crashed")
            raise

        self._log(f"{len(targets)} target database(s): {', '.join(d.name for d in targets) or '-'}")
        self.reporter(self._('status.targets', count=len(targets), excluded=len(self.lister.exclusions())), 'info')

        # Step 2: Dump every database
        self.state = RunState.DUMPING
        self._existing = self._existing_artifacts()
        jobs = [self.plan(database, started_at) for database in targets]

        if self.workers > 1 and len(jobs) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                results = list(pool.map(self.backup_database, jobs))
        else:
            results = [self.backup_database(job) for job in jobs]

        self.summary.results.extend(results)

        # Step 3: Retention, only after every dump has completed
        self.state = RunState.SWEEPING
        self.sweep_result = self._sweep()

        # Step 4: Notify
        self.state = RunState.NOTIFYING
        self.notifier.notify(self.summary)

        self.state = RunState.DONE
        self._log(
            f"Backup run complete. "
            f"Succeeded: {len(self.summary.successes)}, "
            f"Failed: {len(self.summary.failures)}"
        )
        self.reporter(
            self._('status.done', successes=len(self.summary.successes), failures=len(self.summary.failures)),
            'error' if self.summary.failures else 'success'
        )

        return self.summary

    def plan(self, database: DatabaseRef, started_at: datetime) -> DumpJob:
        """Derive the dump job (artifact name) for one database."""
        target_name = generate_dump_filename(database.name, started_at, self.compression, self.date_format)
        return DumpJob(database=database, target_name=target_name, compression=self.compression)

    def backup_database(self, job: DumpJob) -> DumpResult:
        """
        Dump one database into the store.

        Never raises: every error becomes a Failure for this database only.
        """
        name = job.database.name
        self.reporter(self._('status.attempt', database=name, target=job.target_name), 'info')

        if job.target_name in self._existing:
            self._log(f"Artifact {job.target_name} already exists and will be overwritten", logging.WARNING)

        try:
            with self.store.open_sink(job.target_name) as sink:
                self.dumper.dump(job.database, sink, job.compression)

        except DumpError as e:
            return self._failed(name, e.message, e.code)
        except StorageError as e:
            return self._failed(name, str(e), e.code)
        except Exception as e:
            logger.exception(f"Unexpected error backing up {name}")
            return self._failed(name, str(e) or e.__class__.__name__, None)

        location = self.store.location(job.target_name)
        self._log(f"Backup of {name} stored at {location}")
        self.reporter(self._('status.success', database=name, path=location), 'success')
        return Success(database=name, artifact_path=job.target_name)

    def _failed(self, name: str, message: str, code) -> Failure:
        self._log(f"Backup of {name} failed ({code}): {message}", logging.ERROR)
        self.reporter(self._('status.failure', database=name, error=message), 'error')
        return Failure(database=name, error_message=message, error_code=code)

    def _existing_artifacts(self) -> Set[str]:
        """Names already in the store, used to flag same-second overwrites."""
        try:
            return {artifact.path for artifact in self.store.list()}
        except StorageError as e:
            self._log(f"Could not list existing artifacts: {e}", logging.WARNING)
            return set()

    def _sweep(self) -> Optional[SweepResult]:
        # Nothing new was stored; older artifacts may be the last good backups
        if self.summary.results and not self.summary.successes:
            self._log("Every dump failed, keeping existing artifacts", logging.WARNING)
            self.reporter(self._('status.sweep_held'), 'warning')
            return SweepResult(skipped=True)

        try:
            result = self.sweeper.sweep(self.retention_days)
        except Exception as e:
            self._log(f"Retention sweep failed: {e}", logging.WARNING)
            return None

        if result.skipped:
            self.reporter(self._('status.sweep_disabled'), 'info')
        else:
            self.reporter(self._('status.sweep', count=len(result.deleted), days=self.retention_days), 'info')
        for error in result.errors:
            self._log(f"Retention: {error}", logging.WARNING)

        return result

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the module logger
        """
        timestamp = utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)

    def close(self):
        """Release catalog and store connections."""
        self.lister.close()
        self.store.close()


def build_orchestrator(config, reporter=None) -> BackupOrchestrator:
    """
    Build an orchestrator and its collaborators from configuration.

    Args:
        config: Config instance
        reporter: Receives (message, level) status lines

    Returns:
        BackupOrchestrator ready for one run

    Raises:
        BackupError: If a collaborator cannot be built; a failure
            notification is attempted first
    """
    from dbbackup.notifier import create_notifier

    translate = Translator(config.APP_LANG)

    # The notifier comes first so that wiring failures can still be reported
    notifier = create_notifier(config, translate=translate, reporter=reporter)

    try:
        store = create_storage(config)
        lister = create_lister(config)
        dumper = create_dumper(config)
    except BackupError as e:
        logger.error(f"Backup could not start: {e}")
        try:
            notifier.notify_fatal(e)
        except Exception:
            logger.exception("Failure notification crashed")
        raise

    notifier.store = store

    return BackupOrchestrator(
        lister=lister,
        dumper=dumper,
        store=store,
        sweeper=RetentionSweeper(store),
        notifier=notifier,
        compression=config.FILES_COMPRESS,
        retention_days=config.FILES_DAYS_HISTORY,
        date_format=config.FILES_DATE_FORMAT,
        workers=config.BACKUP_WORKERS,
        translate=translate,
        reporter=reporter,
    )


def execute_backup_run(config, reporter=None) -> RunSummary:
    """
    Run one backup with fresh collaborators.

    Raises:
        CatalogConnectionError: If the databases cannot be listed
    """
    orchestrator = build_orchestrator(config, reporter=reporter)
    try:
        return orchestrator.run()
    finally:
        orchestrator.close()
