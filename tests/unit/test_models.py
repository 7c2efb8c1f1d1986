"""
Unit tests for result models (dbbackup/models.py) and logging setup.
"""

import logging
from logging.handlers import RotatingFileHandler

from dbbackup import configure_logging
from dbbackup.models import DatabaseRef, Failure, RunSummary, Success


class TestRunSummary:
    """Test RunSummary aggregation."""

    def test_empty_run_is_clean(self):
        summary = RunSummary()

        assert summary.successes == []
        assert summary.failures == []
        assert summary.exit_status == 0

    def test_any_failure_sets_exit_status(self):
        summary = RunSummary(results=[
            Success('a', 'a.sql'),
            Failure('b', 'denied', 1044),
            Success('c', 'c.sql'),
        ])

        assert [s.database for s in summary.successes] == ['a', 'c']
        assert [f.database for f in summary.failures] == ['b']
        assert summary.exit_status == 1
        assert repr(summary) == '<RunSummary successes=2 failures=1>'

    def test_result_kinds(self):
        assert Success('a', 'a.sql').ok is True
        assert Failure('a', 'denied').ok is False
        assert Failure('a', 'denied').error_code is None

    def test_database_ref_str(self):
        assert str(DatabaseRef('shop')) == 'shop'


class TestConfigureLogging:
    """Test configure_logging."""

    def teardown_method(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, RotatingFileHandler):
                handler.close()
                root.removeHandler(handler)

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / 'logs' / 'dbbackup.log'

        configure_logging('debug', str(log_file))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
        assert log_file.exists()
        assert logging.getLogger('botocore').level == logging.INFO

    def test_unknown_level_falls_back_to_info(self):
        configure_logging('chatty')

        assert logging.getLogger().level == logging.INFO
