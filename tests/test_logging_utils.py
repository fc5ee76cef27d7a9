# tests/test_logging_utils.py
import logging
import os
import time
from pathlib import Path

import pytest

from dbxl.defaults import settings
from dbxl.logging_utils import ErrorCountHandler, cleanup_old_logs, errors_logged, setup_logging


@pytest.fixture
def log_dir(tmp_path):
    return str(tmp_path / 'logs')


def make_record(level):
    return logging.LogRecord(name='dbxl.test', level=level, pathname='', lineno=0,
                             msg=f'{logging.getLevelName(level)} message', args=(), exc_info=None)


class TestErrorCountHandler:
    """Counting and the lazily created error log."""

    def test_counts_errors_and_critical(self):
        handler = ErrorCountHandler()
        for level in (logging.ERROR, logging.INFO, logging.CRITICAL, logging.WARNING, logging.DEBUG):
            handler.emit(make_record(level))
        assert handler.error_count == 2

    def test_error_log_created_on_first_error(self, tmp_path):
        path = tmp_path / 'run_error.log'
        handler = ErrorCountHandler(str(path), logging.Formatter('%(levelname)s %(message)s'))
        handler.emit(make_record(logging.WARNING))
        assert not path.exists()

        handler.emit(make_record(logging.ERROR))
        try:
            assert path.exists()
            assert handler.error_file_handler in logging.getLogger().handlers
            assert handler.error_file_handler.level == logging.ERROR
        finally:
            logging.getLogger().removeHandler(handler.error_file_handler)
            handler.error_file_handler.close()


class TestSetupLogging:

    def test_file_names(self, log_dir):
        main_log, error_log = setup_logging('nightly', log_dir=log_dir, console=False)
        assert Path(main_log).parent == Path(log_dir)
        assert Path(main_log).name.startswith('nightly_')
        assert error_log == main_log[:-len('.log')] + '_error.log'
        assert Path(main_log).exists()
        assert not Path(error_log).exists()

    def test_default_script_name(self, log_dir):
        main_log, _ = setup_logging(log_dir=log_dir, console=False)
        assert Path(main_log).name.startswith('dbxl_')

    def test_single_rolling_file(self, log_dir):
        settings['logging']['filename_format'] = ''
        main_log, error_log = setup_logging('rolling', log_dir=log_dir, console=False)
        assert Path(main_log).name == 'rolling.log'
        assert Path(error_log).name == 'rolling_error.log'

    def test_settings_directory(self, log_dir):
        settings['logging']['directory'] = log_dir
        main_log, _ = setup_logging('from_settings', console=False)
        assert Path(main_log).parent == Path(log_dir)

    def test_level(self, log_dir):
        main_log, _ = setup_logging('levels', log_dir=log_dir, level='warning', console=False)
        logging.getLogger('dbxl.test').info('quiet info')
        logging.getLogger('dbxl.test').warning('loud warning')
        content = Path(main_log).read_text()
        assert 'quiet info' not in content
        assert 'loud warning' in content

    def test_invalid_level(self, log_dir):
        with pytest.raises(ValueError, match='Invalid log level'):
            setup_logging('bad', log_dir=log_dir, level='CHATTY', console=False)

    def test_repeat_setup_does_not_duplicate(self, log_dir):
        setup_logging('twice', log_dir=log_dir, console=False)
        main_log, _ = setup_logging('twice', log_dir=log_dir, console=False)
        logging.getLogger('dbxl.test').warning('only once')
        assert Path(main_log).read_text().count('only once') == 1


class TestErrorsLogged:

    def test_no_errors(self, log_dir):
        setup_logging('clean', log_dir=log_dir, console=False)
        logging.info('just info')
        logging.warning('a warning')
        assert errors_logged() is None

    def test_split_errors(self, log_dir):
        _, error_log = setup_logging('split', log_dir=log_dir, split_errors=True, console=False)
        logging.error('first failure')
        logging.error('second failure')
        assert errors_logged() == error_log
        content = Path(error_log).read_text()
        assert 'first failure' in content
        assert 'second failure' in content

    def test_without_split(self, log_dir):
        main_log, error_log = setup_logging('joined', log_dir=log_dir, split_errors=False, console=False)
        assert error_log is None
        logging.critical('meltdown')
        assert errors_logged() == main_log
        assert 'meltdown' in Path(main_log).read_text()


class TestCleanupOldLogs:

    def make_log(self, directory, name, age_days):
        path = Path(directory) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text('log')
        stamp = time.time() - age_days * 86400
        os.utime(path, (stamp, stamp))
        return path

    def test_removes_old_logs(self, log_dir):
        old = self.make_log(log_dir, 'dbxl_old.log', 45)
        recent = self.make_log(log_dir, 'dbxl_recent.log', 2)
        deleted = cleanup_old_logs(log_dir, retention_days=30)
        assert deleted == [str(old)]
        assert not old.exists()
        assert recent.exists()

    def test_dry_run(self, log_dir):
        old = self.make_log(log_dir, 'dbxl_old.log', 45)
        assert cleanup_old_logs(log_dir, retention_days=30, dry_run=True) == [str(old)]
        assert old.exists()

    def test_pattern(self, log_dir):
        self.make_log(log_dir, 'dbxl_old.log', 45)
        other = self.make_log(log_dir, 'notes.txt', 45)
        cleanup_old_logs(log_dir, retention_days=30)
        assert other.exists()

    def test_retention_from_settings(self, log_dir):
        settings['logging']['retention_days'] = 1
        old = self.make_log(log_dir, 'dbxl_old.log', 3)
        assert cleanup_old_logs(log_dir) == [str(old)]

    def test_missing_directory(self, tmp_path):
        assert cleanup_old_logs(str(tmp_path / 'nowhere')) == []
