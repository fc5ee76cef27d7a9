# dbxl/logging_utils.py
"""
Log file setup for export runs.

Each run writes ``{script_name}_{timestamp}.log`` into the log directory. When errors are
split out, ERROR records additionally go to ``{script_name}_{timestamp}_error.log``, which
is only created once the first error is logged, so a clean run leaves no error file.
Defaults come from ``settings['logging']`` and can be overridden by an export document's
``settings.logging`` block.
"""

import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .defaults import settings

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# state of the current run, set by setup_logging()
_error_handler: Optional['ErrorCountHandler'] = None
_log_paths: Dict[str, Optional[str]] = {'main': None, 'errors': None}


class ErrorCountHandler(logging.Handler):
    """
    Count ERROR and CRITICAL records.

    With an ``error_log_path`` the handler also attaches a file handler for errors to the
    root logger when the first error arrives.
    """

    def __init__(self, error_log_path: Optional[str] = None, formatter: Optional[logging.Formatter] = None):
        super().__init__(level=logging.ERROR)
        self.error_count = 0
        self.error_log_path = error_log_path
        self.formatter = formatter
        self.error_file_handler: Optional[logging.FileHandler] = None

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno < logging.ERROR:
            return
        self.error_count += 1
        if self.error_log_path and self.error_file_handler is None:
            self._open_error_log()

    def _open_error_log(self) -> None:
        try:
            handler = logging.FileHandler(self.error_log_path, encoding='utf-8')
        except OSError as e:
            logger.warning(f"Could not create error log {self.error_log_path}: {e}")
            self.error_log_path = None
            return
        handler.setLevel(logging.ERROR)
        if self.formatter:
            handler.setFormatter(self.formatter)
        logging.getLogger().addHandler(handler)
        self.error_file_handler = handler


def _logging_settings() -> Dict[str, Any]:
    return settings.get('logging') or {}


def _log_file_names(script_name: str, log_dir: Path, filename_format: str,
                    split_errors: bool) -> Tuple[Path, Optional[Path]]:
    stem = f"{script_name}_{datetime.now().strftime(filename_format)}" if filename_format else script_name
    error_file = log_dir / f"{stem}_error.log" if split_errors else None
    return log_dir / f"{stem}.log", error_file


def setup_logging(
    script_name: Optional[str] = 'dbxl',
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    split_errors: Optional[bool] = None,
    console: Optional[bool] = None
) -> Tuple[str, Optional[str]]:
    """
    Configure the root logger for an export run.

    Existing root handlers are replaced, so calling this twice does not duplicate output.

    Args:
        script_name: Base name of the log files (default ``'dbxl'``; None uses the script name)
        log_dir: Directory for log files (default ``settings['logging']['directory']``)
        level: DEBUG, INFO, WARNING or ERROR (default ``settings['logging']['level']``)
        split_errors: Also write errors to a separate ``_error.log`` file
        console: Also log to stdout

    Returns:
        Tuple of (log_file_path, error_log_path or None)

    Example
    -------
    ::

        from dbxl.logging_utils import setup_logging, errors_logged

        setup_logging(level='DEBUG')
        ...
        if errors_logged():
            print('export finished with errors')
    """
    global _error_handler
    config = _logging_settings()

    if script_name is None:
        script_name = Path(sys.argv[0]).stem or 'dbxl'
    log_dir_path = Path(log_dir or config.get('directory', './logs'))
    level_name = (level or config.get('level', 'INFO')).upper()
    numeric_level = getattr(logging, level_name, None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level_name}")
    if split_errors is None:
        split_errors = config.get('split_errors', True)
    if console is None:
        console = config.get('console', True)

    formatter = logging.Formatter(config.get('format', DEFAULT_FORMAT),
                                  datefmt=config.get('timestamp_format', '%Y-%m-%d %H:%M:%S'))

    log_dir_path.mkdir(parents=True, exist_ok=True)
    log_file, error_file = _log_file_names(script_name, log_dir_path,
                                           config.get('filename_format', '%Y%m%d_%H%M%S'), split_errors)

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()
    root_logger.setLevel(numeric_level)

    _error_handler = ErrorCountHandler(str(error_file) if error_file else None, formatter)
    root_logger.addHandler(_error_handler)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    _log_paths['main'] = str(log_file)
    _log_paths['errors'] = str(error_file) if error_file else None

    logger.info(f"Logging to {log_file}")
    return _log_paths['main'], _log_paths['errors']


def errors_logged() -> Optional[str]:
    """
    Path of the log holding this run's errors, or None when no error was logged.

    The separate error log is returned when errors are split out, the main log otherwise.
    Also None when :func:`setup_logging` has not been called.
    """
    if _error_handler is None:
        logger.warning("errors_logged() called before setup_logging()")
        return None
    if not _error_handler.error_count:
        return None
    return _log_paths['errors'] or _log_paths['main']


def cleanup_old_logs(
    log_dir: Optional[str] = None,
    retention_days: Optional[int] = None,
    pattern: str = '*.log',
    dry_run: bool = False
) -> List[str]:
    """
    Delete log files not modified within the retention period.

    Args:
        log_dir: Directory to clean (default ``settings['logging']['directory']``)
        retention_days: Age in days after which logs are deleted (default from settings, 30)
        pattern: Glob pattern selecting log files
        dry_run: Only report the files that would be deleted

    Returns:
        Paths deleted, or that would be deleted when ``dry_run`` is set
    """
    config = _logging_settings()
    log_dir_path = Path(log_dir or config.get('directory', './logs'))
    if retention_days is None:
        retention_days = config.get('retention_days', 30)

    if not log_dir_path.is_dir():
        logger.warning(f"Log directory does not exist: {log_dir_path}")
        return []

    cutoff = (datetime.now() - timedelta(days=retention_days)).timestamp()
    removed = []
    for path in sorted(log_dir_path.glob(pattern)):
        if not path.is_file() or path.stat().st_mtime >= cutoff:
            continue
        if dry_run:
            logger.info(f"Would delete old log: {path}")
        else:
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")
                continue
            logger.debug(f"Deleted old log: {path}")
        removed.append(str(path))

    if removed and not dry_run:
        logger.info(f"Removed {len(removed)} log file(s) older than {retention_days} days")
    return removed
