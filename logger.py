"""
Logging Framework for the Survey Study Pipeline

This module provides the logging infrastructure shared by every stage:
- File (rotating) and console output targets
- Configurable log levels and formats from CONFIG
- Performance tracking per pipeline stage
- Context tracking (e.g. current model name) for debugging

Usage:
    from logger import get_logger

    logger = get_logger(__name__)
    logger.info("Pipeline started")

    # Performance tracking
    with logger.track_time("imputation"):
        result = imputer.fit_transform(df)
"""

import logging
import logging.handlers
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional

from config import CONFIG


class PerformanceLogger:
    """
    Track and log performance metrics.
    """

    def __init__(self, logger: logging.Logger):
        """
        Create a PerformanceLogger bound to a standard logger with empty timing storage.

        Timings map operation names to lists of elapsed seconds.
        """
        self.logger = logger
        self.timings: Dict[str, list] = {}
        self._lock = threading.Lock()

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        """
        Context manager that measures and logs the elapsed time of a named operation.

        If CONFIG['logging.log_performance'] is falsy, the context yields without measuring.
        Otherwise the elapsed time is appended to self.timings[operation] and logged at
        the requested level.

        Parameters:
            operation (str): Name of the operation to record and log.
            log_level (str): Logger method name ("DEBUG", "INFO", ...); falls back to debug.
        """
        if not CONFIG.get('logging.log_performance'):
            yield
            return

        start_time = time.time()
        try:
            yield
        finally:
            elapsed = time.time() - start_time

            with self._lock:
                if operation not in self.timings:
                    self.timings[operation] = []
                self.timings[operation].append(elapsed)

            log_method = getattr(self.logger, log_level.lower(), self.logger.debug)
            log_method(f"{operation} completed in {elapsed:.3f}s")

    def print_summary(self) -> None:
        """
        Log a summary (avg/min/max/count) of recorded operation timings.
        """
        if not self.timings:
            return

        self.logger.info("=" * 60)
        self.logger.info("Performance Summary")
        self.logger.info("=" * 60)

        for operation, times in self.timings.items():
            if times:
                avg = sum(times) / len(times)
                self.logger.info(
                    f"  {operation}: "
                    f"avg={avg:.3f}s, min={min(times):.3f}s, max={max(times):.3f}s (n={len(times)})"
                )

        self.logger.info("=" * 60)


class ContextFilter(logging.Filter):
    """
    Add context information to log records.
    """

    def __init__(self):
        super().__init__()
        self.context: Dict[str, Any] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Attach stored context key/value pairs as attributes on the given LogRecord.

        Returns:
            bool: Always `True` so the record continues to the handlers.
        """
        for key, value in self.context.items():
            setattr(record, key, value)
        return True

    def set_context(self, **kwargs) -> None:
        """Add or update contextual key-value pairs for subsequent log records."""
        self.context.update(kwargs)

    def clear_context(self) -> None:
        """Remove all stored context key/value pairs."""
        self.context.clear()


class LoggerFactory:
    """
    Factory for creating and managing loggers.
    """

    _loggers: ClassVar[Dict[str, 'Logger']] = {}
    _context_filter: Optional[ContextFilter] = None
    _perf_logger: Optional[PerformanceLogger] = None
    _configured = False
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def configure(cls) -> None:
        """
        Perform one-time configuration of the logging system using values from CONFIG.

        Reads level, format and date format, sets up the root logger, a shared
        ContextFilter and the enabled handlers (file/console). If CONFIG disables
        logging, logging is globally disabled. Idempotent; on error a warning is
        printed to stderr and configuration is marked complete to avoid retry loops.
        """
        if cls._configured:
            return

        try:
            if not CONFIG.get('logging.enabled'):
                logging.disable(logging.CRITICAL)
                cls._configured = True
                return

            log_level = CONFIG.get('logging.level', 'INFO')
            log_format = CONFIG.get('logging.format')
            date_format = CONFIG.get('logging.date_format')

            formatter = logging.Formatter(log_format, datefmt=date_format)

            root_logger = logging.getLogger()
            numeric_level = getattr(logging, log_level.upper(), None)
            if numeric_level is None:
                print(f"[WARNING] Invalid log level '{log_level}', defaulting to INFO", file=sys.stderr)
                numeric_level = logging.INFO
            root_logger.setLevel(numeric_level)

            if root_logger.handlers:
                root_logger.handlers.clear()

            cls._context_filter = ContextFilter()

            if CONFIG.get('logging.file_enabled'):
                cls._setup_file_logging(root_logger, formatter)

            if CONFIG.get('logging.console_enabled'):
                cls._setup_console_logging(root_logger, formatter)

            # Library chatter stays at WARNING
            for noisy in ('matplotlib', 'PIL'):
                logging.getLogger(noisy).setLevel(logging.WARNING)

            cls._configured = True

        except Exception as e:
            print(f"[WARNING] Logging configuration failed: {e}", file=sys.stderr)
            cls._configured = True

    @classmethod
    def _setup_file_logging(cls, root_logger: logging.Logger, formatter: logging.Formatter) -> None:
        """
        Attach a RotatingFileHandler to the root logger.

        Uses CONFIG keys 'logging.log_dir', 'logging.log_file', 'logging.max_log_size'
        and 'logging.backup_count'. Setup errors are printed to stderr and ignored.
        """
        try:
            log_dir = Path(CONFIG.get('logging.log_dir', 'logs'))
            log_dir.mkdir(exist_ok=True, parents=True)

            log_file = log_dir / CONFIG.get('logging.log_file', 'study.log')
            max_size = CONFIG.get('logging.max_log_size', 10485760)
            backup_count = CONFIG.get('logging.backup_count', 5)

            handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_size,
                backupCount=backup_count
            )
            handler.setFormatter(formatter)
            handler.addFilter(cls._context_filter)
            root_logger.addHandler(handler)

        except Exception as e:
            print(f"[WARNING] Failed to setup file logging: {e}", file=sys.stderr)

    @classmethod
    def _setup_console_logging(cls, root_logger: logging.Logger, formatter: logging.Formatter) -> None:
        """
        Attach a stdout StreamHandler at CONFIG['logging.console_level'] to the root logger.
        """
        try:
            console_handler = logging.StreamHandler(sys.stdout)
            console_level = CONFIG.get('logging.console_level', 'INFO')
            console_handler.setLevel(getattr(logging, console_level))
            console_handler.setFormatter(formatter)
            console_handler.addFilter(cls._context_filter)
            root_logger.addHandler(console_handler)

        except Exception as e:
            print(f"[WARNING] Failed to setup console logging: {e}", file=sys.stderr)

    @classmethod
    def get_logger(cls, name: str) -> 'Logger':
        """
        Retrieve a cached Logger by name, configuring the logging system on first use.
        """
        if not cls._configured:
            cls.configure()

        with cls._lock:
            if name not in cls._loggers:
                standard_logger = logging.getLogger(name)
                cls._loggers[name] = Logger(standard_logger, cls._context_filter)
            return cls._loggers[name]

    @classmethod
    def get_performance_logger(cls) -> PerformanceLogger:
        """
        Return the shared PerformanceLogger, creating it on first access.
        """
        if cls._perf_logger is None:
            cls._perf_logger = PerformanceLogger(logging.getLogger('performance'))
        return cls._perf_logger


class Logger:
    """
    Wrapper around standard logger with additional features.
    """

    def __init__(self, standard_logger: logging.Logger, context_filter: Optional[ContextFilter] = None):
        self._logger = standard_logger
        self._context_filter = context_filter
        self._perf_logger = LoggerFactory.get_performance_logger()

    def debug(self, msg: str, *args, **kwargs) -> None:
        """Log debug message."""
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        """Log info message."""
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        """Log warning message."""
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        """Log error message."""
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs) -> None:
        """Log critical message."""
        self._logger.critical(msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs) -> None:
        """Log a message together with the active exception traceback."""
        self._logger.exception(msg, *args, **kwargs)

    def log_operation(self, operation: str, status: str = "started", **details) -> None:
        """
        Log an operation event with optional details.

        Produces "[operation] STATUS | k=v | ..." at ERROR level when `status`
        is "failed" and INFO otherwise.
        """
        msg_parts = [f"[{operation}]"]

        if status:
            msg_parts.append(f"{status.upper()}")

        if details:
            detail_str = " | ".join([f"{k}={v}" for k, v in details.items()])
            msg_parts.append(detail_str)

        msg = " ".join(msg_parts)

        if status.lower() == "failed":
            self.error(msg)
        else:
            self.info(msg)

    def log_data_summary(self, df_name: str, shape: tuple, dtypes: Dict[str, str]) -> None:
        """
        Log the shape and numeric/object column counts of a DataFrame.

        Emitted only when CONFIG['logging.log_data_operations'] is truthy.
        """
        if CONFIG.get('logging.log_data_operations'):
            self.info(
                f"{df_name}: shape={shape}, "
                f"numeric={sum(1 for t in dtypes.values() if 'int' in t.lower() or 'float' in t.lower())}, "
                f"object={sum(1 for t in dtypes.values() if 'object' in t)}"
            )

    def log_analysis(self, analysis_type: str, outcome: str, n_vars: int, n_samples: int) -> None:
        """
        Log a one-line summary of a model fit.

        Emitted only when CONFIG['logging.log_analysis_operations'] is truthy.
        """
        if CONFIG.get('logging.log_analysis_operations'):
            self.info(
                f"{analysis_type}: outcome='{outcome}', "
                f"terms={n_vars}, n={n_samples}"
            )

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        """
        Record the elapsed time of the wrapped block under `operation`.
        """
        with self._perf_logger.track_time(operation, log_level):
            yield

    def set_context(self, **kwargs) -> None:
        """Attach key-value context to subsequent log records."""
        if self._context_filter:
            self._context_filter.set_context(**kwargs)

    def clear_context(self) -> None:
        """Remove all context key-value pairs; no-op if no context is configured."""
        if self._context_filter:
            self._context_filter.clear_context()


def get_logger(name: str) -> Logger:
    """
    Obtain a configured logger for the given name (typically `__name__`).
    """
    return LoggerFactory.get_logger(name)
