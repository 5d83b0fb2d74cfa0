"""
Log handlers for the sync command.

Everything written to the log file or console passes through SensitiveDataFilter,
which masks access tokens, passwords, secrets and identity hashes.
"""

import os
import re
import logging
import logging.handlers
from typing import Dict, Any, List

SENSITIVE_KEYWORDS = (
    'password', 'bind_password', 'truststore_password', 'token', 'secret',
    'access_token', 'user_hash', 'authorization',
)


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    def __init__(self, keywords=SENSITIVE_KEYWORDS):
        super().__init__()
        self.patterns = []
        for keyword in keywords:
            # key=value, "key": "value", 'key': 'value'
            self.patterns.append((re.compile(rf'({keyword}\s*=\s*)[^\s,}}\]]+', re.IGNORECASE), r'\1****'))
            self.patterns.append((re.compile(rf'("{keyword}"\s*:\s*")[^"]*(")', re.IGNORECASE), r'\1****\2'))
            self.patterns.append((re.compile(rf"('{keyword}'\s*:\s*')[^']*(')", re.IGNORECASE), r'\1****\2'))
        self.patterns.append((re.compile(r'(Bearer\s+)[^\s,\'"}}\]]+', re.IGNORECASE), r'\1****'))

    def filter(self, record):
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            for pattern, replacement in self.patterns:
                msg = pattern.sub(replacement, msg)
            record.msg = msg
        return True

LOG_FILE_NAME = 'intercom_sync.log'
FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


class LoggingManager:
    """
    Installs the sync's log handlers on the root logger.

    Rotated files are pruned by the handler itself (``backupCount``), so the
    retention period only applies when rotation is enabled.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.handlers: List[logging.Handler] = []

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: The ``logging`` configuration section
        """
        if self.configured:
            return

        settings = config or {}
        level = _level(settings.get('level', 'INFO'), logging.INFO)
        self.log_dir = self._prepare_log_dir(settings.get('log_dir', 'logs'))

        scrubber = SensitiveDataFilter()
        file_handler = self._file_handler(settings.get('rotation', 'daily'),
                                          settings.get('retention_days', 7))
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        self.handlers.append(file_handler)

        if settings.get('console_output', True):
            console_handler = logging.StreamHandler()
            console_handler.setLevel(_level(settings.get('console_level', 'WARNING'), logging.WARNING))
            console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
            self.handlers.append(console_handler)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        for handler in self.handlers:
            handler.addFilter(scrubber)
            root_logger.addHandler(handler)

        self.configured = True
        logging.getLogger(__name__).info(
            f"Logging to {os.path.join(self.log_dir, LOG_FILE_NAME)} at {logging.getLevelName(level)}"
        )

    @staticmethod
    def _prepare_log_dir(log_dir: str) -> str:
        try:
            os.makedirs(log_dir, exist_ok=True)
        except OSError as e:
            print(f"Warning: Could not create log directory {log_dir}: {e}; logging to current directory")
            return '.'
        return log_dir

    def _file_handler(self, rotation: str, retention_days: int) -> logging.Handler:
        """Daily rotation keeps retention_days old files; 'none' writes one growing file."""
        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)

        if str(rotation).lower() == 'none':
            return logging.FileHandler(log_file, encoding='utf-8')

        handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_file,
            when='midnight',
            backupCount=max(int(retention_days), 0),
            encoding='utf-8'
        )
        handler.suffix = '%Y-%m-%d'
        return handler

    def reset(self) -> None:
        """Remove installed handlers so logging can be configured again."""
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers = []
        self.configured = False


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """Configure process-wide logging from the ``logging`` config section."""
    _logging_manager.setup_logging(config)
