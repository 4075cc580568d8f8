"""
Custom log handlers for the subscription ticket bot.

This module provides a size-rotating file handler that gzips rotated
files and the owner-only handler that backs the JSON audit log.
"""

import gzip
import logging
import logging.handlers
import os
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class RotatingFileHandler(logging.handlers.RotatingFileHandler):
    """
    Rotating file handler that compresses rotated files.

    Rotated files are named ``<log>.1.gz``, ``<log>.2.gz`` and so on, using
    the standard ``namer``/``rotator`` hooks of the base class.
    """

    def __init__(self, filename: str, max_bytes: int = 10485760, backup_count: int = 5,
                 encoding: Optional[str] = None, compress_rotated: bool = True):
        """
        Initialize the rotating file handler.

        Args:
            filename: Path to the log file
            max_bytes: Maximum size of log file before rotation (default: 10MB)
            backup_count: Number of backup files to keep
            encoding: File encoding (default: utf-8)
            compress_rotated: Whether to gzip rotated files
        """
        self.compress_rotated = compress_rotated

        Path(filename).parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            filename=filename,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding=encoding or 'utf-8'
        )

        if compress_rotated:
            self.namer = self._gzip_name
            self.rotator = self._gzip_rotate

    @staticmethod
    def _gzip_name(name: str) -> str:
        return f"{name}.gz"

    @staticmethod
    def _gzip_rotate(source: str, dest: str) -> None:
        try:
            with open(source, 'rb') as f_in:
                with gzip.open(dest, 'wb') as f_out:
                    shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError as e:
            print(f"Error compressing rotated log file {source}: {e}", file=sys.stderr)


class AuditFileHandler(RotatingFileHandler):
    """
    File handler for the JSON audit log.

    Keeps the audit file readable by its owner only and re-applies the
    permissions periodically and after every rotation.
    """

    PERMISSION_CHECK_SECONDS = 300

    def __init__(self, filename: str, max_bytes: int = 20971520, backup_count: int = 10,
                 encoding: Optional[str] = None):
        """
        Initialize the audit file handler.

        Args:
            filename: Path to the audit log file
            max_bytes: Maximum size before rotation (default: 20MB)
            backup_count: Number of backup files to keep (default: 10)
            encoding: File encoding
        """
        super().__init__(
            filename=filename,
            max_bytes=max_bytes,
            backup_count=backup_count,
            encoding=encoding,
            compress_rotated=True
        )
        self._last_permission_check: Optional[datetime] = None

    def _set_secure_permissions(self):
        try:
            if os.path.exists(self.baseFilename):
                os.chmod(self.baseFilename, 0o600)
        except OSError as e:
            print(f"Warning: Could not set secure permissions on audit log: {e}", file=sys.stderr)

    def emit(self, record: logging.LogRecord):
        super().emit(record)

        now = datetime.now()
        if (self._last_permission_check is None or
                (now - self._last_permission_check).total_seconds() > self.PERMISSION_CHECK_SECONDS):
            self._set_secure_permissions()
            self._last_permission_check = now

    def doRollover(self):
        super().doRollover()
        self._set_secure_permissions()
