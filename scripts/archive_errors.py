"""Exception types shared by the log archive tools.

Fatal (invocation aborts, exit code 2):
  InvalidSourcePath, OutputDirUnwritable, ArchiveCreationFailed, ConfigError

Partial (surfaced, run continues, exit code 1):
  HistoryWriteFailed, DeletionFailed
"""

from __future__ import annotations

from pathlib import Path


class LogArchiveError(Exception):
  """Base class; ``path`` is the file or directory involved, when known."""

  fatal = True

  def __init__(self, message: str, path: Path | None = None):
    super().__init__(message)
    self.message = message
    self.path = path


class InvalidSourcePath(LogArchiveError):
  pass


class OutputDirUnwritable(LogArchiveError):
  pass


class ArchiveCreationFailed(LogArchiveError):
  pass


class ConfigError(LogArchiveError):
  """Bad config file / environment value. Reported like a CLI usage error."""

  def __init__(self, message: str, errors: list[str] | None = None, path: Path | None = None):
    super().__init__(message, path)
    self.errors = errors or []


class HistoryWriteFailed(LogArchiveError):
  fatal = False


class DeletionFailed(LogArchiveError):
  fatal = False
