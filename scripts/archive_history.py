#!/usr/bin/env python3
"""Append-only archive history file.

Each archive creation and each retention deletion appends one block of
``key=value`` lines terminated by a ``----`` line, e.g.::

  timestamp=20250101_120000
  source=/var/log
  archive=/var/log/archives/logs_archive_20250101_120000.tar.gz
  size_bytes=4096
  size_human=4.0K
  ----

Blocks are never rewritten. The file stays greppable with plain line tools.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from scripts.archive_errors import HistoryWriteFailed

HISTORY_FILENAME = "archive_history.log"
RECORD_DELIMITER = "----"
DELETE_ACTION = "delete_old_archive"

logger = logging.getLogger("log_archive.history")


class HistoryLog:
  """Writes creation/deletion blocks to ``<output_dir>/archive_history.log``."""

  def __init__(self, output_dir: Path):
    self.path = Path(output_dir) / HISTORY_FILENAME

  def append_creation(
    self,
    timestamp: str,
    source_dir: Path,
    archive_path: Path,
    size_bytes: int,
    size_human: str,
  ) -> None:
    self._append(
      [
        ("timestamp", timestamp),
        ("source", str(source_dir)),
        ("archive", str(archive_path)),
        ("size_bytes", str(size_bytes)),
        ("size_human", size_human),
      ]
    )

  def append_deletion(self, timestamp: str, file_path: Path, retain_days: int) -> None:
    self._append(
      [
        ("timestamp", timestamp),
        ("action", DELETE_ACTION),
        ("file", str(file_path)),
        ("retain_days", str(retain_days)),
      ]
    )

  def _append(self, fields: list[tuple[str, str]]) -> None:
    block = "".join(f"{key}={value}\n" for key, value in fields) + RECORD_DELIMITER + "\n"
    try:
      # Single write per block so lines of one record stay together.
      with self.path.open("a", encoding="utf-8") as fh:
        fh.write(block)
    except OSError as e:
      raise HistoryWriteFailed(
        f"Cannot append to history file {self.path}: {e}", self.path
      ) from e
    logger.debug("history += %s", dict(fields))

  def records(self) -> list[dict[str, str]]:
    """Return all records in file order (empty when the file does not exist)."""
    if not self.path.exists():
      return []
    with self.path.open(encoding="utf-8") as fh:
      return list(parse_records(fh))


def parse_records(lines: Iterable[str]) -> Iterator[dict[str, str]]:
  """Yield one dict per ``----``-terminated block.

  A trailing block without delimiter (interrupted append) is still yielded.
  """
  current: dict[str, str] = {}
  for raw in lines:
    line = raw.rstrip("\n")
    if line == RECORD_DELIMITER:
      yield current
      current = {}
      continue
    if not line:
      continue
    key, sep, value = line.partition("=")
    if not sep:
      logger.debug("Skipping malformed history line: %r", line)
      continue
    current[key] = value
  if current:
    yield current


def is_deletion(record: dict[str, str]) -> bool:
  return record.get("action") == DELETE_ACTION
