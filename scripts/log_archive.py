#!/usr/bin/env python3
"""Log archiver: compress a log directory into a timestamped tar.gz.

Every run writes one bundle ``logs_archive_<YYYYMMDD_HHMMSS>.tar.gz`` into the
archive directory and appends a record to ``<archive-dir>/archive_history.log``.
With ``--retain N`` bundles older than N days are deleted afterwards and each
deletion is recorded in the same history file.

Bundles are rooted at ``.`` (extract anywhere). Skipped while archiving:
  * the archive directory itself, when it lives inside the log directory
  * any ``*.tar.gz`` file (earlier bundles, rotated archives)
  * paths matching ``--exclude`` / config ``exclude`` patterns

Environment variables (loaded from .env best-effort):
  LOG_ARCHIVE_CONFIG       YAML config file (see log-archive.example.yml)
  LOG_ARCHIVE_OUT          Archive directory (default: <log-directory>/archives)
  LOG_ARCHIVE_RETAIN_DAYS  Retention window in days (default: no cleanup)

Usage:
  log-archive <log-directory> [--out <archive-dir>] [--retain <days>]
  python -m scripts.log_archive <log-directory> ...     # from a checkout

Exit codes:
  0 success
  1 partial (bundle created but history write or some deletions failed)
  2 fatal (invalid arguments / paths, archive creation failed, interrupted)
"""

from __future__ import annotations

import argparse
import logging
import math
import os
import stat as statmod
import sys
import tarfile
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from fnmatch import fnmatchcase
from pathlib import Path

from scripts.archive_errors import (
  ArchiveCreationFailed,
  ConfigError,
  DeletionFailed,
  HistoryWriteFailed,
  InvalidSourcePath,
  LogArchiveError,
  OutputDirUnwritable,
)
from scripts.archive_history import HistoryLog, is_deletion
from scripts.log_archive_config import load_env, parse_retain_days, resolve_settings

BUNDLE_PREFIX = "logs_archive_"
BUNDLE_SUFFIX = ".tar.gz"
BUNDLE_GLOB = f"{BUNDLE_PREFIX}*{BUNDLE_SUFFIX}"
DEFAULT_OUT_DIRNAME = "archives"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
SECONDS_PER_DAY = 86400
DEFAULT_HISTORY_TAIL = 10

EXAMPLES = """\
Examples:
  log-archive /var/log
  log-archive /var/log --out /var/log/archives --retain 14
  log-archive ./logs --exclude 'debug/*' --exclude '*.tmp'

Notes:
  - Use sudo when archiving system logs (e.g., /var/log).
  - Writes a history file: <archive-dir>/archive_history.log
"""

logger = logging.getLogger("log_archive")

# True means "leave this path out of the bundle".
PathFilter = Callable[[Path], bool]


@dataclass
class ArchiveJob:
  source_dir: Path
  output_dir: Path
  retain_days: int | None
  started_at: datetime
  exclude: list[str] = field(default_factory=list)

  @property
  def timestamp(self) -> str:
    # Shared by the bundle name and every history record of this run.
    return self.started_at.strftime(TIMESTAMP_FORMAT)

  @property
  def bundle_path(self) -> Path:
    return self.output_dir / bundle_name(self.timestamp)

  @property
  def history(self) -> HistoryLog:
    return HistoryLog(self.output_dir)


@dataclass
class ArchiveBundle:
  path: Path
  size_bytes: int
  size_human: str
  entries: int


@dataclass
class SweepResult:
  deleted: list[Path] = field(default_factory=list)
  failures: list[LogArchiveError] = field(default_factory=list)


@dataclass
class RunReport:
  bundle: ArchiveBundle
  history_error: HistoryWriteFailed | None = None
  sweep: SweepResult | None = None

  @property
  def errors(self) -> list[LogArchiveError]:
    errors: list[LogArchiveError] = [self.history_error] if self.history_error else []
    if self.sweep is not None:
      errors.extend(self.sweep.failures)
    return errors

  @property
  def partial(self) -> bool:
    return any(not e.fatal for e in self.errors)


def exit_code_for(err: LogArchiveError) -> int:
  return 2 if err.fatal else 1


def bundle_name(timestamp: str) -> str:
  return f"{BUNDLE_PREFIX}{timestamp}{BUNDLE_SUFFIX}"


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def resolve_paths(
  source: str | Path, output: str | Path | None = None, *, create: bool = True
) -> tuple[Path, Path]:
  """Return canonical (source_dir, output_dir), creating output_dir if needed.

  Relative paths are taken from the current working directory; symlinks and
  ``..`` are resolved so exclusions and archive names do not depend on it.
  With ``create=False`` (read-only queries) a missing output_dir is returned
  as-is instead of being created.
  """
  src = Path(source).expanduser()
  try:
    if not src.is_dir():
      raise InvalidSourcePath(f"Log directory not found: {source}", src)
    src = src.resolve(strict=True)
  except OSError as e:
    raise InvalidSourcePath(f"Cannot access log directory {source}: {e}", src) from e

  out = Path(output).expanduser() if output else src / DEFAULT_OUT_DIRNAME
  if not create and not out.exists():
    return src, out.resolve()
  try:
    out.mkdir(parents=True, exist_ok=True)
    out = out.resolve(strict=True)
  except OSError as e:
    raise OutputDirUnwritable(f"Cannot create archive directory {out}: {e}", out) from e
  if not os.access(out, os.W_OK | os.X_OK):
    raise OutputDirUnwritable(f"Archive directory is not writable: {out}", out)
  return src, out


# ---------------------------------------------------------------------------
# Archiving
# ---------------------------------------------------------------------------


def exclude_output_dir(output_dir: Path) -> PathFilter:
  return lambda path: path == output_dir


def exclude_bundles(path: Path) -> bool:
  return path.name.endswith(BUNDLE_SUFFIX) and not path.is_dir()


def exclude_patterns(source_dir: Path, patterns: Iterable[str]) -> PathFilter:
  patterns = list(patterns)

  def _excluded(path: Path) -> bool:
    rel = path.relative_to(source_dir).as_posix()
    return any(fnmatchcase(rel, pat) or fnmatchcase(rel + "/", pat) for pat in patterns)

  return _excluded


def default_filters(
  source_dir: Path, output_dir: Path, patterns: Iterable[str] = ()
) -> list[PathFilter]:
  filters: list[PathFilter] = [exclude_output_dir(output_dir), exclude_bundles]
  patterns = list(patterns)
  if patterns:
    filters.append(exclude_patterns(source_dir, patterns))
  return filters


def _raise_walk_error(err: OSError) -> None:
  raise err


def iter_entries(source_dir: Path, filters: list[PathFilter]) -> Iterator[tuple[Path, str]]:
  """Yield (path, arcname) for every kept entry under source_dir, parents first."""
  for root, dirs, files in os.walk(source_dir, onerror=_raise_walk_error):
    root_path = Path(root)
    kept: list[str] = []
    for d in sorted(dirs):
      if any(f(root_path / d) for f in filters):
        logger.debug("Excluding directory %s", root_path / d)
        continue
      kept.append(d)
    # Prune in-place so excluded directories are never descended into.
    dirs[:] = kept
    for name in kept + sorted(files):
      path = root_path / name
      if name not in kept and any(f(path) for f in filters):
        logger.debug("Excluding %s", path)
        continue
      yield path, "./" + path.relative_to(source_dir).as_posix()


def create_bundle(
  source_dir: Path,
  output_dir: Path,
  timestamp: str,
  filters: list[PathFilter] | None = None,
) -> ArchiveBundle:
  """Write ``output_dir/logs_archive_<timestamp>.tar.gz`` from source_dir.

  On any failure the partial file is removed and ArchiveCreationFailed raised.
  """
  archive_path = output_dir / bundle_name(timestamp)
  if filters is None:
    filters = default_filters(source_dir, output_dir)
  if archive_path.exists():
    logger.warning("Bundle %s already exists (same-second run); overwriting", archive_path)

  entries = 0
  try:
    with tarfile.open(archive_path, "w:gz") as tar:
      tar.add(source_dir, arcname=".", recursive=False)
      for path, arcname in iter_entries(source_dir, filters):
        tarinfo = tar.gettarinfo(path, arcname)
        if tarinfo is None:
          # Sockets and other types tar cannot store.
          logger.debug("Skipping unsupported file type %s", path)
          continue
        if tarinfo.isreg():
          with path.open("rb") as fh:
            tar.addfile(tarinfo, fh)
        else:
          tar.addfile(tarinfo)
        entries += 1
  except KeyboardInterrupt:
    archive_path.unlink(missing_ok=True)
    raise
  except (OSError, tarfile.TarError) as e:
    archive_path.unlink(missing_ok=True)
    raise ArchiveCreationFailed(
      f"Failed to create archive {archive_path}: {e}", archive_path
    ) from e

  st = archive_path.stat()
  logger.debug("Wrote %d entries to %s", entries, archive_path)
  return ArchiveBundle(
    path=archive_path,
    size_bytes=st.st_size,
    size_human=human_size(disk_usage(st)),
    entries=entries,
  )


def disk_usage(st: os.stat_result) -> int:
  """Allocated bytes like ``du``; apparent size where blocks are not reported."""
  blocks = getattr(st, "st_blocks", None)
  if blocks:
    return blocks * 512
  return st.st_size


_UNITS = ("K", "M", "G", "T", "P", "E")


def human_size(num_bytes: int) -> str:
  """Format like ``du -h``: 1024-based, rounded up, one decimal below 10."""
  if num_bytes < 1024:
    return str(num_bytes)
  value = float(num_bytes)
  for unit in _UNITS:
    value /= 1024
    if value < 10:
      rounded = math.ceil(value * 10) / 10
      return f"{rounded:.1f}{unit}" if rounded < 10 else f"10{unit}"
    if math.ceil(value) < 1024:
      return f"{math.ceil(value)}{unit}"
  return f"{math.ceil(value)}{_UNITS[-1]}"


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


def age_in_days(mtime: float, now: float) -> int:
  """Whole days since mtime, truncated (``find -mtime`` semantics)."""
  return int((now - mtime) // SECONDS_PER_DAY)


def list_bundles(output_dir: Path) -> list[Path]:
  """Regular bundle files directly inside output_dir, oldest name first."""
  bundles = []
  if not output_dir.is_dir():
    return bundles
  for path in sorted(output_dir.glob(BUNDLE_GLOB)):
    try:
      mode = path.lstat().st_mode
    except FileNotFoundError:
      continue
    if statmod.S_ISREG(mode):
      bundles.append(path)
  return bundles


def find_expired_bundles(output_dir: Path, retain_days: int, now: float) -> list[Path]:
  """Bundles strictly older than retain_days whole days."""
  expired = []
  for path in list_bundles(output_dir):
    try:
      mtime = path.stat().st_mtime
    except FileNotFoundError:
      continue
    if age_in_days(mtime, now) > retain_days:
      expired.append(path)
  return expired


def sweep_expired(
  output_dir: Path,
  retain_days: int,
  timestamp: str,
  now: float,
  history: HistoryLog | None = None,
) -> SweepResult:
  """Delete expired bundles, logging one history record per deletion.

  Failures are collected per file; the sweep always visits every candidate.
  """
  history = history or HistoryLog(output_dir)
  result = SweepResult()
  for path in find_expired_bundles(output_dir, retain_days, now):
    try:
      path.unlink()
    except OSError as e:
      err = DeletionFailed(f"Could not delete old archive {path}: {e}", path)
      logger.warning(err.message)
      result.failures.append(err)
      continue
    result.deleted.append(path)
    try:
      history.append_deletion(timestamp, path, retain_days)
    except HistoryWriteFailed as e:
      logger.error(e.message)
      result.failures.append(e)
  return result


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


def run_job(job: ArchiveJob) -> RunReport:
  """Archive, record, then (optionally) sweep. Fatal errors propagate."""
  filters = default_filters(job.source_dir, job.output_dir, job.exclude)
  bundle = create_bundle(job.source_dir, job.output_dir, job.timestamp, filters)
  report = RunReport(bundle=bundle)

  history = job.history
  try:
    history.append_creation(
      job.timestamp, job.source_dir, bundle.path, bundle.size_bytes, bundle.size_human
    )
  except HistoryWriteFailed as e:
    # The bundle stays; it is valid, just unrecorded.
    logger.error(e.message)
    report.history_error = e

  if job.retain_days is not None:
    report.sweep = sweep_expired(
      job.output_dir, job.retain_days, job.timestamp, job.started_at.timestamp(), history
    )
  return report


def setup_logging(verbose: bool = False) -> logging.Logger:
  handler = logging.StreamHandler(sys.stderr)
  handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
  for old in list(logger.handlers):
    logger.removeHandler(old)
  logger.addHandler(handler)
  logger.setLevel(logging.DEBUG if verbose else logging.INFO)
  return logger


def _retain_arg(value: str) -> int:
  try:
    return parse_retain_days(value)
  except ValueError as e:
    raise argparse.ArgumentTypeError(str(e)) from e


def _dir_arg(value: str) -> str:
  if not value.strip():
    raise argparse.ArgumentTypeError("needs a directory")
  return value


def _positive_int(value: str) -> int:
  try:
    n = int(value)
  except ValueError as e:
    raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from e
  if n < 1:
    raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
  return n


def build_parser() -> argparse.ArgumentParser:
  p = argparse.ArgumentParser(
    prog="log-archive",
    description="Compress logs under a directory into a timestamped tar.gz",
    epilog=EXAMPLES,
    formatter_class=argparse.RawDescriptionHelpFormatter,
  )
  p.add_argument("log_dir", metavar="log-directory", help="Directory whose contents are archived")
  p.add_argument(
    "--out",
    metavar="ARCHIVE_DIR",
    type=_dir_arg,
    default=None,
    help="Where bundles and archive_history.log go (default: <log-directory>/archives)",
  )
  p.add_argument(
    "--retain",
    metavar="DAYS",
    type=_retain_arg,
    default=None,
    help="Delete bundles older than DAYS days after archiving",
  )
  p.add_argument(
    "--exclude",
    action="append",
    default=[],
    metavar="PATTERN",
    help="Glob (relative to log-directory) to leave out, e.g. 'debug/*'. Can be repeated.",
  )
  p.add_argument("--config", metavar="FILE", help="YAML config file (default: $LOG_ARCHIVE_CONFIG)")
  mode = p.add_mutually_exclusive_group()
  mode.add_argument("--list", action="store_true", help="List existing bundles and exit")
  mode.add_argument(
    "--history",
    nargs="?",
    const=DEFAULT_HISTORY_TAIL,
    type=_positive_int,
    metavar="N",
    help=f"Show the last N history records and exit (default N: {DEFAULT_HISTORY_TAIL})",
  )
  p.add_argument("-v", "--verbose", action="store_true", help="Debug output on stderr")
  return p


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
  return build_parser().parse_args(argv)


def print_bundles(output_dir: Path) -> None:
  bundles = list_bundles(output_dir)
  if not bundles:
    print("(no archives found)")
    return
  for b in bundles:
    print(f"{b.name}\t{human_size(disk_usage(b.stat()))}")


def print_history(output_dir: Path, tail: int) -> None:
  history = HistoryLog(output_dir)
  records = history.records()
  if not records:
    print(f"(no history in {history.path})")
    return
  for record in records[-tail:]:
    if is_deletion(record):
      print(f"{record.get('timestamp', '?')}  deleted  {record.get('file', '?')}")
    else:
      size = record.get("size_human", "?")
      print(f"{record.get('timestamp', '?')}  created  {record.get('archive', '?')} ({size})")


def main(argv: list[str] | None = None) -> int:
  args = parse_args(argv)
  setup_logging(args.verbose)
  load_env()

  try:
    settings = resolve_settings(
      cli_out=args.out,
      cli_retain=args.retain,
      cli_exclude=args.exclude,
      config_path=args.config,
    )
  except ConfigError as e:
    print(f"Error: {e.message}", file=sys.stderr)
    return 2

  try:
    source_dir, output_dir = resolve_paths(
      args.log_dir, settings.output_dir, create=not (args.list or args.history is not None)
    )
  except LogArchiveError as e:
    print(f"❌ {e.message}", file=sys.stderr)
    return exit_code_for(e)

  if args.list:
    print_bundles(output_dir)
    return 0
  if args.history is not None:
    print_history(output_dir, args.history)
    return 0

  job = ArchiveJob(
    source_dir=source_dir,
    output_dir=output_dir,
    retain_days=settings.retain_days,
    started_at=datetime.now(),
    exclude=settings.exclude,
  )
  try:
    report = run_job(job)
  except LogArchiveError as e:
    print(f"❌ {e.message}", file=sys.stderr)
    return exit_code_for(e)
  except KeyboardInterrupt:
    print("❌ Interrupted by user (Ctrl+C). Partial archive removed.", file=sys.stderr)
    return 2

  print(f"Created: {report.bundle.path} ({report.bundle.size_human})")
  if report.history_error is None:
    print(f"Logged to: {job.history.path}")
  else:
    print(f"⚠️ Not logged: {report.history_error.message}", file=sys.stderr)

  if report.sweep is not None:
    for path in report.sweep.deleted:
      print(f"🗑️  Deleted old archive (> {job.retain_days}d): {path}")
    if report.sweep.failures:
      count = len(report.sweep.failures)
      print(f"⚠️ {count} retention problem(s), see warnings above", file=sys.stderr)
  return 1 if report.partial else 0


if __name__ == "__main__":
  sys.exit(main())
