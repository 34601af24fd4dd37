#!/usr/bin/env python3
"""
Configuration loader for the log archiver.

Settings come from (highest priority first):
  1. command line flags
  2. environment variables (LOG_ARCHIVE_OUT, LOG_ARCHIVE_RETAIN_DAYS)
  3. a YAML file (--config or LOG_ARCHIVE_CONFIG), see log-archive.example.yml
  4. built-in defaults (output under <log-directory>/archives, no retention)
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import find_dotenv, load_dotenv

from scripts.archive_errors import ConfigError

ENV_CONFIG = "LOG_ARCHIVE_CONFIG"
ENV_OUT = "LOG_ARCHIVE_OUT"
ENV_RETAIN = "LOG_ARCHIVE_RETAIN_DAYS"

KNOWN_KEYS = {"output_dir", "retain_days", "exclude"}

_DAYS_RE = re.compile(r"^[0-9]+$")


def parse_retain_days(value: str) -> int:
  """Parse a retention value: digits only, so no sign, blanks or decimals."""
  text = str(value).strip()
  if not _DAYS_RE.match(text):
    raise ValueError(f"retention must be a non-negative integer (days), got {value!r}")
  return int(text)


@dataclass
class ArchiveSettings:
  """Resolved settings for one invocation (paths not yet validated)."""

  output_dir: str | None = None
  retain_days: int | None = None
  exclude: list[str] = field(default_factory=list)


class LogArchiveConfig:
  """Loads and validates an optional YAML config file."""

  def __init__(self, config_path: str | Path | None = None):
    self.config_path = Path(config_path) if config_path else None
    self._config_data = self._load_config()

  def _load_config(self) -> dict[str, Any]:
    if self.config_path is None:
      return {}
    if not self.config_path.exists():
      raise ConfigError(f"Configuration file not found: {self.config_path}", path=self.config_path)

    try:
      with open(self.config_path, encoding="utf-8") as file:
        config = yaml.safe_load(file)
    except yaml.YAMLError as e:
      raise ConfigError(f"Invalid YAML in configuration file: {e}", path=self.config_path) from e
    except OSError as e:
      raise ConfigError(f"Error reading configuration file: {e}", path=self.config_path) from e

    if config is None:
      return {}
    if not isinstance(config, dict):
      raise ConfigError(
        f"Configuration file must contain a mapping, got {type(config).__name__}",
        path=self.config_path,
      )
    return config

  @property
  def output_dir(self) -> str | None:
    value = self._config_data.get("output_dir")
    return str(value) if value is not None else None

  @property
  def retain_days(self) -> int | None:
    value = self._config_data.get("retain_days")
    if value is None:
      return None
    return parse_retain_days(value)

  @property
  def exclude(self) -> list[str]:
    return list(self._config_data.get("exclude") or [])

  def validate_config(self) -> None:
    """Collect every problem before raising, so one run shows them all."""
    errors = []

    unknown = sorted(set(self._config_data) - KNOWN_KEYS)
    if unknown:
      errors.append(f"Unknown keys: {', '.join(unknown)}")

    output_dir = self._config_data.get("output_dir")
    if output_dir is not None and (not isinstance(output_dir, str) or not output_dir.strip()):
      errors.append(f"output_dir must be a non-empty string, got {output_dir!r}")

    retain = self._config_data.get("retain_days")
    if retain is not None:
      if isinstance(retain, bool) or not isinstance(retain, int) or retain < 0:
        errors.append(f"retain_days must be a non-negative integer, got {retain!r}")

    exclude = self._config_data.get("exclude")
    if exclude is not None:
      if not isinstance(exclude, list) or not all(isinstance(p, str) and p for p in exclude):
        errors.append("exclude must be a list of non-empty glob patterns")

    if errors:
      raise ConfigError(
        "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors),
        errors=errors,
        path=self.config_path,
      )


def load_env(dotenv_path: str | Path | None = None) -> None:
  """Load .env from the working directory; exported variables win."""
  load_dotenv(dotenv_path=dotenv_path or find_dotenv(usecwd=True), override=False)


def resolve_settings(
  cli_out: str | None = None,
  cli_retain: int | None = None,
  cli_exclude: list[str] | None = None,
  config_path: str | Path | None = None,
  environ: dict[str, str] | None = None,
) -> ArchiveSettings:
  """Merge CLI, environment and YAML values into one ArchiveSettings."""
  env = os.environ if environ is None else environ

  config = LogArchiveConfig(config_path or env.get(ENV_CONFIG) or None)
  config.validate_config()

  settings = ArchiveSettings(
    output_dir=config.output_dir,
    retain_days=config.retain_days,
    exclude=config.exclude,
  )

  if env_out := env.get(ENV_OUT):
    settings.output_dir = env_out
  if env_retain := env.get(ENV_RETAIN):
    try:
      settings.retain_days = parse_retain_days(env_retain)
    except ValueError as e:
      raise ConfigError(f"{ENV_RETAIN}: {e}") from e

  if cli_out is not None:
    settings.output_dir = cli_out
  if cli_retain is not None:
    settings.retain_days = cli_retain
  if cli_exclude:
    settings.exclude.extend(cli_exclude)
  return settings
