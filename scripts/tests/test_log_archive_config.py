from pathlib import Path

import pytest

from scripts.archive_errors import ConfigError
from scripts.log_archive_config import (
  ENV_CONFIG,
  ENV_OUT,
  ENV_RETAIN,
  LogArchiveConfig,
  parse_retain_days,
  resolve_settings,
)


def write_config(path: Path, text: str) -> Path:
  path.write_text(text, encoding="utf-8")
  return path


@pytest.mark.parametrize("value,expected", [("0", 0), ("14", 14), (" 7 ", 7), (30, 30)])
def test_parse_retain_days_valid(value, expected):
  assert parse_retain_days(value) == expected


@pytest.mark.parametrize("value", ["", "-1", "1.5", "abc", "+3", "1e3"])
def test_parse_retain_days_invalid(value):
  with pytest.raises(ValueError):
    parse_retain_days(value)


def test_defaults_without_any_source():
  settings = resolve_settings(environ={})
  assert settings.output_dir is None
  assert settings.retain_days is None
  assert settings.exclude == []


def test_yaml_values(tmp_path: Path):
  cfg = write_config(
    tmp_path / "cfg.yml",
    "output_dir: /srv/archives\nretain_days: 14\nexclude:\n  - 'debug/*'\n",
  )
  settings = resolve_settings(config_path=cfg, environ={})
  assert settings.output_dir == "/srv/archives"
  assert settings.retain_days == 14
  assert settings.exclude == ["debug/*"]


def test_precedence_cli_over_env_over_yaml(tmp_path: Path):
  cfg = write_config(tmp_path / "cfg.yml", "output_dir: /from/yaml\nretain_days: 14\n")
  env = {ENV_CONFIG: str(cfg), ENV_OUT: "/from/env", ENV_RETAIN: "3"}

  from_env = resolve_settings(environ=env)
  assert from_env.output_dir == "/from/env"
  assert from_env.retain_days == 3

  from_cli = resolve_settings(cli_out="/from/cli", cli_retain=0, environ=env)
  assert from_cli.output_dir == "/from/cli"
  assert from_cli.retain_days == 0


def test_cli_excludes_extend_yaml(tmp_path: Path):
  cfg = write_config(tmp_path / "cfg.yml", "exclude: ['*.tmp']\n")
  settings = resolve_settings(cli_exclude=["debug/*"], config_path=cfg, environ={})
  assert settings.exclude == ["*.tmp", "debug/*"]


def test_bad_env_retain_is_config_error():
  with pytest.raises(ConfigError, match=ENV_RETAIN):
    resolve_settings(environ={ENV_RETAIN: "two weeks"})


def test_empty_yaml_is_allowed(tmp_path: Path):
  cfg = write_config(tmp_path / "cfg.yml", "# nothing set\n")
  assert LogArchiveConfig(cfg).retain_days is None


def test_missing_config_file(tmp_path: Path):
  with pytest.raises(ConfigError, match="not found"):
    LogArchiveConfig(tmp_path / "absent.yml")


def test_invalid_yaml(tmp_path: Path):
  cfg = write_config(tmp_path / "cfg.yml", "output_dir: [unclosed\n")
  with pytest.raises(ConfigError, match="Invalid YAML"):
    LogArchiveConfig(cfg)


def test_non_mapping_yaml(tmp_path: Path):
  cfg = write_config(tmp_path / "cfg.yml", "- just\n- a list\n")
  with pytest.raises(ConfigError, match="mapping"):
    LogArchiveConfig(cfg)


def test_validation_reports_every_problem(tmp_path: Path):
  cfg = write_config(
    tmp_path / "cfg.yml",
    "retain_days: -2\nexclude: '*.tmp'\nkeep_forever: true\n",
  )
  with pytest.raises(ConfigError) as exc:
    LogArchiveConfig(cfg).validate_config()
  assert len(exc.value.errors) == 3
  assert "keep_forever" in exc.value.message
