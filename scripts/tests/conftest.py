import pytest

from scripts.log_archive_config import ENV_CONFIG, ENV_OUT, ENV_RETAIN


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
  # Settings exported in the developer's shell must not leak into tests.
  for name in (ENV_CONFIG, ENV_OUT, ENV_RETAIN):
    monkeypatch.delenv(name, raising=False)
