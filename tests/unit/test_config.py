from __future__ import annotations

from collections.abc import Iterator

import pytest

from inkround.config import get_settings


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()


def test_production_narrows_concurrency_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("INKROUND_ENV", "production")
  monkeypatch.delenv("INKROUND_DB_CONCURRENCY", raising=False)
  monkeypatch.delenv("INKROUND_LLM_CONCURRENCY", raising=False)
  settings = get_settings()
  assert (settings.db_concurrency, settings.llm_concurrency) == (1, 2)


def test_stale_lock_termination_is_off_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.delenv("INKROUND_TERMINATE_STALE_LOCK_HOLDER", raising=False)
  assert get_settings().terminate_stale_lock_holder is False


def test_boolean_flags_accept_common_spellings(monkeypatch: pytest.MonkeyPatch) -> None:
  monkeypatch.setenv("INKROUND_READERS_ON_PUBLISH", "yes")
  monkeypatch.setenv("INKROUND_RUN_BACKGROUND_LOOPS", "0")
  settings = get_settings()
  assert settings.readers_on_publish is True
  assert settings.run_background_loops is False


@pytest.mark.parametrize(("name", "value"), [("INKROUND_DB_CONCURRENCY", "0"), ("INKROUND_READER_RATING_THRESHOLD", "11"), ("INKROUND_LLM_RETRY_JITTER", "1.5"), ("INKROUND_WORKER_LOCK_KEY", "-1")])
def test_invalid_values_fail_fast(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
  monkeypatch.setenv(name, value)
  with pytest.raises(ValueError):
    get_settings()
