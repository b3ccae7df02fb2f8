"""Minimal .env support so local runs pick up INKROUND_* settings without exporting them."""

from __future__ import annotations

import os
from pathlib import Path


def default_env_path() -> Path:
  return Path(__file__).resolve().parents[2] / ".env"


def _unquote(value: str) -> str:
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    return value[1:-1]
  return value


def read_env_file(path: Path) -> dict[str, str]:
  """Parse `KEY=value` lines; comments, blank lines and malformed lines are ignored."""
  values: dict[str, str] = {}
  if not path.is_file():
    return values

  for line in path.read_text(encoding="utf-8").splitlines():
    entry = line.strip()
    if entry.startswith("export "):
      entry = entry.removeprefix("export ").lstrip()
    if not entry or entry.startswith("#") or "=" not in entry:
      continue
    key, _, value = entry.partition("=")
    if key.strip():
      values[key.strip()] = _unquote(value.strip())
  return values


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Copy the file's values into os.environ and return the keys that were applied."""
  applied: list[str] = []
  for key, value in read_env_file(path).items():
    if key in os.environ and not override:
      continue
    os.environ[key] = value
    applied.append(key)
  return applied
