"""Shared FastAPI dependencies for task-secret auth and engine access."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from inkround.config import Settings, get_settings
from inkround.engine import Engine

logger = logging.getLogger(__name__)


def get_engine(request: Request) -> Engine:
  """Return the engine built by the lifespan."""
  engine = getattr(request.app.state, "engine", None)
  if engine is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Engine is not ready.")
  return engine


async def require_task_secret(
  settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_inkround_task_secret: str | None = Header(default=None)
) -> None:
  """Guard internal endpoints with the shared task secret (dedicated header or bearer token)."""
  # Operational endpoints stay closed until a secret is configured.
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  shared_secret_valid = secrets.compare_digest((x_inkround_task_secret or ""), settings.task_secret)
  bearer_valid = secrets.compare_digest((authorization or ""), f"Bearer {settings.task_secret}")
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to an internal endpoint")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
