from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from inkround import __version__
from inkround.api.routes import tasks
from inkround.core.exceptions import (
  EntityNotFoundError,
  global_exception_handler,
  http_exception_handler,
  not_found_exception_handler,
  request_validation_exception_handler,
  task_contract_exception_handler,
)
from inkround.core.lifespan import lifespan
from inkround.core.middleware import RequestLoggingMiddleware
from inkround.jobs.models import InvalidTaskPayloadError
from inkround.jobs.queue import UnknownTaskTypeError


def create_app() -> FastAPI:
  app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(HTTPException, http_exception_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
  app.add_exception_handler(EntityNotFoundError, not_found_exception_handler)
  app.add_exception_handler(InvalidTaskPayloadError, task_contract_exception_handler)
  app.add_exception_handler(UnknownTaskTypeError, task_contract_exception_handler)

  app.add_middleware(RequestLoggingMiddleware)

  @app.get("/health", include_in_schema=False)
  async def health_check() -> dict[str, str]:
    """Return a simple health status."""
    return {"status": "ok", "version": __version__}

  app.include_router(tasks.router, prefix="/internal", tags=["tasks"])
  return app


app = create_app()
