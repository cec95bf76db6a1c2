"""Exception hierarchy for the cloud cost governance service.

Service-layer lookups and request validation raise these; the FastAPI handler
registered in ``main.py`` renders them as RFC 7807 problem documents.
Configuration and data errors inside the allocation/policy core are never
raised as exceptions; they resolve to safe defaults.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class CostGovernanceError(Exception):
    """Base exception for all cost governance errors."""

    status_code: int = 500
    error_type: str = "about:blank"
    title: str = "Internal Server Error"

    def __init__(self, detail: str = "", *, extra: dict[str, Any] | None = None) -> None:
        self.detail = detail or self.title
        self.extra = extra or {}
        super().__init__(self.detail)

    def to_problem_detail(self) -> dict[str, Any]:
        """RFC 7807 Problem Details JSON object."""
        body: dict[str, Any] = {
            "type": self.error_type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        body.update(self.extra)
        return body


class NotFoundError(CostGovernanceError):
    status_code = 404
    error_type = "urn:costgov:error:not-found"
    title = "Not Found"


class ValidationError(CostGovernanceError):
    status_code = 422
    error_type = "urn:costgov:error:validation"
    title = "Validation Error"


class InvalidCostRecordError(ValueError):
    """A single cost record could not be parsed (bad amount or date)."""


async def _handle_cost_governance_error(request: Request, exc: CostGovernanceError) -> JSONResponse:
    logger.warning(
        "request_failed",
        path=request.url.path,
        status_code=exc.status_code,
        detail=exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem_detail(),
        media_type="application/problem+json",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the problem-details handler to a FastAPI application."""
    app.add_exception_handler(CostGovernanceError, _handle_cost_governance_error)  # type: ignore[arg-type]
