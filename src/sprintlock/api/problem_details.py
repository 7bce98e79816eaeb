"""
Problem Details for HTTP APIs (RFC 7807) implementation.

This module provides utilities for creating standardized error responses
according to RFC 7807 Problem Details specification, and maps sprintlock's
errors onto them.
"""

from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import (
    CheckpointCorruption,
    CheckpointNotFound,
    NoUsableCheckpoint,
    PinnedItemError,
    SnapshotNotFound,
)
from ..utils.jsonl_logger import get_logger

logger = get_logger("api")

PROBLEM_JSON = "application/problem+json"


class ProblemDetail(BaseModel):
    """Problem Details schema according to RFC 7807."""

    type: str = Field(
        ...,
        description="A URI reference that identifies the problem type",
        examples=["https://sprintlock.dev/problems/not-found"],
    )
    title: str = Field(
        ..., description="A short, human-readable summary of the problem type", examples=["Not Found"]
    )
    status: int = Field(..., description="The HTTP status code", examples=[404])
    detail: str = Field(
        ...,
        description="A human-readable explanation specific to this occurrence",
        examples=["Checkpoint 7 does not exist"],
    )
    instance: str = Field(
        ...,
        description="A URI reference that identifies the specific occurrence of the problem",
        examples=["/checkpoints/7"],
    )
    errors: Optional[dict[str, list[str]]] = Field(
        None, description="Optional field for validation errors"
    )


class ErrorTypes:
    """Standard error types for the sprintlock API."""

    # Client errors (4xx)
    VALIDATION_ERROR = "https://sprintlock.dev/problems/validation-error"
    NOT_FOUND = "https://sprintlock.dev/problems/not-found"
    CONFLICT = "https://sprintlock.dev/problems/conflict"
    PINNED = "https://sprintlock.dev/problems/pinned-item"
    BAD_REQUEST = "https://sprintlock.dev/problems/bad-request"

    # Server errors (5xx)
    CHECKPOINT_CORRUPT = "https://sprintlock.dev/problems/checkpoint-corrupt"
    INTERNAL_ERROR = "https://sprintlock.dev/problems/internal-error"
    SERVICE_UNAVAILABLE = "https://sprintlock.dev/problems/service-unavailable"


class ErrorTitles:
    """Standard error titles for the sprintlock API."""

    VALIDATION_ERROR = "Validation Error"
    NOT_FOUND = "Not Found"
    CONFLICT = "Conflict"
    PINNED = "Pinned Item"
    BAD_REQUEST = "Bad Request"
    CHECKPOINT_CORRUPT = "Checkpoint Corrupt"
    INTERNAL_ERROR = "Internal Server Error"
    SERVICE_UNAVAILABLE = "Service Unavailable"


def create_problem_detail(
    error_type: str,
    title: str,
    status: int,
    detail: str,
    instance: str,
    errors: Optional[dict[str, list[str]]] = None,
) -> ProblemDetail:
    """Create a Problem Detail response."""
    return ProblemDetail(
        type=error_type,
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        errors=errors,
    )


def problem_response(problem: ProblemDetail) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type=PROBLEM_JSON,
    )


async def problem_detail_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle HTTPException and return Problem Details response."""
    error_mappings = {
        400: (ErrorTypes.BAD_REQUEST, ErrorTitles.BAD_REQUEST),
        404: (ErrorTypes.NOT_FOUND, ErrorTitles.NOT_FOUND),
        409: (ErrorTypes.CONFLICT, ErrorTitles.CONFLICT),
        422: (ErrorTypes.VALIDATION_ERROR, ErrorTitles.VALIDATION_ERROR),
        503: (ErrorTypes.SERVICE_UNAVAILABLE, ErrorTitles.SERVICE_UNAVAILABLE),
    }
    error_type, title = error_mappings.get(
        exc.status_code, (ErrorTypes.INTERNAL_ERROR, ErrorTitles.INTERNAL_ERROR)
    )
    return problem_response(
        create_problem_detail(
            error_type=error_type,
            title=title,
            status=exc.status_code,
            detail=str(exc.detail) if exc.detail else "An error occurred",
            instance=request.url.path,
        )
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors and return Problem Details response."""
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.setdefault(field, []).append(error["msg"])

    return problem_response(
        create_problem_detail(
            error_type=ErrorTypes.VALIDATION_ERROR,
            title=ErrorTitles.VALIDATION_ERROR,
            status=422,
            detail="Request validation failed",
            instance=request.url.path,
            errors=errors or None,
        )
    )


async def pinned_item_handler(request: Request, exc: PinnedItemError) -> JSONResponse:
    return problem_response(
        create_problem_detail(
            ErrorTypes.PINNED, ErrorTitles.PINNED, 409, str(exc), request.url.path
        )
    )


async def checkpoint_not_found_handler(
    request: Request, exc: CheckpointNotFound | SnapshotNotFound
) -> JSONResponse:
    return problem_response(
        create_problem_detail(
            ErrorTypes.NOT_FOUND, ErrorTitles.NOT_FOUND, 404, str(exc), request.url.path
        )
    )


async def checkpoint_corruption_handler(request: Request, exc: CheckpointCorruption) -> JSONResponse:
    logger.warning(f"Corrupt checkpoint requested: {exc}")
    return problem_response(
        create_problem_detail(
            ErrorTypes.CHECKPOINT_CORRUPT,
            ErrorTitles.CHECKPOINT_CORRUPT,
            500,
            str(exc),
            request.url.path,
        )
    )


async def no_usable_checkpoint_handler(request: Request, exc: NoUsableCheckpoint) -> JSONResponse:
    # An empty store is a plain 404; a store full of bad checkpoints is not.
    if not exc.tried:
        problem = create_problem_detail(
            ErrorTypes.NOT_FOUND, ErrorTitles.NOT_FOUND, 404, str(exc), request.url.path
        )
    else:
        logger.error(f"No usable checkpoint: {exc}")
        problem = create_problem_detail(
            ErrorTypes.SERVICE_UNAVAILABLE,
            ErrorTitles.SERVICE_UNAVAILABLE,
            503,
            str(exc),
            request.url.path,
        )
    return problem_response(problem)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions and return Problem Details response."""
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={"context": {"path": request.url.path, "method": request.method}},
    )
    # Don't expose the stack trace to the client
    return problem_response(
        create_problem_detail(
            ErrorTypes.INTERNAL_ERROR,
            ErrorTitles.INTERNAL_ERROR,
            500,
            "An internal server error occurred",
            request.url.path,
        )
    )


def setup_problem_detail_handlers(app):
    """Set up Problem Details exception handlers for FastAPI app."""
    app.add_exception_handler(StarletteHTTPException, problem_detail_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PinnedItemError, pinned_item_handler)
    app.add_exception_handler(CheckpointNotFound, checkpoint_not_found_handler)
    app.add_exception_handler(SnapshotNotFound, checkpoint_not_found_handler)
    app.add_exception_handler(CheckpointCorruption, checkpoint_corruption_handler)
    app.add_exception_handler(NoUsableCheckpoint, no_usable_checkpoint_handler)
    app.add_exception_handler(Exception, general_exception_handler)
