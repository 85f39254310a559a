"""
Domain errors for the negotiation and messaging core.

Authorization and state errors are deterministic and are raised straight to
the caller. Store failures are normalised into ``TransientIO`` so callers
never have to know about PostgREST or httpx exception types.
"""

import logging

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from postgrest.exceptions import APIError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class SwapChatError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class Unauthorized(SwapChatError):
    """Actor is not allowed to perform the transition."""

    status_code = 403


class NotFound(SwapChatError):
    status_code = 404


class InvalidState(SwapChatError):
    """Transition attempted on an offer that is no longer pending."""

    status_code = 409


class InvalidInput(SwapChatError):
    """Request is structurally invalid (empty message, self-pairing)."""

    status_code = 422


class TransientIO(SwapChatError):
    """Network or backing store failure. Never retried by the core."""

    status_code = 503


class PartialSideEffect(SwapChatError):
    """A best-effort step failed after its authoritative parent committed."""

    def __init__(self, detail: str, file_name: str | None = None):
        super().__init__(detail)
        self.file_name = file_name


def is_unique_violation(error: Exception) -> bool:
    return isinstance(error, APIError) and error.code == UNIQUE_VIOLATION


def run_query(query, action: str):
    """Execute a PostgREST query, mapping store failures to ``TransientIO``."""
    try:
        return query.execute()
    except APIError as error:
        logger.error(f"store_error action={action} code={error.code} message={error.message}")
        raise TransientIO(f"Database error while trying to {action}.") from error
    except httpx.HTTPError as error:
        logger.error(f"store_unreachable action={action} error={error}")
        raise TransientIO(f"Backing store unreachable while trying to {action}.") from error


async def swapchat_error_handler(request: Request, exc: SwapChatError):
    if exc.status_code >= 500:
        logger.warning(f"request_failed path={request.url.path} detail={exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(SwapChatError, swapchat_error_handler)
