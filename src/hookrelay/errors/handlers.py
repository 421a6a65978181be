"""FastAPI exception handlers producing ErrorResponse bodies."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hookrelay.errors.exceptions import HookRelayError, RecordingError, VerificationError
from hookrelay.models.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app."""

    @app.exception_handler(HookRelayError)
    async def hookrelay_error_handler(request: Request, exc: HookRelayError):
        trace_id = getattr(request.state, "trace_id", "unknown")
        if isinstance(exc, VerificationError):
            logger.warning(
                "webhook_verification_failed",
                extra={
                    "path": request.url.path,
                    "trace_id": trace_id,
                    "provider": exc.provider,
                    "reason": exc.reason,
                },
            )
        elif isinstance(exc, RecordingError):
            logger.error("webhook_recording_failed path=%s trace_id=%s", request.url.path, trace_id)
        error_response = ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                details=exc.details,
                trace_id=trace_id,
                timestamp=datetime.now(timezone.utc),
            ),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response.model_dump(mode="json", exclude_none=True),
        )
