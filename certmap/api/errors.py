"""
Translate pipeline and engine errors into HTTP errors.
"""

from fastapi import HTTPException, status

from certmap.engines.base import EngineError, ExtractionTimeout, InputNotFound, ParseFailure
from certmap.pipeline.orchestrator import (
    ConflictError,
    DocumentNotFound,
    InvalidMappingError,
    PipelineError,
)
from certmap.worker.jobs import QueueFullError

_STATUS_BY_ERROR = [
    (DocumentNotFound, status.HTTP_404_NOT_FOUND),
    (InputNotFound, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidMappingError, status.HTTP_400_BAD_REQUEST),
    (ParseFailure, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ExtractionTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (QueueFullError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def http_error(error: Exception) -> HTTPException:
    """HTTPException carrying the error code and message of a known error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(error, (PipelineError, EngineError)):
        detail = {"error": error.error_code, "message": error.message}
    else:
        detail = {"error": "ERR_INTERNAL", "message": str(error)}
    return HTTPException(status_code=status_code, detail=detail)
