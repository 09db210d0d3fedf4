"""
Data ingestion endpoints.

POST /data accepts one JSON object; POST /data/batch accepts
``{"data": [...]}``. Both share the gate sequence in IngestionService.
Gate failures propagate as IngestionError and are rendered by the app's
exception handler; anything unexpected is re-raised as ServerError.
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from receiver.api.cors import CORS_HEADERS
from receiver.api.dependencies import get_ingestion_service
from receiver.api.models import BatchResponse, DataResponse, ErrorResponse, MethodNotAllowedResponse
from receiver.api.rate_limit import get_client_identifier
from receiver.ingestion.errors import IngestionError, ServerError
from receiver.services.ingestion_service import IngestionRequest, IngestionService

logger = structlog.get_logger(__name__)
router = APIRouter()

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

_DISALLOWED_METHODS = ["GET", "PUT", "PATCH", "DELETE"]


def _json_response(
    status_code: int,
    content: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={**CORS_HEADERS, **(headers or {})},
    )


async def _capture(request: Request) -> IngestionRequest:
    return IngestionRequest(
        headers=request.headers,
        body=await request.body(),
        client_ip=get_client_identifier(request),
        received_at=datetime.now(timezone.utc),
    )


@router.options("/data", status_code=204, include_in_schema=False)
@router.options("/data/batch", status_code=204, include_in_schema=False)
async def preflight() -> Response:
    return Response(status_code=204, headers=CORS_HEADERS)


@router.api_route(
    "/data",
    methods=_DISALLOWED_METHODS,
    include_in_schema=False,
    response_model=MethodNotAllowedResponse,
)
@router.api_route(
    "/data/batch",
    methods=_DISALLOWED_METHODS,
    include_in_schema=False,
    response_model=MethodNotAllowedResponse,
)
async def method_not_allowed() -> JSONResponse:
    return _json_response(
        405,
        {"error": "Method not allowed. Only POST requests are accepted."},
        {"Allow": "POST, OPTIONS"},
    )


@router.post(
    "/data",
    response_model=DataResponse,
    responses=_ERROR_RESPONSES,
    summary="Submit one data payload",
)
async def receive_data(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
) -> JSONResponse:
    """
    Accept one JSON object authenticated by ``X-API-Key``
    (or ``Authorization: Bearer <key>``).
    """
    ingestion_request = await _capture(request)
    try:
        result = await service.ingest(ingestion_request)
    except IngestionError:
        raise
    except Exception as e:
        logger.error("receive_data_failed", error=str(e), exc_info=True)
        raise ServerError() from e

    return _json_response(
        200,
        {
            "success": True,
            "message": "Data received successfully",
            "data": result.entry.response_data(),
        },
        result.rate_limit.headers() if result.rate_limit else None,
    )


@router.post(
    "/data/batch",
    response_model=BatchResponse,
    responses=_ERROR_RESPONSES,
    summary="Submit several data payloads",
)
async def receive_batch(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
) -> JSONResponse:
    """
    Accept ``{"data": [obj, ...]}``. Items are processed independently;
    rejected items are listed under ``data.errors`` by index.
    """
    ingestion_request = await _capture(request)
    try:
        result = await service.ingest_batch(ingestion_request)
    except IngestionError:
        raise
    except Exception as e:
        logger.error("receive_batch_failed", error=str(e), exc_info=True)
        raise ServerError() from e

    return _json_response(
        200,
        {
            "success": True,
            "message": "Batch data received successfully",
            "data": {
                "receivedCount": len(result.accepted),
                "failedCount": len(result.failed),
                "entries": [accepted.entry.response_data() for accepted in result.accepted],
                "errors": [failure.to_dict() for failure in result.failed],
            },
        },
        result.rate_limit.headers() if result.rate_limit else None,
    )
