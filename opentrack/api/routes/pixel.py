"""Tracking pixel endpoints.

Provides endpoints for:
- Generating a tracking ID and pixel URL for an outgoing email
- Serving the 1x1 transparent PNG and recording the open event
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response, status
from loguru import logger
from pydantic import ValidationError

from opentrack.core.logging import log_error
from opentrack.schemas.tracking import PixelGenerateRequest, PixelGenerateResponse
from opentrack.security.client_ip import resolve_client_ip
from opentrack.services import pixel as pixel_service
from opentrack.services import tracking as tracking_service

router = APIRouter(tags=["Tracking Pixel"])

PIXEL_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.post("/api/pixel/generate")
async def generate_pixel(request: Request) -> dict[str, Any]:
    """Create a tracked message and return its pixel URL.

    The caller's IP is stored so later opens from the same address can be
    flagged as the sender re-reading their own mail.
    """
    try:
        payload = await request.json()
        body = PixelGenerateRequest.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        log_error("Rejected pixel generation request", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: subject and recipient",
        ) from exc

    try:
        created = await tracking_service.create_tracked_message(
            subject=body.subject,
            recipient=body.recipient,
            sender_ip=resolve_client_ip(request),
        )
    except tracking_service.TrackingValidationError as exc:
        log_error(
            "Rejected pixel generation request",
            subject=body.subject,
            recipient=body.recipient,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except tracking_service.TrackingStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc

    response = PixelGenerateResponse(
        tracking_id=created["tracking_id"],
        pixel_url=created["pixel_url"],
        pixel_src=created["pixel_src"],
    )
    return response.model_dump(by_alias=True, exclude_none=True)


@router.api_route("/pixel/{tracking_id}.png", methods=["GET", "HEAD"], include_in_schema=False)
async def tracking_pixel(tracking_id: str, request: Request) -> Response:
    """Serve a 1x1 transparent PNG and record the email open event.

    HEAD is handled like GET, including the recorded open.

    The image is returned whatever happens while recording the open; a
    broken image in the recipient's mail client is never acceptable.
    """
    try:
        await tracking_service.record_open(
            tracking_id=tracking_id,
            user_agent=request.headers.get("user-agent"),
            ip=resolve_client_ip(request),
        )
    except Exception as exc:
        # Log error but still return the pixel
        logger.error(
            "Failed to record tracking pixel event",
            tracking_id=tracking_id,
            error=str(exc),
        )

    return Response(
        content=pixel_service.transparent_pixel(),
        media_type=pixel_service.PIXEL_MEDIA_TYPE,
        headers=PIXEL_HEADERS,
    )
