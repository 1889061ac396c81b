from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, status

from opentrack.schemas.tracking import RemoveSelfOpensResponse
from opentrack.services import tracking as tracking_service

router = APIRouter(prefix="/api/tracking", tags=["Tracking"])


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Tracking ID not found",
    )


def _store_failure(exc: tracking_service.TrackingStoreError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
    )


# Registered before "/{tracking_id}" so "all" is never treated as an ID
@router.get("/all")
async def list_tracking() -> dict[str, Any]:
    """Return the most recent tracked emails with open statistics."""
    try:
        messages, stats = await tracking_service.list_tracked_messages()
    except tracking_service.TrackingStoreError as exc:
        raise _store_failure(exc) from exc
    return {
        "success": True,
        "stats": stats.model_dump(by_alias=True, mode="json"),
        "emails": [message.model_dump(by_alias=True, mode="json") for message in messages],
    }


@router.get("/{tracking_id}")
async def get_tracking(tracking_id: str) -> dict[str, Any]:
    try:
        message = await tracking_service.get_tracked_message(tracking_id)
    except tracking_service.TrackingNotFoundError as exc:
        raise _not_found() from exc
    except tracking_service.TrackingStoreError as exc:
        raise _store_failure(exc) from exc
    return {"success": True, "data": message.model_dump(by_alias=True, mode="json")}


@router.delete("/{tracking_id}")
async def delete_tracking(tracking_id: str) -> dict[str, Any]:
    try:
        await tracking_service.delete_tracked_message(tracking_id)
    except tracking_service.TrackingNotFoundError as exc:
        raise _not_found() from exc
    except tracking_service.TrackingStoreError as exc:
        raise _store_failure(exc) from exc
    return {"success": True, "message": "Tracking record deleted"}


@router.post("/{tracking_id}/remove-self-opens")
async def remove_self_opens(tracking_id: str) -> dict[str, Any]:
    """Purge opens attributed to the sender from a tracked email."""
    try:
        removed, remaining = await tracking_service.remove_self_opens(tracking_id)
    except tracking_service.TrackingNotFoundError as exc:
        raise _not_found() from exc
    except tracking_service.TrackingStoreError as exc:
        raise _store_failure(exc) from exc
    response = RemoveSelfOpensResponse(removed_count=removed, remaining_opens=remaining)
    return response.model_dump(by_alias=True)
