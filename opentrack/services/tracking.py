"""Email open tracking.

Provides functionality for:
- Generating unique tracking IDs and pixel URLs
- Recording open events and flagging opens by the sender
- Purging self-opens
- Summarising open statistics across tracked messages
"""

from __future__ import annotations

import secrets
from typing import Sequence

from loguru import logger

from opentrack.core.config import get_settings
from opentrack.repositories import tracking as tracking_repo
from opentrack.schemas.tracking import (
    OpenEventResponse,
    TrackedMessageResponse,
    TrackingStats,
)
from opentrack.security.client_ip import UNKNOWN


class TrackingValidationError(ValueError):
    """Raised when required tracking input is missing."""


class TrackingNotFoundError(LookupError):
    """Raised when a tracking ID has no matching record."""

    def __init__(self, tracking_id: str) -> None:
        super().__init__(f"Tracking ID not found: {tracking_id}")
        self.tracking_id = tracking_id


class TrackingStoreError(RuntimeError):
    """Raised when the record store cannot complete an operation."""


def generate_tracking_id() -> str:
    """Generate a tracking ID from 128 random bits, rendered as 32 hex characters."""
    return secrets.token_hex(16)


def pixel_path(tracking_id: str) -> str:
    return f"/pixel/{tracking_id}.png"


def pixel_src(tracking_id: str) -> str | None:
    """Absolute pixel URL when a public base URL is configured."""
    settings = get_settings()
    if not settings.public_base_url:
        return None
    base_url = str(settings.public_base_url).rstrip("/")
    return f"{base_url}{pixel_path(tracking_id)}"


def is_known(value: str | None) -> bool:
    return bool(value) and value != UNKNOWN


def is_self_open(sender_ip: str | None, request_ip: str | None) -> bool:
    """Exact match between the fetching IP and the IP that generated the pixel.

    No subnet or NAT awareness: senders behind a shared address are
    indistinguishable from recipients on that address.
    """
    if not is_known(sender_ip) or not is_known(request_ip):
        return False
    return sender_ip == request_ip


def _to_response(message: dict, events: Sequence[dict]) -> TrackedMessageResponse:
    return TrackedMessageResponse(
        tracking_id=message["tracking_id"],
        subject=message["subject"],
        recipient=message["recipient"],
        sent_at=message["sent_at"],
        sender_ip=message.get("sender_ip") or UNKNOWN,
        opens=[
            OpenEventResponse(
                timestamp=event["opened_at"],
                user_agent=event.get("user_agent") or UNKNOWN,
                ip=event.get("ip") or UNKNOWN,
                is_self=bool(event.get("is_self")),
            )
            for event in events
        ],
    )


async def create_tracked_message(
    *,
    subject: str | None,
    recipient: str | None,
    sender_ip: str | None,
) -> dict:
    """Persist a new tracked message and return its identifier and pixel URLs."""
    subject = (subject or "").strip()
    recipient = (recipient or "").strip()
    if not subject or not recipient:
        raise TrackingValidationError("Missing required fields: subject and recipient")

    tracking_id = generate_tracking_id()
    try:
        await tracking_repo.create_message(
            tracking_id=tracking_id,
            subject=subject,
            recipient=recipient,
            sender_ip=sender_ip or UNKNOWN,
        )
    except Exception as exc:
        logger.error(
            "Failed to create tracked message",
            subject=subject,
            recipient=recipient,
            error=str(exc),
        )
        raise TrackingStoreError("Failed to generate tracking pixel") from exc

    logger.info(
        "Created tracked message",
        tracking_id=tracking_id,
        subject=subject,
        recipient=recipient,
    )
    return {
        "tracking_id": tracking_id,
        "pixel_url": pixel_path(tracking_id),
        "pixel_src": pixel_src(tracking_id),
    }


async def record_open(
    *,
    tracking_id: str,
    user_agent: str | None,
    ip: str | None,
) -> bool:
    """Append one open event for ``tracking_id``.

    Returns ``False`` without writing anything when the ID is unknown.
    """
    user_agent = user_agent or UNKNOWN
    ip = ip or UNKNOWN
    try:
        message = await tracking_repo.get_message(tracking_id)
        if not message:
            logger.debug("Pixel fetched for unknown tracking ID", tracking_id=tracking_id)
            return False
        is_self = is_self_open(message.get("sender_ip"), ip)
        await tracking_repo.append_open_event(
            tracking_id=tracking_id,
            user_agent=user_agent,
            ip=ip,
            is_self=is_self,
        )
    except Exception as exc:
        raise TrackingStoreError("Failed to record open event") from exc

    logger.info(
        "Email opened",
        tracking_id=tracking_id,
        subject=message["subject"],
        recipient=message["recipient"],
        is_self=is_self,
    )
    return True


async def get_tracked_message(tracking_id: str) -> TrackedMessageResponse:
    try:
        message = await tracking_repo.get_message(tracking_id)
        events = await tracking_repo.list_open_events(tracking_id) if message else []
    except Exception as exc:
        logger.error("Failed to fetch tracking data", tracking_id=tracking_id, error=str(exc))
        raise TrackingStoreError("Failed to fetch tracking data") from exc
    if not message:
        raise TrackingNotFoundError(tracking_id)
    return _to_response(message, events)


def compute_stats(messages: Sequence[TrackedMessageResponse]) -> TrackingStats:
    """Summarise recipient opens; opens flagged as the sender's are ignored."""
    total = len(messages)
    recipient_open_counts = [len(message.recipient_opens()) for message in messages]
    opened = sum(1 for count in recipient_open_counts if count > 0)
    open_rate: str | int = f"{opened / total * 100:.1f}" if total else 0
    return TrackingStats(
        total_emails=total,
        total_opens=sum(recipient_open_counts),
        opened_emails=opened,
        unopened_emails=total - opened,
        open_rate=open_rate,
    )


async def list_tracked_messages(
    limit: int | None = None,
) -> tuple[list[TrackedMessageResponse], TrackingStats]:
    """Most recently sent messages first, capped at the configured limit."""
    if limit is None:
        limit = get_settings().tracking_list_limit
    try:
        messages = await tracking_repo.list_messages(limit=limit)
        events = await tracking_repo.list_open_events_for(
            message["tracking_id"] for message in messages
        )
    except Exception as exc:
        logger.error("Failed to fetch all tracking data", error=str(exc))
        raise TrackingStoreError("Failed to fetch tracking data") from exc

    responses = [
        _to_response(message, events.get(message["tracking_id"], []))
        for message in messages
    ]
    return responses, compute_stats(responses)


async def delete_tracked_message(tracking_id: str) -> None:
    try:
        deleted = await tracking_repo.delete_message(tracking_id)
    except Exception as exc:
        logger.error("Failed to delete tracking data", tracking_id=tracking_id, error=str(exc))
        raise TrackingStoreError("Failed to delete tracking data") from exc
    if not deleted:
        raise TrackingNotFoundError(tracking_id)
    logger.info("Deleted tracked message", tracking_id=tracking_id)


async def remove_self_opens(tracking_id: str) -> tuple[int, int]:
    """Delete every self-open of a message; returns ``(removed, remaining)``."""
    try:
        message = await tracking_repo.get_message(tracking_id)
        if not message:
            raise TrackingNotFoundError(tracking_id)
        removed = await tracking_repo.delete_self_opens(tracking_id)
        remaining = await tracking_repo.count_open_events(tracking_id)
    except TrackingNotFoundError:
        raise
    except Exception as exc:
        logger.error("Failed to remove self opens", tracking_id=tracking_id, error=str(exc))
        raise TrackingStoreError("Failed to remove self opens") from exc

    logger.info(
        "Removed self opens",
        tracking_id=tracking_id,
        removed=removed,
        remaining=remaining,
    )
    return removed, remaining
