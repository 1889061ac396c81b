from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from opentrack.core.database import db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_datetime(dt: datetime) -> str:
    """Render a timestamp as naive UTC text accepted by both MySQL and SQLite."""

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.strftime("%Y-%m-%d %H:%M:%S.%f")


def _make_aware(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return None


def _normalise_message(row: dict[str, Any]) -> dict[str, Any]:
    data = dict(row)
    data["sent_at"] = _make_aware(data.get("sent_at"))
    data["created_at"] = _make_aware(data.get("created_at"))
    return data


def _normalise_event(row: dict[str, Any]) -> dict[str, Any]:
    data = dict(row)
    if data.get("id") is not None:
        data["id"] = int(data["id"])
    data["is_self"] = bool(data.get("is_self"))
    data["opened_at"] = _make_aware(data.get("opened_at"))
    return data


async def create_message(
    *,
    tracking_id: str,
    subject: str,
    recipient: str,
    sender_ip: str,
    sent_at: datetime | None = None,
) -> dict[str, Any]:
    """Insert a tracked message; a duplicate ``tracking_id`` raises from the driver."""
    sent_at = sent_at or _utcnow()
    await db.execute(
        """
        INSERT INTO tracked_messages (tracking_id, subject, recipient, sent_at, sender_ip, created_at)
        VALUES (%s, %s, %s, %s, %s, %s)
        """,
        (
            tracking_id,
            subject,
            recipient,
            _format_datetime(sent_at),
            sender_ip,
            _format_datetime(_utcnow()),
        ),
    )
    return {
        "tracking_id": tracking_id,
        "subject": subject,
        "recipient": recipient,
        "sent_at": sent_at,
        "sender_ip": sender_ip,
    }


async def get_message(tracking_id: str) -> dict[str, Any] | None:
    row = await db.fetch_one(
        """
        SELECT tracking_id, subject, recipient, sent_at, sender_ip, created_at
        FROM tracked_messages
        WHERE tracking_id = %s
        """,
        (tracking_id,),
    )
    return _normalise_message(row) if row else None


async def list_messages(limit: int = 100) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT tracking_id, subject, recipient, sent_at, sender_ip, created_at
        FROM tracked_messages
        ORDER BY sent_at DESC, created_at DESC
        LIMIT %s
        """,
        (limit,),
    )
    return [_normalise_message(row) for row in rows]


async def delete_message(tracking_id: str) -> bool:
    """Delete a tracked message; its open events go with it via the foreign key."""
    deleted = await db.execute_returning_rowcount(
        "DELETE FROM tracked_messages WHERE tracking_id = %s",
        (tracking_id,),
    )
    return deleted > 0


async def append_open_event(
    *,
    tracking_id: str,
    user_agent: str,
    ip: str,
    is_self: bool,
    opened_at: datetime | None = None,
) -> int:
    return await db.execute_returning_lastrowid(
        """
        INSERT INTO open_events (tracking_id, opened_at, user_agent, ip, is_self)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (
            tracking_id,
            _format_datetime(opened_at or _utcnow()),
            user_agent,
            ip,
            1 if is_self else 0,
        ),
    )


async def list_open_events(tracking_id: str) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        """
        SELECT id, tracking_id, opened_at, user_agent, ip, is_self
        FROM open_events
        WHERE tracking_id = %s
        ORDER BY id ASC
        """,
        (tracking_id,),
    )
    return [_normalise_event(row) for row in rows]


async def list_open_events_for(tracking_ids: Iterable[str]) -> dict[str, list[dict[str, Any]]]:
    """Fetch open events for several messages at once, grouped by tracking id."""
    ids = list(dict.fromkeys(tracking_ids))
    grouped: dict[str, list[dict[str, Any]]] = {tracking_id: [] for tracking_id in ids}
    if not ids:
        return grouped
    placeholders = ", ".join(["%s"] * len(ids))
    rows = await db.fetch_all(
        f"""
        SELECT id, tracking_id, opened_at, user_agent, ip, is_self
        FROM open_events
        WHERE tracking_id IN ({placeholders})
        ORDER BY id ASC
        """,
        tuple(ids),
    )
    for row in rows:
        event = _normalise_event(row)
        grouped.setdefault(event["tracking_id"], []).append(event)
    return grouped


async def delete_self_opens(tracking_id: str) -> int:
    return await db.execute_returning_rowcount(
        "DELETE FROM open_events WHERE tracking_id = %s AND is_self = 1",
        (tracking_id,),
    )


async def count_open_events(tracking_id: str) -> int:
    row = await db.fetch_one(
        "SELECT COUNT(*) AS count FROM open_events WHERE tracking_id = %s",
        (tracking_id,),
    )
    return int(row["count"]) if row else 0
