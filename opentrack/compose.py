"""Pixel injection for outgoing email drafts.

A ``ComposeSession`` carries the state of one draft through the injection
chain. Integrations that watch a mail UI report new drafts through a
``ComposeObserver``, which fans them out to subscribed listeners.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from opentrack.client import TrackerClient, TrackerClientError
from opentrack.core.logging import log_info, log_warning

ComposeListener = Callable[["ComposeSession"], Awaitable[None]]


@dataclass(slots=True)
class ComposeSession:
    """State of a single draft being composed."""

    subject: str = ""
    recipient: str = ""
    tracking_enabled: bool = True
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    tracking_id: str | None = None
    pixel_src: str | None = None

    @property
    def is_tracked(self) -> bool:
        return self.tracking_id is not None

    def can_track(self) -> bool:
        return self.tracking_enabled and bool(self.subject.strip()) and bool(self.recipient.strip())


@dataclass(slots=True)
class NotifyResult:
    """Summary of a new-surface notification."""

    attempted: int
    delivered: int
    failed: int


class ComposeObserver:
    """Notify subscribers whenever a new compose surface appears."""

    def __init__(self) -> None:
        self._listeners: list[ComposeListener] = []
        self._lock = asyncio.Lock()

    async def subscribe(self, listener: ComposeListener) -> None:
        async with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    async def unsubscribe(self, listener: ComposeListener) -> None:
        async with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    async def surface_opened(self, session: ComposeSession) -> NotifyResult:
        """Deliver ``session`` to every listener; one failing listener does not stop the rest."""

        async with self._lock:
            targets = list(self._listeners)

        delivered = 0
        failed = 0
        for listener in targets:
            try:
                await listener(session)
                delivered += 1
            except Exception as exc:
                failed += 1
                log_warning(
                    "Compose listener failed",
                    session_id=session.session_id,
                    error=str(exc),
                )
        return NotifyResult(attempted=len(targets), delivered=delivered, failed=failed)


def insert_tracking_pixel(html_body: str, pixel_src: str) -> str:
    """Insert an invisible tracking image before ``</body>``, or append it."""

    pixel_html = f'<img src="{pixel_src}" width="1" height="1" alt="" style="display:none;border:0;"/>'
    lowered = html_body.lower()
    if "</body>" in lowered:
        body_pos = lowered.rfind("</body>")
        return html_body[:body_pos] + pixel_html + html_body[body_pos:]
    return html_body + pixel_html


async def prepare_tracked_body(
    client: TrackerClient,
    session: ComposeSession,
    html_body: str,
) -> str:
    """Return ``html_body`` with a tracking pixel for ``session`` injected.

    The body is returned untouched when tracking is off for the session or
    the backend cannot mint a pixel; sending never waits on the tracker.
    """
    if not session.can_track():
        return html_body

    if not session.is_tracked:
        try:
            created = await client.generate_pixel(session.subject, session.recipient)
        except TrackerClientError as exc:
            log_warning(
                "Sending without tracking pixel",
                session_id=session.session_id,
                error=str(exc),
            )
            return html_body
        tracking_id = created.get("trackingId")
        if not tracking_id:
            log_warning("Tracker response missing trackingId", session_id=session.session_id)
            return html_body
        session.tracking_id = tracking_id
        session.pixel_src = created.get("pixelSrc") or client.absolute_url(
            created.get("pixelUrl") or f"/pixel/{tracking_id}.png"
        )
        log_info(
            "Tracking pixel attached to draft",
            session_id=session.session_id,
            tracking_id=tracking_id,
        )

    if session.pixel_src and session.pixel_src in html_body:
        return html_body
    return insert_tracking_pixel(html_body, session.pixel_src or "")
