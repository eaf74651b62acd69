"""Push notifications through ntfy.sh.

Notifications are fire-and-forget: a failed push is logged and never
interrupts scheduling or booking.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional, Sequence, Set

import httpx
import pytz

from infrastructure import constants
from tracking import t

_PRIORITIES = {'high': '5', 'default': '3', 'low': '2'}


def _friendly(value: datetime, timezone: str = constants.VENUE_TIMEZONE) -> str:
    local = value.astimezone(pytz.timezone(timezone))
    hour = local.strftime('%I').lstrip('0') or '12'
    return f"{local.strftime('%a, %b')} {local.day}, {hour}:{local.strftime('%M %p')}"


def format_success_message(court: str, time: str) -> str:
    t('courtapp.notifications.format_success_message')
    return f"Successfully booked {court} at {time}"


def format_retry_message(reason: str, delay_seconds: int = constants.RETRY_DELAY_SECONDS) -> str:
    t('courtapp.notifications.format_retry_message')
    if delay_seconds == 60:
        wait = "1 minute"
    elif delay_seconds % 60 == 0:
        wait = f"{delay_seconds // 60} minutes"
    else:
        wait = f"{delay_seconds} seconds"
    return f"{reason} - will try again in {wait}"


def format_scheduled_message(
    reservation_time: datetime,
    run_time: datetime,
    timezone: str = constants.VENUE_TIMEZONE,
) -> str:
    t('courtapp.notifications.format_scheduled_message')
    return (
        f"Will book court for {_friendly(reservation_time, timezone)}\n"
        f"Script runs: {_friendly(run_time, timezone)}"
    )


class NtfyNotifier:
    """Publish booking events to an ntfy.sh topic."""

    def __init__(
        self,
        topic: Optional[str],
        *,
        base_url: str = constants.NTFY_BASE_URL,
        timezone: str = constants.VENUE_TIMEZONE,
        timeout: float = constants.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Any = None,
    ) -> None:
        t('courtapp.notifications.NtfyNotifier.__init__')
        self.topic = topic
        self._base_url = base_url.rstrip('/')
        self._timezone = timezone
        self._timeout = timeout
        self._transport = transport
        self._pending: Set[asyncio.Task] = set()
        self.logger = logger or logging.getLogger('NtfyNotifier')

    async def send(
        self,
        title: str,
        message: str,
        priority: str = 'default',
        tags: Sequence[str] = (),
    ) -> bool:
        """Publish one notification and report whether ntfy accepted it."""

        t('courtapp.notifications.NtfyNotifier.send')
        if not self.topic:
            self.logger.debug("NTFY_TOPIC not configured; skipping %s", title)
            return False
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/{self.topic}",
                    content=message.encode('utf-8'),
                    headers={
                        'Title': title,
                        'Priority': _PRIORITIES.get(priority, '3'),
                        'Tags': ','.join(tags),
                    },
                )
        except httpx.HTTPError as exc:
            self.logger.error("ntfy publish failed for %s: %s", title, exc)
            return False

        if response.is_success:
            self.logger.info("Notification sent: %s", title)
            return True
        self.logger.error("ntfy rejected %s: %s", title, response.status_code)
        return False

    def notify(
        self,
        title: str,
        message: str,
        priority: str = 'default',
        tags: Sequence[str] = (),
    ) -> Optional[asyncio.Task]:
        """Send in the background; call :meth:`flush` to wait for delivery."""

        t('courtapp.notifications.NtfyNotifier.notify')
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("No running event loop; notification %s dropped", title)
            return None
        task = loop.create_task(self.send(title, message, priority, tags))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        t('courtapp.notifications.NtfyNotifier.flush')
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def notify_success(self, court: str, time: str) -> Optional[asyncio.Task]:
        t('courtapp.notifications.NtfyNotifier.notify_success')
        return self.notify(
            'Tennis Court Booked!',
            format_success_message(court, time),
            'high',
            ['white_check_mark', 'tennis'],
        )

    def notify_failure(self, reason: str) -> Optional[asyncio.Task]:
        t('courtapp.notifications.NtfyNotifier.notify_failure')
        return self.notify('Booking Failed', reason, 'high', ['x', 'warning'])

    def notify_retry(
        self,
        attempt: int,
        max_attempts: int,
        reason: str,
        delay_seconds: int = constants.RETRY_DELAY_SECONDS,
    ) -> Optional[asyncio.Task]:
        t('courtapp.notifications.NtfyNotifier.notify_retry')
        return self.notify(
            f"Retry {attempt}/{max_attempts}",
            format_retry_message(reason, delay_seconds),
            'default',
            ['hourglass'],
        )

    def notify_scheduled(self, reservation_time: datetime, run_time: datetime) -> Optional[asyncio.Task]:
        t('courtapp.notifications.NtfyNotifier.notify_scheduled')
        return self.notify(
            'Booking Scheduled',
            format_scheduled_message(reservation_time, run_time, self._timezone),
            'default',
            ['calendar', 'tennis'],
        )
