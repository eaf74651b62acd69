"""cron-job.org client used to arm far-future booking triggers."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx
import pytz

from infrastructure import constants
from infrastructure.errors import SchedulerIntegrationError
from reservations.queue.schedule_validation import ensure_aware
from tracking import t


class CronJobClient:
    """Create and delete one-shot jobs that call our webhook back."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        timezone: str = constants.VENUE_TIMEZONE,
        base_url: str = constants.CRONJOB_API_URL,
        timeout: float = constants.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Any = None,
    ) -> None:
        t('reservations.services.cronjob_service.CronJobClient.__init__')
        self._api_key = api_key
        self._timezone = timezone
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._transport = transport
        self.logger = logger or logging.getLogger('CronJobClient')

    def _client(self) -> httpx.AsyncClient:
        if not self._api_key:
            raise SchedulerIntegrationError("CRONJOB_API_KEY not configured")
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={
                'Authorization': f'Bearer {self._api_key}',
                'Content-Type': 'application/json',
            },
        )

    def build_job(self, fire_at: datetime, callback_url: str, title: str) -> Dict[str, Any]:
        """Build the job body for a single venue-local fire instant.

        cron-job.org schedules are recurring, so the job expires shortly
        after its fire time and can never run again the following year.
        """

        t('reservations.services.cronjob_service.CronJobClient.build_job')
        ensure_aware(fire_at, "fire_at")
        local = fire_at.astimezone(pytz.timezone(self._timezone))
        expires = local + timedelta(hours=1)
        return {
            'job': {
                'url': callback_url,
                'enabled': True,
                'title': title,
                'saveResponses': True,
                'requestMethod': 0,  # GET
                'schedule': {
                    'timezone': self._timezone,
                    'expiresAt': int(expires.strftime('%Y%m%d%H%M%S')),
                    'hours': [local.hour],
                    'minutes': [local.minute],
                    'mdays': [local.day],
                    'months': [local.month],
                    'wdays': [-1],
                },
            }
        }

    async def arm(self, fire_at: datetime, callback_url: str, title: str) -> str:
        """Create the job and return its id."""

        t('reservations.services.cronjob_service.CronJobClient.arm')
        body = self.build_job(fire_at, callback_url, title)
        try:
            async with self._client() as client:
                response = await client.put('/jobs', json=body)
        except httpx.HTTPError as exc:
            self.logger.error("cron-job.org arm failed: %s", exc)
            raise SchedulerIntegrationError(f"cron-job.org unreachable: {exc}") from exc

        if response.status_code not in (200, 201):
            self.logger.error(
                "cron-job.org rejected job %s: %s %s",
                title,
                response.status_code,
                response.text,
            )
            raise SchedulerIntegrationError(
                f"cron-job.org error {response.status_code} while arming {title}"
            )

        try:
            job_id = response.json()['jobId']
        except (KeyError, ValueError) as exc:
            raise SchedulerIntegrationError("cron-job.org response missing jobId") from exc

        self.logger.info("Armed cron-job.org job %s for %s (%s)", job_id, fire_at.isoformat(), title)
        return str(job_id)

    async def disarm(self, job_id: str) -> None:
        """Delete the job. A job that is already gone counts as disarmed."""

        t('reservations.services.cronjob_service.CronJobClient.disarm')
        try:
            async with self._client() as client:
                response = await client.delete(f'/jobs/{job_id}')
        except httpx.HTTPError as exc:
            self.logger.error("cron-job.org disarm of %s failed: %s", job_id, exc)
            raise SchedulerIntegrationError(f"cron-job.org unreachable: {exc}") from exc

        if response.status_code == 404:
            self.logger.info("cron-job.org job %s already gone", job_id)
            return
        if response.status_code not in (200, 204):
            self.logger.error(
                "cron-job.org refused to delete %s: %s %s",
                job_id,
                response.status_code,
                response.text,
            )
            raise SchedulerIntegrationError(
                f"cron-job.org error {response.status_code} while deleting job {job_id}"
            )
        self.logger.info("Deleted cron-job.org job %s", job_id)
